import anyio
import pytest

from app.core.monitoring import REQUEST_ID_HEADER
from app.models.colour import Colour
from app.models.telemetry import AuditLog, SystemLog, UserActivity
from app.services.activity_recorder import (
    ActivityRecorder,
    UserAction,
    compose_resource,
    snapshot,
)

from conftest import FailingStore, build_request, cookie_header


def _request():
    return build_request(
        "/api/v1/colours/7",
        "PUT",
        headers={
            **cookie_header(sessionId="sess-9"),
            "X-Real-IP": "10.1.1.1",
            "User-Agent": "floor-tablet",
            REQUEST_ID_HEADER: "req-123",
        },
    )


class TestDataOperations:
    def test_update_writes_one_activity_and_one_audit_row(self, recorder, rows):
        anyio.run(
            lambda: recorder.record_data_operation(
                5,
                "update",
                "hps_colour",
                7,
                _request(),
                {
                    "previous_values": {"colour_id": 7, "colour_name": "Red"},
                    "new_values": {"colour_id": 7, "colour_name": "Crimson"},
                },
            )
        )

        activities = rows(UserActivity)
        audits = rows(AuditLog)
        assert len(activities) == 1
        assert len(audits) == 1

        assert activities[0].action == "update_record"
        assert activities[0].resource == "hps_colour:7"
        assert activities[0].details["resource_id"] == 7
        assert activities[0].session_id == "sess-9"
        assert activities[0].ip_address == "10.1.1.1"

        audit = audits[0]
        assert audit.action == "UPDATE"
        assert audit.record_id == "7"
        assert audit.old_values == {"colour_id": 7, "colour_name": "Red"}
        assert audit.new_values == {"colour_id": 7, "colour_name": "Crimson"}
        assert audit.user_ip == "10.1.1.1"
        assert audit.user_agent == "floor-tablet"

    def test_view_writes_activity_only(self, recorder, rows):
        anyio.run(
            lambda: recorder.record_data_operation(5, "view", "hps_colour", 7)
        )

        assert [a.action for a in rows(UserActivity)] == ["view_record"]
        assert rows(AuditLog) == []

    def test_unknown_operation_is_rejected(self, recorder):
        with pytest.raises(ValueError):
            anyio.run(
                lambda: recorder.record_data_operation(5, "merge", "hps_colour", 7)
            )


def test_delete_audit_keeps_old_values_only(recorder, rows):
    anyio.run(
        lambda: recorder.record_audit_trail(
            "hps_colour", "7", "DELETE", old_values={"colour_id": 7, "colour_name": "Red"}
        )
    )

    audits = rows(AuditLog)
    assert len(audits) == 1
    assert audits[0].action == "DELETE"
    assert audits[0].old_values["colour_name"] == "Red"
    assert audits[0].new_values is None


def test_anonymous_security_event_is_a_log_line_only(recorder, recording_logger, rows):
    anyio.run(
        lambda: recorder.record_security_event(None, "unauthorized_access", "admin-panel")
    )

    assert rows(UserActivity) == []
    warnings = recording_logger.find("Security Event: unauthorized_access")
    assert len(warnings) == 1
    severity, _, context = warnings[0]
    assert severity == "warn"
    assert context["security_event"] == "unauthorized_access"
    assert context["details"]["resource"] == "admin-panel"


def test_authenticated_security_event_writes_activity(recorder, rows):
    anyio.run(
        lambda: recorder.record_security_event(
            3, "permission_denied", "/api/v1/monitoring/dashboard", None, {"user_level": "2"}
        )
    )

    activity = rows(UserActivity)[0]
    assert activity.action == "permission_denied"
    assert activity.details["security_event"] == "permission_denied"
    assert activity.details["user_level"] == "2"


def test_system_event_row_carries_request_metadata(recorder, rows):
    anyio.run(
        lambda: recorder.record_system_event(
            "warn", "Colour not found", {"colour_id": 99}, "colour-api", 5, _request()
        )
    )

    log = rows(SystemLog)[0]
    assert log.level == "WARN"
    assert log.context == {"colour_id": 99}
    assert log.source == "colour-api"
    assert log.request_id == "req-123"
    assert log.session_id == "sess-9"


def test_system_event_without_request_gets_fresh_request_id(recorder, rows):
    anyio.run(lambda: recorder.record_system_event("INFO", "Nightly stock sync"))

    log = rows(SystemLog)[0]
    assert log.request_id
    assert log.ip_address is None


def test_failing_store_is_logged_and_swallowed(recording_logger):
    store = FailingStore()
    recorder = ActivityRecorder(store, recording_logger)

    anyio.run(
        lambda: recorder.record_data_operation(
            5, "delete", "hps_colour", 7, None, {"previous_values": {"colour_id": 7}}
        )
    )

    assert store.attempts == 2
    assert recording_logger.find("Failed to log user activity to database")
    assert recording_logger.find("Failed to log audit trail to database")


class TestTrackers:
    def test_login_success_and_failure(self, recorder, rows):
        anyio.run(lambda: recorder.track_login(1, None, success=True))
        anyio.run(lambda: recorder.track_login(1, None, success=False))

        actions = [(a.action, a.details["success"]) for a in rows(UserActivity)]
        assert actions == [("login", True), ("login_failed", False)]

    def test_page_view_resource(self, recorder, rows):
        anyio.run(lambda: recorder.track_page_view(2, "/sales/invoice"))

        activity = rows(UserActivity)[0]
        assert activity.action == UserAction.PAGE_VIEW.value
        assert activity.resource == "page:/sales/invoice"
        assert activity.details["path"] == "/sales/invoice"

    def test_sales_operation_maps_to_specific_action(self, recorder, rows):
        anyio.run(
            lambda: recorder.track_sales_operation(2, "create", "delivery_order", "DO-15")
        )

        activity = rows(UserActivity)[0]
        assert activity.action == "create_delivery_order"
        assert activity.resource == "delivery_order:DO-15"

    def test_unknown_sales_type_is_rejected(self, recorder):
        with pytest.raises(ValueError):
            anyio.run(lambda: recorder.track_sales_operation(2, "create", "quote", 1))

    def test_search_export_import_metadata(self, recorder, rows):
        anyio.run(
            lambda: recorder.track_search(2, "kraft", "hps_material", 4, None, {"grade": "A"})
        )
        anyio.run(lambda: recorder.track_export(2, "hps_stock", "csv", 120))
        anyio.run(
            lambda: recorder.track_import(
                2, "hps_material", "rolls.xlsx", 0, None, False, "bad header"
            )
        )

        search, export, imported = rows(UserActivity)
        assert search.action == "search_records"
        assert search.details["search_query"] == "kraft"
        assert search.details["filters"] == {"grade": "A"}
        assert export.details["export_format"] == "csv"
        assert export.details["record_count"] == 120
        assert imported.action == "import_data"
        assert imported.details["success"] is False
        assert imported.details["error_message"] == "bad header"

    def test_batch_records_every_activity(self, recorder, rows):
        anyio.run(
            lambda: recorder.track_batch_activity(
                [
                    {"user_id": 1, "action": UserAction.VIEW_STOCK, "resource": "stock"},
                    {"user_id": 2, "action": "view_jobcard", "resource": "jobcard"},
                ]
            )
        )

        assert sorted(a.action for a in rows(UserActivity)) == ["view_jobcard", "view_stock"]


def test_snapshot_returns_column_values():
    colour = Colour(colour_id=3, colour_name="Blue")

    assert snapshot(colour) == {"colour_id": 3, "colour_name": "Blue"}
    assert snapshot(None) is None
    assert snapshot({"a": 1}) == {"a": 1}


def test_compose_resource():
    assert compose_resource("hps_colour", 7) == "hps_colour:7"
    assert compose_resource("page", None) == "page"
    assert compose_resource(None, 5) == "5"
