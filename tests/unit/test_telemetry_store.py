from datetime import date
from decimal import Decimal

import anyio

from app.core.errors import TelemetryError
from app.models.telemetry import AuditLog, SystemLog
from app.services.telemetry_store import TelemetryStore, to_json_payload

from conftest import FailingStore


def test_append_returns_none_and_persists(store, rows):
    result = anyio.run(
        lambda: store.add_system_log(level="INFO", message="Stock synced", context={"rows": 3})
    )

    assert result is None
    log = rows(SystemLog)[0]
    assert log.message == "Stock synced"
    assert log.context == {"rows": 3}
    assert log.timestamp is not None


def test_json_payloads_are_normalized(store, rows):
    anyio.run(
        lambda: store.add_audit_log(
            table_name="hps_invoice",
            record_id="INV-9",
            action="CREATE",
            new_values={"total": Decimal("12.50"), "issued": date(2026, 1, 5)},
        )
    )

    assert rows(AuditLog)[0].new_values == {"total": 12.5, "issued": "2026-01-05"}
    assert to_json_payload(None) is None


def test_write_failure_is_returned_not_raised():
    result = anyio.run(lambda: FailingStore().add_user_activity(user_id=1, action="login"))

    assert isinstance(result, TelemetryError)
    assert result.entity == "user_activity"
    assert "unavailable" in str(result.cause)


def test_constraint_violation_is_returned(store):
    # message is NOT NULL
    result = anyio.run(lambda: store.add_system_log(level="INFO", message=None))

    assert isinstance(result, TelemetryError)
    assert result.entity == "system_log"


def test_unknown_column_is_returned(database):
    result = anyio.run(
        lambda: TelemetryStore(database).add_performance_log(endpoint="/x", colour="red")
    )

    assert isinstance(result, TelemetryError)
