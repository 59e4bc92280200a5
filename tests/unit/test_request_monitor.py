import json
import re
import uuid

import anyio
import structlog
from fastapi import HTTPException
from starlette.responses import JSONResponse, Response

from app.core.monitoring import (
    REQUEST_ID_HEADER,
    RESPONSE_TIME_HEADER,
    MonitoringOptions,
    RequestMonitor,
    get_request_context,
)
from app.models.telemetry import PerformanceLog, SystemLog

from conftest import FailingStore, build_request, cookie_header

TIMING_RE = re.compile(r"^\d+ms$")


def _body(response: Response) -> dict:
    return json.loads(response.body)


async def ok_handler(_request):
    return JSONResponse({"ok": True})


async def boom_handler(_request):
    raise ValueError("boom")


def test_success_keeps_response_and_adds_headers(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)

    async def handler(_request):
        await anyio.sleep(0.005)
        return JSONResponse({"ok": True})

    response = anyio.run(monitor.dispatch, build_request("/api/v1/colours"), handler)

    assert response.status_code == 200
    assert _body(response) == {"ok": True}
    assert uuid.UUID(response.headers[REQUEST_ID_HEADER])
    assert TIMING_RE.match(response.headers[RESPONSE_TIME_HEADER])

    perf = rows(PerformanceLog)
    assert len(perf) == 1
    assert perf[0].status_code == 200
    assert perf[0].endpoint == "/api/v1/colours"
    assert perf[0].method == "GET"
    assert perf[0].response_time >= 0
    assert perf[0].request_id == response.headers[REQUEST_ID_HEADER]


def test_handler_exception_becomes_500_with_request_id(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)

    response = anyio.run(monitor.dispatch, build_request("/api/v1/colours"), boom_handler)

    assert response.status_code == 500
    request_id = response.headers[REQUEST_ID_HEADER]
    assert _body(response) == {"error": "Internal Server Error", "request_id": request_id}
    assert TIMING_RE.match(response.headers[RESPONSE_TIME_HEADER])

    errors = rows(SystemLog)
    assert len(errors) == 1
    assert errors[0].level == "ERROR"
    assert "boom" in errors[0].message
    assert errors[0].message == "API Error: GET /api/v1/colours - boom"
    assert errors[0].source == "API:/api/v1/colours"
    assert errors[0].request_id == request_id
    assert errors[0].context["error"] == "boom"
    assert "ValueError" in errors[0].stack_trace

    perf = rows(PerformanceLog)
    assert [p.status_code for p in perf] == [500]

    failure_lines = recording_logger.find("Error in GET /api/v1/colours")
    assert failure_lines and failure_lines[0][0] == "error"
    assert failure_lines[0][2]["error_message"] == "boom"


def test_synchronous_style_failure_also_answers_500(store, recording_logger):
    monitor = RequestMonitor(store, recording_logger)

    async def handler(_request):
        return {}["missing"]

    response = anyio.run(monitor.dispatch, build_request(), handler)

    assert response.status_code == 500
    assert set(_body(response)) == {"error", "request_id"}


def test_failing_store_never_changes_successful_response(recording_logger):
    store = FailingStore()
    monitor = RequestMonitor(store, recording_logger)

    response = anyio.run(monitor.dispatch, build_request(), ok_handler)

    assert response.status_code == 200
    assert _body(response) == {"ok": True}
    assert REQUEST_ID_HEADER in response.headers
    assert store.attempts == 1
    assert recording_logger.find("Failed to log performance metrics to database")


def test_failing_store_during_handler_error_still_answers_500(recording_logger):
    store = FailingStore()
    monitor = RequestMonitor(store, recording_logger)

    response = anyio.run(monitor.dispatch, build_request(), boom_handler)

    assert response.status_code == 500
    assert _body(response)["request_id"] == response.headers[REQUEST_ID_HEADER]
    assert store.attempts == 2
    assert recording_logger.find("Failed to log error to database")


def test_every_line_and_row_shares_one_request_id(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)

    response = anyio.run(monitor.dispatch, build_request(), boom_handler)
    request_id = response.headers[REQUEST_ID_HEADER]

    logged_ids = {
        context.get("request_id") for _, _, context in recording_logger.records
    }
    assert logged_ids == {request_id}
    assert {r.request_id for r in rows(SystemLog)} == {request_id}
    assert {r.request_id for r in rows(PerformanceLog)} == {request_id}


def test_request_id_is_bound_for_plain_loggers_while_handling(store, recording_logger):
    monitor = RequestMonitor(store, recording_logger)

    async def handler(_request):
        return JSONResponse(dict(structlog.contextvars.get_contextvars()))

    async def run():
        response = await monitor.dispatch(build_request(), handler)
        return response, dict(structlog.contextvars.get_contextvars())

    response, after = anyio.run(run)

    assert _body(response) == {"request_id": response.headers[REQUEST_ID_HEADER]}
    assert "request_id" not in after


def test_concurrent_requests_get_distinct_request_ids(store, recording_logger):
    monitor = RequestMonitor(store, recording_logger)
    seen = []

    async def slow_handler(_request):
        await anyio.sleep(0.01)
        return JSONResponse({"ok": True})

    async def one():
        response = await monitor.dispatch(build_request(), slow_handler)
        seen.append(response.headers[REQUEST_ID_HEADER])

    async def main():
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(one)

    anyio.run(main)

    assert len(seen) == 5
    assert len(set(seen)) == 5


def test_response_time_tracks_elapsed_wall_clock(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)

    async def handler(_request):
        await anyio.sleep(0.05)
        return Response("done")

    response = anyio.run(monitor.dispatch, build_request(), handler)

    elapsed = rows(PerformanceLog)[0].response_time
    assert isinstance(elapsed, int)
    assert 40 <= elapsed < 5000
    assert response.headers[RESPONSE_TIME_HEADER] == f"{elapsed}ms"


def test_incoming_line_is_logged_before_handler_runs(store, recording_logger):
    monitor = RequestMonitor(store, recording_logger)
    lines_seen_by_handler = []

    async def handler(_request):
        lines_seen_by_handler.extend(recording_logger.messages())
        return Response("ok")

    anyio.run(monitor.dispatch, build_request("/api/v1/stock", "POST"), handler)

    assert lines_seen_by_handler == ["Incoming POST request to /api/v1/stock"]
    assert "API Request: POST /api/v1/stock" in recording_logger.messages()


def test_handler_sees_request_context_from_cookies(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)
    captured = {}

    async def handler(request):
        captured["context"] = get_request_context(request)
        return Response("ok")

    request = build_request(
        headers={
            **cookie_header(userId="42", sessionId="sess-1"),
            "X-Forwarded-For": "10.0.0.7, 172.16.0.1",
            "User-Agent": "pytest-agent",
        }
    )
    response = anyio.run(monitor.dispatch, request, handler)

    context = captured["context"]
    assert context.request_id == response.headers[REQUEST_ID_HEADER]
    assert context.user_id == 42
    assert context.session_id == "sess-1"
    assert context.ip_address == "10.0.0.7"
    assert context.user_agent == "pytest-agent"

    perf = rows(PerformanceLog)[0]
    assert (perf.user_id, perf.session_id, perf.ip_address) == (42, "sess-1", "10.0.0.7")


def test_http_exception_is_rendered_not_turned_into_500(store, recording_logger, rows):
    monitor = RequestMonitor(store, recording_logger)

    async def handler(_request):
        raise HTTPException(status_code=404, detail="Colour not found")

    response = anyio.run(monitor.dispatch, build_request(), handler)

    assert response.status_code == 404
    assert _body(response) == {"detail": "Colour not found"}
    assert REQUEST_ID_HEADER in response.headers
    assert rows(SystemLog) == []
    assert [p.status_code for p in rows(PerformanceLog)] == [404]


def test_options_disable_database_and_file_output(store, recording_logger, rows):
    options = MonitoringOptions(log_to_database=False, log_to_file=False)
    monitor = RequestMonitor(store, recording_logger, options)

    response = anyio.run(monitor.dispatch, build_request(), boom_handler)

    assert response.status_code == 500
    assert TIMING_RE.match(response.headers[RESPONSE_TIME_HEADER])
    assert rows(SystemLog) == []
    assert rows(PerformanceLog) == []
    assert recording_logger.records == []


def test_track_performance_off_skips_performance_row_only(store, recording_logger, rows):
    monitor = RequestMonitor(
        store, recording_logger, MonitoringOptions(track_performance=False)
    )

    anyio.run(monitor.dispatch, build_request(), boom_handler)

    assert rows(PerformanceLog) == []
    assert len(rows(SystemLog)) == 1
