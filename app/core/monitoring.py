"""
=============================================================================
HPS OPERATIONS - REQUEST MONITORING
=============================================================================
Uniform timing, correlation, logging and persistence for every API request.

For each wrapped invocation the monitor:
    1. generates a fresh request id (uuid4)
    2. extracts user/session (cookies), client IP and user agent
    3. starts the clock
    4. logs "Incoming {method} request to {endpoint}"
    5. calls the handler with ``request.state.request_context`` set
    6. on success, keeps the handler's response as-is
    7. on an unhandled exception, logs it with its stack trace, stores an
       ERROR system log row and answers 500
       ``{"error": "Internal Server Error", "request_id": ...}``
    8. logs the completion line and stores one performance row
    9. sets ``X-Request-ID`` and ``X-Response-Time: <n>ms``

Telemetry is fail-open: a failed log write or row insert is logged and
dropped, and never changes the response. Only the handler's own failure
turns a response into a 500.

Two entry points share the same RequestMonitor:
    - MonitoringMiddleware (app/core/middleware.py) around the whole app
    - @with_monitoring on a single endpoint
=============================================================================
"""

import functools
import inspect
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response

from app.core.config import Settings, settings
from app.core.errors import TelemetryError, internal_error_response
from app.core.logging import AppLogger
from app.services.telemetry_store import TelemetryStore
from app.utils.parsing import safe_parse_int

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time"
USER_ID_COOKIE = "userId"
SESSION_ID_COOKIE = "sessionId"

CallNext = Callable[[Request], Awaitable[Response]]


@dataclass
class RequestContext:
    """Per-request correlation data, shared with the handler."""

    request_id: str
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)  # monotonic seconds

    def elapsed_ms(self) -> int:
        return max(0, int(round((time.perf_counter() - self.start_time) * 1000)))

    def as_log_context(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


@dataclass(frozen=True)
class MonitoringOptions:
    log_to_database: bool = True
    log_to_file: bool = True
    track_performance: bool = True
    # Reserved for per-request activity capture; handlers record activity explicitly
    track_user_activity: bool = True

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "MonitoringOptions":
        return cls(
            log_to_database=app_settings.MONITOR_LOG_TO_DATABASE,
            log_to_file=app_settings.MONITOR_LOG_TO_FILE,
            track_performance=app_settings.MONITOR_TRACK_PERFORMANCE,
            track_user_activity=app_settings.MONITOR_TRACK_USER_ACTIVITY,
        )


@dataclass
class Telemetry:
    """Store + logger pair built once at startup and shared by every request."""

    store: TelemetryStore
    logger: AppLogger
    options: MonitoringOptions = field(default_factory=MonitoringOptions)


# -----------------------------------------------------------------------------
# Request metadata extraction (absent or malformed values become None)
# -----------------------------------------------------------------------------


def extract_user_info(request: Request) -> Tuple[Optional[int], Optional[str]]:
    try:
        cookies = request.cookies
    except Exception:
        return None, None

    session_id = cookies.get(SESSION_ID_COOKIE) or None
    raw_user_id = cookies.get(USER_ID_COOKIE)
    user_id = safe_parse_int(raw_user_id, None) if raw_user_id else None
    return user_id, session_id


def get_client_ip(request: Request) -> str:
    headers = request.headers
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return (
        headers.get("x-real-ip")
        or headers.get("x-vercel-forwarded-for")
        or "unknown"
    )


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent") or None


def build_request_context(request: Request) -> RequestContext:
    user_id, session_id = extract_user_info(request)
    return RequestContext(
        request_id=str(uuid.uuid4()),
        user_id=user_id,
        session_id=session_id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


def get_request_context(request: Request) -> Optional[RequestContext]:
    return getattr(request.state, "request_context", None)


# -----------------------------------------------------------------------------
# Monitor
# -----------------------------------------------------------------------------


class RequestMonitor:
    def __init__(
        self,
        store: TelemetryStore,
        logger: AppLogger,
        options: Optional[MonitoringOptions] = None,
    ):
        self.store = store
        self.logger = logger
        self.options = options or MonitoringOptions()

    @classmethod
    def from_telemetry(
        cls, telemetry: Telemetry, options: Optional[MonitoringOptions] = None
    ) -> "RequestMonitor":
        return cls(telemetry.store, telemetry.logger, options or telemetry.options)

    async def _persist(
        self,
        write: Callable[[], Awaitable[Optional[TelemetryError]]],
        failure_message: str,
        context: RequestContext,
    ) -> Optional[TelemetryError]:
        try:
            error = await write()
        except Exception as exc:
            error = TelemetryError("telemetry", exc)
        if error is not None:
            self.logger.error(
                failure_message, {"request_id": context.request_id}, error.cause
            )
        return error

    async def _handle_failure(
        self,
        request: Request,
        context: RequestContext,
        exc: Exception,
    ) -> Response:
        method = request.method
        endpoint = request.url.path

        if self.options.log_to_file:
            self.logger.error(
                f"Error in {method} {endpoint}",
                {**context.as_log_context(), "endpoint": endpoint, "method": method},
                exc,
            )

        if self.options.log_to_database:
            stack_trace = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
            await self._persist(
                lambda: self.store.add_system_log(
                    level="ERROR",
                    message=f"API Error: {method} {endpoint} - {exc}",
                    context={
                        "request_id": context.request_id,
                        "endpoint": endpoint,
                        "method": method,
                        "error": str(exc),
                    },
                    source=f"API:{endpoint}",
                    user_id=context.user_id,
                    session_id=context.session_id,
                    request_id=context.request_id,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    stack_trace=stack_trace,
                ),
                "Failed to log error to database",
                context,
            )

        return internal_error_response(context.request_id)

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        context = build_request_context(request)
        request.state.request_context = context
        # Tags plain stdlib/structlog lines emitted while the handler runs
        with structlog.contextvars.bound_contextvars(request_id=context.request_id):
            return await self._monitor(request, context, call_next)

    async def _monitor(
        self, request: Request, context: RequestContext, call_next: CallNext
    ) -> Response:
        method = request.method
        endpoint = request.url.path

        if self.options.log_to_file:
            self.logger.info(
                f"Incoming {method} request to {endpoint}",
                {**context.as_log_context(), "endpoint": endpoint, "method": method},
            )

        try:
            response = await call_next(request)
        except StarletteHTTPException as exc:
            # Declared error responses of the handler, not failures
            response = await http_exception_handler(request, exc)
        except Exception as exc:
            response = await self._handle_failure(request, context, exc)

        response_time = context.elapsed_ms()
        status_code = response.status_code

        if self.options.log_to_file:
            self.logger.log_api_request(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
                response_time=response_time,
                user_id=context.user_id,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                request_id=context.request_id,
                session_id=context.session_id,
            )

        if self.options.track_performance and self.options.log_to_database:
            await self._persist(
                lambda: self.store.add_performance_log(
                    endpoint=endpoint,
                    method=method,
                    response_time=response_time,
                    status_code=status_code,
                    user_id=context.user_id,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    session_id=context.session_id,
                    request_id=context.request_id,
                ),
                "Failed to log performance metrics to database",
                context,
            )

        response.headers[REQUEST_ID_HEADER] = context.request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{response_time}ms"
        return response


# -----------------------------------------------------------------------------
# Decorator form
# -----------------------------------------------------------------------------


def _find_request(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Optional[Request]:
    candidate = kwargs.get("request")
    if isinstance(candidate, Request):
        return candidate
    for value in list(args) + list(kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


def with_monitoring(
    handler: Optional[Callable[..., Any]] = None,
    *,
    options: Optional[MonitoringOptions] = None,
    telemetry: Optional[Telemetry] = None,
):
    """Wrap a single FastAPI endpoint with the request monitor.

    The endpoint keeps its FastAPI signature. A parameter named
    ``request_context`` is filled with the current RequestContext instead
    of being resolved by FastAPI. Return values that are not a Response
    are JSON-encoded. ``telemetry`` defaults to ``request.app.state.telemetry``
    at call time.

        @router.get("/colours")
        @with_monitoring
        async def list_colours(request: Request, request_context: RequestContext):
            ...
    """
    if handler is None:
        return functools.partial(with_monitoring, options=options, telemetry=telemetry)

    signature = inspect.signature(handler)
    wants_context = "request_context" in signature.parameters
    takes_request = "request" in signature.parameters
    is_coroutine = inspect.iscoroutinefunction(handler)

    exposed = [p for name, p in signature.parameters.items() if name != "request_context"]
    if not takes_request:
        exposed.append(
            inspect.Parameter(
                "request", inspect.Parameter.KEYWORD_ONLY, annotation=Request
            )
        )

    @functools.wraps(handler)
    async def monitored_handler(*args: Any, **kwargs: Any) -> Response:
        request = _find_request(args, kwargs)
        if request is None:
            raise TypeError(f"{handler.__name__} was called without a Request")
        if not takes_request:
            kwargs.pop("request", None)

        bundle = telemetry or request.app.state.telemetry
        monitor = RequestMonitor.from_telemetry(bundle, options)

        async def call_handler(req: Request) -> Response:
            if wants_context:
                kwargs["request_context"] = get_request_context(req)
            if is_coroutine:
                result = await handler(*args, **kwargs)
            else:
                result = await run_in_threadpool(handler, *args, **kwargs)
            if isinstance(result, Response):
                return result
            return JSONResponse(content=jsonable_encoder(result))

        return await monitor.dispatch(request, call_handler)

    monitored_handler.__signature__ = signature.replace(parameters=exposed)
    return monitored_handler
