from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.monitoring import MonitoringOptions, RequestMonitor, Telemetry


class MonitoringMiddleware(BaseHTTPMiddleware):
    """
    Runs the RequestMonitor around every request of the app.

    - X-Request-ID / X-Response-Time on every monitored response
    - request.state.request_context available to endpoints and dependencies
    - unhandled exceptions answered with a 500 carrying the request id

    Paths matching ``exclude_paths`` (exact or as a prefix followed by "/")
    pass through untouched.
    """

    def __init__(
        self,
        app,
        telemetry: Telemetry,
        options: Optional[MonitoringOptions] = None,
        exclude_paths: Iterable[str] = (),
    ):
        super().__init__(app)
        self.monitor = RequestMonitor.from_telemetry(telemetry, options)
        self.exclude_paths = tuple(p.rstrip("/") or "/" for p in exclude_paths)

    def is_excluded(self, path: str) -> bool:
        for excluded in self.exclude_paths:
            if path == excluded or path.startswith(excluded.rstrip("/") + "/"):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        if self.is_excluded(request.url.path):
            return await call_next(request)
        return await self.monitor.dispatch(request, call_next)
