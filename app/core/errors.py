"""
=============================================================================
HPS OPERATIONS - ERROR HANDLING MODULE
=============================================================================
Error types shared by the monitoring core and the global exception handler.

- TelemetryError: returned (never raised) by the telemetry store when a
  log/metric/audit/activity row could not be written. Callers log it and
  move on.
- register_exception_handlers: catch-all for requests the request monitor
  does not wrap (excluded paths). Produces the same 500 body as the
  monitor so clients see a single error shape.

Usage:
    # In main.py
    from app.core.errors import register_exception_handlers
    register_exception_handlers(app)
=============================================================================
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal Server Error"


class TelemetryError(Exception):
    """A telemetry row could not be persisted."""

    def __init__(self, entity: str, cause: BaseException):
        self.entity = entity
        self.cause = cause
        super().__init__(f"failed to persist {entity}: {cause}")


def internal_error_response(request_id: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": INTERNAL_ERROR_MESSAGE, "request_id": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        context = getattr(request.state, "request_context", None)
        request_id = context.request_id if context is not None else None

        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}:\n"
            f"{traceback.format_exc()}"
        )
        return internal_error_response(request_id)
