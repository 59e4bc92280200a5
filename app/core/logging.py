import logging
import sys
import traceback
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from app.core.config import Settings, settings
from app.core.sanitizer import redact_pii

LogContext = Dict[str, Any]

_SEVERITY_METHODS = {
    "error": "error",
    "warn": "warning",
    "info": "info",
    "debug": "debug",
}


def _redact_structlog(_, __, event_dict):
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = redact_pii(value)
    return event_dict


def _rotating_handler(
    path: Path, level: int, backup_count: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        path, when="midnight", backupCount=backup_count, encoding="utf-8", delay=True
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(app_settings: Settings = settings):
    """Configure structlog over stdlib handlers with PII redaction.

    Writes JSON lines to ``application.log`` (everything at LOG_LEVEL and
    above) and ``error.log`` (errors only), both rotated daily, plus the
    console outside production.
    """
    log_dir = Path(app_settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_structlog,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_structlog,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    if app_settings.console_logging_enabled:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.addHandler(
        _rotating_handler(
            log_dir / "application.log",
            log_level,
            app_settings.LOG_RETENTION_DAYS,
            formatter,
        )
    )
    root_logger.addHandler(
        _rotating_handler(
            log_dir / "error.log",
            logging.ERROR,
            app_settings.ERROR_LOG_RETENTION_DAYS,
            formatter,
        )
    )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        level=app_settings.LOG_LEVEL,
        log_dir=str(log_dir),
        pii_redaction=True,
    )
    return logger


class AppLogger:
    """Console/file sink used by the request monitor and activity recorder.

    Every method swallows its own failures: a broken handler or an
    unserializable context value must never reach the request path.
    """

    def __init__(self, name: str = "app.monitoring", logger: Any = None):
        self._logger = logger if logger is not None else structlog.get_logger(name)

    def _emit(self, severity: str, message: str, context: LogContext) -> None:
        method = getattr(self._logger, _SEVERITY_METHODS[severity])
        method(message, **context)

    def _log(self, severity: str, message: str, context: Optional[LogContext]) -> None:
        clean = {
            key: value
            for key, value in (context or {}).items()
            if value is not None and key != "event"
        }
        try:
            self._emit(severity, message, clean)
        except Exception as exc:  # pragma: no cover - last-resort sink
            try:
                sys.stderr.write(f"logging failed ({type(exc).__name__}): {message}\n")
            except Exception:
                pass

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        payload = dict(context or {})
        if error is not None:
            payload["error_message"] = str(error)
            payload["stack_trace"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        self._log("error", message, payload)

    def warn(self, message: str, context: Optional[LogContext] = None) -> None:
        self._log("warn", message, context)

    def info(self, message: str, context: Optional[LogContext] = None) -> None:
        self._log("info", message, context)

    def debug(self, message: str, context: Optional[LogContext] = None) -> None:
        self._log("debug", message, context)

    def _at(self, severity: str, message: str, context: LogContext) -> None:
        if severity == "error":
            self.error(message, context)
        elif severity == "warn":
            self.warn(message, context)
        elif severity == "debug":
            self.debug(message, context)
        else:
            self.info(message, context)

    # Typed event helpers

    def log_api_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        response_time: int,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.info(
            f"API Request: {method} {endpoint}",
            {
                "type": "api_request",
                "method": method,
                "endpoint": endpoint,
                "status_code": status_code,
                "response_time": response_time,
                "user_id": user_id,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "request_id": request_id,
                "session_id": session_id,
            },
        )

    def log_user_activity(
        self,
        user_id: int,
        action: str,
        resource: Optional[str] = None,
        details: Any = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        self.info(
            f"User Activity: {action}",
            {
                "type": "user_activity",
                "user_id": user_id,
                "action": action,
                "resource": resource,
                "details": details,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "session_id": session_id,
                "request_id": request_id,
            },
        )

    def log_database_operation(
        self,
        operation: str,
        table: str,
        record_id: str,
        user_id: Optional[int] = None,
        old_values: Any = None,
        new_values: Any = None,
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        self.info(
            f"Database Operation: {operation} on {table}",
            {
                "type": "database_operation",
                "operation": operation,
                "table": table,
                "record_id": record_id,
                "user_id": user_id,
                "old_values": old_values,
                "new_values": new_values,
                "session_id": session_id,
                "request_id": request_id,
            },
        )

    def log_security_event(
        self,
        event: str,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Any = None,
        severity: str = "warn",
        request_id: Optional[str] = None,
    ) -> None:
        self._at(
            severity,
            f"Security Event: {event}",
            {
                "type": "security_event",
                "security_event": event,
                "user_id": user_id,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "details": details,
                "request_id": request_id,
            },
        )

    def log_system_event(
        self,
        event: str,
        details: Any = None,
        severity: str = "info",
        request_id: Optional[str] = None,
    ) -> None:
        self._at(
            severity,
            f"System Event: {event}",
            {
                "type": "system_event",
                "system_event": event,
                "details": details,
                "request_id": request_id,
            },
        )
