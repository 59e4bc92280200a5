"""
=============================================================================
HPS OPERATIONS - ACTIVITY / AUDIT RECORDER
=============================================================================
Typed vocabulary for "what a user did" and "what changed in a table",
normalized into the telemetry tables.

Entry points:
    - record_system_event   -> hps_system_log
    - record_audit_trail    -> hps_audit_log
    - record_user_activity  -> hps_user_activity
    - record_data_operation -> activity row, plus an audit row unless "view"
    - record_security_event -> activity row, or a WARN log line when there
                               is no authenticated actor

Audit convention: UPDATE and DELETE pass the row as it was before the
mutation (``previous_values`` / ``old_values``), CREATE and UPDATE pass the
resulting row (``new_values``). The recorder stores whatever it is given,
so handlers fetch the old row before mutating.

Every call is best-effort. Storage failures are logged and dropped; the
business operation that triggered the call is never failed or rolled back.
=============================================================================
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from anyio import create_task_group
from sqlalchemy import inspect as sa_inspect
from starlette.requests import Request

from app.core.errors import TelemetryError
from app.core.logging import AppLogger
from app.core.monitoring import (
    REQUEST_ID_HEADER,
    SESSION_ID_COOKIE,
    get_client_ip,
    get_request_context,
    get_user_agent,
)
from app.models.telemetry import AUDIT_ACTIONS, LOG_LEVELS
from app.services.telemetry_store import TelemetryStore


RecordId = Union[str, int]


class UserAction(str, Enum):
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    SESSION_EXPIRED = "session_expired"

    # Navigation
    PAGE_VIEW = "page_view"
    DASHBOARD_VIEW = "dashboard_view"

    # Data operations
    CREATE_RECORD = "create_record"
    UPDATE_RECORD = "update_record"
    DELETE_RECORD = "delete_record"
    VIEW_RECORD = "view_record"
    SEARCH_RECORDS = "search_records"
    EXPORT_DATA = "export_data"
    IMPORT_DATA = "import_data"

    # Sales
    CREATE_INVOICE = "create_invoice"
    UPDATE_INVOICE = "update_invoice"
    VIEW_INVOICE = "view_invoice"
    DELETE_INVOICE = "delete_invoice"
    CREATE_DELIVERY_ORDER = "create_delivery_order"
    UPDATE_DELIVERY_ORDER = "update_delivery_order"
    CREATE_RETURN = "create_return"
    UPDATE_RETURN = "update_return"

    # Job cards
    CREATE_JOBCARD = "create_jobcard"
    UPDATE_JOBCARD = "update_jobcard"
    VIEW_JOBCARD = "view_jobcard"

    # Material receiving
    CREATE_MATERIAL_RECEIVING = "create_material_receiving"
    UPDATE_MATERIAL_RECEIVING = "update_material_receiving"
    VIEW_MATERIAL_RECEIVING = "view_material_receiving"

    # Stock
    VIEW_STOCK = "view_stock"
    UPDATE_STOCK = "update_stock"
    STOCK_ADJUSTMENT = "stock_adjustment"

    # Production stages
    CREATE_PRINT_JOB = "create_print_job"
    UPDATE_PRINT_JOB = "update_print_job"
    VIEW_PRINT_JOB = "view_print_job"
    CREATE_CUTTING_JOB = "create_cutting_job"
    UPDATE_CUTTING_JOB = "update_cutting_job"
    VIEW_CUTTING_JOB = "view_cutting_job"
    CREATE_SLITTING_JOB = "create_slitting_job"
    UPDATE_SLITTING_JOB = "update_slitting_job"
    VIEW_SLITTING_JOB = "view_slitting_job"

    # System
    SYSTEM_BACKUP = "system_backup"
    SYSTEM_RESTORE = "system_restore"
    CONFIGURATION_CHANGE = "configuration_change"

    # Security
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    PERMISSION_DENIED = "permission_denied"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


DATA_OPERATION_ACTIONS = {
    "create": UserAction.CREATE_RECORD,
    "update": UserAction.UPDATE_RECORD,
    "delete": UserAction.DELETE_RECORD,
    "view": UserAction.VIEW_RECORD,
}


SALES_OPERATION_ACTIONS = {
    "invoice": {
        "create": UserAction.CREATE_INVOICE,
        "update": UserAction.UPDATE_INVOICE,
        "view": UserAction.VIEW_INVOICE,
        "delete": UserAction.DELETE_INVOICE,
    },
    "delivery_order": {
        "create": UserAction.CREATE_DELIVERY_ORDER,
        "update": UserAction.UPDATE_DELIVERY_ORDER,
        "view": UserAction.VIEW_RECORD,
        "delete": UserAction.DELETE_RECORD,
    },
    "return": {
        "create": UserAction.CREATE_RETURN,
        "update": UserAction.UPDATE_RETURN,
        "view": UserAction.VIEW_RECORD,
        "delete": UserAction.DELETE_RECORD,
    },
}


SECURITY_EVENTS = {
    "unauthorized_access": UserAction.UNAUTHORIZED_ACCESS,
    "permission_denied": UserAction.PERMISSION_DENIED,
    "suspicious_activity": UserAction.SUSPICIOUS_ACTIVITY,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _action_value(action: Union[UserAction, str]) -> str:
    return action.value if isinstance(action, UserAction) else str(action)


def snapshot(instance: Any) -> Optional[Dict[str, Any]]:
    """Plain column dict of an ORM instance, for audit old/new values."""
    if instance is None:
        return None
    if isinstance(instance, Mapping):
        return dict(instance)
    mapper = sa_inspect(instance).mapper
    return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}


def compose_resource(
    resource: Optional[str], resource_id: Optional[RecordId]
) -> Optional[str]:
    if resource_id is None or resource_id == "":
        return resource
    if not resource:
        return str(resource_id)
    return f"{resource}:{resource_id}"


class RequestMetadata:
    """Client details of an (optional) request, as stored on telemetry rows."""

    def __init__(self, request: Optional[Request]):
        self.ip_address: Optional[str] = None
        self.user_agent: Optional[str] = None
        self.session_id: Optional[str] = None
        self.request_id: Optional[str] = None
        if request is None:
            return

        try:
            self.ip_address = get_client_ip(request)
            self.user_agent = get_user_agent(request)
            self.session_id = request.cookies.get(SESSION_ID_COOKIE) or None
            context = get_request_context(request)
            if context is not None:
                self.request_id = context.request_id
                self.session_id = self.session_id or context.session_id
            else:
                self.request_id = request.headers.get(REQUEST_ID_HEADER) or None
        except Exception:
            # Unreadable headers/cookies mean "field absent"
            pass


class ActivityRecorder:
    """Best-effort writer of activity, audit and system rows."""

    def __init__(self, store: TelemetryStore, logger: AppLogger):
        self.store = store
        self.logger = logger

    async def _persist(
        self, write, failure_message: str, meta: RequestMetadata
    ) -> Optional[TelemetryError]:
        try:
            error = await write()
        except Exception as exc:
            error = TelemetryError("telemetry", exc)
        if error is not None:
            self.logger.error(
                failure_message, {"request_id": meta.request_id}, error.cause
            )
        return error

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def record_system_event(
        self,
        level: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        user_id: Optional[int] = None,
        request: Optional[Request] = None,
    ) -> Optional[TelemetryError]:
        level = level.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        meta = RequestMetadata(request)
        self.logger.log_system_event(
            event=message,
            details=context,
            severity=level.lower(),
            request_id=meta.request_id,
        )
        return await self._persist(
            lambda: self.store.add_system_log(
                level=level,
                message=message,
                context=context,
                source=source,
                user_id=user_id,
                session_id=meta.session_id,
                request_id=meta.request_id or str(uuid.uuid4()),
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            ),
            "Failed to log system event to database",
            meta,
        )

    async def record_audit_trail(
        self,
        table_name: str,
        record_id: RecordId,
        action: str,
        old_values: Any = None,
        new_values: Any = None,
        user_id: Optional[int] = None,
        request: Optional[Request] = None,
    ) -> Optional[TelemetryError]:
        action = action.upper()
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")

        meta = RequestMetadata(request)
        record_id = str(record_id)
        self.logger.log_database_operation(
            operation=action,
            table=table_name,
            record_id=record_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            session_id=meta.session_id,
            request_id=meta.request_id,
        )
        return await self._persist(
            lambda: self.store.add_audit_log(
                table_name=table_name,
                record_id=record_id,
                action=action,
                old_values=old_values,
                new_values=new_values,
                user_id=user_id,
                user_ip=meta.ip_address,
                user_agent=meta.user_agent,
                session_id=meta.session_id,
            ),
            "Failed to log audit trail to database",
            meta,
        )

    async def record_user_activity(
        self,
        user_id: int,
        action: Union[UserAction, str],
        resource: Optional[str] = None,
        resource_id: Optional[RecordId] = None,
        details: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TelemetryError]:
        action = _action_value(action)
        meta = RequestMetadata(request)
        full_resource = compose_resource(resource, resource_id)

        activity_details: Dict[str, Any] = {**(details or {}), **(metadata or {})}
        if resource_id is not None:
            activity_details["resource_id"] = resource_id

        self.logger.log_user_activity(
            user_id=user_id,
            action=action,
            resource=full_resource,
            details=activity_details or None,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            session_id=meta.session_id,
            request_id=meta.request_id,
        )
        return await self._persist(
            lambda: self.store.add_user_activity(
                user_id=user_id,
                action=action,
                resource=full_resource,
                details=activity_details or None,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                session_id=meta.session_id,
            ),
            "Failed to log user activity to database",
            meta,
        )

    async def record_data_operation(
        self,
        user_id: int,
        operation: str,
        table_name: str,
        record_id: RecordId,
        request: Optional[Request] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """One activity row always; one audit row for create/update/delete."""
        if operation not in DATA_OPERATION_ACTIONS:
            raise ValueError(f"Unknown data operation: {operation}")

        metadata = dict(metadata or {})
        await self.record_user_activity(
            user_id=user_id,
            action=DATA_OPERATION_ACTIONS[operation],
            resource=table_name,
            resource_id=record_id,
            request=request,
            metadata=metadata,
        )

        if operation != "view":
            await self.record_audit_trail(
                table_name=table_name,
                record_id=record_id,
                action=operation.upper(),
                old_values=metadata.get("previous_values"),
                new_values=metadata.get("new_values"),
                user_id=user_id,
                request=request,
            )

    async def record_security_event(
        self,
        user_id: Optional[int],
        event: str,
        resource: str,
        request: Optional[Request] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if event not in SECURITY_EVENTS:
            raise ValueError(f"Unknown security event: {event}")
        action = SECURITY_EVENTS[event]

        # No actor to attribute an activity row to: log line only
        if not user_id:
            meta = RequestMetadata(request)
            self.logger.log_security_event(
                event=action.value,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                details={"resource": resource, **(details or {})},
                severity="warn",
                request_id=meta.request_id,
            )
            return

        await self.record_user_activity(
            user_id=user_id,
            action=action,
            resource=resource,
            request=request,
            details={"security_event": event, **(details or {}), "timestamp": _now_iso()},
        )

    # ------------------------------------------------------------------
    # Convenience trackers
    # ------------------------------------------------------------------

    async def track_login(
        self, user_id: int, request: Optional[Request] = None, success: bool = True
    ) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.LOGIN if success else UserAction.LOGIN_FAILED,
            resource="authentication",
            request=request,
            details={"success": success, "timestamp": _now_iso()},
        )

    async def track_logout(self, user_id: int, request: Optional[Request] = None) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.LOGOUT,
            resource="authentication",
            request=request,
            details={"timestamp": _now_iso()},
        )

    async def track_page_view(
        self, user_id: int, page_path: str, request: Optional[Request] = None
    ) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.PAGE_VIEW,
            resource="page",
            resource_id=page_path,
            request=request,
            details={"path": page_path, "timestamp": _now_iso()},
        )

    async def track_sales_operation(
        self,
        user_id: int,
        operation: str,
        sales_type: str,
        record_id: RecordId,
        request: Optional[Request] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            action = SALES_OPERATION_ACTIONS[sales_type][operation]
        except KeyError:
            raise ValueError(
                f"Unknown sales operation: {sales_type}/{operation}"
            ) from None
        await self.record_user_activity(
            user_id=user_id,
            action=action,
            resource=sales_type,
            resource_id=record_id,
            request=request,
            metadata=metadata,
        )

    async def track_search(
        self,
        user_id: int,
        search_query: str,
        resource: str,
        results_count: int,
        request: Optional[Request] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.SEARCH_RECORDS,
            resource=resource,
            request=request,
            metadata={
                "search_query": search_query,
                "results_count": results_count,
                "filters": filters,
                "timestamp": _now_iso(),
            },
        )

    async def track_export(
        self,
        user_id: int,
        resource: str,
        export_format: str,
        record_count: int,
        request: Optional[Request] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.EXPORT_DATA,
            resource=resource,
            request=request,
            metadata={
                "export_format": export_format,
                "record_count": record_count,
                "filters": filters,
                "timestamp": _now_iso(),
            },
        )

    async def track_import(
        self,
        user_id: int,
        resource: str,
        file_name: str,
        record_count: int,
        request: Optional[Request] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> None:
        await self.record_user_activity(
            user_id=user_id,
            action=UserAction.IMPORT_DATA,
            resource=resource,
            request=request,
            metadata={
                "import_file_name": file_name,
                "record_count": record_count,
                "success": success,
                "error_message": error_message,
                "timestamp": _now_iso(),
            },
        )

    async def track_batch_activity(self, activities: Iterable[Dict[str, Any]]) -> None:
        """Record several ``record_user_activity`` calls concurrently."""
        async with create_task_group() as tg:
            for activity in activities:
                tg.start_soon(self._record_activity_kwargs, activity)

    async def _record_activity_kwargs(self, activity: Dict[str, Any]) -> None:
        try:
            await self.record_user_activity(**activity)
        except Exception as exc:
            self.logger.error(
                "Failed to track batch activity", {"activity": activity}, exc
            )
