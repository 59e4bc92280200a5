"""
Persistence for telemetry rows.

Every append runs the blocking SQLAlchemy write in Starlette's threadpool
so the calling request suspends instead of blocking the event loop. The
public methods return ``None`` on success and a ``TelemetryError`` on
failure; they never raise for storage problems. Whoever calls them logs
the error and drops it.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type

from fastapi.encoders import jsonable_encoder
from starlette.concurrency import run_in_threadpool

from app.core.errors import TelemetryError
from app.db.base import Base
from app.db.session import Database
from app.models.telemetry import AuditLog, PerformanceLog, SystemLog, UserActivity


def to_json_payload(value: Any) -> Any:
    """Normalize an opaque payload (dates, decimals, UUIDs...) for a JSON column."""
    if value is None:
        return None
    return jsonable_encoder(value)


class TelemetryStore:
    """Append-only writer for the four telemetry tables."""

    def __init__(self, database: Database):
        self.database = database

    def _write(
        self, model: Type[Base], fields: Dict[str, Any], json_fields: Tuple[str, ...]
    ) -> None:
        for name in json_fields:
            fields[name] = to_json_payload(fields.get(name))
        row = model(**fields)
        with self.database.session() as db:
            try:
                db.add(row)
                db.commit()
            except Exception:
                db.rollback()
                raise

    async def append(
        self,
        entity: str,
        model: Type[Base],
        fields: Dict[str, Any],
        json_fields: Tuple[str, ...] = (),
    ) -> Optional[TelemetryError]:
        try:
            await run_in_threadpool(self._write, model, dict(fields), json_fields)
        except Exception as exc:
            return TelemetryError(entity, exc)
        return None

    async def add_system_log(self, **fields: Any) -> Optional[TelemetryError]:
        return await self.append("system_log", SystemLog, fields, ("context",))

    async def add_performance_log(self, **fields: Any) -> Optional[TelemetryError]:
        return await self.append("performance_log", PerformanceLog, fields)

    async def add_user_activity(self, **fields: Any) -> Optional[TelemetryError]:
        return await self.append("user_activity", UserActivity, fields, ("details",))

    async def add_audit_log(self, **fields: Any) -> Optional[TelemetryError]:
        return await self.append(
            "audit_log", AuditLog, fields, ("old_values", "new_values")
        )
