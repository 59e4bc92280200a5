from app.db.base import Base
from app.models.colour import Colour
from app.models.telemetry import AuditLog, PerformanceLog, SystemLog, UserActivity
from app.models.user import User

__all__ = [
    "Base",
    "AuditLog",
    "Colour",
    "PerformanceLog",
    "SystemLog",
    "User",
    "UserActivity",
]
