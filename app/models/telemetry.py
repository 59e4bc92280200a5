"""
Append-only telemetry tables written by the request monitor and the
activity recorder.

None of these rows reference each other. They are correlated at query
time through ``request_id`` / ``session_id`` and the weak ``user_id``
reference to ``hps_login``.
"""
from sqlalchemy import Column, Integer, String, Text

from app.db.base import Base, JSONPayload, TimestampMixin

LOG_LEVELS = ("ERROR", "WARN", "INFO", "DEBUG")
AUDIT_ACTIONS = ("CREATE", "UPDATE", "DELETE")


class SystemLog(TimestampMixin, Base):
    __tablename__ = "hps_system_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(10), nullable=False, index=True)
    message = Column(Text, nullable=False)
    context = Column(JSONPayload)
    source = Column(String(255))

    user_id = Column(Integer, index=True)
    session_id = Column(String(255))
    request_id = Column(String(64), index=True)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    stack_trace = Column(Text)


class PerformanceLog(TimestampMixin, Base):
    __tablename__ = "hps_performance_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(String(512), nullable=False, index=True)
    method = Column(String(10), nullable=False, index=True)
    response_time = Column(Integer, nullable=False)  # milliseconds
    status_code = Column(Integer, nullable=False)

    user_id = Column(Integer, index=True)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    session_id = Column(String(255))
    request_id = Column(String(64), index=True)


class UserActivity(TimestampMixin, Base):
    __tablename__ = "hps_user_activity"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(255))  # "<table>:<id>" or a bare resource name
    details = Column(JSONPayload)

    ip_address = Column(String(64))
    user_agent = Column(Text)
    session_id = Column(String(255))


class AuditLog(TimestampMixin, Base):
    __tablename__ = "hps_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(100), nullable=False, index=True)
    record_id = Column(String(100), nullable=False)
    action = Column(String(10), nullable=False, index=True)
    old_values = Column(JSONPayload)  # UPDATE / DELETE
    new_values = Column(JSONPayload)  # CREATE / UPDATE

    user_id = Column(Integer, index=True)
    user_ip = Column(String(64))
    user_agent = Column(Text)
    session_id = Column(String(255))
