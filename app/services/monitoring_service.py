"""
=============================================================================
HPS OPERATIONS - MONITORING REPORTS
=============================================================================
Read-side aggregation over the telemetry tables for the admin dashboard.

Time ranges: 1h, 24h, 7d, 30d (window ending now).

System health:
    critical  error rate > 10 %  or average response time > 2000 ms
    warning   error rate >  5 %  or average response time > 1000 ms
    healthy   otherwise
An error is any request answered with status >= 400.
=============================================================================
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models.telemetry import AuditLog, PerformanceLog, SystemLog, UserActivity
from app.models.user import User

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIME_RANGE = "24h"

DASHBOARD_SECTIONS = ("metrics", "logs", "activity", "audit", "performance")


def resolve_window(time_range: str, now: Optional[datetime] = None) -> datetime:
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unsupported time range: {time_range}")
    now = now or datetime.now(timezone.utc)
    return now - TIME_RANGES[time_range]


def classify_health(error_rate: float, avg_response_time: float) -> str:
    if error_rate > 10 or avg_response_time > 2000:
        return "critical"
    if error_rate > 5 or avg_response_time > 1000:
        return "warning"
    return "healthy"


def _user_ref(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"he_user_id": user.he_user_id, "he_username": user.he_username}


class MonitoringService:
    """Service layer for telemetry reports."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_monitoring_metrics(self, time_range: str = DEFAULT_TIME_RANGE) -> Dict[str, Any]:
        start = resolve_window(time_range)

        performance = (
            self.db.query(
                PerformanceLog.endpoint,
                PerformanceLog.method,
                func.avg(PerformanceLog.response_time),
                func.max(PerformanceLog.response_time),
                func.count(PerformanceLog.id),
            )
            .filter(PerformanceLog.timestamp >= start)
            .group_by(PerformanceLog.endpoint, PerformanceLog.method)
            .all()
        )

        log_counts = (
            self.db.query(SystemLog.level, func.count(SystemLog.id))
            .filter(SystemLog.timestamp >= start)
            .group_by(SystemLog.level)
            .all()
        )

        activity_counts = (
            self.db.query(UserActivity.action, func.count(UserActivity.id))
            .filter(UserActivity.timestamp >= start)
            .group_by(UserActivity.action)
            .all()
        )

        recent_errors = (
            self.db.query(SystemLog)
            .filter(SystemLog.timestamp >= start, SystemLog.level == "ERROR")
            .order_by(SystemLog.timestamp.desc(), SystemLog.id.desc())
            .limit(10)
            .all()
        )

        return {
            "time_range": time_range,
            "performance": [
                {
                    "endpoint": endpoint,
                    "method": method,
                    "avg_response_time": round(float(avg or 0), 2),
                    "max_response_time": int(max_time or 0),
                    "request_count": int(count),
                }
                for endpoint, method, avg, max_time, count in performance
            ],
            "log_counts": {level: int(count) for level, count in log_counts},
            "activity_counts": {action: int(count) for action, count in activity_counts},
            "recent_errors": [
                {
                    "id": log.id,
                    "message": log.message,
                    "source": log.source,
                    "request_id": log.request_id,
                    "timestamp": log.timestamp,
                }
                for log in recent_errors
            ],
        }

    def get_user_activity_summary(
        self, user_id: Optional[int] = None, time_range: str = DEFAULT_TIME_RANGE
    ) -> Dict[str, Any]:
        start = resolve_window(time_range)
        query = self.db.query(UserActivity).filter(UserActivity.timestamp >= start)
        if user_id is not None:
            query = query.filter(UserActivity.user_id == user_id)

        total = query.count()

        top_query = self.db.query(
            UserActivity.action, func.count(UserActivity.id).label("count")
        ).filter(UserActivity.timestamp >= start)
        if user_id is not None:
            top_query = top_query.filter(UserActivity.user_id == user_id)
        top_actions = (
            top_query.group_by(UserActivity.action)
            .order_by(func.count(UserActivity.id).desc(), UserActivity.action)
            .limit(10)
            .all()
        )

        recent = (
            query.order_by(UserActivity.timestamp.desc(), UserActivity.id.desc())
            .limit(20)
            .all()
        )

        return {
            "time_range": time_range,
            "total_activities": total,
            "top_actions": [
                {"action": action, "count": int(count)} for action, count in top_actions
            ],
            "recent_activities": [
                {
                    "action": activity.action,
                    "resource": activity.resource,
                    "details": activity.details,
                    "timestamp": activity.timestamp,
                }
                for activity in recent
            ],
        }

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def _endpoint_performance(self, start: datetime) -> List[Dict[str, Any]]:
        request_count = func.count(PerformanceLog.id)
        rows = (
            self.db.query(
                PerformanceLog.endpoint,
                func.avg(PerformanceLog.response_time),
                request_count,
                func.sum(case((PerformanceLog.status_code >= 400, 1), else_=0)),
            )
            .filter(PerformanceLog.timestamp >= start)
            .group_by(PerformanceLog.endpoint)
            .order_by(request_count.desc(), PerformanceLog.endpoint)
            .limit(20)
            .all()
        )
        return [
            {
                "endpoint": endpoint,
                "average_response_time": round(float(avg or 0), 2),
                "request_count": int(count),
                "error_count": int(errors or 0),
            }
            for endpoint, avg, count, errors in rows
        ]

    def _system_metrics(
        self, performance: List[Dict[str, Any]], now: datetime
    ) -> Dict[str, Any]:
        total_requests = sum(m["request_count"] for m in performance)
        total_errors = sum(m["error_count"] for m in performance)
        error_rate = (total_errors / total_requests) * 100 if total_requests else 0.0
        avg_response_time = (
            sum(m["average_response_time"] for m in performance) / len(performance)
            if performance
            else 0.0
        )

        active_users = (
            self.db.query(func.count(func.distinct(UserActivity.user_id)))
            .filter(UserActivity.timestamp >= now - timedelta(hours=1))
            .scalar()
        )

        return {
            "total_requests": total_requests,
            "average_response_time": int(round(avg_response_time)),
            "error_rate": round(error_rate, 2),
            "active_users": int(active_users or 0),
            "system_health": classify_health(error_rate, avg_response_time),
        }

    def _recent_logs(self, start: datetime) -> List[Dict[str, Any]]:
        logs = (
            self.db.query(SystemLog)
            .filter(SystemLog.timestamp >= start)
            .order_by(SystemLog.timestamp.desc(), SystemLog.id.desc())
            .limit(50)
            .all()
        )
        return [
            {
                "id": log.id,
                "level": log.level,
                "message": log.message,
                "source": log.source,
                "timestamp": log.timestamp,
                "stack_trace": log.stack_trace,
            }
            for log in logs
        ]

    def _audit_trail(self, start: datetime) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(AuditLog, User)
            .outerjoin(User, User.he_user_id == AuditLog.user_id)
            .filter(AuditLog.timestamp >= start)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(50)
            .all()
        )
        return [
            {
                "id": audit.id,
                "table_name": audit.table_name,
                "record_id": audit.record_id,
                "action": audit.action,
                "timestamp": audit.timestamp,
                "user": _user_ref(user),
            }
            for audit, user in rows
        ]

    def get_dashboard_data(self, time_range: str = DEFAULT_TIME_RANGE) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        start = resolve_window(time_range, now)

        performance = self._endpoint_performance(start)
        return {
            "time_range": time_range,
            "system_metrics": self._system_metrics(performance, now),
            "recent_logs": self._recent_logs(start),
            "user_activity": self.get_user_activity_summary(None, time_range),
            "audit_trail": self._audit_trail(start),
            "performance_metrics": performance,
        }

    def get_dashboard_section(
        self, section: str, time_range: str = DEFAULT_TIME_RANGE
    ) -> Dict[str, Any]:
        if section not in DASHBOARD_SECTIONS:
            raise ValueError(f"Unknown dashboard section: {section}")

        now = datetime.now(timezone.utc)
        start = resolve_window(time_range, now)

        if section == "metrics":
            performance = self._endpoint_performance(start)
            return {"system_metrics": self._system_metrics(performance, now)}
        if section == "logs":
            return {"recent_logs": self._recent_logs(start)}
        if section == "activity":
            return {"user_activity": self.get_user_activity_summary(None, time_range)}
        if section == "audit":
            return {"audit_trail": self._audit_trail(start)}
        return {"performance_metrics": self._endpoint_performance(start)}
