"""
Monitoring API routes for HPS Operations

Provides:
- GET  /dashboard         - Admin dashboard (whole or one section)
- GET  /metrics           - Aggregated request/log/activity metrics (admin)
- GET  /activity/me       - Activity summary of the current user
- POST /activity/page-view - Record a client-side page view
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api import deps
from app.core.logging import AppLogger
from app.core.security import get_current_user, require_admin
from app.models.user import User
from app.schemas.monitoring import PageViewRequest, PageViewResponse
from app.services.activity_recorder import ActivityRecorder
from app.services.monitoring_service import (
    DASHBOARD_SECTIONS,
    DEFAULT_TIME_RANGE,
    TIME_RANGES,
    MonitoringService,
)

router = APIRouter(tags=["monitoring"])


def get_monitoring_service(db: Session = Depends(deps.get_db)) -> MonitoringService:
    return MonitoringService(db)


def _check_time_range(time_range: str) -> str:
    if time_range not in TIME_RANGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid time_range. Use one of: {', '.join(TIME_RANGES)}",
        )
    return time_range


def _logger(request: Request) -> AppLogger:
    return deps.get_telemetry(request).logger


@router.get(
    "/dashboard",
    summary="Monitoring dashboard",
    description="System metrics, recent logs, user activity, audit trail and per-endpoint performance",
)
def get_dashboard(
    request: Request,
    time_range: str = Query(DEFAULT_TIME_RANGE),
    section: Optional[str] = Query(None),
    _: User = Depends(require_admin),
    service: MonitoringService = Depends(get_monitoring_service),
) -> Dict[str, Any]:
    _check_time_range(time_range)

    if section:
        if section not in DASHBOARD_SECTIONS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid section"
            )
        return service.get_dashboard_section(section, time_range)

    try:
        data = service.get_dashboard_data(time_range)
    except Exception as exc:
        _logger(request).error(
            "Failed to get dashboard data", {"time_range": time_range}, exc
        )
        raise

    return {
        "success": True,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get(
    "/metrics",
    summary="Monitoring metrics",
    description="Performance grouped by endpoint, log counts by level, activity counts by action",
)
def get_metrics(
    time_range: str = Query(DEFAULT_TIME_RANGE),
    _: User = Depends(require_admin),
    service: MonitoringService = Depends(get_monitoring_service),
) -> Dict[str, Any]:
    _check_time_range(time_range)
    return service.get_monitoring_metrics(time_range)


@router.get(
    "/activity/me",
    summary="My activity",
    description="Activity summary of the authenticated user",
)
def get_my_activity(
    time_range: str = Query(DEFAULT_TIME_RANGE),
    user: User = Depends(get_current_user),
    service: MonitoringService = Depends(get_monitoring_service),
) -> Dict[str, Any]:
    _check_time_range(time_range)
    return service.get_user_activity_summary(user.he_user_id, time_range)


@router.post(
    "/activity/page-view",
    response_model=PageViewResponse,
    summary="Track page view",
)
async def track_page_view(
    data: PageViewRequest,
    request: Request,
    user: User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> PageViewResponse:
    await recorder.track_page_view(user.he_user_id, data.page_path, request)
    return PageViewResponse()
