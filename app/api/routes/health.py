"""
Health check endpoint for HPS Operations.

GET /health - 200 when the database answers ``SELECT 1``, 503 otherwise.
Used by load balancer probes; served outside request monitoring.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api import deps
from app.db.session import Database

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check")
def health(database: Database = Depends(deps.get_database)) -> JSONResponse:
    error = database.ping()
    if error is not None:
        logger.warning(f"Health check failed: {error}")
        return JSONResponse(status_code=503, content={"status": "error"})
    return JSONResponse(
        content={"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )
