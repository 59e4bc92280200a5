from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.monitoring import Telemetry
from app.db.session import Database
from app.services.activity_recorder import ActivityRecorder


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Database session dependency.

    Usage:
        @router.get("/colours")
        def list_colours(db: Session = Depends(get_db)):
            return db.query(Colour).all()
    """
    with get_database(request).session() as db:
        yield db


def get_telemetry(request: Request) -> Telemetry:
    return request.app.state.telemetry


def get_recorder(request: Request) -> ActivityRecorder:
    telemetry = get_telemetry(request)
    return ActivityRecorder(telemetry.store, telemetry.logger)
