"""
Colour master data for HPS Operations.

Every mutation stores an activity row and an audit row with the row as it
was before and after the change. Rejected input and unknown ids are
recorded as WARN system events.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api import deps
from app.core.sanitizer import sanitize_string
from app.core.security import get_current_user, get_current_user_optional
from app.models.colour import Colour
from app.models.user import User
from app.schemas.colour import ColourPayload, ColourRead
from app.services.activity_recorder import ActivityRecorder, snapshot

router = APIRouter(tags=["colours"])

TABLE_NAME = "hps_colour"
SOURCE = "colour-api"


async def _reject(
    recorder: ActivityRecorder,
    request: Request,
    user: Optional[User],
    status_code: int,
    detail: str,
    context: Dict[str, Any],
):
    await recorder.record_system_event(
        "WARN",
        detail,
        context={"endpoint": request.url.path, **context},
        source=SOURCE,
        user_id=user.he_user_id if user else None,
        request=request,
    )
    raise HTTPException(status_code=status_code, detail=detail)


def _clean_name(payload: ColourPayload) -> str:
    return sanitize_string(payload.colour_name).strip()


def _find_colour(db: Session, colour_id: int) -> Optional[Colour]:
    return db.query(Colour).filter(Colour.colour_id == colour_id).first()


def _save(db: Session, colour: Colour) -> Colour:
    db.add(colour)
    db.commit()
    db.refresh(colour)
    return colour


def _remove(db: Session, colour: Colour) -> None:
    db.delete(colour)
    db.commit()


async def _get_or_404(
    db: Session,
    colour_id: int,
    recorder: ActivityRecorder,
    request: Request,
    user: Optional[User],
) -> Colour:
    colour = await run_in_threadpool(_find_colour, db, colour_id)
    if colour is None:
        await _reject(
            recorder, request, user, status.HTTP_404_NOT_FOUND,
            "Colour not found", {"colour_id": colour_id},
        )
    return colour


@router.get("", summary="List colours")
def list_colours(db: Session = Depends(deps.get_db)) -> Dict[str, Any]:
    colours = db.query(Colour).order_by(Colour.colour_id).all()
    return {"data": [ColourRead.model_validate(c) for c in colours]}


@router.get("/{colour_id}", response_model=ColourRead, summary="Get colour")
async def get_colour(
    colour_id: int,
    request: Request,
    db: Session = Depends(deps.get_db),
    user: Optional[User] = Depends(get_current_user_optional),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> ColourRead:
    colour = await _get_or_404(db, colour_id, recorder, request, user)
    if user is not None:
        await recorder.record_data_operation(
            user.he_user_id, "view", TABLE_NAME, colour.colour_id, request
        )
    return ColourRead.model_validate(colour)


@router.post(
    "",
    response_model=ColourRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create colour",
)
async def create_colour(
    payload: ColourPayload,
    request: Request,
    db: Session = Depends(deps.get_db),
    user: User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> ColourRead:
    name = _clean_name(payload)
    if not name:
        await _reject(
            recorder, request, user, status.HTTP_400_BAD_REQUEST,
            "Colour name is required",
            {"provided_colour_name": payload.colour_name is not None},
        )

    colour = await run_in_threadpool(_save, db, Colour(colour_name=name))

    await recorder.record_data_operation(
        user.he_user_id, "create", TABLE_NAME, colour.colour_id, request,
        {"new_values": snapshot(colour)},
    )
    return ColourRead.model_validate(colour)


@router.put("/{colour_id}", response_model=ColourRead, summary="Update colour")
async def update_colour(
    colour_id: int,
    payload: ColourPayload,
    request: Request,
    db: Session = Depends(deps.get_db),
    user: User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> ColourRead:
    name = _clean_name(payload)
    if not name:
        await _reject(
            recorder, request, user, status.HTTP_400_BAD_REQUEST,
            "Colour name is required",
            {"colour_id": colour_id, "provided_colour_name": payload.colour_name is not None},
        )

    colour = await _get_or_404(db, colour_id, recorder, request, user)
    previous = snapshot(colour)

    colour.colour_name = name
    colour = await run_in_threadpool(_save, db, colour)

    await recorder.record_data_operation(
        user.he_user_id, "update", TABLE_NAME, colour.colour_id, request,
        {"previous_values": previous, "new_values": snapshot(colour)},
    )
    return ColourRead.model_validate(colour)


@router.delete(
    "/{colour_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete colour",
)
async def delete_colour(
    colour_id: int,
    request: Request,
    db: Session = Depends(deps.get_db),
    user: User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> None:
    colour = await _get_or_404(db, colour_id, recorder, request, user)
    previous = snapshot(colour)

    await run_in_threadpool(_remove, db, colour)

    await recorder.record_data_operation(
        user.he_user_id, "delete", TABLE_NAME, colour_id, request,
        {"previous_values": previous},
    )
