"""
Authentication API routes for HPS Operations

Login sets four cookies:
- token        : access JWT (httpOnly)
- refreshToken : refresh JWT (httpOnly)
- userId       : numeric user id, read by the request monitor
- sessionId    : opaque session id, read by the request monitor
"""
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api import deps
from app.core.config import settings
from app.core.monitoring import SESSION_ID_COOKIE, USER_ID_COOKIE
from app.core.security import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    REFRESH_TOKEN_TYPE,
    AuthError,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    get_current_user_optional,
    load_token_user,
)
from app.models.user import User
from app.schemas.auth import AuthResponse, MessageResponse, UserLogin, UserRead
from app.services.activity_recorder import ActivityRecorder
from app.services.auth_service import AuthService

router = APIRouter(tags=["auth"])

AUTH_COOKIES = (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    USER_ID_COOKIE,
    SESSION_ID_COOKIE,
)


def get_auth_service(db: Session = Depends(deps.get_db)) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(db)


def _set_cookie(response: Response, key: str, value: str, max_age: int, http_only: bool):
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=http_only,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def _issue_tokens(response: Response, user: User, session_id: str) -> AuthResponse:
    access_max_age = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    refresh_max_age = settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    access_token = create_access_token(user)
    _set_cookie(response, ACCESS_TOKEN_COOKIE, access_token, access_max_age, True)
    _set_cookie(
        response, REFRESH_TOKEN_COOKIE, create_refresh_token(user), refresh_max_age, True
    )
    _set_cookie(response, USER_ID_COOKIE, str(user.he_user_id), refresh_max_age, False)
    _set_cookie(response, SESSION_ID_COOKIE, session_id, refresh_max_age, False)

    return AuthResponse(
        access_token=access_token,
        expires_in=access_max_age,
        session_id=session_id,
        user=UserRead.model_validate(user),
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Log in",
    description="Authenticate with username and password",
)
async def login(
    data: UserLogin,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> AuthResponse:
    """Authenticate user with username/password."""
    try:
        user = await run_in_threadpool(
            auth_service.authenticate, data.username, data.password
        )
    except AuthError as e:
        known_user = await run_in_threadpool(
            auth_service.get_user_by_username, data.username
        )
        if known_user is not None:
            await recorder.track_login(known_user.he_user_id, request, success=False)
        else:
            await recorder.record_security_event(
                None, "unauthorized_access", "authentication", request,
                {"username": data.username, "reason": "unknown_user"},
            )
        raise HTTPException(status_code=e.status_code, detail=e.message)

    session_id = request.cookies.get(SESSION_ID_COOKIE) or str(uuid.uuid4())
    result = _issue_tokens(response, user, session_id)
    await recorder.track_login(user.he_user_id, request, success=True)
    return result


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out",
    description="Clear the session cookies",
)
async def logout(
    request: Request,
    response: Response,
    user: User = Depends(get_current_user_optional),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> MessageResponse:
    if user is not None:
        await recorder.track_logout(user.he_user_id, request)
    for key in AUTH_COOKIES:
        response.delete_cookie(key, path="/")
    return MessageResponse(message="Logged out")


@router.post(
    "/refresh",
    response_model=AuthResponse,
    summary="Refresh tokens",
    description="Exchange the refreshToken cookie for a new token pair",
)
async def refresh(
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    recorder: ActivityRecorder = Depends(deps.get_recorder),
) -> AuthResponse:
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing refresh token"
        )

    try:
        payload = decode_token(refresh_token, REFRESH_TOKEN_TYPE)
    except AuthError as e:
        await recorder.record_security_event(
            None, "unauthorized_access", "authentication", request,
            {"reason": f"refresh: {e.message}"},
        )
        raise HTTPException(status_code=e.status_code, detail=e.message)

    try:
        user = await run_in_threadpool(load_token_user, auth_service.db, payload)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    session_id = request.cookies.get(SESSION_ID_COOKIE) or str(uuid.uuid4())
    return _issue_tokens(response, user, session_id)


@router.get(
    "/me",
    response_model=UserRead,
    summary="Current user",
    description="Profile of the authenticated user",
)
async def get_me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
