"""
=============================================================================
HPS OPERATIONS - SECURITY MODULE
=============================================================================
JWT authentication with a single admin level.

Tokens:
- access  : short-lived, sent as "Authorization: Bearer" or the "token" cookie
- refresh : long-lived, only accepted by POST /auth/refresh

Every decode verifies signature and expiry. There is no unverified path,
cookies included.

Levels:
- user_level "1" (ADMIN_USER_LEVEL): administrator
- anything else                    : standard user

Usage:
    from app.core.security import get_current_user, require_admin

    @router.get("/protected")
    def protected_endpoint(user: User = Depends(get_current_user)): ...

    @router.get("/admin-only")
    def admin_endpoint(user: User = Depends(require_admin)): ...
=============================================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_db, get_recorder
from app.core.config import settings
from app.models.user import User
from app.services.activity_recorder import ActivityRecorder

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "token"
REFRESH_TOKEN_COOKIE = "refreshToken"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Authentication error."""

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def _create_token(
    user: User, token_type: str, expires_delta: timedelta
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.he_user_id),
        "username": user.he_username,
        "user_level": user.user_level,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token for ``user``."""
    return _create_token(
        user,
        ACCESS_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed refresh token for ``user``."""
    return _create_token(
        user,
        REFRESH_TOKEN_TYPE,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> Dict[str, Any]:
    """
    Decode and validate a JWT.

    Raises:
        AuthError: expired, badly signed, malformed or of the wrong type
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret(), algorithms=[settings.JWT_ALGORITHM]
        )
    except ExpiredSignatureError:
        raise AuthError("Token expired")
    except JWTError:
        raise AuthError("Invalid token")

    if payload.get("type") != expected_type:
        raise AuthError("Invalid token type")
    if not payload.get("sub"):
        raise AuthError("Invalid token")
    return payload


def _token_from_request(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def load_token_user(db: Session, payload: Dict[str, Any]) -> User:
    """User named by a decoded token's ``sub`` claim."""
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthError("Invalid token")
    user = db.query(User).filter(User.he_user_id == user_id).first()
    if user is None:
        raise AuthError("User not found")
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    recorder: ActivityRecorder = Depends(get_recorder),
) -> User:
    """
    Dependency returning the authenticated user.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    token = _token_from_request(request, credentials)
    if not token:
        await recorder.record_security_event(
            None, "unauthorized_access", request.url.path, request,
            {"reason": "missing_token"},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_token(token)
        return await run_in_threadpool(load_token_user, db, payload)
    except AuthError as exc:
        logger.warning(f"Rejected token on {request.url.path}: {exc.message}")
        await recorder.record_security_event(
            None, "unauthorized_access", request.url.path, request,
            {"reason": exc.message},
        )
        raise HTTPException(
            status_code=exc.status_code,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user_optional(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Authenticated user if a valid token is present, otherwise None."""
    token = _token_from_request(request, credentials)
    if not token:
        return None
    try:
        payload = decode_token(token)
        return await run_in_threadpool(load_token_user, db, payload)
    except AuthError:
        return None


async def require_admin(
    request: Request,
    user: User = Depends(get_current_user),
    recorder: ActivityRecorder = Depends(get_recorder),
) -> User:
    """
    Dependency to restrict an endpoint to administrators.

    Raises:
        HTTPException: 403 if the user is not an administrator
    """
    if not user.is_admin:
        await recorder.record_security_event(
            user.he_user_id, "permission_denied", request.url.path, request,
            {"user_level": user.user_level},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
