"""
Authentication schemas for HPS Operations
"""
from typing import Optional

from pydantic import BaseModel, Field


class UserLogin(BaseModel):
    """Schema for username/password login."""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class UserRead(BaseModel):
    """Schema for reading user data."""
    he_user_id: int
    he_username: str
    he_email: Optional[str] = None
    he_full_name: Optional[str] = None
    user_level: str

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Response after successful login or refresh."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    session_id: str
    user: UserRead


class MessageResponse(BaseModel):
    message: str
