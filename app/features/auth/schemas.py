"""
Pydantic schemas for sign-in and session endpoints.
"""
from pydantic import Field

from app.core.schemas import CamelModel
from app.features.users.schemas import UserPublic


class LoginRequest(CamelModel):
    """``login`` is a username or an e-mail address."""
    login: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class SessionResponse(CamelModel):
    success: bool = True
    authenticated: bool
    user: UserPublic | None = None


class LoginResponse(CamelModel):
    success: bool = True
    message: str
    redirect_to: str
    user: UserPublic
