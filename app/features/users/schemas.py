"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import Field

from app.core.schemas import CamelModel
from app.features.organizations.schemas import OrganizationSummary


class UserPublic(CamelModel):
    """What the onboarding and team screens show about a user."""
    id: str
    username: str
    email: str
    name: str
    role: str
    organization_id: str | None = None
    photo_url: str | None = None


class UserResponse(UserPublic):
    """Schema for user responses."""
    auth_provider: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    organization: OrganizationSummary | None = None


class UserUpdate(CamelModel):
    """Schema for updating the caller's own profile."""
    name: str | None = Field(None, min_length=1, max_length=255)
    photo_url: str | None = Field(None, max_length=500)


class RoleChange(CamelModel):
    role: str = Field(..., min_length=1, max_length=50)
