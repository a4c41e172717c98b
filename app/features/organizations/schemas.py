"""
Pydantic schemas for organization requests and responses.
"""
from datetime import datetime
from pydantic import EmailStr, Field

from app.core.schemas import CamelModel


class OrganizationUpdate(CamelModel):
    """Schema for updating the caller's organization."""
    name: str | None = Field(None, min_length=1, max_length=255)
    type: str | None = Field(None, min_length=1, max_length=50)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=20)


class OrganizationSummary(CamelModel):
    id: str
    name: str


class OrganizationResponse(CamelModel):
    """Schema for organization responses."""
    id: str
    name: str
    slug: str
    type: str
    email: str | None = None
    phone: str | None = None
    is_active: bool
    subscription_id: str | None = None
    trial_ends_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    member_count: int = 0
