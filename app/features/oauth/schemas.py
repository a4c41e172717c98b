"""
Pydantic schemas for the OAuth onboarding flow.
"""
from typing import Literal
from pydantic import Field, model_validator

from app.core.schemas import CamelModel
from app.features.users.schemas import UserPublic


class CompleteRegistrationRequest(CamelModel):
    """
    Second half of a Google sign-up: what the person wants to do with their
    new identity. ``role`` is optional and only ever checked against the role
    the server grants.
    """
    google_id: str = Field(..., min_length=1, max_length=255)
    action: Literal["create", "join"]
    organization_name: str | None = Field(None, max_length=255)
    organization_type: str | None = Field(None, max_length=50)
    invitation_code: str | None = Field(None, max_length=128)
    role: str | None = Field(None, max_length=50)

    @model_validator(mode="after")
    def check_action_fields(self) -> "CompleteRegistrationRequest":
        if self.action == "create" and not (self.organization_name or "").strip():
            raise ValueError("organizationName is required to create an organization")
        if self.action == "join" and not (self.invitation_code or "").strip():
            raise ValueError("invitationCode is required to join an organization")
        return self


class CompleteRegistrationResponse(CamelModel):
    success: bool = True
    message: str
    redirect_to: str
    user: UserPublic


class PendingUserPublic(CamelModel):
    """Non-sensitive projection of a pending identity for the onboarding page."""
    google_id: str
    email: str
    display_name: str
    photo_url: str | None = None


class PendingUserResponse(CamelModel):
    success: bool = True
    user: PendingUserPublic


class InvitationCheckResponse(CamelModel):
    success: bool = True
    invitation_id: str
    organization_id: str
    organization_name: str
    role: str
    email: str
    name: str
