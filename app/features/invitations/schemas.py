"""
Pydantic schemas for invitation requests and responses.
"""
from datetime import datetime
from pydantic import EmailStr, Field

from app.core.schemas import CamelModel
from app.features.invitations.models import InvitationStatus
from app.features.organizations.schemas import OrganizationSummary
from app.features.users.schemas import UserPublic


class InvitationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: str = Field(..., min_length=1, max_length=50)
    organization_id: str | None = Field(None, max_length=26, description="Defaults to the caller's organization")


class InvitationResponse(CamelModel):
    """Invitation as seen by the organization's admins; the token is masked."""
    id: str
    email: str
    name: str
    role: str
    organization_id: str
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime
    accepted_at: datetime | None = None
    created_by: str | None = None
    token_preview: str


class InvitationCreateResponse(CamelModel):
    success: bool = True
    message: str
    invitation: InvitationResponse
    invite_link: str
    email_sent: bool
    email_warning: str | None = None


class InvitationDetails(CamelModel):
    """What the invitee sees before accepting."""
    name: str
    email: str
    role: str
    organization: OrganizationSummary
    expires_at: datetime


class InvitationVerifyResponse(CamelModel):
    success: bool = True
    invitation: InvitationDetails


class InvitationAccept(CamelModel):
    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=8, max_length=128)
    username: str | None = Field(None, min_length=3, max_length=255)


class InvitationAcceptResponse(CamelModel):
    success: bool = True
    message: str
    redirect_to: str
    user: UserPublic
