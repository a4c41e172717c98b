"""
Organization feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.permissions.dependencies import require_permission
from app.features.organizations.models import Organization
from app.features.organizations.schemas import OrganizationResponse, OrganizationUpdate
from app.features.organizations.dependencies import get_current_organization
from app.utils import get_logger


log = get_logger(__name__)

router = APIRouter(tags=["organizations"])


async def _with_member_count(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    count = await db.scalar(
        select(func.count(User.id)).where(User.organization_id == organization.id)
    )
    response = OrganizationResponse.model_validate(organization)
    response.member_count = count or 0
    return response


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization_endpoint(
    organization: Annotated[Organization, Depends(get_current_organization)],
    user: Annotated[User, Depends(require_permission("organization", "view_organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the caller's organization."""
    return await _with_member_count(db, organization)


@router.patch("/current", response_model=OrganizationResponse)
async def update_current_organization(
    org_update: OrganizationUpdate,
    organization: Annotated[Organization, Depends(get_current_organization)],
    user: Annotated[User, Depends(require_permission("organization", "edit_organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update the caller's organization. The slug stays fixed once issued."""
    update_data = org_update.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(organization, field, value)

    await db.flush()
    await db.refresh(organization)
    log.info("Organization %s updated by %s: %s", organization.id, user.id, sorted(update_data))
    return await _with_member_count(db, organization)
