"""
User feature routes.

Everything here is scoped to the caller's organization; only a system admin
sees across tenants.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.dependencies import assignable_roles, require_permission
from app.features.permissions.matrix import Role
from app.features.users.models import User
from app.features.users.schemas import RoleChange, UserPublic, UserResponse, UserUpdate
from app.features.users.dependencies import get_current_user, is_system_admin
from app.utils import get_logger


log = get_logger(__name__)

router = APIRouter(tags=["users"])


async def _get_user_in_scope(db: AsyncSession, actor: User, user_id: str) -> User:
    user = await db.get(User, user_id)
    # Users of other organizations are reported as missing, not forbidden
    if user is None or (not is_system_admin(actor) and user.organization_id != actor.organization_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    if update_data.name is not None:
        user.name = update_data.name
    if update_data.photo_url is not None:
        user.photo_url = update_data.photo_url

    await db.flush()
    await db.refresh(user)
    return user


def _ensure_outranks(actor: User, user: User, action: str) -> None:
    target = Role.parse(user.role)
    if target is not None and target not in assignable_roles(actor):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You cannot {action} a user with the {target.value} role"
        )


@router.get("", response_model=list[UserPublic])
async def list_users(
    actor: Annotated[User, Depends(require_permission("users", "view_users"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50
):
    """List active users of the caller's organization."""
    query = select(User).where(User.is_active.is_(True))
    if not is_system_admin(actor):
        query = query.where(User.organization_id == actor.organization_id)
    result = await db.execute(query.order_by(User.name).offset(skip).limit(limit))
    return result.scalars().all()


@router.patch("/{user_id}/role", response_model=UserResponse)
async def change_user_role(
    user_id: str,
    change: RoleChange,
    actor: Annotated[User, Depends(require_permission("users", "manage_users"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a different role to a member of the caller's organization."""
    user = await _get_user_in_scope(db, actor, user_id)

    if user.id == actor.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role"
        )
    _ensure_outranks(actor, user, "change the role of")

    role = Role.parse(change.role)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {change.role}"
        )
    if role not in assignable_roles(actor):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You cannot assign the {role.value} role"
        )

    previous = user.role
    user.role = role.value
    await db.flush()
    await db.refresh(user)
    log.info("User %s changed role of %s from %s to %s", actor.id, user.id, previous, user.role)
    return user


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    actor: Annotated[User, Depends(require_permission("users", "delete_users"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate a user account."""
    user = await _get_user_in_scope(db, actor, user_id)

    if user.id == actor.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )
    _ensure_outranks(actor, user, "deactivate")

    user.is_active = False
    await db.flush()
    log.info("User %s deactivated by %s", user.id, actor.id)

    return {"success": True, "message": "User deactivated successfully"}
