"""
Permission query API routes.

The UI uses these to shape navigation and hide actions a role cannot perform;
the server still enforces every permission on the routes themselves.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status

from app.features.permissions.dependencies import PermissionService, get_permission_service
from app.features.permissions.matrix import CATEGORY_FEATURES, Role
from app.features.permissions.schemas import (
    PermissionCheckRequest,
    PermissionCheckResponse,
    RoleListResponse,
    RolePermissionsResponse,
)
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter()


def _role_permissions(permissions: PermissionService, role: str) -> RolePermissionsResponse:
    table = permissions.role_matrix(role)
    return RolePermissionsResponse(
        role=role,
        permissions=table,
        visible_categories=[category for category in table if permissions.matrix.can_view(role, category)],
    )


@router.get("/me", response_model=RolePermissionsResponse)
async def get_my_permissions(
    user: Annotated[User, Depends(get_current_user)],
    permissions: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Permission table for the current user's role."""
    return _role_permissions(permissions, user.role)


@router.get("/roles", response_model=RoleListResponse)
async def list_roles(
    user: Annotated[User, Depends(get_current_user)],
):
    """All roles and the features declared per category."""
    return RoleListResponse(
        roles=[role.value for role in Role],
        categories={category: list(features) for category, features in CATEGORY_FEATURES.items()},
    )


@router.get("/roles/{role}", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role: str,
    user: Annotated[User, Depends(get_current_user)],
    permissions: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Permission table for any role (users with view_users only)."""
    if not permissions.can_view(user, "users"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You don't have permission to view users")
    if Role.parse(role) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return _role_permissions(permissions, role)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    user: Annotated[User, Depends(get_current_user)],
    permissions: Annotated[PermissionService, Depends(get_permission_service)],
):
    """Check one feature flag for the current user."""
    return PermissionCheckResponse(
        category=check.category,
        feature=check.feature,
        allowed=permissions.can_perform(user, check.category, check.feature),
    )
