"""
Permission query facade and FastAPI route guards.

Answers "can this user do X" by combining the user's role with the active
permission matrix (the built-in table plus any deployment overrides).
"""
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status

from app.core import config
from app.features.permissions.matrix import DEFAULT_MATRIX, PermissionMatrix, Role
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _build_active_matrix() -> PermissionMatrix:
    if not config.PERMISSION_OVERRIDES:
        return DEFAULT_MATRIX
    log.warning("Applying permission overrides for roles: %s", ", ".join(config.PERMISSION_OVERRIDES))
    return DEFAULT_MATRIX.with_overrides(config.PERMISSION_OVERRIDES)


ACTIVE_MATRIX = _build_active_matrix()


def get_permission_matrix() -> PermissionMatrix:
    return ACTIVE_MATRIX


class PermissionService:
    """Per-user view over a permission matrix."""

    def __init__(self, matrix: PermissionMatrix):
        self.matrix = matrix

    def can_perform(self, user: Optional[User], category: str, feature: str) -> bool:
        if user is None or not user.is_active:
            return False
        return self.matrix.can_perform(user.role, category, feature)

    def can_view(self, user: Optional[User], category: str) -> bool:
        if user is None or not user.is_active:
            return False
        return self.matrix.can_view(user.role, category)

    def role_matrix(self, role: object) -> dict[str, dict[str, bool]]:
        return self.matrix.for_role(role)


def get_permission_service(
    matrix: Annotated[PermissionMatrix, Depends(get_permission_matrix)]
) -> PermissionService:
    return PermissionService(matrix)


def require_permission(category: str, feature: str):
    """
    FastAPI dependency requiring one feature flag.

    Usage:
        @router.post("/invitations")
        async def invite(user: User = Depends(require_permission("users", "manage_users"))):
            ...

    Returns the current user when allowed; raises 403 otherwise.
    """
    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        permissions: Annotated[PermissionService, Depends(get_permission_service)],
    ) -> User:
        if not permissions.can_perform(current_user, category, feature):
            log.info(
                "Permission denied for user %s with role %s: %s.%s",
                current_user.id, current_user.role, category, feature,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You don't have permission to {feature.replace('_', ' ')}",
            )
        return current_user

    return permission_dependency


def assignable_roles(actor: User) -> list[Role]:
    """Roles ``actor`` may hand out through invitations or role changes."""
    if Role.parse(actor.role) == Role.SYSTEM_ADMIN:
        return list(Role)
    return [role for role in Role if role != Role.SYSTEM_ADMIN]
