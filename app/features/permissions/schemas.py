"""
Pydantic schemas for permission queries.
"""
from pydantic import Field

from app.core.schemas import CamelModel


class PermissionCheckRequest(CamelModel):
    """Ask whether the current user holds one feature flag."""
    category: str = Field(..., min_length=1, max_length=50, description="Resource category (e.g. 'clients', 'billing')")
    feature: str = Field(..., min_length=1, max_length=100, description="Feature flag (e.g. 'view_invoices')")


class PermissionCheckResponse(CamelModel):
    category: str
    feature: str
    allowed: bool


class RolePermissionsResponse(CamelModel):
    """Full category → feature → bool table for one role."""
    role: str
    permissions: dict[str, dict[str, bool]]
    visible_categories: list[str] = Field(default_factory=list)


class RoleListResponse(CamelModel):
    roles: list[str]
    categories: dict[str, list[str]]
