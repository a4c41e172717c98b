"""
Static role → resource category → feature permission table.

Every role carries an entry for every declared feature, so an absent key only
ever means "unknown feature" (which also evaluates to False). Visibility of a
category is governed solely by its ``view_<category>`` feature.
"""
import enum
from collections.abc import Iterable, Mapping
from typing import Optional

from app.utils import get_logger


log = get_logger(__name__)


class Role(str, enum.Enum):
    """User roles. ``admin`` is the legacy spelling of ``org_admin``."""
    SYSTEM_ADMIN = "system_admin"
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    OFFICE_STAFF = "office_staff"
    TECHNICIAN = "technician"
    CLIENT = "client"
    VENDOR = "vendor"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: object) -> Optional["Role"]:
        """Return the matching Role, or None for anything unrecognized."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except (ValueError, TypeError):
            return None


CRUD = ("view", "create", "edit", "delete")

CATEGORY_FEATURES: dict[str, tuple[str, ...]] = {
    category: tuple(f"{action}_{category}" for action in CRUD)
    for category in (
        "clients",
        "technicians",
        "projects",
        "maintenance",
        "repairs",
        "invoices",
        "inventory",
        "reports",
        "settings",
        "vehicles",
        "communications",
        "users",
        "organization",
    )
}
CATEGORY_FEATURES["users"] += ("manage_users",)
CATEGORY_FEATURES["billing"] = ("view_billing", "manage_subscription")


def view_feature(category: str) -> str:
    return f"view_{category}"


def _allow(category: str, *actions: str) -> set[str]:
    return {f"{action}_{category}" for action in actions}


def _everything() -> dict[str, set[str]]:
    return {category: set(features) for category, features in CATEGORY_FEATURES.items()}


def _tenant_admin() -> dict[str, set[str]]:
    grants = _everything()
    # Tenants cannot create or delete organizations from inside one
    grants["organization"] = _allow("organization", "view", "edit")
    return grants


_GRANTS: dict[Role, dict[str, set[str]]] = {
    Role.SYSTEM_ADMIN: _everything(),
    Role.ORG_ADMIN: _tenant_admin(),
    Role.ADMIN: _tenant_admin(),
    Role.MANAGER: {
        "clients": _allow("clients", *CRUD),
        "technicians": _allow("technicians", "view", "create", "edit"),
        "projects": _allow("projects", *CRUD),
        "maintenance": _allow("maintenance", *CRUD),
        "repairs": _allow("repairs", *CRUD),
        "invoices": _allow("invoices", "view", "create", "edit"),
        "inventory": _allow("inventory", *CRUD),
        "reports": _allow("reports", *CRUD),
        "settings": _allow("settings", "view", "edit"),
        "vehicles": _allow("vehicles", "view", "create", "edit"),
        "communications": _allow("communications", *CRUD),
        "users": _allow("users", "view", "create", "edit"),
        "organization": _allow("organization", "view"),
        "billing": {"view_billing"},
    },
    Role.OFFICE_STAFF: {
        "clients": _allow("clients", "view", "create", "edit"),
        "technicians": _allow("technicians", "view"),
        "projects": _allow("projects", "view", "create", "edit"),
        "maintenance": _allow("maintenance", "view", "create", "edit"),
        "repairs": _allow("repairs", "view", "create", "edit"),
        "invoices": _allow("invoices", "view", "create", "edit"),
        "inventory": _allow("inventory", "view", "create", "edit"),
        "reports": _allow("reports", "view", "create", "edit"),
        "vehicles": _allow("vehicles", "view"),
        "communications": _allow("communications", "view", "create", "edit"),
        "users": _allow("users", "view"),
        "organization": _allow("organization", "view"),
    },
    Role.TECHNICIAN: {
        "clients": _allow("clients", "view"),
        "technicians": _allow("technicians", "view"),
        "projects": _allow("projects", "view", "edit"),
        "maintenance": _allow("maintenance", "view", "create", "edit"),
        "repairs": _allow("repairs", "view", "create", "edit"),
        "invoices": _allow("invoices", "view"),
        "inventory": _allow("inventory", "view", "edit"),
        "reports": _allow("reports", "view", "create", "edit"),
        "vehicles": _allow("vehicles", "view"),
        "communications": _allow("communications", "view", "create"),
    },
    Role.CLIENT: {
        # Clients see and edit their own profile only; ownership is checked by the route
        "clients": _allow("clients", "view", "edit"),
        "technicians": _allow("technicians", "view"),
        "projects": _allow("projects", "view"),
        "maintenance": _allow("maintenance", "view"),
        "repairs": _allow("repairs", "view", "create"),
        "invoices": _allow("invoices", "view"),
        "reports": _allow("reports", "view"),
        "communications": _allow("communications", "view", "create"),
    },
    Role.VENDOR: {
        "inventory": _allow("inventory", "view"),
        "invoices": _allow("invoices", "view"),
        "communications": _allow("communications", "view", "create"),
    },
}


def _complete(grants: Mapping[str, Iterable[str]]) -> dict[str, dict[str, bool]]:
    """Expand a sparse grant set into a full category → feature → bool table."""
    table: dict[str, dict[str, bool]] = {}
    for category, features in CATEGORY_FEATURES.items():
        granted = set(grants.get(category, ()))
        table[category] = {feature: feature in granted for feature in features}
    return table


class PermissionMatrix:
    """
    Immutable permission table.

    Lookups never raise: an unknown role, category or feature is simply denied,
    so route guards built on top of it fail closed.
    """

    def __init__(self, table: Mapping[Role, Mapping[str, Mapping[str, bool]]]):
        self._table = {
            role: {category: dict(features) for category, features in categories.items()}
            for role, categories in table.items()
        }

    @classmethod
    def default(cls) -> "PermissionMatrix":
        return cls({role: _complete(_GRANTS.get(role, {})) for role in Role})

    def can_perform(self, role: object, category: str, feature: str) -> bool:
        parsed = Role.parse(role)
        if parsed is None:
            log.warning("Permission check for unknown role %r denied", role)
            return False
        return bool(self._table.get(parsed, {}).get(category, {}).get(feature, False))

    def can_view(self, role: object, category: str) -> bool:
        return self.can_perform(role, category, view_feature(category))

    def for_role(self, role: object) -> dict[str, dict[str, bool]]:
        """A copy of one role's table; empty for an unknown role."""
        parsed = Role.parse(role)
        if parsed is None:
            return {}
        return {category: dict(features) for category, features in self._table.get(parsed, {}).items()}

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Mapping[str, bool]]]) -> "PermissionMatrix":
        """
        Return a new matrix with selected flags replaced.

        Overrides may only flip features that are declared for the category;
        anything else is ignored with a warning so a typo cannot invent a permission.
        """
        table = {role: self.for_role(role) for role in Role}
        for role_name, categories in overrides.items():
            role = Role.parse(role_name)
            if role is None:
                log.warning("Ignoring permission override for unknown role %r", role_name)
                continue
            for category, features in categories.items():
                declared = CATEGORY_FEATURES.get(category, ())
                for feature, allowed in features.items():
                    if feature not in declared:
                        log.warning("Ignoring override for undeclared feature %s.%s", category, feature)
                        continue
                    table[role][category][feature] = bool(allowed)
        return PermissionMatrix(table)


DEFAULT_MATRIX = PermissionMatrix.default()


def can_perform(role: object, category: str, feature: str) -> bool:
    """Module-level shortcut over the default matrix."""
    return DEFAULT_MATRIX.can_perform(role, category, feature)


def can_view(role: object, category: str) -> bool:
    return DEFAULT_MATRIX.can_view(role, category)
