"""Static role policy table.

Maps every portal role to the portal it may enter and the route it lands on
after login. Everything here is pure: no state, no I/O. Unknown roles belong
to no portal and land on ``/``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    FINANCE_MANAGER = "finance_manager"
    DISTRIBUTOR = "distributor"
    SALESMAN = "salesman"
    TENANT_ADMIN = "tenant_admin"
    USER = "user"
    ACCOUNTANT = "accountant"


class PortalType(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


ADMIN_PORTAL_ROLES = frozenset(
    {
        Role.SUPER_ADMIN,
        Role.ADMIN,
        Role.FINANCE_MANAGER,
        Role.DISTRIBUTOR,
        Role.SALESMAN,
    }
)

CLIENT_PORTAL_ROLES = frozenset({Role.TENANT_ADMIN, Role.USER, Role.ACCOUNTANT})

DEFAULT_REDIRECTS = {
    Role.SUPER_ADMIN: "/admin/dashboard",
    Role.ADMIN: "/admin/dashboard",
    Role.FINANCE_MANAGER: "/admin/dashboard",
    Role.DISTRIBUTOR: "/admin/distributors/dashboard",
    Role.SALESMAN: "/admin/salesmen/dashboard",
    Role.TENANT_ADMIN: "/client/dashboard",
    Role.USER: "/client/dashboard",
    Role.ACCOUNTANT: "/client/dashboard",
}

DISPLAY_NAMES = {
    Role.SUPER_ADMIN: "Super Admin",
    Role.ADMIN: "Admin",
    Role.FINANCE_MANAGER: "Finance Manager",
    Role.DISTRIBUTOR: "Distributor",
    Role.SALESMAN: "Salesman",
    Role.TENANT_ADMIN: "Tenant Admin",
    Role.USER: "User",
    Role.ACCOUNTANT: "Accountant",
}

FALLBACK_REDIRECT = "/"


def parse_role(role: Optional[str]) -> Optional[Role]:
    """Return the known ``Role`` for ``role`` (case-insensitive), else ``None``."""

    if role is None:
        return None
    if isinstance(role, Role):
        return role
    try:
        return Role(str(role).strip().lower())
    except ValueError:
        return None


def parse_portal_type(portal_type: Optional[str]) -> Optional[PortalType]:
    if portal_type is None:
        return None
    if isinstance(portal_type, PortalType):
        return portal_type
    try:
        return PortalType(str(portal_type).strip().lower())
    except ValueError:
        return None


def can_access_admin_portal(role: Optional[str]) -> bool:
    return parse_role(role) in ADMIN_PORTAL_ROLES


def can_access_client_portal(role: Optional[str]) -> bool:
    return parse_role(role) in CLIENT_PORTAL_ROLES


def can_access_portal(role: Optional[str], portal_type: Optional[PortalType]) -> bool:
    """Without a portal any known role passes; unknown or missing roles never do."""

    if portal_type is None:
        return parse_role(role) is not None
    if portal_type is PortalType.ADMIN:
        return can_access_admin_portal(role)
    return can_access_client_portal(role)


def portal_for_role(role: Optional[str]) -> Optional[PortalType]:
    if can_access_admin_portal(role):
        return PortalType.ADMIN
    if can_access_client_portal(role):
        return PortalType.CLIENT
    return None


def get_default_redirect(role: Optional[str], user_id: Optional[str] = None) -> str:
    # No landing route depends on user_id yet.
    parsed = parse_role(role)
    if parsed is None:
        return FALLBACK_REDIRECT
    return DEFAULT_REDIRECTS.get(parsed, FALLBACK_REDIRECT)


def get_role_display_name(role: Optional[str]) -> str:
    parsed = parse_role(role)
    if parsed is None:
        return str(role).replace("_", " ").title() if role else "Unknown"
    return DISPLAY_NAMES[parsed]


__all__ = [
    "ADMIN_PORTAL_ROLES",
    "CLIENT_PORTAL_ROLES",
    "PortalType",
    "Role",
    "can_access_admin_portal",
    "can_access_client_portal",
    "can_access_portal",
    "get_default_redirect",
    "get_role_display_name",
    "parse_portal_type",
    "parse_role",
    "portal_for_role",
]
