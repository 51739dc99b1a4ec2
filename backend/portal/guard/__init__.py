"""Route access guard: role policy, decision table and per-mount guard."""

from .roles import (
    PortalType,
    Role,
    can_access_admin_portal,
    can_access_client_portal,
    get_default_redirect,
)
from .route_guard import Navigator, RecordingNavigator, RouteAccessGuard
from .state_machine import (
    Decision,
    GuardInputs,
    GuardState,
    Outcome,
    SessionSnapshot,
    UserProfile,
    decide,
    transition,
)
from .subscription import SubscriptionLookupError, SubscriptionStatus

__all__ = [
    "Decision",
    "GuardInputs",
    "GuardState",
    "Navigator",
    "Outcome",
    "PortalType",
    "RecordingNavigator",
    "Role",
    "RouteAccessGuard",
    "SessionSnapshot",
    "SubscriptionLookupError",
    "SubscriptionStatus",
    "UserProfile",
    "can_access_admin_portal",
    "can_access_client_portal",
    "decide",
    "get_default_redirect",
    "transition",
]
