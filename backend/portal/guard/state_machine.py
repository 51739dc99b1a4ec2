"""
Decision table for the portal route guard.

``decide`` maps one snapshot of guard inputs to a ``Decision``; it is pure and
evaluates the rules strictly in order:

1. not mounted                          -> MOUNTING, loading
2. login/register page                  -> ALLOWED, render
3. token present, profile unresolved    -> AWAITING_SESSION, loading
4. no session at all                    -> DENIED, redirect to the portal login
5. unknown or missing role            -> DENIED, redirect to /
6. role not permitted for the portal    -> DENIED, redirect to the role landing route
7. client portal, status unknown        -> AWAITING_SUBSCRIPTION, loading
8. client portal, inactive subscription -> DENIED, redirect to /client/plans
9. client portal, no company            -> DENIED, redirect to /client/companies
10. otherwise                           -> ALLOWED, render

``transition`` adds idempotency: a terminal decision whose key matches the
previous terminal decision is replayed without asking for navigation.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from backend.portal.guard import routes
from backend.portal.guard.roles import PortalType, can_access_portal, get_default_redirect, parse_role
from backend.portal.guard.subscription import SubscriptionStatus


class GuardState(str, Enum):
    MOUNTING = "mounting"
    AWAITING_SESSION = "awaiting_session"
    AWAITING_SUBSCRIPTION = "awaiting_subscription"
    ALLOWED = "allowed"
    DENIED = "denied"


TERMINAL_STATES = frozenset({GuardState.ALLOWED, GuardState.DENIED})


class Outcome(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class UserProfile:
    id: str
    role: str
    company_id: Optional[str] = None
    tenant_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class SessionSnapshot:
    token_present: bool = False
    user_cookie_present: bool = False
    user: Optional[UserProfile] = None
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def profile_pending(self) -> bool:
        # A token without a user cookie never resolves to a profile once loading is over.
        if self.user is not None or not self.token_present:
            return False
        return self.loading or self.user_cookie_present


@dataclass(frozen=True)
class GuardInputs:
    path: str
    session: SessionSnapshot
    portal_type: Optional[PortalType] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.UNKNOWN
    mounted: bool = True


@dataclass(frozen=True)
class Decision:
    state: GuardState
    outcome: Outcome
    reason: str
    key: str
    redirect_to: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class Transition:
    decision: Decision
    navigate: bool


def decision_key(inputs: GuardInputs) -> str:
    user = inputs.session.user
    material = {
        "portal": inputs.portal_type.value if inputs.portal_type else None,
        "path": routes.normalize_path(inputs.path),
        "authenticated": user is not None,
        "token": inputs.session.token_present,
        "user_id": user.id if user else None,
        "role": user.role.lower() if user else None,
        "company": user.company_id if user else None,
        "subscription": inputs.subscription_status.value,
    }
    encoded = json.dumps(material, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _loading(state: GuardState, reason: str, key: str) -> Decision:
    return Decision(state=state, outcome=Outcome.LOADING, reason=reason, key=key)


def _allow(reason: str, key: str) -> Decision:
    return Decision(state=GuardState.ALLOWED, outcome=Outcome.RENDER, reason=reason, key=key)


def _deny(reason: str, key: str, redirect_to: str) -> Decision:
    return Decision(
        state=GuardState.DENIED,
        outcome=Outcome.REDIRECT,
        reason=reason,
        key=key,
        redirect_to=redirect_to,
    )


def decide(inputs: GuardInputs) -> Decision:
    key = decision_key(inputs)
    path = routes.normalize_path(inputs.path)
    session = inputs.session

    if not inputs.mounted:
        return _loading(GuardState.MOUNTING, "not_mounted", key)

    if routes.is_auth_page(path):
        return _allow("auth_page", key)

    if session.profile_pending:
        return _loading(GuardState.AWAITING_SESSION, "session_pending", key)

    user = session.user
    if user is None:
        return _deny("unauthenticated", key, routes.login_route_for_path(path))

    if parse_role(user.role) is None:
        return _deny("unknown_role", key, get_default_redirect(user.role, user.id))

    if not can_access_portal(user.role, inputs.portal_type):
        return _deny("portal_mismatch", key, get_default_redirect(user.role, user.id))

    if inputs.portal_type is not PortalType.CLIENT:
        return _allow("allowed", key)

    status = inputs.subscription_status
    on_exempt_route = routes.is_subscription_exempt(path)
    if not status.is_resolved:
        if on_exempt_route:
            return _allow("subscription_exempt", key)
        return _loading(GuardState.AWAITING_SUBSCRIPTION, "subscription_pending", key)

    if not status.is_active:
        if on_exempt_route:
            return _allow("subscription_exempt", key)
        return _deny("subscription_inactive", key, routes.PLANS_ROUTE)

    if not user.company_id and not routes.is_companies_route(path):
        return _deny("company_missing", key, routes.COMPANIES_ROUTE)

    return _allow("allowed", key)


def transition(previous: Optional[Decision], inputs: GuardInputs) -> Transition:
    decision = decide(inputs)
    if (
        previous is not None
        and previous.is_terminal
        and decision.is_terminal
        and previous.key == decision.key
    ):
        return Transition(decision=previous, navigate=False)
    return Transition(decision=decision, navigate=decision.outcome is Outcome.REDIRECT)


def needs_subscription_check(inputs: GuardInputs) -> bool:
    """True when the client-portal subscription fetch should run for these inputs."""

    user = inputs.session.user
    return (
        inputs.mounted
        and inputs.portal_type is PortalType.CLIENT
        and user is not None
        and can_access_portal(user.role, PortalType.CLIENT)
        and not routes.is_auth_page(inputs.path)
    )
