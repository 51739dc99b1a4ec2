import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from backend.portal.auth.dependencies import get_session_snapshot, optional_authenticated_user
from backend.portal.auth.rate_limiting import guard_decision_rate_limit, limiter, role_lookup_rate_limit
from backend.portal.auth.schemas import AuthContext
from backend.portal.dependencies import (
    SubscriptionFetcherFactory,
    get_decision_store_dep,
    get_subscription_fetcher_factory,
)
from backend.portal.guard import roles
from backend.portal.guard.decision_store import DecisionStore, DecisionStoreError, decision_scope
from backend.portal.guard.route_guard import RecordingNavigator, RouteAccessGuard
from backend.portal.guard.state_machine import Decision, SessionSnapshot
from backend.portal.schemas.guard import GuardDecisionRequest, GuardDecisionResponse, RolePolicyResponse
from backend.portal.utils.observability import record_decision_store_error

logger = logging.getLogger("guard.endpoints")

router = APIRouter(prefix="/guard", tags=["guard"])


async def _is_new_decision(
    store: DecisionStore,
    context: AuthContext,
    portal_type: Optional[roles.PortalType],
    mount_id: str,
    decision: Decision,
) -> bool:
    scope = decision_scope(
        context.session_id or context.subject,
        portal_type.value if portal_type else None,
        mount_id,
    )
    try:
        return await store.record(
            scope,
            key=decision.key,
            state=decision.state.value,
            redirect_to=decision.redirect_to,
        )
    except DecisionStoreError as exc:
        record_decision_store_error("record")
        logger.warning(
            "Decision store unavailable; reporting decision as new",
            extra={"json_fields": {"event": "decision_store_error", "error": str(exc)}},
        )
        return True


@router.post("/decisions", response_model=GuardDecisionResponse)
@limiter.limit(guard_decision_rate_limit)
async def evaluate_route(
    request: Request,
    payload: GuardDecisionRequest,
    session: SessionSnapshot = Depends(get_session_snapshot),
    context: Optional[AuthContext] = Depends(optional_authenticated_user),
    fetcher_factory: SubscriptionFetcherFactory = Depends(get_subscription_fetcher_factory),
    store: DecisionStore = Depends(get_decision_store_dep),
) -> JSONResponse:
    navigator = RecordingNavigator()
    guard = RouteAccessGuard(
        portal_type=payload.portal_type,
        navigator=navigator,
        fetcher_factory=(lambda: fetcher_factory(context.raw_token)) if context else None,
    )
    if payload.mounted:
        guard.mount()

    try:
        decision = await guard.evaluate(payload.path, session)
    finally:
        guard.unmount()

    navigate = bool(navigator.calls)
    if decision.is_terminal and context is not None and payload.mount_id:
        is_new = await _is_new_decision(store, context, payload.portal_type, payload.mount_id, decision)
        navigate = navigate and is_new

    logger.info(
        "Guard decision evaluated",
        extra={
            "json_fields": {
                "event": "guard_decision",
                "path": payload.path,
                "portal": payload.portal_type.value if payload.portal_type else None,
                "state": decision.state.value,
                "reason": decision.reason,
                "navigate": navigate,
                "mountId": payload.mount_id,
                "subject": context.subject if context else None,
            }
        },
    )

    response = GuardDecisionResponse.from_decision(decision, navigate=navigate)
    return JSONResponse(status_code=200, content=response.model_dump(mode="json"))


@router.get("/roles/{role}", response_model=RolePolicyResponse)
@limiter.limit(role_lookup_rate_limit)
async def describe_role(request: Request, role: str) -> JSONResponse:
    parsed = roles.parse_role(role)
    response = RolePolicyResponse(
        role=parsed.value if parsed else role,
        known=parsed is not None,
        display_name=roles.get_role_display_name(role),
        admin_portal=roles.can_access_admin_portal(role),
        client_portal=roles.can_access_client_portal(role),
        portal=roles.portal_for_role(role),
        default_redirect=roles.get_default_redirect(role),
    )
    return JSONResponse(status_code=200, content=response.model_dump(mode="json"))
