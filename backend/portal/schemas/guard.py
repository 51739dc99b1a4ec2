from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from backend.portal.guard.roles import PortalType
from backend.portal.guard.state_machine import Decision, GuardState, Outcome


class GuardDecisionRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=2048)
    portal_type: Optional[PortalType] = None
    mounted: bool = True
    # Generated by the page on mount; without it every request counts as a new mount.
    mount_id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class GuardDecisionResponse(BaseModel):
    state: GuardState
    outcome: Outcome
    reason: str
    redirect_to: Optional[str] = None
    navigate: bool = False
    decision_key: str

    @classmethod
    def from_decision(cls, decision: Decision, *, navigate: bool) -> "GuardDecisionResponse":
        return cls(
            state=decision.state,
            outcome=decision.outcome,
            reason=decision.reason,
            redirect_to=decision.redirect_to,
            navigate=navigate,
            decision_key=decision.key,
        )


class RolePolicyResponse(BaseModel):
    role: str
    known: bool
    display_name: str
    admin_portal: bool
    client_portal: bool
    portal: Optional[PortalType] = None
    default_redirect: str
