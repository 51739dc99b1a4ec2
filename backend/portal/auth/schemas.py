from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel

from backend.portal.guard.roles import can_access_admin_portal, can_access_client_portal
from backend.portal.guard.state_machine import UserProfile


class AuthContext(BaseModel):
    """Represents the authenticated portal user derived from a JWT."""

    subject: str
    role: str
    email: Optional[str] = None
    name: Optional[str] = None
    tenant_id: Optional[str] = None
    company_id: Optional[str] = None
    session_id: Optional[str] = None
    issued_at: Optional[int] = None
    expires_at: Optional[int] = None
    raw_token: str
    claims: Dict[str, Any]

    @property
    def is_admin_portal_user(self) -> bool:
        return can_access_admin_portal(self.role)

    @property
    def is_client_portal_user(self) -> bool:
        return can_access_client_portal(self.role)

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.subject,
            role=self.role,
            company_id=self.company_id,
            tenant_id=self.tenant_id,
            email=self.email,
            name=self.name,
        )
