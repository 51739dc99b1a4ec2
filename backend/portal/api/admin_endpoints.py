from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.portal.auth.dependencies import AuthContext, require_admin_portal_user
from backend.portal.guard.roles import get_default_redirect, get_role_display_name

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/status")
async def admin_status(auth: AuthContext = Depends(require_admin_portal_user)) -> dict[str, str]:
    """Admin-portal health endpoint protected by the role policy table."""

    return {
        "status": "ok",
        "subject": auth.subject,
        "role": auth.role,
        "roleName": get_role_display_name(auth.role),
        "landing": get_default_redirect(auth.role, auth.subject),
    }
