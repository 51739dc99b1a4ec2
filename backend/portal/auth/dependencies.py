from __future__ import annotations

import logging
from typing import Any, Optional

import jwt  # type: ignore[import]
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidAudienceError, InvalidIssuerError, InvalidTokenError  # type: ignore[import]

from backend.portal import config
from backend.portal.auth.schemas import AuthContext
from backend.portal.guard.state_machine import SessionSnapshot

logger = logging.getLogger("auth.dependencies")

_bearer_scheme = HTTPBearer(auto_error=False)


def _get_app_secret() -> str:
    if not config.APP_JWT_SECRET:
        raise RuntimeError("APP_JWT_SECRET environment variable is not configured")
    return config.APP_JWT_SECRET


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, str)) and str(value):
        return str(value)
    return None


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, str) and value.isdigit():
        return int(value)
    if isinstance(value, int):
        return value
    return None


def decode_token(token: str) -> AuthContext:
    secret = _get_app_secret()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            secret,
            algorithms=[config.APP_JWT_ALGORITHM],
            audience=config.APP_JWT_AUDIENCE,
            issuer=config.APP_JWT_ISSUER,
            options={
                "require": ["exp", "iat", "sub"],
            },
        )
    except InvalidAudienceError as exc:
        raise _unauthorized("Invalid token audience") from exc
    except InvalidIssuerError as exc:
        raise _unauthorized("Invalid token issuer") from exc
    except InvalidTokenError as exc:
        raise _unauthorized("Invalid authentication credentials") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise _unauthorized("Invalid token subject")

    role = payload.get("role", "")
    if not isinstance(role, str):
        role = str(role)

    email = payload.get("email")
    if not isinstance(email, str):
        email = None

    name = payload.get("name") or payload.get("full_name")
    if not isinstance(name, str):
        name = None

    return AuthContext(
        subject=subject,
        role=role,
        email=email,
        name=name,
        tenant_id=_optional_str(payload.get("tenant_id")),
        company_id=_optional_str(payload.get("company_id")),
        session_id=_optional_str(payload.get("sid") or payload.get("jti")),
        issued_at=_optional_int(payload.get("iat")),
        expires_at=_optional_int(payload.get("exp")),
        raw_token=token,
        claims=payload,
    )


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    cookie_token = request.cookies.get(config.TOKEN_COOKIE_NAME)
    return cookie_token or None


async def require_authenticated_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthContext:
    token = _extract_token(request, credentials)
    if token is None:
        raise _unauthorized("Missing bearer token")

    context = decode_token(token)
    request.state.auth = context
    return context


async def require_admin_portal_user(
    request: Request,
    context: AuthContext = Depends(require_authenticated_user),
) -> AuthContext:
    if not context.is_admin_portal_user:
        raise _forbidden("Admin portal access required")
    request.state.auth = context
    return context


async def optional_authenticated_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[AuthContext]:
    token = _extract_token(request, credentials)
    if token is None:
        return None

    try:
        context = decode_token(token)
    except HTTPException:
        return None

    request.state.auth = context
    return context


async def get_session_snapshot(
    request: Request,
    context: Optional[AuthContext] = Depends(optional_authenticated_user),
) -> SessionSnapshot:
    """Build the guard's view of the caller's session.

    The profile is resolved from the token itself, so the snapshot is never in
    a loading state. An unusable token counts as no session at all.
    """

    user_cookie_present = bool(request.cookies.get(config.USER_COOKIE_NAME))
    if context is None:
        if _extract_token(request, None) or request.headers.get("authorization"):
            logger.info(
                "Ignoring unusable session token",
                extra={"json_fields": {"event": "session_token_rejected"}},
            )
        return SessionSnapshot(token_present=False, user_cookie_present=user_cookie_present)

    return SessionSnapshot(
        token_present=True,
        user_cookie_present=user_cookie_present,
        user=context.to_profile(),
        loading=False,
    )
