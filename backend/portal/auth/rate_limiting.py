from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter  # type: ignore[import]
from slowapi.errors import RateLimitExceeded  # type: ignore[import]
from slowapi.util import get_remote_address  # type: ignore[import]

from backend.portal import config


def _originating_ip(request: Request) -> Optional[str]:
    # The first hop of X-Forwarded-For is the browser; later hops are proxies.
    chain = request.headers.get("x-forwarded-for", "")
    first = chain.split(",", 1)[0].strip()
    return first or None


def _rate_limit_key(request: Request) -> str:
    """Bucket signed-in callers by token subject and everyone else by client IP."""

    context = getattr(request.state, "auth", None)
    subject = getattr(context, "subject", None)
    if subject:
        return f"user:{subject}"
    client_ip = _originating_ip(request)
    if client_ip:
        return f"ip:{client_ip}"
    return get_remote_address(request)


limiter = Limiter(key_func=_rate_limit_key, headers_enabled=True)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    reset_in = getattr(exc, "reset_in", None)
    headers = {"Retry-After": str(int(reset_in))} if reset_in else {}
    content = {"detail": "Rate limit exceeded", "limit": str(exc.detail)}
    return JSONResponse(status_code=429, content=content, headers=headers)


def guard_decision_rate_limit() -> str:
    return config.GUARD_DECISION_RATE_LIMIT


def role_lookup_rate_limit() -> str:
    return config.ROLE_LOOKUP_RATE_LIMIT
