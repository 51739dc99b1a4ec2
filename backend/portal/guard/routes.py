from __future__ import annotations

ADMIN_LOGIN_ROUTE = "/admin/login"
CLIENT_LOGIN_ROUTE = "/client/login"
ROOT_ROUTE = "/"

PLANS_ROUTE = "/client/plans"
SUBSCRIBE_ROUTE = "/client/subscribe"
COMPANIES_ROUTE = "/client/companies"

AUTH_PAGE_ROUTES = frozenset(
    {
        ADMIN_LOGIN_ROUTE,
        CLIENT_LOGIN_ROUTE,
        "/client/register",
        "/login",
        "/register",
    }
)

SUBSCRIPTION_EXEMPT_ROUTES = frozenset({PLANS_ROUTE, SUBSCRIBE_ROUTE})


def normalize_path(path: str | None) -> str:
    """Strip query string, fragment and trailing slash; empty input maps to ``/``."""

    if not path:
        return ROOT_ROUTE
    cleaned = path.split("?", 1)[0].split("#", 1)[0].strip()
    if not cleaned.startswith("/"):
        cleaned = f"/{cleaned}"
    if len(cleaned) > 1:
        cleaned = cleaned.rstrip("/") or ROOT_ROUTE
    return cleaned


def _has_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(f"{prefix}/")


def is_auth_page(path: str) -> bool:
    return normalize_path(path) in AUTH_PAGE_ROUTES


def is_subscription_exempt(path: str) -> bool:
    return normalize_path(path) in SUBSCRIPTION_EXEMPT_ROUTES


def is_companies_route(path: str) -> bool:
    return normalize_path(path) == COMPANIES_ROUTE


def login_route_for_path(path: str) -> str:
    normalized = normalize_path(path)
    if _has_prefix(normalized, "/admin"):
        return ADMIN_LOGIN_ROUTE
    if _has_prefix(normalized, "/client"):
        return CLIENT_LOGIN_ROUTE
    return ROOT_ROUTE
