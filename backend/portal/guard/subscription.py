from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.portal import config

logger = logging.getLogger("guard.subscription")


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    AUTHENTICATED = "authenticated"
    PENDING = "pending"
    NONE = "none"
    UNKNOWN = "unknown"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_SUBSCRIPTION_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self is not SubscriptionStatus.UNKNOWN


ACTIVE_SUBSCRIPTION_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.AUTHENTICATED,
        SubscriptionStatus.PENDING,
    }
)


class SubscriptionLookupError(RuntimeError):
    """Raised when the subscription API cannot produce a usable status."""


class SubscriptionFetcher(Protocol):
    async def fetch_status(self) -> SubscriptionStatus:
        ...


def parse_subscription_payload(payload: Any) -> SubscriptionStatus:
    """Extract the status from ``{subscription: {status}}``, optionally wrapped in ``data``.

    ``subscription: null`` means the tenant has no subscription. Statuses outside
    the active set (``cancelled``, ``expired``...) collapse to ``NONE``.
    """

    if not isinstance(payload, dict):
        raise SubscriptionLookupError("Subscription payload is not an object")

    body: Dict[str, Any] = payload
    wrapped = payload.get("data")
    if "subscription" not in payload and isinstance(wrapped, dict):
        body = wrapped

    if "subscription" not in body:
        raise SubscriptionLookupError("Subscription payload has no 'subscription' field")

    subscription = body["subscription"]
    if subscription is None:
        return SubscriptionStatus.NONE
    if not isinstance(subscription, dict):
        raise SubscriptionLookupError("Subscription field is not an object")

    status = subscription.get("status")
    if not isinstance(status, str):
        raise SubscriptionLookupError("Subscription status is missing")

    try:
        parsed = SubscriptionStatus(status.strip().lower())
    except ValueError:
        return SubscriptionStatus.NONE
    if parsed is SubscriptionStatus.UNKNOWN:
        return SubscriptionStatus.NONE
    return parsed


class HttpSubscriptionFetcher:
    """Reads the tenant's current subscription from the portal API."""

    def __init__(
        self,
        *,
        access_token: str,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[Any] = None,
    ) -> None:
        self._base_url = (base_url or config.SUBSCRIPTION_API_URL).rstrip("/")
        self._path = path or config.SUBSCRIPTION_API_PATH
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._timeout = timeout if timeout is not None else config.SUBSCRIPTION_API_TIMEOUT_SECONDS
        self._client = client

    async def fetch_status(self) -> SubscriptionStatus:
        client = self._client
        owns_client = False
        if client is None:
            client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
            owns_client = True

        try:
            response = await client.get(self._path, headers=self._headers)
        except Exception as exc:
            raise SubscriptionLookupError(f"Subscription request failed: {exc}") from exc
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code >= 400:
            raise SubscriptionLookupError(f"Subscription API responded with HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SubscriptionLookupError("Failed to decode subscription response") from exc

        return parse_subscription_payload(payload)


class StaticSubscriptionFetcher:
    """Returns a fixed status and counts calls."""

    def __init__(self, status: SubscriptionStatus = SubscriptionStatus.ACTIVE) -> None:
        self.status = status
        self.calls = 0

    async def fetch_status(self) -> SubscriptionStatus:
        self.calls += 1
        return self.status


__all__ = [
    "ACTIVE_SUBSCRIPTION_STATUSES",
    "HttpSubscriptionFetcher",
    "StaticSubscriptionFetcher",
    "SubscriptionFetcher",
    "SubscriptionLookupError",
    "SubscriptionStatus",
    "parse_subscription_payload",
]
