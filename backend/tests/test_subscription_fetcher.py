import sys
from pathlib import Path
from typing import Any, List

import httpx  # type: ignore[import-not-found]
import pytest  # type: ignore[import]

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from backend.portal.guard.subscription import (  # noqa: E402
    HttpSubscriptionFetcher,
    SubscriptionLookupError,
    SubscriptionStatus,
    parse_subscription_payload,
)


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"success": True, "subscription": {"status": "active"}}, SubscriptionStatus.ACTIVE),
        ({"subscription": {"status": "Authenticated"}}, SubscriptionStatus.AUTHENTICATED),
        ({"data": {"subscription": {"status": "pending"}}}, SubscriptionStatus.PENDING),
        ({"success": True, "subscription": None}, SubscriptionStatus.NONE),
        ({"subscription": {"status": "cancelled"}}, SubscriptionStatus.NONE),
        ({"subscription": {"status": "unknown"}}, SubscriptionStatus.NONE),
    ],
)
def test_parse_subscription_payload(payload: Any, expected: SubscriptionStatus) -> None:
    assert parse_subscription_payload(payload) is expected


@pytest.mark.parametrize(
    "payload",
    [
        [],
        "active",
        {"success": True},
        {"data": None},
        {"subscription": "active"},
        {"subscription": {"plan": "pro"}},
    ],
)
def test_malformed_payload_raises(payload: Any) -> None:
    with pytest.raises(SubscriptionLookupError):
        parse_subscription_payload(payload)


def _fetcher_for(handler, captured: List[httpx.Request]) -> tuple[HttpSubscriptionFetcher, httpx.AsyncClient]:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler), base_url="https://api.example/api")
    fetcher = HttpSubscriptionFetcher(access_token="session-token", path="/subscriptions/current", client=client)
    return fetcher, client


@pytest.mark.asyncio
async def test_http_fetcher_sends_bearer_token() -> None:
    captured: List[httpx.Request] = []
    fetcher, client = _fetcher_for(
        lambda request: httpx.Response(200, json={"success": True, "subscription": {"status": "active"}}),
        captured,
    )
    async with client:
        status = await fetcher.fetch_status()

    assert status is SubscriptionStatus.ACTIVE
    assert len(captured) == 1
    assert captured[0].headers["Authorization"] == "Bearer session-token"
    assert captured[0].url.path == "/api/subscriptions/current"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 404, 500, 503])
async def test_http_fetcher_rejects_error_status(status_code: int) -> None:
    fetcher, client = _fetcher_for(lambda request: httpx.Response(status_code, json={"error": "nope"}), [])
    async with client:
        with pytest.raises(SubscriptionLookupError):
            await fetcher.fetch_status()


@pytest.mark.asyncio
async def test_http_fetcher_rejects_non_json_body() -> None:
    fetcher, client = _fetcher_for(lambda request: httpx.Response(200, text="<html>maintenance</html>"), [])
    async with client:
        with pytest.raises(SubscriptionLookupError):
            await fetcher.fetch_status()


@pytest.mark.asyncio
async def test_http_fetcher_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher, client = _fetcher_for(handler, [])
    async with client:
        with pytest.raises(SubscriptionLookupError):
            await fetcher.fetch_status()
