import asyncio
import sys
from pathlib import Path
from typing import Optional

import pytest  # type: ignore[import]

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from backend.portal.guard.roles import ADMIN_PORTAL_ROLES, CLIENT_PORTAL_ROLES, get_default_redirect  # noqa: E402
from backend.portal.guard.route_guard import RecordingNavigator, RouteAccessGuard  # noqa: E402
from backend.portal.guard.state_machine import GuardState, Outcome, SessionSnapshot, UserProfile  # noqa: E402
from backend.portal.guard.subscription import (  # noqa: E402
    StaticSubscriptionFetcher,
    SubscriptionLookupError,
    SubscriptionStatus,
)


class _FailingFetcher:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    async def fetch_status(self) -> SubscriptionStatus:
        self.calls += 1
        raise self.exc


class _BlockingFetcher:
    def __init__(self, status: SubscriptionStatus = SubscriptionStatus.ACTIVE) -> None:
        self.status = status
        self.release = asyncio.Event()
        self.calls = 0
        self.cancelled = False

    async def fetch_status(self) -> SubscriptionStatus:
        self.calls += 1
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.status


def _signed_in(role: str, company_id: Optional[str] = "c1", user_id: Optional[str] = None) -> SessionSnapshot:
    return SessionSnapshot(
        token_present=True,
        user_cookie_present=True,
        user=UserProfile(id=user_id or f"{role}-1", role=role, company_id=company_id),
    )


def _mounted_guard(portal_type, fetcher=None) -> tuple[RouteAccessGuard, RecordingNavigator]:
    navigator = RecordingNavigator()
    guard = RouteAccessGuard(portal_type=portal_type, navigator=navigator, subscription_fetcher=fetcher)
    guard.mount()
    return guard, navigator


@pytest.mark.asyncio
@pytest.mark.parametrize("role", sorted(r.value for r in ADMIN_PORTAL_ROLES))
async def test_admin_roles_render_admin_portal_and_are_denied_client_portal(role: str) -> None:
    admin_guard, admin_nav = _mounted_guard("admin", StaticSubscriptionFetcher())
    decision = await admin_guard.evaluate("/admin/dashboard", _signed_in(role))
    assert decision.outcome is Outcome.RENDER
    assert admin_nav.calls == []

    client_guard, client_nav = _mounted_guard("client", StaticSubscriptionFetcher())
    denied = await client_guard.evaluate("/client/dashboard", _signed_in(role))
    assert denied.state is GuardState.DENIED
    assert client_nav.calls == [get_default_redirect(role)]


@pytest.mark.asyncio
@pytest.mark.parametrize("role", sorted(r.value for r in CLIENT_PORTAL_ROLES))
async def test_client_without_subscription_is_redirected_to_plans_once(role: str) -> None:
    fetcher = StaticSubscriptionFetcher(SubscriptionStatus.NONE)
    guard, navigator = _mounted_guard("client", fetcher)
    session = _signed_in(role)

    for _ in range(3):
        decision = await guard.evaluate("/client/ledgers", session)
        assert decision.redirect_to == "/client/plans"

    assert navigator.calls == ["/client/plans"]
    assert fetcher.calls == 1
    assert guard.has_active_subscription is False


@pytest.mark.asyncio
async def test_subscribed_client_without_company_goes_to_companies() -> None:
    guard, navigator = _mounted_guard("client", StaticSubscriptionFetcher(SubscriptionStatus.AUTHENTICATED))

    decision = await guard.evaluate("/client/dashboard", _signed_in("tenant_admin", company_id=None))

    assert decision.reason == "company_missing"
    assert navigator.calls == ["/client/companies"]


@pytest.mark.asyncio
async def test_companies_page_renders_for_subscribed_client_without_company() -> None:
    guard, navigator = _mounted_guard("client", StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE))

    decision = await guard.evaluate("/client/companies", _signed_in("tenant_admin", company_id=None))

    assert decision.outcome is Outcome.RENDER
    assert navigator.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, expected",
    [
        ("/admin/anything", "/admin/login"),
        ("/client/anything", "/client/login"),
        ("/features", "/"),
    ],
)
async def test_no_session_redirects_to_portal_login(path: str, expected: str) -> None:
    fetcher = StaticSubscriptionFetcher()
    guard, navigator = _mounted_guard(None, fetcher)

    decision = await guard.evaluate(path, SessionSnapshot())

    assert decision.state is GuardState.DENIED
    assert navigator.calls == [expected]
    assert fetcher.calls == 0


@pytest.mark.asyncio
async def test_reevaluating_unchanged_inputs_does_not_navigate_again() -> None:
    guard, navigator = _mounted_guard("admin")
    session = _signed_in("accountant")

    first = await guard.evaluate("/admin/tenants", session)
    second = await guard.evaluate("/admin/tenants", session)

    assert first == second
    assert navigator.calls == ["/client/dashboard"]


@pytest.mark.asyncio
async def test_path_change_resets_the_decision() -> None:
    guard, navigator = _mounted_guard("client", StaticSubscriptionFetcher(SubscriptionStatus.NONE))
    session = _signed_in("user")

    await guard.evaluate("/client/ledgers", session)
    plans = await guard.evaluate("/client/plans", session)
    await guard.evaluate("/client/ledgers", session)

    assert plans.outcome is Outcome.RENDER
    assert navigator.calls == ["/client/plans", "/client/plans"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [SubscriptionLookupError("HTTP 502"), ConnectionError("reset by peer"), KeyError("subscription")],
)
async def test_subscription_failure_fails_closed(exc: Exception) -> None:
    fetcher = _FailingFetcher(exc)
    guard, navigator = _mounted_guard("client", fetcher)

    decision = await guard.evaluate("/client/dashboard", _signed_in("user"))

    assert guard.subscription_checked is True
    assert guard.has_active_subscription is False
    assert guard.subscription_status is SubscriptionStatus.NONE
    assert decision.redirect_to == "/client/plans"
    assert navigator.calls == ["/client/plans"]


@pytest.mark.asyncio
async def test_failed_subscription_check_is_not_retried_within_a_mount() -> None:
    fetcher = _FailingFetcher(SubscriptionLookupError("timeout"))
    guard, _ = _mounted_guard("client", fetcher)

    await guard.evaluate("/client/dashboard", _signed_in("user"))
    await guard.evaluate("/client/reports", _signed_in("user"))
    assert fetcher.calls == 1

    guard.unmount()
    guard.mount()
    await guard.evaluate("/client/dashboard", _signed_in("user"))
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_salesman_on_admin_portal_never_checks_subscription() -> None:
    fetcher = StaticSubscriptionFetcher(SubscriptionStatus.NONE)
    guard, navigator = _mounted_guard("admin", fetcher)

    decision = await guard.evaluate("/admin/salesmen/dashboard", _signed_in("salesman"))

    assert decision.outcome is Outcome.RENDER
    assert fetcher.calls == 0
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_onboarded_accountant_renders_client_portal() -> None:
    fetcher = StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE)
    guard, navigator = _mounted_guard("client", fetcher)

    decision = await guard.evaluate("/client/dashboard", _signed_in("accountant", company_id="c1"))

    assert decision.state is GuardState.ALLOWED
    assert navigator.calls == []
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_login_page_renders_for_signed_in_user() -> None:
    fetcher = StaticSubscriptionFetcher(SubscriptionStatus.NONE)
    guard, navigator = _mounted_guard("client", fetcher)

    decision = await guard.evaluate("/client/login", _signed_in("accountant"))

    assert decision.outcome is Outcome.RENDER
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_unmounted_guard_renders_loading_placeholder() -> None:
    navigator = RecordingNavigator()
    guard = RouteAccessGuard(portal_type="admin", navigator=navigator)

    decision = await guard.evaluate("/admin/dashboard", SessionSnapshot())

    assert decision.state is GuardState.MOUNTING
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_guard_waits_for_profile_then_decides() -> None:
    fetcher = StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE)
    guard, navigator = _mounted_guard("client", fetcher)

    pending = await guard.evaluate("/client/companies", SessionSnapshot(token_present=True, user_cookie_present=True))
    assert pending.state is GuardState.AWAITING_SESSION
    assert navigator.calls == []
    assert fetcher.calls == 0

    resolved = await guard.evaluate("/client/companies", _signed_in("tenant_admin", company_id=None))
    assert resolved.state is GuardState.ALLOWED
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_background_subscription_check_reports_loading_first() -> None:
    fetcher = _BlockingFetcher(SubscriptionStatus.ACTIVE)
    guard, navigator = _mounted_guard("client", fetcher)
    session = _signed_in("user")

    waiting = await guard.evaluate("/client/dashboard", session, wait_for_subscription=False)
    assert waiting.state is GuardState.AWAITING_SUBSCRIPTION
    assert guard.subscription_checked is False

    fetcher.release.set()
    decided = await guard.evaluate("/client/dashboard", session)

    assert decided.state is GuardState.ALLOWED
    assert fetcher.calls == 1
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_concurrent_evaluations_share_one_subscription_request() -> None:
    fetcher = _BlockingFetcher(SubscriptionStatus.NONE)
    guard, navigator = _mounted_guard("client", fetcher)
    session = _signed_in("user")

    pending = [asyncio.ensure_future(guard.evaluate("/client/ledgers", session)) for _ in range(3)]
    await asyncio.sleep(0)
    fetcher.release.set()
    decisions = await asyncio.gather(*pending)

    assert fetcher.calls == 1
    assert {d.redirect_to for d in decisions} == {"/client/plans"}
    assert navigator.calls == ["/client/plans"]


@pytest.mark.asyncio
async def test_unmount_cancels_in_flight_subscription_check() -> None:
    fetcher = _BlockingFetcher()
    guard, navigator = _mounted_guard("client", fetcher)

    await guard.evaluate("/client/dashboard", _signed_in("user"), wait_for_subscription=False)
    await asyncio.sleep(0)
    guard.unmount()
    await asyncio.sleep(0)

    assert fetcher.cancelled is True
    assert guard.subscription_status is SubscriptionStatus.UNKNOWN
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_missing_fetcher_treats_subscription_as_inactive() -> None:
    guard, navigator = _mounted_guard("client")

    decision = await guard.evaluate("/client/dashboard", _signed_in("user"))

    assert decision.redirect_to == "/client/plans"
    assert navigator.calls == ["/client/plans"]


class _FetcherFactory:
    def __init__(self, *fetchers) -> None:
        self.fetchers = list(fetchers)
        self.created = 0

    def __call__(self):
        fetcher = self.fetchers[self.created]
        self.created += 1
        return fetcher


def _factory_guard(portal_type, factory: _FetcherFactory) -> tuple[RouteAccessGuard, RecordingNavigator]:
    navigator = RecordingNavigator()
    guard = RouteAccessGuard(portal_type=portal_type, navigator=navigator, fetcher_factory=factory)
    guard.mount()
    return guard, navigator


@pytest.mark.asyncio
async def test_sign_out_then_other_user_gets_a_fresh_subscription_check() -> None:
    factory = _FetcherFactory(
        StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE),
        StaticSubscriptionFetcher(SubscriptionStatus.NONE),
    )
    guard, navigator = _factory_guard("client", factory)

    first = await guard.evaluate("/client/dashboard", _signed_in("user", user_id="alice"))
    assert first.state is GuardState.ALLOWED

    signed_out = await guard.evaluate("/client/dashboard", SessionSnapshot())
    assert signed_out.redirect_to == "/client/login"
    assert guard.subscription_status is SubscriptionStatus.UNKNOWN

    second = await guard.evaluate("/client/dashboard", _signed_in("user", user_id="bob"))

    assert second.redirect_to == "/client/plans"
    assert factory.created == 2
    assert navigator.calls == ["/client/login", "/client/plans"]


@pytest.mark.asyncio
async def test_switching_users_does_not_reuse_previous_subscription() -> None:
    factory = _FetcherFactory(
        StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE),
        StaticSubscriptionFetcher(SubscriptionStatus.NONE),
    )
    guard, navigator = _factory_guard("client", factory)

    await guard.evaluate("/client/dashboard", _signed_in("user", user_id="alice"))
    decision = await guard.evaluate("/client/dashboard", _signed_in("user", user_id="bob"))

    assert decision.redirect_to == "/client/plans"
    assert guard.has_active_subscription is False
    assert factory.created == 2
    assert navigator.calls == ["/client/plans"]


@pytest.mark.asyncio
async def test_same_user_keeps_subscription_across_evaluations() -> None:
    factory = _FetcherFactory(StaticSubscriptionFetcher(SubscriptionStatus.ACTIVE))
    guard, navigator = _factory_guard("client", factory)

    await guard.evaluate("/client/dashboard", _signed_in("user", user_id="alice"))
    decision = await guard.evaluate("/client/reports", _signed_in("user", user_id="alice"))

    assert decision.state is GuardState.ALLOWED
    assert factory.created == 1
    assert navigator.calls == []


@pytest.mark.asyncio
async def test_user_switch_cancels_previous_users_pending_check() -> None:
    alice_fetcher = _BlockingFetcher(SubscriptionStatus.ACTIVE)
    bob_fetcher = _BlockingFetcher(SubscriptionStatus.NONE)
    factory = _FetcherFactory(alice_fetcher, bob_fetcher)
    guard, navigator = _factory_guard("client", factory)

    await guard.evaluate("/client/dashboard", _signed_in("user", user_id="alice"), wait_for_subscription=False)
    await asyncio.sleep(0)

    waiting = await guard.evaluate("/client/dashboard", _signed_in("user", user_id="bob"), wait_for_subscription=False)
    await asyncio.sleep(0)

    assert waiting.state is GuardState.AWAITING_SUBSCRIPTION
    assert alice_fetcher.cancelled is True

    bob_fetcher.release.set()
    decision = await guard.evaluate("/client/dashboard", _signed_in("user", user_id="bob"))

    assert decision.redirect_to == "/client/plans"
    assert bob_fetcher.calls == 1
    assert navigator.calls == ["/client/plans"]


@pytest.mark.asyncio
async def test_unmount_while_awaiting_subscription_returns_loading() -> None:
    fetcher = _BlockingFetcher()
    guard, navigator = _mounted_guard("client", fetcher)

    pending = asyncio.ensure_future(guard.evaluate("/client/dashboard", _signed_in("user")))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    guard.unmount()

    decision = await pending

    assert decision.state is GuardState.MOUNTING
    assert decision.outcome is Outcome.LOADING
    assert fetcher.cancelled is True
    assert navigator.calls == []
