from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from backend.portal.guard.roles import PortalType, parse_portal_type
from backend.portal.guard.state_machine import (
    Decision,
    GuardInputs,
    SessionSnapshot,
    needs_subscription_check,
    transition,
)
from backend.portal.guard.subscription import (
    SubscriptionFetcher,
    SubscriptionLookupError,
    SubscriptionStatus,
)
from backend.portal.utils.observability import record_guard_decision, record_subscription_check

logger = logging.getLogger("guard.route_guard")


class Navigator(Protocol):
    def replace(self, path: str) -> None:
        ...


class RecordingNavigator:
    """Navigator that remembers every ``replace`` call instead of performing it."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def replace(self, path: str) -> None:
        self.calls.append(path)


class RouteAccessGuard:
    """Per-mount route guard.

    One instance corresponds to one mounted page. It owns the subscription
    lookup for that mount (at most one request, shared by concurrent
    evaluations) and the last decision, which keeps repeated evaluations of
    the same inputs from navigating again.
    """

    def __init__(
        self,
        *,
        portal_type: Optional[PortalType | str],
        navigator: Navigator,
        subscription_fetcher: Optional[SubscriptionFetcher] = None,
        fetcher_factory: Optional[Callable[[], SubscriptionFetcher]] = None,
    ) -> None:
        self._portal_type = parse_portal_type(portal_type)
        self._navigator = navigator
        self._fetcher = subscription_fetcher
        self._fetcher_factory = fetcher_factory
        self._mounted = False
        self._subscription_status = SubscriptionStatus.UNKNOWN
        self._subscription_task: Optional[asyncio.Task[SubscriptionStatus]] = None
        # User whose subscription the current status/task belongs to.
        self._subscription_subject: Optional[str] = None
        self._last_decision: Optional[Decision] = None

    @property
    def portal_type(self) -> Optional[PortalType]:
        return self._portal_type

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def subscription_status(self) -> SubscriptionStatus:
        return self._subscription_status

    @property
    def subscription_checked(self) -> bool:
        return self._subscription_status.is_resolved

    @property
    def has_active_subscription(self) -> bool:
        return self._subscription_status.is_active

    @property
    def last_decision(self) -> Optional[Decision]:
        return self._last_decision

    def mount(self) -> None:
        self._mounted = True

    def unmount(self) -> None:
        if self._cancel_subscription_check():
            logger.debug("Cancelled in-flight subscription check on unmount")
        self._mounted = False
        self._reset_subscription()
        self._last_decision = None

    def _cancel_subscription_check(self) -> bool:
        task = self._subscription_task
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def _reset_subscription(self) -> None:
        self._subscription_task = None
        self._subscription_status = SubscriptionStatus.UNKNOWN
        self._subscription_subject = None
        if self._fetcher_factory is not None:
            # Factory-built fetchers carry the previous user's token.
            self._fetcher = None

    def _sync_identity(self, session: SessionSnapshot) -> None:
        if self._subscription_task is None and not self.subscription_checked:
            return
        user_id = session.user.id if session.user is not None else None
        if user_id == self._subscription_subject:
            return
        logger.info(
            "Session identity changed; discarding subscription state",
            extra={"json_fields": {"event": "guard_identity_changed"}},
        )
        self._cancel_subscription_check()
        self._reset_subscription()
        self._last_decision = None

    def _inputs(self, path: str, session: SessionSnapshot) -> GuardInputs:
        return GuardInputs(
            path=path,
            session=session,
            portal_type=self._portal_type,
            subscription_status=self._subscription_status,
            mounted=self._mounted,
        )

    def _resolve_fetcher(self) -> Optional[SubscriptionFetcher]:
        if self._fetcher is None and self._fetcher_factory is not None:
            self._fetcher = self._fetcher_factory()
        return self._fetcher

    async def _check_subscription(self) -> SubscriptionStatus:
        fetcher = self._resolve_fetcher()
        if fetcher is None:
            logger.warning("No subscription fetcher configured; treating subscription as inactive")
            status = SubscriptionStatus.NONE
            record_subscription_check("unconfigured")
        else:
            try:
                status = await fetcher.fetch_status()
            except SubscriptionLookupError as exc:
                logger.warning(
                    "Subscription check failed; treating as inactive",
                    extra={"json_fields": {"event": "subscription_check_failed", "error": str(exc)}},
                )
                status = SubscriptionStatus.NONE
                record_subscription_check("error")
            except Exception as exc:
                logger.exception(
                    "Unexpected subscription fetcher error; treating as inactive",
                    extra={"json_fields": {"event": "subscription_check_failed", "error": str(exc)}},
                )
                status = SubscriptionStatus.NONE
                record_subscription_check("error")
            else:
                if not status.is_resolved:
                    status = SubscriptionStatus.NONE
                record_subscription_check("active" if status.is_active else "inactive")

        self._subscription_status = status
        return status

    def _start_subscription_check(self, user_id: Optional[str]) -> asyncio.Task[SubscriptionStatus]:
        if self._subscription_task is None:
            self._subscription_subject = user_id
            self._subscription_task = asyncio.ensure_future(self._check_subscription())
        return self._subscription_task

    async def evaluate(
        self,
        path: str,
        session: SessionSnapshot,
        *,
        wait_for_subscription: bool = True,
    ) -> Decision:
        """Decide what the mounted page should do for ``path`` and ``session``.

        Redirect decisions are applied through ``Navigator.replace`` once per
        distinct input set. With ``wait_for_subscription=False`` the lookup is
        started in the background and the loading decision is returned.

        Subscription state belongs to the user it was fetched for; a different
        user (or signing out) discards it. A lookup abandoned by ``unmount()``
        while awaited yields the decision for the guard's new state.
        """

        self._sync_identity(session)
        inputs = self._inputs(path, session)
        if not self.subscription_checked and needs_subscription_check(inputs):
            task = self._start_subscription_check(session.user.id if session.user else None)
            if wait_for_subscription:
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise
                inputs = self._inputs(path, session)

        step = transition(self._last_decision, inputs)
        decision = step.decision
        if decision.is_terminal:
            self._last_decision = decision

        if step.navigate and decision.redirect_to:
            logger.info(
                "Route guard redirect",
                extra={
                    "json_fields": {
                        "event": "guard_redirect",
                        "path": path,
                        "portal": self._portal_type.value if self._portal_type else None,
                        "reason": decision.reason,
                        "redirectTo": decision.redirect_to,
                    }
                },
            )
            self._navigator.replace(decision.redirect_to)

        record_guard_decision(decision.outcome.value)
        return decision


__all__ = ["Navigator", "RecordingNavigator", "RouteAccessGuard"]
