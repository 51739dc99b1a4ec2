"""Dependency factories for FastAPI.

Collaborators are built lazily so importing the app never needs network
access; tests swap them through ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging
from typing import Callable

from backend.portal.guard.decision_store import DecisionStore, get_decision_store
from backend.portal.guard.subscription import HttpSubscriptionFetcher, SubscriptionFetcher

SubscriptionFetcherFactory = Callable[[str], SubscriptionFetcher]

logger = logging.getLogger("dependencies")


def _http_fetcher_factory(access_token: str) -> SubscriptionFetcher:
    return HttpSubscriptionFetcher(access_token=access_token)


def get_subscription_fetcher_factory() -> SubscriptionFetcherFactory:
    return _http_fetcher_factory


def get_decision_store_dep() -> DecisionStore:
    return get_decision_store()


async def initialize_on_startup() -> None:
    store = get_decision_store()
    logger.info(
        "Decision store ready",
        extra={"json_fields": {"adapter": type(store.adapter).__name__}},
    )
