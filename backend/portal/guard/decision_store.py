from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx  # type: ignore[import-not-found]
import redis.asyncio as redis  # type: ignore[import]
from redis.exceptions import RedisError  # type: ignore[import]

from backend.portal import config

logger = logging.getLogger("guard.decision_store")


DECISION_KEY_PREFIX = "guard:decision:"


class DecisionStoreError(RuntimeError):
    """Raised when the decision store backend cannot complete an operation."""


@dataclass(frozen=True)
class StoredDecision:
    key: str
    state: str
    redirect_to: Optional[str]
    recorded_at: int

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StoredDecision":
        return cls(
            key=str(payload["key"]),
            state=str(payload["state"]),
            redirect_to=payload.get("redirectTo"),
            recorded_at=int(payload["recordedAt"]),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state,
            "redirectTo": self.redirect_to,
            "recordedAt": self.recorded_at,
        }


def _decode(data: Any) -> Optional[StoredDecision]:
    if data is None:
        return None
    try:
        return StoredDecision.from_payload(json.loads(data))
    except (TypeError, KeyError, ValueError):
        logger.warning("Discarding malformed stored decision")
        return None


class DecisionStorageAdapter:
    async def remember(self, scope: str, decision: StoredDecision, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def last(self, scope: str) -> Optional[StoredDecision]:
        raise NotImplementedError

    async def forget(self, scope: str) -> None:
        raise NotImplementedError


class VercelKVDecisionAdapter(DecisionStorageAdapter):
    def __init__(
        self,
        *,
        rest_url: str,
        rest_token: str,
        namespace: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[Any] = None,
    ) -> None:
        self._rest_url = rest_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {rest_token}"}
        self._timeout = timeout
        self._client = client
        self._namespace = namespace.strip() if namespace else None

    def _qualify(self, key: str) -> str:
        if self._namespace:
            return f"{self._namespace}:{key}"
        return key

    async def _execute(self, command: list[Any]) -> Any:
        client = self._client
        owns_client = False
        if client is None:
            client = httpx.AsyncClient(base_url=self._rest_url, timeout=self._timeout)
            owns_client = True
        try:
            response = await client.post("/", json=command, headers=self._headers)
        except Exception as exc:  # pragma: no cover - network failure path
            raise DecisionStoreError(f"Vercel KV request failed: {exc}") from exc
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code >= 400:
            raise DecisionStoreError(f"Vercel KV responded with HTTP {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except ValueError as exc:  # pragma: no cover - unexpected response
            raise DecisionStoreError("Failed to decode Vercel KV response") from exc

        if "error" in payload:
            raise DecisionStoreError(f"Vercel KV command error: {payload['error']}")

        return payload.get("result")

    async def remember(self, scope: str, decision: StoredDecision, ttl_seconds: int) -> None:
        key = self._qualify(f"{DECISION_KEY_PREFIX}{scope}")
        payload = json.dumps(decision.to_payload(), separators=(",", ":"))
        await self._execute(["SET", key, payload, "EX", str(ttl_seconds)])

    async def last(self, scope: str) -> Optional[StoredDecision]:
        key = self._qualify(f"{DECISION_KEY_PREFIX}{scope}")
        return _decode(await self._execute(["GET", key]))

    async def forget(self, scope: str) -> None:
        key = self._qualify(f"{DECISION_KEY_PREFIX}{scope}")
        await self._execute(["DEL", key])


class RedisDecisionAdapter(DecisionStorageAdapter):
    def __init__(self, url: str, *, client: Optional[Any] = None):
        self._client = client or redis.from_url(url, decode_responses=True)

    async def remember(self, scope: str, decision: StoredDecision, ttl_seconds: int) -> None:
        key = f"{DECISION_KEY_PREFIX}{scope}"
        try:
            await self._client.set(key, json.dumps(decision.to_payload()), ex=ttl_seconds)
        except RedisError as exc:
            raise DecisionStoreError(f"Redis SET failed: {exc}") from exc

    async def last(self, scope: str) -> Optional[StoredDecision]:
        key = f"{DECISION_KEY_PREFIX}{scope}"
        try:
            data = await self._client.get(key)
        except RedisError as exc:
            raise DecisionStoreError(f"Redis GET failed: {exc}") from exc
        return _decode(data)

    async def forget(self, scope: str) -> None:
        try:
            await self._client.delete(f"{DECISION_KEY_PREFIX}{scope}")
        except RedisError as exc:
            raise DecisionStoreError(f"Redis DEL failed: {exc}") from exc


class InMemoryDecisionAdapter(DecisionStorageAdapter):
    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def remember(self, scope: str, decision: StoredDecision, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[scope] = {"decision": decision, "expiresAt": time.time() + ttl_seconds}

    async def last(self, scope: str) -> Optional[StoredDecision]:
        async with self._lock:
            entry = self._entries.get(scope)
            if not entry:
                return None
            if time.time() > entry["expiresAt"]:
                self._entries.pop(scope, None)
                return None
            return entry["decision"]

    async def forget(self, scope: str) -> None:
        async with self._lock:
            self._entries.pop(scope, None)


class DecisionStore:
    def __init__(
        self,
        *,
        adapter: Optional[DecisionStorageAdapter] = None,
        redis_url: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._adapter = adapter or self._select_adapter(redis_url=redis_url)
        self._ttl_default = self._resolve_ttl(ttl_seconds, config.DECISION_TTL_SECONDS)

    def _select_adapter(self, *, redis_url: Optional[str]) -> DecisionStorageAdapter:
        rest_url = (
            os.getenv("KV_REST_API_URL")
            or os.getenv("VERCEL_KV_REST_API_URL")
            or os.getenv("UPSTASH_REDIS_REST_URL")
        )
        rest_token = (
            os.getenv("KV_REST_API_TOKEN")
            or os.getenv("VERCEL_KV_REST_API_TOKEN")
            or os.getenv("UPSTASH_REDIS_REST_TOKEN")
        )
        namespace = config.DECISION_STORE_NAMESPACE or os.getenv("VERCEL_KV_NAMESPACE")
        if rest_url and rest_token:
            logger.info("Using Vercel KV decision store")
            return VercelKVDecisionAdapter(rest_url=rest_url, rest_token=rest_token, namespace=namespace)

        resolved_url = redis_url or config.DECISION_STORE_REDIS_URL or os.getenv("REDIS_URL")
        if resolved_url:
            try:
                logger.info("Using Redis decision store")
                return RedisDecisionAdapter(resolved_url)
            except ValueError as exc:
                logger.warning("Falling back to in-memory decision store after Redis URL error: %s", exc)
        return InMemoryDecisionAdapter()

    @property
    def adapter(self) -> DecisionStorageAdapter:
        return self._adapter

    async def record(
        self,
        scope: str,
        *,
        key: str,
        state: str,
        redirect_to: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Store the decision for ``scope``; returns False when it repeats the stored one."""

        previous = await self._adapter.last(scope)
        if previous is not None and previous.key == key:
            return False
        ttl = self._resolve_ttl(ttl_seconds, self._ttl_default)
        stored = StoredDecision(key=key, state=state, redirect_to=redirect_to, recorded_at=int(time.time()))
        await self._adapter.remember(scope, stored, ttl)
        return True

    async def last(self, scope: str) -> Optional[StoredDecision]:
        return await self._adapter.last(scope)

    async def forget(self, scope: str) -> None:
        await self._adapter.forget(scope)

    @staticmethod
    def _resolve_ttl(ttl_seconds: Optional[int], default_seconds: int) -> int:
        if ttl_seconds is None:
            return default_seconds
        if ttl_seconds <= 0:
            logger.warning("Received non-positive TTL override (%s); using default %s", ttl_seconds, default_seconds)
            return default_seconds
        return ttl_seconds


_decision_store: Optional[DecisionStore] = None


def get_decision_store() -> DecisionStore:
    global _decision_store
    if _decision_store is None:
        _decision_store = DecisionStore()
    return _decision_store


def configure_decision_store(
    *,
    adapter: Optional[DecisionStorageAdapter] = None,
    redis_url: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> DecisionStore:
    global _decision_store
    _decision_store = DecisionStore(adapter=adapter, redis_url=redis_url, ttl_seconds=ttl_seconds)
    return _decision_store


def decision_scope(session_id: str, portal_type: Optional[str], mount_id: str) -> str:
    """Scope one mounted page: repeats are suppressed within a mount, never across remounts."""

    return f"{session_id}:{portal_type or 'none'}:{mount_id}"


__all__ = [
    "DecisionStore",
    "DecisionStoreError",
    "DecisionStorageAdapter",
    "InMemoryDecisionAdapter",
    "RedisDecisionAdapter",
    "StoredDecision",
    "VercelKVDecisionAdapter",
    "configure_decision_store",
    "decision_scope",
    "get_decision_store",
]
