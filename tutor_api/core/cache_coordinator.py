"""Shared context-cache coordination.

Many stateless requests share one Gemini cached context per scope (course).
The handle lives in the key-value store; each request:

    LOOKING_UP -> FOUND_VALID                      (one store read, done)
               -> NOT_FOUND_OR_EXPIRED -> PROVISIONING -> PROVISIONED
                                                       -> PROVISION_FAILED (fallback)

Store lookups and writes are best-effort: failures are logged and treated as a
miss (lookup) or ignored (write). Provisioning failures turn into a fallback
signal so the caller can still answer with the full context. No lock is taken
across requests; two cold requests may both provision and the store keeps the
last writer's handle.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from tutor_api.core.gemini_backend import ProvisionedContext
from tutor_api.core.kv_store import KVStore, decode_value

logger = structlog.get_logger(__name__)

SAFETY_MARGIN_MS = 60_000

ProvisionFn = Callable[[], Awaitable[ProvisionedContext]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheHandle:
    """Reference to a remote cached context.

    Attributes:
        identifier: Backend resource name.
        expires_at_ms: Nominal expiry, epoch milliseconds.
    """
    identifier: str
    expires_at_ms: int

    def is_usable(self, now_ms: int, safety_margin_ms: int = SAFETY_MARGIN_MS) -> bool:
        return now_ms < self.expires_at_ms - safety_margin_ms

    def to_record(self) -> dict:
        """Stored representation: {"name", "expiry"}."""
        return {"name": self.identifier, "expiry": self.expires_at_ms}

    @classmethod
    def from_record(cls, raw: Any) -> "CacheHandle | None":
        """Parse a stored record (object or JSON text). None if absent or malformed."""
        try:
            record = decode_value(raw)
        except ValueError:
            return None
        if not isinstance(record, dict):
            return None
        name = record.get("name")
        expiry = record.get("expiry")
        if not name or expiry is None:
            return None
        try:
            return cls(identifier=str(name), expires_at_ms=int(expiry))
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class CacheResolution:
    """Outcome of CacheCoordinator.resolve().

    Attributes:
        handle: Usable handle, or None when the caller must fall back.
        provisioned: True if the handle was created by this call.
        reason: Why no handle is available (only set on fallback).
    """
    handle: CacheHandle | None = None
    provisioned: bool = False
    reason: str = ""

    @property
    def fallback(self) -> bool:
        return self.handle is None


class CacheCoordinator:
    """Look up, provision and persist the shared cache handle."""

    def __init__(
        self,
        store: KVStore | None,
        ttl_seconds: int = 3600,
        safety_margin_ms: int = SAFETY_MARGIN_MS,
        clock: Callable[[], int] = _now_ms,
        single_flight: bool = False,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.safety_margin_ms = safety_margin_ms
        self._clock = clock
        self._single_flight = single_flight
        self._locks: dict[str, asyncio.Lock] = {}

    async def resolve(self, scope_key: str, provision_fn: ProvisionFn) -> CacheResolution:
        """Return a usable handle for scope_key, provisioning one if needed.

        Never raises: lookup/persist errors are absorbed, provisioning errors
        become a fallback resolution.
        """
        if not self._single_flight:
            return await self._resolve(scope_key, provision_fn)

        lock = self._locks.setdefault(scope_key, asyncio.Lock())
        async with lock:
            return await self._resolve(scope_key, provision_fn)

    async def lookup(self, scope_key: str) -> CacheHandle | None:
        """Single best-effort store read. Returns a handle only if still usable."""
        if self.store is None or not self.store.enabled:
            return None
        try:
            raw = await self.store.get(scope_key)
        except Exception as e:
            logger.error("cache.lookup_failed", key=scope_key, error=str(e))
            return None

        if raw is None:
            logger.info("cache.miss", key=scope_key)
            return None

        handle = CacheHandle.from_record(raw)
        if handle is None:
            logger.warning("cache.unparseable", key=scope_key)
            return None

        if not handle.is_usable(self._clock(), self.safety_margin_ms):
            logger.info("cache.expired", key=scope_key, name=handle.identifier,
                        expires_at_ms=handle.expires_at_ms)
            return None
        return handle

    async def _resolve(self, scope_key: str, provision_fn: ProvisionFn) -> CacheResolution:
        handle = await self.lookup(scope_key)
        if handle is not None:
            logger.info("cache.hit", key=scope_key, name=handle.identifier)
            return CacheResolution(handle=handle)

        try:
            created = await provision_fn()
        except Exception as e:
            logger.warning("cache.provision_failed", key=scope_key, error=str(e))
            return CacheResolution(reason=str(e))

        handle = CacheHandle(identifier=created.name, expires_at_ms=created.expires_at_ms)
        await self._persist(scope_key, handle)
        logger.info("cache.provisioned", key=scope_key, name=handle.identifier)
        return CacheResolution(handle=handle, provisioned=True)

    async def _persist(self, scope_key: str, handle: CacheHandle) -> None:
        if self.store is None or not self.store.enabled:
            return
        try:
            await self.store.set(scope_key, handle.to_record(), ex=self.ttl_seconds)
        except Exception as e:
            # A later request will simply provision again.
            logger.error("cache.persist_failed", key=scope_key, error=str(e))
