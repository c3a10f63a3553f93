"""
In-process TTL caching with in-flight de-duplication.

Provides:
- CacheEntry: value plus absolute expiry (passive expiry on read)
- TTLCache: concurrent-safe key -> CacheEntry map
- SingleFlight: at most one in-flight fetch per key, waiters share its result
- RetrievalCache: TTLCache + SingleFlight + optional Redis mirror

Caches are explicit objects injected into the components that use them, so
tests can build isolated instances.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """Cached value with an absolute expiry timestamp."""

    value: V
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.monotonic()
        return now > self.expires_at


class TTLCache(Generic[V]):
    """
    Simple key -> CacheEntry map with explicit expiry checks.

    Reads never block. Expired entries are ignored on read and overwritten on
    the next put.
    """

    def __init__(self, default_ttl_seconds: float = 60.0, clock: Clock = time.monotonic):
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    def put(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def __len__(self) -> int:
        return len(self._entries)


class SingleFlight:
    """
    Collapse concurrent calls for the same key into one in-flight task.

    The first caller starts the task; concurrent callers await the same task.
    Waiters are shielded, so a caller that gives up does not cancel the fetch
    other waiters depend on.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def do(self, key: str, fn: Callable[[], Awaitable[V]]) -> V:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._release(k, _t))
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Retrieve the exception so an abandoned task does not warn on GC
        if not task.cancelled():
            task.exception()


class RetrievalCache(Generic[V]):
    """
    Memoize upstream results with TTL and single-flight de-duplication.

    Usage:
        cache = RetrievalCache(ttl_seconds=60)
        entries = await cache.get_or_fetch(key, lambda: client.search(...))

    An optional Redis client mirrors values across processes; ``serialize`` and
    ``deserialize`` convert values to and from JSON-compatible data. Redis
    errors are logged and never fail the fetch.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        redis_client: Any = None,
        serialize: Optional[Callable[[V], Any]] = None,
        deserialize: Optional[Callable[[Any], V]] = None,
        should_cache: Optional[Callable[[V], bool]] = None,
        key_prefix: str = "legalrag:retrieval:",
        clock: Clock = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._local: TTLCache[V] = TTLCache(default_ttl_seconds=ttl_seconds, clock=clock)
        self._flights = SingleFlight()
        self._redis = redis_client
        self._serialize = serialize or (lambda v: v)
        self._deserialize = deserialize or (lambda raw: raw)
        self._should_cache = should_cache or (lambda v: True)
        self._key_prefix = key_prefix

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[V]],
        ttl_seconds: Optional[float] = None,
    ) -> V:
        """Return the cached value for ``key`` or fetch it exactly once."""
        cached = self._local.get(key)
        if cached is not None:
            logger.debug("Retrieval cache hit", cache_key=key)
            return cached

        async def _load() -> V:
            # Another flight may have populated the cache while we were queued
            again = self._local.get(key)
            if again is not None:
                return again

            mirrored = await self._read_mirror(key)
            if mirrored is not None:
                self._local.put(key, mirrored, ttl_seconds)
                return mirrored

            value = await fetch()
            if self._should_cache(value):
                self._local.put(key, value, ttl_seconds)
                await self._write_mirror(key, value, ttl_seconds)
            return value

        if self._flights.in_flight(key):
            logger.debug("Joining in-flight retrieval", cache_key=key)
        return await self._flights.do(key, _load)

    async def _read_mirror(self, key: str) -> Optional[V]:
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(self._key_prefix + key)
            if raw is None:
                return None
            logger.debug("Retrieval cache hit: redis", cache_key=key)
            return self._deserialize(json.loads(raw))
        except Exception as e:
            logger.warning("Redis cache read failed", error=str(e), cache_key=key)
            return None

    async def _write_mirror(self, key: str, value: V, ttl_seconds: Optional[float]) -> None:
        if self._redis is None:
            return
        ttl = int(self.ttl_seconds if ttl_seconds is None else ttl_seconds)
        if ttl <= 0:
            return
        try:
            await self._redis.setex(self._key_prefix + key, ttl, json.dumps(self._serialize(value)))
        except Exception as e:
            logger.warning("Redis cache write failed", error=str(e), cache_key=key)
