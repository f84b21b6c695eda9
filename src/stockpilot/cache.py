"""
In-process result cache with TTL and single-flight computation.

Valuations are expensive (full ledger + snapshot read) and change at most
daily, so results are kept for a configurable TTL. Concurrent misses for
the same key share one computation instead of each hitting the sources.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("stockpilot.cache")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class CacheKey:
    company: str
    product_number: str | None = None
    window: str | None = None

    def __str__(self) -> str:
        return ":".join(part or "*" for part in (self.company, self.product_number, self.window))


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    cached_at: datetime
    expires_at: float
    hit: bool = False


def _retrieve(task: asyncio.Task[Any]) -> None:
    # Mark the exception retrieved even when every caller stopped waiting
    if not task.cancelled():
        task.exception()


class ResultCache:
    """TTL cache keyed by ``CacheKey``.

    Usage::

        cache = ResultCache(ttl_seconds=3600)
        entry = await cache.get_or_compute(CacheKey("varg"), lambda: compute())
        entry.value, entry.cached_at, entry.hit
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Task[CacheEntry]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, key: CacheKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: CacheKey) -> CacheEntry | None:
        async with self._lock:
            entry = self._fresh(key)
        return replace(entry, hit=True) if entry else None

    async def set(self, key: CacheKey, value: Any) -> CacheEntry:
        entry = CacheEntry(
            value=value,
            cached_at=datetime.now(timezone.utc),
            expires_at=self._clock() + self.ttl_seconds,
        )
        async with self._lock:
            self._entries[key] = entry
        return entry

    async def invalidate(self, key: CacheKey | None = None) -> None:
        """Drop one key, every key of a company (``CacheKey(company)``), or everything."""
        async with self._lock:
            if key is None:
                self._entries.clear()
            elif key.product_number is None and key.window is None:
                for cached in [k for k in self._entries if k.company == key.company]:
                    del self._entries[cached]
            else:
                self._entries.pop(key, None)

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        *,
        force: bool = False,
    ) -> CacheEntry:
        """Return the cached entry or compute it once for all concurrent callers.

        ``force`` skips the stored entry but still joins a computation that
        is already running. A failed computation is not cached; every
        caller waiting on it receives the exception.
        """
        async with self._lock:
            if not force:
                entry = self._fresh(key)
                if entry is not None:
                    logger.debug("Cache hit %s", key)
                    return replace(entry, hit=True)

            task = self._inflight.get(key)
            if task is None:
                logger.debug("Cache miss %s, computing", key)
                task = asyncio.ensure_future(self._fill(key, compute))
                task.add_done_callback(_retrieve)
                self._inflight[key] = task
            else:
                logger.debug("Joining in-flight computation for %s", key)

        # Cancelling a caller only stops its own wait
        return await asyncio.shield(task)

    async def _fill(self, key: CacheKey, compute: Callable[[], Awaitable[Any]]) -> CacheEntry:
        try:
            value = await compute()
            entry = CacheEntry(
                value=value,
                cached_at=datetime.now(timezone.utc),
                expires_at=self._clock() + self.ttl_seconds,
            )
            async with self._lock:
                self._entries[key] = entry
            return entry
        finally:
            self._inflight.pop(key, None)
