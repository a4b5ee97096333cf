"""
Request-coalescing cache for upstream telemetry calls.

Every upstream read goes through :meth:`CoalescingCache.memoize`, which
returns a fresh cached value when one exists, joins the in-flight
computation when another caller already started one for the same key, and
otherwise runs the producer itself. Completed values are kept in a
cachetools LRUCache so memory stays bounded; in-flight computations are kept
apart from it and are never evicted.

The cache relies on asyncio's cooperative scheduling: the check-then-register
sequence in ``memoize`` contains no ``await``, so it is atomic with respect to
other callers on the same event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

from cachetools import LRUCache

logger = logging.getLogger(__name__)

KEY_DELIMITER = "|"


def cache_key(*parts: Any) -> str:
    """Serialize an ordered tuple of key parts into a delimiter-joined key."""
    return KEY_DELIMITER.join("" if part is None else str(part) for part in parts)


@dataclass(frozen=True)
class Pending:
    """An in-flight producer run shared by every caller of the same key."""

    task: asyncio.Future


@dataclass(frozen=True)
class Ready:
    """A completed value and the monotonic time at which it goes stale."""

    value: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


CacheEntry = Pending | Ready


class CoalescingCache:
    """
    Single-flight memoizing cache with per-call TTL.

    One instance is created per process and handed to the fetchers; tests
    build their own with a fake clock.
    """

    def __init__(
        self,
        *,
        max_entries: int = 4096,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ready: LRUCache[Hashable, Ready] = LRUCache(maxsize=max_entries)
        self._pending: dict[Hashable, Pending] = {}
        self._clock = clock

    def entry(self, key: Hashable) -> CacheEntry | None:
        """Return the current entry for ``key`` (pending first) or None."""
        pending = self._pending.get(key)
        if pending is not None:
            return pending
        return self._ready.get(key)

    async def memoize(
        self,
        key: Hashable,
        ttl: float,
        producer: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the value for ``key``, running ``producer`` at most once at a time.

        Args:
            key: Serialized cache key (see :func:`cache_key`).
            ttl: Seconds a successful result stays fresh. 0 means always
                revalidate while still coalescing concurrent callers.
            producer: Zero-argument coroutine function computing the value.

        Raises:
            Whatever the producer raises. Failures are never cached; every
            caller waiting on the failed run receives the same exception.
        """
        now = self._clock()
        entry = self.entry(key)

        if isinstance(entry, Ready):
            if entry.is_fresh(now):
                logger.debug("Cache hit for %s", key)
                return entry.value
        elif isinstance(entry, Pending):
            logger.debug("Joining in-flight fetch for %s", key)
            return await asyncio.shield(entry.task)

        # Passive expiry: the stale value is superseded by the new run.
        self._ready.pop(key, None)
        task = asyncio.ensure_future(self._produce(key, ttl, now, producer))
        self._pending[key] = Pending(task)
        return await asyncio.shield(task)

    async def _produce(
        self,
        key: Hashable,
        ttl: float,
        started_at: float,
        producer: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            value = await producer()
        except BaseException:
            self._release(key)
            raise
        self._release(key)
        self._ready[key] = Ready(value=value, expires_at=started_at + max(ttl, 0))
        return value

    def _release(self, key: Hashable) -> None:
        pending = self._pending.get(key)
        if pending is not None and pending.task is asyncio.current_task():
            del self._pending[key]

    def invalidate(self, key: Hashable) -> None:
        """Drop a completed value. In-flight runs are left to finish."""
        self._ready.pop(key, None)

    def clear(self) -> None:
        """Drop every completed value. In-flight runs are left to finish."""
        self._ready.clear()

    def pending_count(self) -> int:
        return len(self._pending)

    def __len__(self) -> int:
        return len(self._ready)


__all__ = ["CacheEntry", "CoalescingCache", "Pending", "Ready", "cache_key"]
