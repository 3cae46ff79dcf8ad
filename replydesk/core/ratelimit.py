"""Fixed-window rate limiter backed by the shared cache."""

from __future__ import annotations

import time
from collections.abc import Callable

from replydesk.core.cache import Cache


class FixedWindowRateLimiter:
    """Count hits per key inside fixed windows of ``window_seconds``.

    Counters live in the cache under ``{name}:{key}:{window_index}`` and expire
    with their window. This is a soft guard: concurrent callers may overshoot
    the limit by a small amount.
    """

    def __init__(
        self,
        cache: Cache,
        name: str,
        limit: int,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def _bucket(self, key: str) -> str:
        window = int(self._clock() // self.window_seconds)
        return f"{self.name}:{key}:{window}"

    async def current(self, key: str = "global") -> int:
        value = await self.cache.get(self._bucket(key))
        return int(value) if value is not None else 0

    async def allows(self, key: str = "global", cost: int = 1) -> bool:
        """True if ``cost`` more hits fit in the current window."""
        return await self.current(key) + cost <= self.limit

    async def hit(self, key: str = "global", cost: int = 1) -> int:
        """Record ``cost`` hits and return the new window total."""
        return await self.cache.incr(self._bucket(key), cost, ttl=self.window_seconds)

    async def remaining(self, key: str = "global") -> int:
        return max(0, self.limit - await self.current(key))

    async def status(self, key: str = "global") -> dict:
        used = await self.current(key)
        return {
            "current_requests": used,
            "max_requests_per_window": self.limit,
            "window_seconds": self.window_seconds,
            "remaining_requests": max(0, self.limit - used),
            "can_make_request": used < self.limit,
        }
