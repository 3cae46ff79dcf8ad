"""Shared TTL cache used for rate-limit counters and idempotency markers.

Two backends implement the same async interface:

* ``MemoryCache`` keeps entries in a process-local dict. Used by tests and
  single-process deployments.
* ``RedisCache`` stores entries in Redis so API and worker processes share
  counters.

``get_cache()`` returns the backend selected by ``CACHE_BACKEND``.
"""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Any, Protocol

from redis.asyncio import Redis, from_url

from replydesk.core.config import get_settings

# Default TTL in seconds
DEFAULT_TTL = 30


class Cache(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: float = DEFAULT_TTL) -> None: ...

    async def incr(self, key: str, amount: int = 1, ttl: float = DEFAULT_TTL) -> int: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class MemoryCache:
    """In-process cache with per-entry expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}

    def _live(self, key: str) -> tuple[float, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, _ = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Return cached value if present and not expired, else None."""
        entry = self._live(key)
        return entry[1] if entry else None

    async def set(self, key: str, value: Any, ttl: float = DEFAULT_TTL) -> None:
        self._entries[key] = (time.monotonic() + ttl, value)

    async def incr(self, key: str, amount: int = 1, ttl: float = DEFAULT_TTL) -> int:
        """Increment a counter. The TTL is set when the counter is created."""
        entry = self._live(key)
        if entry is None:
            self._entries[key] = (time.monotonic() + ttl, amount)
            return amount
        expires_at, value = entry
        value = int(value) + amount
        self._entries[key] = (expires_at, value)
        return value

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisCache:
    """Redis-backed cache. Values are stored as strings."""

    def __init__(self, client: Redis, prefix: str = "replydesk:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: Any, ttl: float = DEFAULT_TTL) -> None:
        await self._client.set(self._key(key), value, ex=max(1, int(ttl)))

    async def incr(self, key: str, amount: int = 1, ttl: float = DEFAULT_TTL) -> int:
        full_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incrby(full_key, amount)
            pipe.expire(full_key, max(1, int(ttl)), nx=True)
            value, _ = await pipe.execute()
        return int(value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def clear(self) -> None:
        keys = [k async for k in self._client.scan_iter(match=f"{self._prefix}*")]
        if keys:
            await self._client.delete(*keys)


@lru_cache
def get_cache() -> Cache:
    """Return the process-wide cache for the configured backend."""
    settings = get_settings()
    if settings.cache_backend == "memory":
        return MemoryCache()
    return RedisCache(from_url(settings.redis_url, decode_responses=True))
