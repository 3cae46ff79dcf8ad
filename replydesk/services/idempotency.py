"""Processed-event markers so a redelivered chat event is handled once."""

from __future__ import annotations

from replydesk.core.cache import Cache
from replydesk.core.config import get_settings


def processed_key(conversation_id: str | int, message_id: str | int) -> str:
    return f"processed:{conversation_id}:{message_id}"


class IdempotencyStore:
    def __init__(self, cache: Cache, ttl_seconds: int | None = None) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds or get_settings().idempotency_ttl_seconds

    async def is_processed(self, conversation_id: str | int, message_id: str | int) -> bool:
        return await self.cache.get(processed_key(conversation_id, message_id)) is not None

    async def mark_processed(self, conversation_id: str | int, message_id: str | int) -> None:
        await self.cache.set(processed_key(conversation_id, message_id), "1", ttl=self.ttl_seconds)
