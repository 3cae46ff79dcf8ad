"""Message processing worker task — runs the reply pipeline for one event."""

from __future__ import annotations

import logging
import uuid

from replydesk.core.database import async_session_factory
from replydesk.services.orchestrator import InboundMessage, MessagePipeline

logger = logging.getLogger(__name__)


async def process_chatwoot_message(
    ctx: dict,
    tenant_id: str,
    conversation_id: str,
    message_id: str,
    content: str,
    inbox_id: int | None = None,
) -> dict:
    """ARQ task: process one inbound chat message.

    Business outcomes are returned, never raised; only infrastructure errors
    escape and are retried by the queue.
    """
    message = InboundMessage(
        tenant_id=uuid.UUID(tenant_id),
        conversation_id=str(conversation_id),
        message_id=str(message_id),
        content=content,
        inbox_id=inbox_id,
    )
    async with async_session_factory() as session:
        result = await MessagePipeline(session).process(message)

    logger.info(
        "Conversation %s message %s: %s",
        conversation_id, message_id, result.outcome.value,
    )
    return {"outcome": result.outcome.value, "reason": str(result.reason)}
