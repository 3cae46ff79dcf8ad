"""Message orchestrator — the inbound-message-to-reply pipeline.

Flow:
  1. Skip events already processed (idempotency marker)
  2. Tenant gate: exists, chat platform connected, AI enabled
  3. Message gate: business hours, length, keywords, reply limit, human activity
  4. Retrieve the tenant's knowledge for the message
  5. Build the prompt and generate a reply
  6. Assess the reply and route it: send, send with a review note, or hand off
  7. Mark the event processed and log usage

Business outcomes never raise: every exit after the dedup check writes one
usage entry and returns a PipelineOutcome. Infrastructure exceptions (database,
cache) propagate so the task queue can retry the job.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from replydesk.core.cache import Cache, get_cache
from replydesk.core.config import get_settings
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.models.usage_log import UsageDecision
from replydesk.services.chatwoot import HUMAN_TAKEOVER_LABEL, ChatwootClient, ChatwootCredentialsError
from replydesk.services.completion import Completion, CompletionClient
from replydesk.services.eligibility import (
    ConversationMessage,
    TenantContext,
    check_message_eligibility,
    check_tenant_eligibility,
    load_tenant_context,
)
from replydesk.services.embedding import EmbeddingClient
from replydesk.services.idempotency import IdempotencyStore
from replydesk.services.prompt_builder import FALLBACK_RESPONSE, build_prompt
from replydesk.services.response_quality import ResponseAssessment, assess_response
from replydesk.services.retrieval import retrieve_knowledge
from replydesk.services.usage import log_usage

logger = logging.getLogger(__name__)

# Window for the per-conversation automated reply limit
REPLY_LIMIT_WINDOW_SECONDS = 3600


@dataclass
class InboundMessage:
    """An incoming customer message from the chat platform."""
    tenant_id: uuid.UUID
    conversation_id: str
    message_id: str
    content: str
    inbox_id: int | None = None


class Outcome(StrEnum):
    DUPLICATE = "duplicate"
    INELIGIBLE = "ineligible"
    NO_KNOWLEDGE = "no_knowledge"
    AI_FAILED = "ai_failed"
    REPLIED = "replied"
    HANDED_OFF = "handed_off"


@dataclass
class PipelineOutcome:
    outcome: Outcome
    reason: str = ""
    reply: str | None = None
    confidence: float | None = None
    tokens_used: int = 0


ChatwootFactory = Callable[[ChatwootInbox], ChatwootClient]


class MessagePipeline:
    """Runs one inbound message through the reply pipeline.

    Collaborators are injected so tests can replace providers and the chat
    platform; defaults come from settings.
    """

    def __init__(
        self,
        session: AsyncSession,
        embedder: EmbeddingClient | None = None,
        completer: CompletionClient | None = None,
        cache: Cache | None = None,
        chatwoot_factory: ChatwootFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.embedder = embedder or EmbeddingClient()
        self.completer = completer or CompletionClient()
        cache = cache or get_cache()
        self.idempotency = IdempotencyStore(cache)
        self.reply_limiter = FixedWindowRateLimiter(
            cache, "ai_replies", settings.max_ai_replies_per_hour,
            window_seconds=REPLY_LIMIT_WINDOW_SECONDS,
        )
        self.chatwoot_factory = chatwoot_factory or ChatwootClient.from_inbox
        self._clock = clock

    async def process(self, message: InboundMessage) -> PipelineOutcome:
        conversation_id = message.conversation_id

        if await self.idempotency.is_processed(conversation_id, message.message_id):
            logger.info(
                "Message %s in conversation %s already processed; skipping",
                message.message_id, conversation_id,
            )
            return PipelineOutcome(Outcome.DUPLICATE)

        # ── Tenant gate ──
        ctx = await load_tenant_context(self.session, message.tenant_id, message.inbox_id)
        verdict = check_tenant_eligibility(ctx)
        if not verdict.eligible:
            return await self._finish(ctx, message, Outcome.INELIGIBLE, UsageDecision.INELIGIBLE, verdict.reason)

        try:
            chatwoot = self.chatwoot_factory(ctx.inbox)
        except ChatwootCredentialsError:
            logger.exception("Chatwoot credentials unusable for tenant %s", message.tenant_id)
            return await self._finish(
                ctx, message, Outcome.INELIGIBLE, UsageDecision.INELIGIBLE, "chatwoot_credentials_invalid",
            )

        async def load_history() -> list[ConversationMessage] | None:
            result = await chatwoot.list_messages(conversation_id)
            return result.value if result.ok else None

        # ── Message gate ──
        verdict = await check_message_eligibility(
            message.content,
            conversation_id,
            ctx.settings,
            self.reply_limiter,
            load_history,
            now=self._clock() if self._clock else None,
        )
        if not verdict.eligible:
            return await self._finish(ctx, message, Outcome.INELIGIBLE, UsageDecision.INELIGIBLE, verdict.reason)

        # ── Retrieval ──
        knowledge = await retrieve_knowledge(message.tenant_id, message.content, self.embedder)
        if not knowledge:
            return await self._finish(
                ctx, message, Outcome.NO_KNOWLEDGE, UsageDecision.NO_KNOWLEDGE, "no_relevant_knowledge",
            )

        # ── Generation ──
        generated = await self.completer.complete(build_prompt(message.content, knowledge))
        if not generated.ok:
            return await self._finish(
                ctx, message, Outcome.AI_FAILED, UsageDecision.AI_FAILED, generated.failure.value,
            )
        completion = generated.value
        assessment = assess_response(completion.content)
        logger.info(
            "Conversation %s: reply confidence=%.2f sensitive=%s fallback=%s",
            conversation_id, assessment.confidence, assessment.sensitive, assessment.is_fallback,
        )

        # ── Delivery ──
        if self._should_hand_off(ctx, assessment):
            return await self._hand_off(ctx, message, chatwoot, completion, assessment)
        return await self._reply(ctx, message, chatwoot, completion, assessment)

    def _should_hand_off(self, ctx: TenantContext, assessment: ResponseAssessment) -> bool:
        tenant = ctx.tenant
        if not tenant.human_override_enabled:
            return False
        return (
            assessment.is_fallback
            or assessment.sensitive
            or assessment.confidence < tenant.auto_escalate_threshold
        )

    async def _reply(
        self,
        ctx: TenantContext,
        message: InboundMessage,
        chatwoot: ChatwootClient,
        completion: Completion,
        assessment: ResponseAssessment,
    ) -> PipelineOutcome:
        sent = await chatwoot.send_message(message.conversation_id, completion.content)
        if not sent.ok:
            return await self._send_failed(ctx, message, completion, sent.failure.value)

        reason = "answered"
        if assessment.confidence < ctx.tenant.confidence_threshold:
            reason = "answered_low_confidence"
            await chatwoot.send_message(
                message.conversation_id,
                f"Automated reply sent with low confidence ({assessment.confidence:.2f}). Please review.",
                private=True,
            )

        await self._record_send(message)
        await self._finish(ctx, message, Outcome.REPLIED, UsageDecision.AI, reason, completion, mark=False)
        return PipelineOutcome(
            Outcome.REPLIED,
            reason=reason,
            reply=completion.content,
            confidence=assessment.confidence,
            tokens_used=completion.total_tokens,
        )

    async def _hand_off(
        self,
        ctx: TenantContext,
        message: InboundMessage,
        chatwoot: ChatwootClient,
        completion: Completion,
        assessment: ResponseAssessment,
    ) -> PipelineOutcome:
        if assessment.is_fallback:
            reason = "fallback_response"
        elif assessment.sensitive:
            reason = "sensitive_content"
        else:
            reason = "low_confidence"

        sent = await chatwoot.send_message(message.conversation_id, FALLBACK_RESPONSE)
        if not sent.ok:
            return await self._send_failed(ctx, message, completion, sent.failure.value)

        # Notes and labels help the agent but do not change the outcome
        note = await chatwoot.send_message(
            message.conversation_id,
            f"Handed off to a human ({reason}, confidence {assessment.confidence:.2f}). "
            f"Draft reply:\n\n{completion.content}",
            private=True,
        )
        if not note.ok:
            logger.warning("Could not add handoff note to conversation %s", message.conversation_id)
        labelled = await chatwoot.add_labels(message.conversation_id, [HUMAN_TAKEOVER_LABEL])
        if not labelled.ok:
            logger.warning("Could not label conversation %s for takeover", message.conversation_id)

        await self._record_send(message)
        await self._finish(ctx, message, Outcome.HANDED_OFF, UsageDecision.HUMAN, reason, completion, mark=False)
        return PipelineOutcome(
            Outcome.HANDED_OFF,
            reason=reason,
            reply=FALLBACK_RESPONSE,
            confidence=assessment.confidence,
            tokens_used=completion.total_tokens,
        )

    async def _record_send(self, message: InboundMessage) -> None:
        """Only called once the platform confirmed the reply."""
        await self.reply_limiter.hit(message.conversation_id)
        await self.idempotency.mark_processed(message.conversation_id, message.message_id)

    async def _send_failed(
        self, ctx: TenantContext, message: InboundMessage, completion: Completion, failure: str
    ) -> PipelineOutcome:
        # Left unmarked so a redelivered event can try again
        logger.error("Reply to conversation %s was not delivered (%s)", message.conversation_id, failure)
        return await self._finish(
            ctx, message, Outcome.AI_FAILED, UsageDecision.AI_FAILED,
            f"send_failed:{failure}", completion, mark=False,
        )

    async def _finish(
        self,
        ctx: TenantContext | None,
        message: InboundMessage,
        outcome: Outcome,
        decision: UsageDecision,
        reason: str,
        completion: Completion | None = None,
        mark: bool = True,
    ) -> PipelineOutcome:
        if mark:
            await self.idempotency.mark_processed(message.conversation_id, message.message_id)

        if ctx is None:
            logger.warning(
                "Tenant %s not found; usage for conversation %s not recorded",
                message.tenant_id, message.conversation_id,
            )
        else:
            await log_usage(
                self.session, message.tenant_id, message.conversation_id, decision, reason, completion,
            )

        if outcome is not Outcome.REPLIED and outcome is not Outcome.HANDED_OFF:
            logger.info("Conversation %s: %s (%s)", message.conversation_id, outcome.value, reason)
        return PipelineOutcome(
            outcome,
            reason=reason,
            tokens_used=completion.total_tokens if completion else 0,
        )
