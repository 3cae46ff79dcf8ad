"""Eligibility gate — decides whether an automated reply may be attempted.

Runs before any paid API call. Two phases, each stopping at the first
failing check:

1. Tenant: exists, chat platform connected, AI enabled.
2. Message: business hours, minimum word count, blocked / handoff keywords,
   per-conversation reply limit, recent human agent activity.

Conversation history is only fetched for the last check, and a history that
cannot be loaded counts as ineligible.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from replydesk.core.config import get_settings
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.models.tenant import Tenant
from replydesk.models.tenant_settings import TenantSettings

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_KEYWORDS = [
    "lawsuit",
    "lawyer",
    "attorney",
    "legal action",
    "chargeback",
    "fraud",
    "scam",
    "harassment",
    "threat",
    "suicide",
    "self harm",
]

# Explicit requests for a person
HANDOFF_KEYWORDS = [
    "human",
    "real person",
    "live person",
    "representative",
    "speak to an agent",
    "talk to an agent",
    "operator",
]


class EligibilityReason(StrEnum):
    ELIGIBLE = "eligible"
    TENANT_NOT_FOUND = "tenant_not_found"
    TENANT_INACTIVE = "tenant_inactive"
    CHATWOOT_NOT_CONNECTED = "chatwoot_not_connected"
    AI_DISABLED = "ai_disabled"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    MESSAGE_TOO_SHORT = "message_too_short"
    BLOCKED_KEYWORD = "blocked_keyword"
    HUMAN_REQUESTED = "human_requested"
    REPLY_LIMIT_REACHED = "reply_limit_reached"
    HUMAN_HANDLED = "human_handled"
    HISTORY_UNAVAILABLE = "history_unavailable"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: EligibilityReason

    @classmethod
    def allow(cls) -> EligibilityResult:
        return cls(True, EligibilityReason.ELIGIBLE)

    @classmethod
    def deny(cls, reason: EligibilityReason) -> EligibilityResult:
        return cls(False, reason)


@dataclass
class TenantContext:
    """Everything the gate and the pipeline need to know about a tenant."""
    tenant: Tenant
    settings: TenantSettings | None
    inbox: ChatwootInbox | None


@dataclass
class ConversationMessage:
    """A message from the conversation history on the chat platform."""
    message_type: str  # incoming | outgoing | activity | template
    private: bool
    sender_type: str
    created_at: datetime  # timezone-aware UTC

    @property
    def is_agent_message(self) -> bool:
        """Public outgoing message written by a human agent."""
        return (
            self.message_type == "outgoing"
            and not self.private
            and self.sender_type.lower() == "user"
        )


HistoryLoader = Callable[[], Awaitable[list[ConversationMessage] | None]]


# ── Tenant phase ─────────────────────────────────────────────

async def load_tenant_context(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    inbox_id: int | None = None,
) -> TenantContext | None:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        return None

    result = await session.execute(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id))
    settings_row = result.scalar_one_or_none()

    stmt = select(ChatwootInbox).where(ChatwootInbox.tenant_id == tenant_id)
    if inbox_id is not None:
        stmt = stmt.where(ChatwootInbox.inbox_id == inbox_id)
    result = await session.execute(stmt.order_by(ChatwootInbox.created_at))
    inbox = result.scalars().first()

    return TenantContext(tenant=tenant, settings=settings_row, inbox=inbox)


def check_tenant_eligibility(ctx: TenantContext | None) -> EligibilityResult:
    if ctx is None:
        return EligibilityResult.deny(EligibilityReason.TENANT_NOT_FOUND)
    if not ctx.tenant.is_active:
        return EligibilityResult.deny(EligibilityReason.TENANT_INACTIVE)
    connected = (
        ctx.settings is not None
        and ctx.settings.chatwoot_connected
        and ctx.inbox is not None
        and ctx.inbox.is_connected
    )
    if not connected:
        return EligibilityResult.deny(EligibilityReason.CHATWOOT_NOT_CONNECTED)
    if not ctx.tenant.ai_enabled:
        return EligibilityResult.deny(EligibilityReason.AI_DISABLED)
    return EligibilityResult.allow()


# ── Message phase ────────────────────────────────────────────

def within_business_hours(settings_row: TenantSettings | None, now: datetime) -> bool:
    """True when ``now`` falls inside the tenant's business hours.

    Disabled or missing settings mean always open. Windows whose end is
    before their start run overnight and belong to the day they start on.
    """
    if settings_row is None or not settings_row.business_hours_enabled:
        return True

    try:
        tz = ZoneInfo(settings_row.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for tenant %s", settings_row.timezone, settings_row.tenant_id)
        return False

    local = now.astimezone(tz)
    current = local.time().replace(tzinfo=None)
    start, end = settings_row.business_start_time, settings_row.business_end_time
    days = settings_row.business_day_numbers()

    if start <= end:
        return local.isoweekday() in days and start <= current < end

    if current >= start:
        return local.isoweekday() in days
    if current < end:
        previous_day = (local - timedelta(days=1)).isoweekday()
        return previous_day in days
    return False


def count_words(message: str) -> int:
    return len(message.split())


def _matches_any(message: str, keywords: list[str]) -> str | None:
    for keyword in keywords:
        keyword = keyword.strip()
        if keyword and re.search(rf"\b{re.escape(keyword)}\b", message, re.IGNORECASE):
            return keyword
    return None


def is_human_handled(history: list[ConversationMessage], now: datetime, window_minutes: int) -> bool:
    agent_messages = [m for m in history if m.is_agent_message]
    if len(agent_messages) > 1:
        return True
    cutoff = now - timedelta(minutes=window_minutes)
    return any(m.created_at >= cutoff for m in agent_messages)


async def check_message_eligibility(
    message: str,
    conversation_id: str,
    settings_row: TenantSettings | None,
    reply_limiter: FixedWindowRateLimiter,
    load_history: HistoryLoader,
    now: datetime | None = None,
) -> EligibilityResult:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    if not within_business_hours(settings_row, now):
        return EligibilityResult.deny(EligibilityReason.OUTSIDE_BUSINESS_HOURS)

    if count_words(message) < settings.min_message_words:
        return EligibilityResult.deny(EligibilityReason.MESSAGE_TOO_SHORT)

    blocked = DEFAULT_BLOCKED_KEYWORDS + (settings_row.extra_blocked_keywords() if settings_row else [])
    keyword = _matches_any(message, blocked)
    if keyword:
        logger.info("Conversation %s: blocked keyword %r", conversation_id, keyword)
        return EligibilityResult.deny(EligibilityReason.BLOCKED_KEYWORD)
    if _matches_any(message, HANDOFF_KEYWORDS):
        return EligibilityResult.deny(EligibilityReason.HUMAN_REQUESTED)

    if not await reply_limiter.allows(conversation_id):
        return EligibilityResult.deny(EligibilityReason.REPLY_LIMIT_REACHED)

    history = await load_history()
    if history is None:
        return EligibilityResult.deny(EligibilityReason.HISTORY_UNAVAILABLE)
    if is_human_handled(history, now, settings.human_handoff_window_minutes):
        return EligibilityResult.deny(EligibilityReason.HUMAN_HANDLED)

    return EligibilityResult.allow()
