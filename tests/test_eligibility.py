"""Tests for the eligibility gate."""

import json
import uuid
from datetime import datetime, time, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from replydesk.core.cache import MemoryCache
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.models.tenant import Tenant
from replydesk.models.tenant_settings import TenantSettings
from replydesk.services.eligibility import (
    ConversationMessage,
    EligibilityReason,
    TenantContext,
    check_message_eligibility,
    check_tenant_eligibility,
    count_words,
    is_human_handled,
    load_tenant_context,
    within_business_hours,
)

# Monday
MONDAY = datetime(2025, 1, 6, tzinfo=timezone.utc)
QUESTION = "What is your refund policy for damaged items?"


def _hours(start=time(9, 0), end=time(17, 0), tz="America/New_York", days="[1, 2, 3, 4, 5]"):
    return TenantSettings(
        tenant_id=uuid.uuid4(),
        business_hours_enabled=True,
        timezone=tz,
        business_start_time=start,
        business_end_time=end,
        business_days=days,
    )


def _limiter(limit: int = 3) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(MemoryCache(), "ai_replies", limit, window_seconds=3600)


def _agent(minutes_ago: int, now: datetime = MONDAY, **overrides) -> ConversationMessage:
    fields = {
        "message_type": "outgoing",
        "private": False,
        "sender_type": "user",
        "created_at": now - timedelta(minutes=minutes_ago),
    }
    fields.update(overrides)
    return ConversationMessage(**fields)


async def _check(message=QUESTION, settings_row=None, limiter=None, history=None, now=MONDAY):
    loader = AsyncMock(return_value=[] if history is None else history)
    result = await check_message_eligibility(
        message, "conv-1", settings_row, limiter or _limiter(), loader, now=now,
    )
    return result, loader


# ── Tenant phase ─────────────────────────────────────────────

def _ctx(*, active=True, ai=True, settings_connected=True, inbox_connected=True, inbox=True):
    tenant = Tenant(name="Acme", slug="acme", is_active=active, ai_enabled=ai)
    settings_row = TenantSettings(tenant_id=tenant.id, chatwoot_connected=settings_connected)
    cw = ChatwootInbox(
        tenant_id=tenant.id, inbox_id=1, account_id=1, base_url="https://chat.example.com",
        is_connected=inbox_connected,
    ) if inbox else None
    return TenantContext(tenant=tenant, settings=settings_row, inbox=cw)


@pytest.mark.parametrize(
    "ctx,reason",
    [
        (None, EligibilityReason.TENANT_NOT_FOUND),
        (_ctx(active=False), EligibilityReason.TENANT_INACTIVE),
        (_ctx(settings_connected=False), EligibilityReason.CHATWOOT_NOT_CONNECTED),
        (_ctx(inbox_connected=False), EligibilityReason.CHATWOOT_NOT_CONNECTED),
        (_ctx(inbox=False), EligibilityReason.CHATWOOT_NOT_CONNECTED),
        (_ctx(ai=False), EligibilityReason.AI_DISABLED),
        (_ctx(), EligibilityReason.ELIGIBLE),
    ],
)
def test_tenant_phase(ctx, reason):
    result = check_tenant_eligibility(ctx)
    assert result.reason is reason
    assert result.eligible is (reason is EligibilityReason.ELIGIBLE)


def test_tenant_phase_checks_connection_before_ai():
    result = check_tenant_eligibility(_ctx(ai=False, settings_connected=False))
    assert result.reason is EligibilityReason.CHATWOOT_NOT_CONNECTED


@pytest.mark.asyncio
async def test_load_tenant_context(make_tenant, session):
    t = await make_tenant()

    ctx = await load_tenant_context(session, t.tenant_id, t.inbox_id)

    assert ctx.tenant.id == t.tenant_id
    assert ctx.settings.chatwoot_connected
    assert ctx.inbox.inbox_id == t.inbox_id
    assert await load_tenant_context(session, uuid.uuid4()) is None


# ── Business hours ───────────────────────────────────────────

def test_business_hours_disabled_is_always_open():
    assert within_business_hours(None, MONDAY)
    assert within_business_hours(TenantSettings(tenant_id=uuid.uuid4()), MONDAY.replace(hour=3))


@pytest.mark.parametrize(
    "utc_time,expected",
    [
        (datetime(2025, 1, 6, 14, 0, tzinfo=timezone.utc), True),    # Mon 09:00 New York
        (datetime(2025, 1, 6, 13, 59, tzinfo=timezone.utc), False),  # Mon 08:59
        (datetime(2025, 1, 6, 21, 59, tzinfo=timezone.utc), True),   # Mon 16:59
        (datetime(2025, 1, 6, 22, 0, tzinfo=timezone.utc), False),   # Mon 17:00, end is exclusive
        (datetime(2025, 1, 11, 15, 0, tzinfo=timezone.utc), False),  # Saturday
    ],
)
def test_business_hours_in_tenant_timezone(utc_time, expected):
    assert within_business_hours(_hours(), utc_time) is expected


@pytest.mark.parametrize(
    "utc_time,expected",
    [
        (datetime(2025, 1, 10, 23, 0, tzinfo=timezone.utc), True),   # Fri night
        (datetime(2025, 1, 11, 3, 0, tzinfo=timezone.utc), True),    # Sat early, window began Friday
        (datetime(2025, 1, 6, 3, 0, tzinfo=timezone.utc), False),    # Mon early, window began Sunday
        (datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc), False),   # Mon midday
    ],
)
def test_business_hours_overnight_window(utc_time, expected):
    settings_row = _hours(start=time(22, 0), end=time(6, 0), tz="UTC")
    assert within_business_hours(settings_row, utc_time) is expected


def test_unknown_timezone_is_closed():
    assert not within_business_hours(_hours(tz="Mars/Olympus_Mons"), MONDAY.replace(hour=15))


# ── Message phase ────────────────────────────────────────────

def test_count_words():
    assert count_words("  hello   there  ") == 2
    assert count_words("") == 0


@pytest.mark.asyncio
async def test_eligible_message():
    result, loader = await _check()
    assert result.eligible
    loader.assert_awaited_once()


@pytest.mark.asyncio
async def test_outside_business_hours():
    result, loader = await _check(settings_row=_hours(), now=datetime(2025, 1, 11, 15, 0, tzinfo=timezone.utc))
    assert result.reason is EligibilityReason.OUTSIDE_BUSINESS_HOURS
    loader.assert_not_awaited()


@pytest.mark.asyncio
async def test_short_message_skips_history():
    result, loader = await _check(message="hi there")
    assert result.reason is EligibilityReason.MESSAGE_TOO_SHORT
    loader.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [
        "My lawyer will contact you about this",
        "This looks like FRAUD to me honestly",
        "I am thinking about a chargeback today",
    ],
)
async def test_blocked_keywords(message):
    result, _ = await _check(message=message)
    assert result.reason is EligibilityReason.BLOCKED_KEYWORD


@pytest.mark.asyncio
async def test_tenant_blocked_keywords():
    settings_row = TenantSettings(tenant_id=uuid.uuid4(), blocked_keywords=json.dumps(["competitor"]))
    result, _ = await _check(message="Is the competitor product any better?", settings_row=settings_row)
    assert result.reason is EligibilityReason.BLOCKED_KEYWORD


@pytest.mark.asyncio
async def test_human_requested():
    result, _ = await _check(message="Can I please talk to a human")
    assert result.reason is EligibilityReason.HUMAN_REQUESTED


@pytest.mark.asyncio
async def test_keywords_match_whole_words_only():
    result, _ = await _check(message="Is your packaging humane to animals?")
    assert result.eligible


@pytest.mark.asyncio
async def test_reply_limit_reached():
    limiter = _limiter(limit=3)
    for _ in range(3):
        await limiter.hit("conv-1")

    result, loader = await _check(limiter=limiter)

    assert result.reason is EligibilityReason.REPLY_LIMIT_REACHED
    loader.assert_not_awaited()


@pytest.mark.asyncio
async def test_reply_limit_is_per_conversation():
    limiter = _limiter(limit=1)
    await limiter.hit("conv-other")
    result, _ = await _check(limiter=limiter)
    assert result.eligible


@pytest.mark.asyncio
async def test_history_unavailable_is_ineligible():
    loader = AsyncMock(return_value=None)
    result = await check_message_eligibility(QUESTION, "conv-1", None, _limiter(), loader, now=MONDAY)
    assert result.reason is EligibilityReason.HISTORY_UNAVAILABLE


@pytest.mark.asyncio
async def test_recent_agent_reply_blocks():
    result, _ = await _check(history=[_agent(minutes_ago=10)])
    assert result.reason is EligibilityReason.HUMAN_HANDLED


def test_human_handled_rules():
    old = _agent(minutes_ago=120)
    assert not is_human_handled([old], MONDAY, 30)
    assert is_human_handled([old, _agent(minutes_ago=300)], MONDAY, 30)
    assert is_human_handled([_agent(minutes_ago=29)], MONDAY, 30)

    # Private notes and bot messages are not agent activity
    note = _agent(minutes_ago=1, private=True)
    bot = _agent(minutes_ago=1, sender_type="agent_bot")
    incoming = _agent(minutes_ago=1, message_type="incoming", sender_type="contact")
    assert not is_human_handled([note, bot, incoming], MONDAY, 30)
