"""Usage logging — one append-only entry per processed message, plus summaries."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import case, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from replydesk.core.pricing import calc_cost
from replydesk.models.usage_log import UsageDecision, UsageLog
from replydesk.services.completion import Completion

logger = logging.getLogger(__name__)


async def log_usage(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    conversation_id: str,
    decision: UsageDecision,
    reason: str = "",
    completion: Completion | None = None,
) -> UsageLog:
    """Append a usage entry and commit it."""
    entry = UsageLog(
        tenant_id=tenant_id,
        conversation_id=str(conversation_id),
        decision=decision,
        reason=reason[:255],
    )
    if completion is not None:
        entry.model = completion.model
        entry.tokens_used = completion.total_tokens
        if completion.estimated:
            entry.cost = calc_cost(completion.model, completion.total_tokens, 0)
        else:
            entry.cost = calc_cost(completion.model, completion.prompt_tokens, completion.completion_tokens)

    session.add(entry)
    await session.commit()
    logger.info(
        "Usage: tenant=%s conversation=%s decision=%s reason=%s tokens=%d",
        tenant_id, conversation_id, decision.value, reason, entry.tokens_used,
    )
    return entry


async def tenant_usage_summary(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    since: datetime | None = None,
) -> dict:
    """Token, cost and decision totals for one tenant."""

    def decision_count(decision: UsageDecision):
        return func.coalesce(func.sum(case((UsageLog.decision == decision, 1), else_=0)), 0)

    stmt = select(
        func.coalesce(func.sum(UsageLog.tokens_used), 0),
        func.coalesce(func.sum(UsageLog.cost), 0.0),
        func.count(UsageLog.id),
        func.count(func.distinct(UsageLog.conversation_id)),
        decision_count(UsageDecision.AI),
        decision_count(UsageDecision.HUMAN),
        decision_count(UsageDecision.INELIGIBLE),
        decision_count(UsageDecision.NO_KNOWLEDGE),
        decision_count(UsageDecision.AI_FAILED),
    ).where(UsageLog.tenant_id == tenant_id)
    if since is not None:
        stmt = stmt.where(UsageLog.created_at >= since)

    row = (await session.execute(stmt)).one()
    return {
        "total_tokens": int(row[0]),
        "total_cost": round(float(row[1]), 6),
        "total_entries": row[2],
        "conversations": row[3],
        "ai_responses": int(row[4]),
        "human_transfers": int(row[5]),
        "ineligible": int(row[6]),
        "no_knowledge": int(row[7]),
        "ai_failed": int(row[8]),
    }
