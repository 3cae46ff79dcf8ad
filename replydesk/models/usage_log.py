"""UsageLog model — one append-only entry per processed inbound message."""

import uuid
from enum import StrEnum

from sqlmodel import Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid


class UsageDecision(StrEnum):
    AI = "ai"
    HUMAN = "human"
    INELIGIBLE = "ineligible"
    NO_KNOWLEDGE = "no_knowledge"
    AI_FAILED = "ai_failed"


class UsageLog(TimestampMixin, SQLModel, table=True):
    __tablename__ = "usage_logs"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    conversation_id: str = Field(max_length=100, nullable=False, index=True)

    decision: UsageDecision = Field(max_length=20, nullable=False, index=True)
    reason: str = Field(default="", max_length=255)

    model: str = Field(default="", max_length=100)
    tokens_used: int = Field(default=0)
    cost: float = Field(default=0.0)

