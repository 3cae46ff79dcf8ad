"""Tenant model — top-level isolation boundary and AI behaviour thresholds."""

import uuid

from sqlmodel import Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_AUTO_ESCALATE_THRESHOLD = 0.4


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    is_active: bool = Field(default=True)

    # AI reply behaviour. Invariant: auto_escalate_threshold < confidence_threshold
    ai_enabled: bool = Field(default=False)
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    auto_escalate_threshold: float = Field(default=DEFAULT_AUTO_ESCALATE_THRESHOLD, ge=0.0, le=1.0)
    human_override_enabled: bool = Field(default=True)


# ── Pydantic schemas ─────────────────────────────────────────

class TenantAIConfig(SQLModel):
    ai_enabled: bool
    confidence_threshold: float
    auto_escalate_threshold: float
    human_override_enabled: bool


class TenantAIConfigUpdate(SQLModel):
    """Partial update; omitted fields keep their current value."""
    ai_enabled: bool | None = None
    confidence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    auto_escalate_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    human_override_enabled: bool | None = None
