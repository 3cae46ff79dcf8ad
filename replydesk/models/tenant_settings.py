"""TenantSettings model — chat-platform connection, onboarding and business hours."""

import json
import uuid
from datetime import time
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid


class OnboardingStep(StrEnum):
    CHATWOOT_SETUP = "chatwoot_setup"
    KNOWLEDGE_BASE = "knowledge_base"
    AI_CONFIG = "ai_config"


class TenantSettings(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenant_settings"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, unique=True, index=True)

    chatwoot_connected: bool = Field(default=False)
    ai_configured: bool = Field(default=False)

    # JSON array of completed OnboardingStep values
    onboarding_steps: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    onboarding_completed: bool = Field(default=False)

    # Business hours; when disabled every moment counts as open
    business_hours_enabled: bool = Field(default=False)
    timezone: str = Field(default="UTC", max_length=64)
    business_start_time: time = Field(default=time(9, 0))
    business_end_time: time = Field(default=time(17, 0))
    # JSON array of ISO weekdays (1 = Monday … 7 = Sunday)
    business_days: str = Field(default="[1, 2, 3, 4, 5]", max_length=64)

    # JSON array of extra keywords that block automated replies
    blocked_keywords: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))

    def completed_steps(self) -> set[OnboardingStep]:
        return {OnboardingStep(s) for s in json.loads(self.onboarding_steps or "[]")}

    def business_day_numbers(self) -> set[int]:
        return {int(d) for d in json.loads(self.business_days or "[]")}

    def extra_blocked_keywords(self) -> list[str]:
        return [str(k) for k in json.loads(self.blocked_keywords or "[]")]
