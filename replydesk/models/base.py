"""Shared base fields for all tables."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, as stored in every table."""
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True))
