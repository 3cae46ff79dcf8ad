"""Document model — a tenant-owned text blob that is chunked for retrieval."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Text
from sqlmodel import Column, Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid


class DocumentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class Document(TimestampMixin, SQLModel, table=True):
    __tablename__ = "documents"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    title: str = Field(default="", max_length=500)
    # Immutable after creation; reprocessing only regenerates chunks
    content: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))

    status: DocumentStatus = Field(default=DocumentStatus.PENDING, max_length=20)
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    chunk_count: int = Field(default=0)
    last_processed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

