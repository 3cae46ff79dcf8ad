"""Chunk model — an indexed text segment stored in both SQL and Qdrant."""

import uuid

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid


class Chunk(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index"),)

    # Same id as the Qdrant point holding this chunk's vector
    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    document_id: uuid.UUID = Field(foreign_key="documents.id", nullable=False, index=True)

    # Position within the document, contiguous from 0
    chunk_index: int = Field(nullable=False)

    content: str = Field(sa_column=Column(Text, nullable=False))
    char_count: int = Field(default=0)

