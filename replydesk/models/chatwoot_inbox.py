"""ChatwootInbox model — a tenant's connected chat-platform inbox."""

import uuid

from sqlmodel import Field, SQLModel

from replydesk.models.base import TimestampMixin, new_uuid


class ChatwootInbox(TimestampMixin, SQLModel, table=True):
    __tablename__ = "chatwoot_inboxes"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)

    # Identifiers on the chat platform
    inbox_id: int = Field(nullable=False, unique=True, index=True)
    account_id: int = Field(nullable=False)
    base_url: str = Field(max_length=2048)

    # Fernet-encrypted API access token
    encrypted_api_token: str = Field(default="")

    name: str = Field(default="", max_length=255)
    is_connected: bool = Field(default=True)
