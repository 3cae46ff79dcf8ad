"""Import all models so SQLModel.metadata picks them up."""

from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.models.chunk import Chunk
from replydesk.models.document import Document, DocumentStatus
from replydesk.models.tenant import Tenant, TenantAIConfig, TenantAIConfigUpdate
from replydesk.models.tenant_settings import OnboardingStep, TenantSettings
from replydesk.models.usage_log import UsageDecision, UsageLog

__all__ = [
    "ChatwootInbox",
    "Chunk",
    "Document",
    "DocumentStatus",
    "OnboardingStep",
    "Tenant",
    "TenantAIConfig",
    "TenantAIConfigUpdate",
    "TenantSettings",
    "UsageDecision",
    "UsageLog",
]
