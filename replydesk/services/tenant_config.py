"""Tenant AI configuration — thresholds, AI enablement and onboarding progress."""

from __future__ import annotations

import json
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from replydesk.core.security import encrypt_value
from replydesk.models.base import utcnow
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.models.tenant import (
    DEFAULT_AUTO_ESCALATE_THRESHOLD,
    DEFAULT_CONFIDENCE_THRESHOLD,
    Tenant,
    TenantAIConfig,
    TenantAIConfigUpdate,
)
from replydesk.models.tenant_settings import OnboardingStep, TenantSettings
from replydesk.services.chatwoot import ChatwootClient

logger = logging.getLogger(__name__)


class TenantNotFoundError(LookupError):
    pass


class ThresholdRangeError(ValueError):
    """A threshold falls outside 0..1."""


class ThresholdOrderError(ValueError):
    """auto_escalate_threshold must stay below confidence_threshold."""


class AIEnablementError(ValueError):
    """AI cannot be enabled until its prerequisites are met."""


class ChatwootConnectionError(ValueError):
    """The supplied Chatwoot credentials could not be verified."""


async def _get_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(f"Tenant {tenant_id} not found")
    return tenant


async def get_or_create_settings(session: AsyncSession, tenant_id: uuid.UUID) -> TenantSettings:
    result = await session.execute(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id))
    settings_row = result.scalar_one_or_none()
    if settings_row is None:
        settings_row = TenantSettings(tenant_id=tenant_id)
        session.add(settings_row)
        await session.flush()
    return settings_row


def _config_of(tenant: Tenant) -> TenantAIConfig:
    return TenantAIConfig(
        ai_enabled=tenant.ai_enabled,
        confidence_threshold=tenant.confidence_threshold,
        auto_escalate_threshold=tenant.auto_escalate_threshold,
        human_override_enabled=tenant.human_override_enabled,
    )


async def get_ai_config(session: AsyncSession, tenant_id: uuid.UUID) -> TenantAIConfig:
    return _config_of(await _get_tenant(session, tenant_id))


async def update_ai_config(
    session: AsyncSession, tenant_id: uuid.UUID, update: TenantAIConfigUpdate
) -> TenantAIConfig:
    """Apply a partial threshold update.

    The ordering rule is checked against the merged values, so updating one
    threshold alone cannot cross the other.

    Raises:
        ThresholdRangeError: If a value is outside 0..1.
        ThresholdOrderError: If the thresholds cross.
    """
    tenant = await _get_tenant(session, tenant_id)
    changes = update.model_dump(exclude_unset=True, exclude_none=True)

    for name in ("confidence_threshold", "auto_escalate_threshold"):
        if name in changes and not 0.0 <= changes[name] <= 1.0:
            raise ThresholdRangeError(f"{name} must be between 0 and 1")

    confidence = changes.get("confidence_threshold", tenant.confidence_threshold)
    escalate = changes.get("auto_escalate_threshold", tenant.auto_escalate_threshold)
    if escalate >= confidence:
        raise ThresholdOrderError("auto_escalate_threshold must be less than confidence_threshold")

    if changes.get("ai_enabled") and not tenant.ai_enabled:
        await _require_connection(session, tenant_id)

    for key, value in changes.items():
        setattr(tenant, key, value)
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)

    logger.info("Updated AI config for tenant %s: %s", tenant_id, sorted(changes))
    return _config_of(tenant)


async def reset_ai_config(session: AsyncSession, tenant_id: uuid.UUID) -> TenantAIConfig:
    """Restore default thresholds and re-enable AI with human override."""
    tenant = await _get_tenant(session, tenant_id)
    tenant.ai_enabled = True
    tenant.confidence_threshold = DEFAULT_CONFIDENCE_THRESHOLD
    tenant.auto_escalate_threshold = DEFAULT_AUTO_ESCALATE_THRESHOLD
    tenant.human_override_enabled = True
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    logger.info("Reset AI config for tenant %s", tenant_id)
    return _config_of(tenant)


async def _require_connection(session: AsyncSession, tenant_id: uuid.UUID) -> TenantSettings:
    settings_row = await get_or_create_settings(session, tenant_id)
    if not settings_row.chatwoot_connected:
        raise AIEnablementError(
            "Cannot enable AI without connecting Chatwoot first. Please connect your Chatwoot account."
        )
    return settings_row


async def toggle_ai(session: AsyncSession, tenant_id: uuid.UUID, enabled: bool) -> TenantAIConfig:
    """Turn automated replies on or off.

    Raises:
        AIEnablementError: When enabling before the chat platform is connected.
    """
    tenant = await _get_tenant(session, tenant_id)
    if enabled:
        settings_row = await _require_connection(session, tenant_id)
        _add_step(settings_row, OnboardingStep.AI_CONFIG)
        settings_row.ai_configured = True
        settings_row.updated_at = utcnow()
        session.add(settings_row)

    tenant.ai_enabled = enabled
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)

    logger.info("AI %s for tenant %s", "enabled" if enabled else "disabled", tenant_id)
    return _config_of(tenant)


# ── Chatwoot connection ──────────────────────────────────────

async def connect_chatwoot(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    client: ChatwootClient,
    inbox_id: int,
    name: str = "",
) -> ChatwootInbox:
    """Verify Chatwoot credentials and store the inbox for a tenant.

    The token is checked against the account endpoint before anything is
    saved. A successful connection completes the Chatwoot onboarding step.

    Raises:
        ChatwootConnectionError: If verification fails or the inbox belongs
            to another tenant.
    """
    await _get_tenant(session, tenant_id)

    checked = await client.test_connection()
    if not checked.ok:
        logger.warning("Chatwoot connection test failed for tenant %s: %s", tenant_id, checked.failure)
        raise ChatwootConnectionError(
            "Invalid Chatwoot credentials. Please check your URL and access token."
        )
    if checked.value.get("id") != client.account_id:
        raise ChatwootConnectionError("Account ID does not match the provided access token.")

    result = await session.execute(select(ChatwootInbox).where(ChatwootInbox.inbox_id == inbox_id))
    inbox = result.scalar_one_or_none()
    if inbox is None:
        inbox = ChatwootInbox(tenant_id=tenant_id, inbox_id=inbox_id, account_id=client.account_id, base_url="")
    elif inbox.tenant_id != tenant_id:
        raise ChatwootConnectionError(f"Inbox {inbox_id} is already connected to another tenant.")

    inbox.account_id = client.account_id
    inbox.base_url = client.base_url
    inbox.encrypted_api_token = encrypt_value(client.api_token)
    inbox.name = name or str(checked.value.get("name") or "")
    inbox.is_connected = True
    inbox.updated_at = utcnow()
    session.add(inbox)

    settings_row = await get_or_create_settings(session, tenant_id)
    settings_row.chatwoot_connected = True
    _add_step(settings_row, OnboardingStep.CHATWOOT_SETUP)
    settings_row.updated_at = utcnow()
    session.add(settings_row)

    await session.commit()
    logger.info("Connected Chatwoot account %s inbox %s for tenant %s", client.account_id, inbox_id, tenant_id)
    return inbox


# ── Onboarding ───────────────────────────────────────────────

def _add_step(settings_row: TenantSettings, step: OnboardingStep) -> None:
    steps = settings_row.completed_steps() | {step}
    settings_row.onboarding_steps = json.dumps(sorted(s.value for s in steps))
    settings_row.onboarding_completed = steps >= set(OnboardingStep)


async def complete_onboarding_step(
    session: AsyncSession, tenant_id: uuid.UUID, step: OnboardingStep
) -> dict:
    await _get_tenant(session, tenant_id)
    settings_row = await get_or_create_settings(session, tenant_id)
    _add_step(settings_row, OnboardingStep(step))
    settings_row.updated_at = utcnow()
    session.add(settings_row)
    await session.commit()
    return _progress_of(settings_row)


async def onboarding_progress(session: AsyncSession, tenant_id: uuid.UUID) -> dict:
    await _get_tenant(session, tenant_id)
    settings_row = await get_or_create_settings(session, tenant_id)
    return _progress_of(settings_row)


def _progress_of(settings_row: TenantSettings) -> dict:
    done = settings_row.completed_steps()
    total = len(OnboardingStep)
    return {
        "steps": {step.value: step in done for step in OnboardingStep},
        "completed": len(done),
        "total": total,
        "percentage": round(len(done) / total * 100),
        "onboarding_completed": settings_row.onboarding_completed,
    }
