"""Chatwoot API client — replies, private notes, history, labels."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import httpx
from cryptography.fernet import InvalidToken

from replydesk.core.config import get_settings
from replydesk.core.security import decrypt_value
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.services.eligibility import ConversationMessage
from replydesk.services.provider import FailureReason, ProviderResult, call_provider

logger = logging.getLogger(__name__)

HUMAN_TAKEOVER_LABEL = "human_takeover"

# The list endpoint reports message_type as an integer
_MESSAGE_TYPES = {0: "incoming", 1: "outgoing", 2: "activity", 3: "template"}


class ChatwootCredentialsError(ValueError):
    """The inbox's stored API token cannot be decrypted."""


def _parse_timestamp(value) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unrecognised timestamp: {value!r}")


def parse_history(payload: dict) -> list[ConversationMessage]:
    """Convert a ``GET …/messages`` response into ConversationMessage objects."""
    messages = []
    for item in payload.get("payload", []):
        message_type = item.get("message_type")
        if isinstance(message_type, int):
            message_type = _MESSAGE_TYPES.get(message_type, "unknown")
        sender = item.get("sender") or {}
        messages.append(
            ConversationMessage(
                message_type=str(message_type),
                private=bool(item.get("private")),
                sender_type=str(sender.get("type") or item.get("sender_type") or ""),
                created_at=_parse_timestamp(item.get("created_at")),
            )
        )
    return messages


class ChatwootClient:
    """Talks to one Chatwoot account with an inbox's API access token."""

    def __init__(
        self,
        base_url: str,
        account_id: int,
        api_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.api_token = api_token
        self._transport = transport
        self._sleep = sleep
        self._timeout = get_settings().chatwoot_timeout_seconds

    @classmethod
    def from_inbox(cls, inbox: ChatwootInbox, **kwargs) -> ChatwootClient:
        """Build a client from a stored inbox.

        Raises:
            ChatwootCredentialsError: If the stored token cannot be decrypted.
        """
        token = ""
        if inbox.encrypted_api_token:
            try:
                token = decrypt_value(inbox.encrypted_api_token)
            except (InvalidToken, RuntimeError) as exc:
                raise ChatwootCredentialsError(
                    f"Cannot decrypt API token for inbox {inbox.inbox_id}"
                ) from exc
        return cls(inbox.base_url, inbox.account_id, token, **kwargs)

    def _conversation_url(self, conversation_id: int | str, suffix: str) -> str:
        return f"{self.base_url}/api/v1/accounts/{self.account_id}/conversations/{conversation_id}/{suffix}"

    async def _request(self, method: str, url: str, label: str, json: dict | None = None) -> ProviderResult[dict]:
        if not (self.api_token and self.base_url and self.account_id):
            logger.error("Chatwoot credentials are not configured for account %s", self.account_id)
            return ProviderResult.fail(FailureReason.MISSING_CREDENTIAL, "Chatwoot credentials missing")

        async def call() -> dict:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(
                    method,
                    url,
                    json=json,
                    headers={"api_access_token": self.api_token},
                )
                resp.raise_for_status()
                return resp.json() if resp.content else {}

        return await call_provider(call, label=label, sleep=self._sleep)

    async def send_message(
        self, conversation_id: int | str, content: str, private: bool = False
    ) -> ProviderResult[dict]:
        """Post an outgoing message (or a private note) into a conversation."""
        payload: dict = {"content": content.strip(), "message_type": "outgoing"}
        if private:
            payload["private"] = True

        result = await self._request(
            "POST",
            self._conversation_url(conversation_id, "messages"),
            f"Chatwoot send to conversation {conversation_id}",
            json=payload,
        )
        if result.ok:
            logger.info(
                "Sent %s to conversation %s (message %s)",
                "private note" if private else "reply", conversation_id, result.value.get("id"),
            )
        return result

    async def list_messages(self, conversation_id: int | str) -> ProviderResult[list[ConversationMessage]]:
        result = await self._request(
            "GET",
            self._conversation_url(conversation_id, "messages"),
            f"Chatwoot history for conversation {conversation_id}",
        )
        if not result.ok:
            return ProviderResult.fail(result.failure, result.detail, result.attempts)
        try:
            return ProviderResult.success(parse_history(result.value), result.attempts)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.error("Malformed history for conversation %s: %s", conversation_id, exc)
            return ProviderResult.fail(FailureReason.INVALID_RESPONSE, str(exc), result.attempts)

    async def add_labels(self, conversation_id: int | str, labels: list[str]) -> ProviderResult[dict]:
        return await self._request(
            "POST",
            self._conversation_url(conversation_id, "labels"),
            f"Chatwoot labels for conversation {conversation_id}",
            json={"labels": labels},
        )

    async def test_connection(self) -> ProviderResult[dict]:
        """Fetch the account to confirm URL and token are valid."""
        return await self._request(
            "GET",
            f"{self.base_url}/api/v1/accounts/{self.account_id}",
            f"Chatwoot connection test for account {self.account_id}",
        )
