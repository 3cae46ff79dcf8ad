"""Tests for the Chatwoot API client using httpx.MockTransport."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from replydesk.core.security import encrypt_value
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.services.chatwoot import ChatwootClient, parse_history
from replydesk.services.provider import FailureReason


def _client(handler, token="cw-token", sleep=None) -> tuple[ChatwootClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = ChatwootClient(
        "https://chat.example.com/",
        7,
        token,
        transport=httpx.MockTransport(recording),
        sleep=sleep or AsyncMock(),
    )
    return client, seen


@pytest.mark.asyncio
async def test_send_message():
    client, seen = _client(lambda r: httpx.Response(200, json={"id": 99}))

    result = await client.send_message(42, "  Refunds take 5 days.  ")

    assert result.ok
    assert result.value == {"id": 99}
    [request] = seen
    assert request.method == "POST"
    assert str(request.url) == "https://chat.example.com/api/v1/accounts/7/conversations/42/messages"
    assert request.headers["api_access_token"] == "cw-token"
    assert json.loads(request.content) == {"content": "Refunds take 5 days.", "message_type": "outgoing"}


@pytest.mark.asyncio
async def test_send_private_note():
    client, seen = _client(lambda r: httpx.Response(200, json={"id": 100}))

    await client.send_message(42, "Needs review", private=True)

    assert json.loads(seen[0].content)["private"] is True


@pytest.mark.asyncio
async def test_add_labels():
    client, seen = _client(lambda r: httpx.Response(200, json={"payload": ["human_takeover"]}))

    result = await client.add_labels(42, ["human_takeover"])

    assert result.ok
    assert seen[0].url.path.endswith("/conversations/42/labels")
    assert json.loads(seen[0].content) == {"labels": ["human_takeover"]}


@pytest.mark.asyncio
async def test_list_messages_parses_history():
    body = {
        "payload": [
            {"message_type": 0, "private": False, "sender": {"type": "contact"}, "created_at": 1736172000},
            {"message_type": 1, "private": False, "sender": {"type": "user"}, "created_at": 1736172060},
            {"message_type": 1, "private": True, "sender": {"type": "user"}, "created_at": "2025-01-06T14:02:00Z"},
        ]
    }
    client, seen = _client(lambda r: httpx.Response(200, json=body))

    result = await client.list_messages(42)

    assert seen[0].method == "GET"
    messages = result.value
    assert [m.message_type for m in messages] == ["incoming", "outgoing", "outgoing"]
    assert [m.is_agent_message for m in messages] == [False, True, False]
    assert messages[2].created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_list_messages_malformed_payload():
    body = {"payload": [{"message_type": 1, "created_at": None}]}
    client, _ = _client(lambda r: httpx.Response(200, json=body))

    result = await client.list_messages(42)

    assert result.failure is FailureReason.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    responses = iter([httpx.Response(502), httpx.Response(503), httpx.Response(200, json={"id": 1})])
    sleep = AsyncMock()
    client, seen = _client(lambda r: next(responses), sleep=sleep)

    result = await client.send_message(42, "hello")

    assert result.ok
    assert result.attempts == 3
    assert len(seen) == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_unauthorized_is_not_retried():
    client, seen = _client(lambda r: httpx.Response(401, json={"error": "bad token"}))

    result = await client.send_message(42, "hello")

    assert result.failure is FailureReason.UNAUTHORIZED
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_missing_token():
    client, seen = _client(lambda r: httpx.Response(200), token="")

    result = await client.send_message(42, "hello")

    assert result.failure is FailureReason.MISSING_CREDENTIAL
    assert seen == []


def test_from_inbox_decrypts_token():
    inbox = ChatwootInbox(
        tenant_id="00000000-0000-0000-0000-000000000001",
        inbox_id=1,
        account_id=3,
        base_url="https://chat.example.com",
        encrypted_api_token=encrypt_value("plain-token"),
    )
    client = ChatwootClient.from_inbox(inbox)
    assert client.api_token == "plain-token"
    assert client.account_id == 3


def test_parse_history_empty():
    assert parse_history({}) == []
