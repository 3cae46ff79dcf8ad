"""Tests for the completion client (LiteLLM mocked)."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import litellm

from replydesk.core.cache import MemoryCache
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.services.completion import CompletionClient, estimate_usage_tokens
from replydesk.services.provider import FailureReason


def _response(content: str | None, usage: SimpleNamespace | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=usage,
    )


def _client(limit: int = 1000, api_key: str = "sk-test") -> CompletionClient:
    limiter = FixedWindowRateLimiter(MemoryCache(), "completions", limit)
    return CompletionClient(api_key=api_key, limiter=limiter, sleep=AsyncMock())


async def test_complete_uses_defaults_and_provider_usage():
    usage = SimpleNamespace(prompt_tokens=120, completion_tokens=30, total_tokens=150)
    mock = AsyncMock(return_value=_response("Refunds take 5 days.", usage))

    with patch("replydesk.services.completion.acompletion", mock):
        result = await _client().complete("prompt text")

    assert result.ok
    completion = result.value
    assert completion.content == "Refunds take 5 days."
    assert completion.total_tokens == 150
    assert not completion.estimated

    kwargs = mock.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 500
    assert kwargs["messages"] == [{"role": "user", "content": "prompt text"}]


async def test_complete_estimates_usage_when_missing():
    mock = AsyncMock(return_value=_response("12345678"))
    with patch("replydesk.services.completion.acompletion", mock):
        result = await _client().complete("abcd")

    assert result.value.estimated
    assert result.value.total_tokens == estimate_usage_tokens("abcd", "12345678") == 3


async def test_empty_reply_is_a_failure():
    mock = AsyncMock(return_value=_response("   "))
    with patch("replydesk.services.completion.acompletion", mock):
        result = await _client().complete("prompt")

    assert result.failure is FailureReason.EMPTY_RESPONSE
    assert mock.await_count == 1


async def test_server_errors_are_retried():
    err = litellm.ServiceUnavailableError(message="down", llm_provider="openai", model="gpt-4o-mini")
    mock = AsyncMock(side_effect=[err, _response("Back online.")])

    with patch("replydesk.services.completion.acompletion", mock):
        result = await _client().complete("prompt")

    assert result.ok
    assert result.attempts == 2


async def test_unauthorized_is_not_retried():
    err = litellm.AuthenticationError(message="bad key", llm_provider="openai", model="gpt-4o-mini")
    mock = AsyncMock(side_effect=err)

    with patch("replydesk.services.completion.acompletion", mock):
        result = await _client().complete("prompt")

    assert result.failure is FailureReason.UNAUTHORIZED
    assert mock.await_count == 1


async def test_missing_key_and_quota():
    mock = AsyncMock(return_value=_response("ok."))
    with patch("replydesk.services.completion.acompletion", mock):
        no_key = await _client(api_key="").complete("prompt")
        limited_client = _client(limit=1)
        first = await limited_client.complete("prompt")
        second = await limited_client.complete("prompt")

    assert no_key.failure is FailureReason.MISSING_CREDENTIAL
    assert first.ok
    assert second.failure is FailureReason.RATE_LIMITED_LOCALLY
    assert mock.await_count == 1
