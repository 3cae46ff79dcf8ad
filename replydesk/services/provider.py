"""Shared plumbing for outbound provider calls.

Every call to an external API (embeddings, completions, the chat platform)
goes through ``call_provider``, which:

* classifies exceptions into a ``FailureReason``,
* retries transient failures (429, 5xx, network) with tenacity, honouring
  ``Retry-After`` up to a cap and otherwise backing off exponentially,
* never raises for provider failures; the outcome is a ``ProviderResult``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

import httpx
import litellm
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from replydesk.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureReason(StrEnum):
    MISSING_CREDENTIAL = "missing_credential"
    RATE_LIMITED_LOCALLY = "rate_limited_locally"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    INVALID_INPUT = "invalid_input"
    INVALID_RESPONSE = "invalid_response"
    EMPTY_RESPONSE = "empty_response"
    PROVIDER_ERROR = "provider_error"


@dataclass
class ProviderResult(Generic[T]):
    """Success-with-value or a typed failure."""
    value: T | None = None
    failure: FailureReason | None = None
    detail: str = ""
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T, attempts: int = 1) -> ProviderResult[T]:
        return cls(value=value, attempts=attempts)

    @classmethod
    def fail(cls, reason: FailureReason, detail: str = "", attempts: int = 0) -> ProviderResult[T]:
        return cls(failure=reason, detail=detail, attempts=attempts)


class ProviderError(Exception):
    """A classified provider failure raised inside the retry loop."""

    def __init__(
        self,
        reason: FailureReason,
        detail: str = "",
        *,
        retryable: bool = False,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after = retry_after


# ── Classification ───────────────────────────────────────────

def _parse_retry_after(response: httpx.Response | None) -> float | None:
    if response is None:
        return None
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def classify_status(status_code: int, detail: str = "", retry_after: float | None = None) -> ProviderError:
    """Map an HTTP status code onto the failure taxonomy."""
    if status_code == 429:
        return ProviderError(
            FailureReason.RATE_LIMITED, detail, retryable=True,
            status_code=status_code, retry_after=retry_after,
        )
    if status_code >= 500:
        return ProviderError(FailureReason.SERVER_ERROR, detail, retryable=True, status_code=status_code)
    if status_code == 408:
        return ProviderError(FailureReason.NETWORK_ERROR, detail, retryable=True, status_code=status_code)
    if status_code in (401, 403):
        return ProviderError(FailureReason.UNAUTHORIZED, detail, status_code=status_code)
    if status_code == 404:
        return ProviderError(FailureReason.NOT_FOUND, detail, status_code=status_code)
    return ProviderError(FailureReason.BAD_REQUEST, detail, status_code=status_code)


def classify_exception(exc: Exception) -> ProviderError:
    """Turn any exception raised by a provider call into a ProviderError."""
    if isinstance(exc, ProviderError):
        return exc

    detail = str(exc)[:500]

    # Connection problems first: LiteLLM reports them with a synthetic 500/408
    if isinstance(exc, (litellm.Timeout, litellm.APIConnectionError, httpx.TransportError)):
        return ProviderError(FailureReason.NETWORK_ERROR, detail, retryable=True)

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(
            exc.response.status_code, detail, _parse_retry_after(exc.response),
        )

    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        response = getattr(exc, "response", None)
        retry_after = _parse_retry_after(response) if isinstance(response, httpx.Response) else None
        return classify_status(status_code, detail, retry_after)

    if isinstance(exc, (KeyError, IndexError, TypeError, ValueError)):
        return ProviderError(FailureReason.INVALID_RESPONSE, detail)

    return ProviderError(FailureReason.PROVIDER_ERROR, detail)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class _RetryAfterOrExponential:
    """Wait strategy: the provider's Retry-After when given, else exponential."""

    def __init__(self, max_backoff: float) -> None:
        self.max_backoff = max_backoff
        self._exponential = wait_exponential(multiplier=1, max=max_backoff)

    def __call__(self, retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, ProviderError) and exc.retry_after is not None:
            return min(exc.retry_after, self.max_backoff)
        return self._exponential(retry_state)


# ── Retry loop ───────────────────────────────────────────────

async def call_provider(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_attempts: int | None = None,
    max_backoff: float | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ProviderResult[T]:
    """Run ``operation`` with the shared retry policy.

    ``operation`` may raise anything; exceptions are classified and only
    retryable ones are attempted again. The final outcome is returned as a
    ProviderResult, never raised.
    """
    settings = get_settings()
    attempts = 0

    async def attempt() -> T:
        nonlocal attempts
        attempts += 1
        try:
            return await operation()
        except Exception as exc:
            raise classify_exception(exc) from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts or settings.provider_max_attempts),
        wait=_RetryAfterOrExponential(
            max_backoff if max_backoff is not None else settings.provider_max_backoff_seconds
        ),
        retry=retry_if_exception(_is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )

    try:
        value = await retrying(attempt)
    except ProviderError as exc:
        logger.error(
            "%s failed after %d attempt(s): %s (%s)",
            label, attempts, exc.reason.value, exc.detail,
        )
        return ProviderResult.fail(exc.reason, exc.detail, attempts)

    return ProviderResult.success(value, attempts)
