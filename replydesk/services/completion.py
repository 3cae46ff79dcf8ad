"""Chat completion service — single-prompt completions via LiteLLM."""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from litellm import acompletion

from replydesk.core.cache import get_cache
from replydesk.core.config import get_settings
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.services.provider import FailureReason, ProviderError, ProviderResult, call_provider

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """A generated reply with its token usage."""
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated: bool = False


def estimate_usage_tokens(prompt: str, reply: str) -> int:
    return math.ceil((len(prompt) + len(reply)) / 4)


class CompletionClient:
    """Generates replies with the shared retry policy and a per-minute quota."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        limiter: FixedWindowRateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.default_llm_model
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.limiter = limiter or FixedWindowRateLimiter(
            get_cache(), "completions", settings.completion_requests_per_minute,
        )
        self._sleep = sleep
        self._timeout = settings.completion_timeout_seconds

    async def complete(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResult[Completion]:
        """Send ``prompt`` as one user message and return the reply."""
        settings = get_settings()
        model = model or self.model

        if not self.api_key:
            logger.error("Completion API key is not configured")
            return ProviderResult.fail(FailureReason.MISSING_CREDENTIAL, "OPENAI_API_KEY is not set")

        if not await self.limiter.allows():
            logger.warning("Completion quota reached (%d/min)", self.limiter.limit)
            return ProviderResult.fail(FailureReason.RATE_LIMITED_LOCALLY, "Client-side quota exceeded")
        await self.limiter.hit()

        async def call() -> Completion:
            response = await acompletion(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.llm_temperature if temperature is None else temperature,
                max_tokens=max_tokens or settings.llm_max_tokens,
                api_key=self.api_key,
                timeout=self._timeout,
            )
            content = (response.choices[0].message.content or "").strip()
            if not content:
                raise ProviderError(FailureReason.EMPTY_RESPONSE, "Model returned an empty reply")

            usage = getattr(response, "usage", None)
            if usage and usage.total_tokens:
                return Completion(
                    content=content,
                    model=model,
                    prompt_tokens=usage.prompt_tokens or 0,
                    completion_tokens=usage.completion_tokens or 0,
                    total_tokens=usage.total_tokens,
                )
            return Completion(
                content=content,
                model=model,
                total_tokens=estimate_usage_tokens(prompt, content),
                estimated=True,
            )

        result = await call_provider(call, label=f"Completion ({model})", sleep=self._sleep)
        if result.ok:
            logger.info(
                "Completion from %s: %d tokens%s",
                model, result.value.total_tokens, " (estimated)" if result.value.estimated else "",
            )
        return result

    async def health_status(self) -> dict:
        return {
            "configured": bool(self.api_key),
            "model": self.model,
            "rate_limit": await self.limiter.status(),
        }
