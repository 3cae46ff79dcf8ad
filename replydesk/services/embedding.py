"""Embedding service — wraps LiteLLM for provider-agnostic vector generation."""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable

from litellm import aembedding

from replydesk.core.cache import get_cache
from replydesk.core.config import get_settings
from replydesk.core.ratelimit import FixedWindowRateLimiter
from replydesk.services.provider import FailureReason, ProviderResult, call_provider

logger = logging.getLogger(__name__)

# Provider cap on inputs per request
MAX_BATCH_SIZE = 100


def get_embedding_dimensions(model: str | None = None) -> int:
    """Return the expected vector dimension for a given embedding model."""
    settings = get_settings()
    model = model or settings.default_embedding_model
    # Known dimensions for common models
    dims = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    return dims.get(model, settings.embedding_dimensions)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 when either is zero)."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimensions")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _extract_vectors(response, expected: int) -> list[list[float]]:
    """Pull vectors out of an embedding response, in input order."""
    vectors = [[float(x) for x in item["embedding"]] for item in (response.data or [])]
    if len(vectors) != expected or any(not v for v in vectors):
        raise ValueError(f"Expected {expected} embeddings, got {len(vectors)}")
    return vectors


class EmbeddingClient:
    """Turns text into vectors via the configured embedding model.

    Calls are guarded by a soft per-minute quota (counted in inputs) and the
    shared provider retry policy. Failures come back as ProviderResult values.
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        limiter: FixedWindowRateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.default_embedding_model
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.limiter = limiter or FixedWindowRateLimiter(
            get_cache(), "embeddings", settings.embedding_requests_per_minute,
        )
        self._sleep = sleep
        self._timeout = settings.embedding_timeout_seconds
        self._batch_timeout = settings.embedding_batch_timeout_seconds

    async def embed(self, text: str) -> ProviderResult[list[float]]:
        """Embed one text."""
        if not text or not text.strip():
            return ProviderResult.fail(FailureReason.INVALID_INPUT, "Text cannot be empty")

        result = await self._request([text], self._timeout)
        if not result.ok:
            return ProviderResult.fail(result.failure, result.detail, result.attempts)
        return ProviderResult.success(result.value[0], result.attempts)

    async def embed_batch(self, texts: list[str]) -> ProviderResult[list[list[float]]]:
        """Embed many texts, split into requests of at most MAX_BATCH_SIZE.

        Any failed request fails the whole batch; callers fall back to
        ``embed`` per item.
        """
        if not texts:
            return ProviderResult.success([], attempts=0)
        if any(not t or not t.strip() for t in texts):
            return ProviderResult.fail(FailureReason.INVALID_INPUT, "Batch contains empty text")

        vectors: list[list[float]] = []
        attempts = 0
        for i in range(0, len(texts), MAX_BATCH_SIZE):
            batch = texts[i : i + MAX_BATCH_SIZE]
            result = await self._request(batch, self._batch_timeout)
            attempts += result.attempts
            if not result.ok:
                return ProviderResult.fail(result.failure, result.detail, attempts)
            vectors.extend(result.value)
        return ProviderResult.success(vectors, attempts)

    async def _request(self, batch: list[str], timeout: float) -> ProviderResult[list[list[float]]]:
        if not self.api_key:
            logger.error("Embedding API key is not configured")
            return ProviderResult.fail(FailureReason.MISSING_CREDENTIAL, "OPENAI_API_KEY is not set")

        if not await self.limiter.allows(cost=len(batch)):
            logger.warning(
                "Embedding quota reached (%d/min); skipping %d input(s)",
                self.limiter.limit, len(batch),
            )
            return ProviderResult.fail(FailureReason.RATE_LIMITED_LOCALLY, "Client-side quota exceeded")
        await self.limiter.hit(cost=len(batch))

        async def call() -> list[list[float]]:
            response = await aembedding(
                model=self.model,
                input=batch,
                api_key=self.api_key,
                timeout=timeout,
            )
            return _extract_vectors(response, len(batch))

        return await call_provider(call, label=f"Embedding ({len(batch)} input(s))", sleep=self._sleep)

    async def health_status(self) -> dict:
        return {
            "configured": bool(self.api_key),
            "model": self.model,
            "dimensions": get_embedding_dimensions(self.model),
            "rate_limit": await self.limiter.status(),
        }
