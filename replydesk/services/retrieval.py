"""Knowledge retrieval — embed a user message and fetch a tenant's closest chunks."""

from __future__ import annotations

import logging
import time
import uuid

from replydesk.core.config import get_settings
from replydesk.services.chunk_repository import SimilarChunk, find_similar
from replydesk.services.embedding import EmbeddingClient

logger = logging.getLogger(__name__)


async def _similar_chunks(
    tenant_id: uuid.UUID | str,
    message: str,
    embedder: EmbeddingClient,
    limit: int | None,
    threshold: float | None,
) -> list[SimilarChunk]:
    settings = get_settings()
    embedded = await embedder.embed(message)
    if not embedded.ok:
        # No vector means no knowledge, not an error
        logger.warning(
            "Query embedding failed for tenant %s (%s); treating as no knowledge",
            tenant_id, embedded.failure,
        )
        return []

    return await find_similar(
        tenant_id,
        embedded.value,
        limit=limit or settings.retrieval_limit,
        threshold=threshold if threshold is not None else settings.similarity_threshold,
    )


async def retrieve_knowledge(
    tenant_id: uuid.UUID | str,
    message: str,
    embedder: EmbeddingClient,
    limit: int | None = None,
    threshold: float | None = None,
) -> list[str]:
    """Texts of the tenant's chunks most similar to ``message``.

    Returns an empty list when nothing clears the threshold or the message
    cannot be embedded.
    """
    chunks = await _similar_chunks(tenant_id, message, embedder, limit, threshold)
    logger.info("Retrieved %d knowledge chunk(s) for tenant %s", len(chunks), tenant_id)
    return [c.content for c in chunks]


async def search_knowledge(
    tenant_id: uuid.UUID | str,
    query: str,
    embedder: EmbeddingClient,
    limit: int | None = None,
    threshold: float | None = None,
) -> dict:
    """Scored search results with timing, for diagnostics."""
    start = time.monotonic()
    chunks = await _similar_chunks(tenant_id, query, embedder, limit, threshold)
    return {
        "query": query,
        "count": len(chunks),
        "took_ms": int((time.monotonic() - start) * 1000),
        "results": [
            {
                "chunk_id": c.chunk_id,
                "document_id": c.document_id,
                "chunk_index": c.chunk_index,
                "content": c.content,
                "similarity": round(c.similarity, 4),
            }
            for c in chunks
        ],
    }
