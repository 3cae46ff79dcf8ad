"""Qdrant vector store service — collection management, upsert, search, delete.

One collection holds every tenant's chunk vectors; isolation is a payload
filter on ``tenant_id`` that every search and delete carries.
"""

from __future__ import annotations

import uuid

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    HasIdCondition,
    MatchValue,
    PointStruct,
    VectorParams,
)

from replydesk.core.config import get_settings

# Points per upsert request
UPSERT_BATCH_SIZE = 100

_client: AsyncQdrantClient | None = None


def collection_name() -> str:
    return get_settings().qdrant_collection


async def get_qdrant_client() -> AsyncQdrantClient:
    """Lazy-init a shared async Qdrant client."""
    global _client
    if _client is None:
        settings = get_settings()
        if settings.qdrant_url == ":memory:":
            _client = AsyncQdrantClient(location=":memory:")
        else:
            _client = AsyncQdrantClient(url=settings.qdrant_url, check_compatibility=False)
    return _client


def _tenant_filter(tenant_id: str | uuid.UUID, *conditions) -> Filter:
    return Filter(
        must=[
            FieldCondition(key="tenant_id", match=MatchValue(value=str(tenant_id))),
            *conditions,
        ]
    )


async def ensure_collection(dimensions: int) -> None:
    """Create the chunk collection if it doesn't exist."""
    client = await get_qdrant_client()
    if not await client.collection_exists(collection_name()):
        await client.create_collection(
            collection_name=collection_name(),
            vectors_config=VectorParams(size=dimensions, distance=Distance.COSINE),
        )


async def upsert_points(points: list[dict]) -> None:
    """Upsert chunk vectors into Qdrant in batches.

    Each point dict must have:
        id: str (UUID, same as the SQL chunk id)
        vector: list[float]
        payload: dict with tenant_id, document_id, chunk_index, content
    """
    client = await get_qdrant_client()
    for i in range(0, len(points), UPSERT_BATCH_SIZE):
        batch = points[i : i + UPSERT_BATCH_SIZE]
        await client.upsert(
            collection_name=collection_name(),
            points=[PointStruct(id=p["id"], vector=p["vector"], payload=p["payload"]) for p in batch],
            wait=True,
        )


async def search(
    tenant_id: str | uuid.UUID,
    query_vector: list[float],
    limit: int = 5,
    score_threshold: float | None = None,
) -> list[dict]:
    """Search for similar chunks within one tenant.

    Returns list of dicts with id, score, and payload, best match first.
    """
    client = await get_qdrant_client()
    if not await client.collection_exists(collection_name()):
        return []
    response = await client.query_points(
        collection_name=collection_name(),
        query=query_vector,
        query_filter=_tenant_filter(tenant_id),
        limit=limit,
        score_threshold=score_threshold,
        with_payload=True,
    )
    return [
        {
            "id": str(hit.id),
            "score": hit.score,
            "payload": hit.payload or {},
        }
        for hit in response.points
    ]


async def _delete(selector: Filter) -> None:
    client = await get_qdrant_client()
    if not await client.collection_exists(collection_name()):
        return
    await client.delete(
        collection_name=collection_name(),
        points_selector=FilterSelector(filter=selector),
        wait=True,
    )


async def delete_points(tenant_id: str | uuid.UUID, point_ids: list[str]) -> None:
    """Delete specific points, restricted to the tenant's own vectors."""
    if not point_ids:
        return
    await _delete(_tenant_filter(tenant_id, HasIdCondition(has_id=[str(p) for p in point_ids])))


async def delete_by_document(tenant_id: str | uuid.UUID, document_id: str | uuid.UUID) -> None:
    """Delete all vectors belonging to a specific document."""
    await _delete(
        _tenant_filter(
            tenant_id,
            FieldCondition(key="document_id", match=MatchValue(value=str(document_id))),
        )
    )


async def delete_by_tenant(tenant_id: str | uuid.UUID) -> None:
    await _delete(_tenant_filter(tenant_id))
