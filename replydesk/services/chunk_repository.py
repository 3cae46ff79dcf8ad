"""Chunk repository — chunk rows in SQL, their vectors in Qdrant.

A document's chunks are replaced as a unit: old rows are deleted and new
rows inserted in one SQL transaction, and the new vectors are written before
that transaction commits. If anything fails the transaction is rolled back
and the new vectors are removed again, so readers keep seeing the old set.
Every query is scoped by tenant id.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from replydesk.models.base import new_uuid
from replydesk.models.chunk import Chunk
from replydesk.services import vector_store

logger = logging.getLogger(__name__)

# Rows per INSERT flush
INSERT_BATCH_SIZE = 100


class ChunkStoreError(ValueError):
    """Chunk/vector input rejected before any write."""


@dataclass
class StoreResult:
    stored_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SimilarChunk:
    """A chunk returned from similarity search."""
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    similarity: float


def _validate(chunks: list[str], vectors: list[list[float]]) -> None:
    if not chunks:
        raise ChunkStoreError("No chunks to store")
    if len(chunks) != len(vectors):
        raise ChunkStoreError(
            f"Chunk count ({len(chunks)}) does not match vector count ({len(vectors)})"
        )
    if any(not v for v in vectors):
        raise ChunkStoreError("Empty vector in batch")
    dims = {len(v) for v in vectors}
    if len(dims) != 1:
        raise ChunkStoreError(f"Vectors have mixed dimensions: {sorted(dims)}")


async def store_batch(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_id: uuid.UUID,
    chunks: list[str],
    vectors: list[list[float]],
) -> StoreResult:
    """Replace a document's chunks with ``chunks``/``vectors`` and commit.

    Pending changes already in ``session`` (e.g. the document's status) are
    committed together with the new chunks, or rolled back with them.

    Raises:
        ChunkStoreError: On invalid input, before anything is written.
    """
    _validate(chunks, vectors)

    result = await session.execute(
        select(Chunk.id).where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
    )
    old_ids = [str(row) for row in result.scalars().all()]

    rows = [
        Chunk(
            id=new_uuid(),
            tenant_id=tenant_id,
            document_id=document_id,
            chunk_index=i,
            content=content,
            char_count=len(content),
        )
        for i, content in enumerate(chunks)
    ]
    points = [
        {
            "id": str(row.id),
            "vector": vector,
            "payload": {
                "tenant_id": str(tenant_id),
                "document_id": str(document_id),
                "chunk_index": row.chunk_index,
                "content": row.content,
            },
        }
        for row, vector in zip(rows, vectors)
    ]

    written: list[str] = []
    try:
        await session.execute(
            delete(Chunk).where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
        )
        for i in range(0, len(rows), INSERT_BATCH_SIZE):
            session.add_all(rows[i : i + INSERT_BATCH_SIZE])
            await session.flush()

        await vector_store.ensure_collection(len(vectors[0]))
        for i in range(0, len(points), INSERT_BATCH_SIZE):
            batch = points[i : i + INSERT_BATCH_SIZE]
            await vector_store.upsert_points(batch)
            written.extend(p["id"] for p in batch)

        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.exception("Storing %d chunks for document %s failed", len(chunks), document_id)
        if written:
            try:
                await vector_store.delete_points(tenant_id, written)
            except Exception:
                logger.exception("Could not remove %d new vectors for document %s", len(written), document_id)
        return StoreResult(stored_count=0, failed_count=len(chunks), errors=[str(exc)[:500]])

    if old_ids:
        try:
            await vector_store.delete_points(tenant_id, old_ids)
        except Exception:
            logger.exception("Could not remove %d stale vectors for document %s", len(old_ids), document_id)

    logger.info("Stored %d chunks for document %s (tenant %s)", len(rows), document_id, tenant_id)
    return StoreResult(stored_count=len(rows))


async def find_similar(
    tenant_id: uuid.UUID | str,
    query_vector: list[float],
    limit: int = 5,
    threshold: float | None = None,
) -> list[SimilarChunk]:
    """Most similar chunks of one tenant, highest cosine similarity first."""
    if not query_vector:
        return []
    hits = await vector_store.search(tenant_id, query_vector, limit=limit, score_threshold=threshold)
    results = [
        SimilarChunk(
            chunk_id=hit["id"],
            document_id=hit["payload"].get("document_id", ""),
            chunk_index=int(hit["payload"].get("chunk_index", 0)),
            content=hit["payload"].get("content", ""),
            similarity=float(hit["score"]),
        )
        for hit in hits
        # The payload filter already scopes by tenant; re-check before returning
        if hit["payload"].get("tenant_id") == str(tenant_id)
    ]
    if threshold is not None:
        results = [r for r in results if r.similarity >= threshold]
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:limit]


async def get_document_chunks(
    session: AsyncSession, tenant_id: uuid.UUID, document_id: uuid.UUID
) -> list[Chunk]:
    result = await session.execute(
        select(Chunk)
        .where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
        .order_by(Chunk.chunk_index)
    )
    return list(result.scalars().all())


async def delete_document_chunks(
    session: AsyncSession, tenant_id: uuid.UUID, document_id: uuid.UUID
) -> int:
    """Delete a document's chunk rows (not committed) and its vectors."""
    result = await session.execute(
        delete(Chunk).where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
    )
    await vector_store.delete_by_document(tenant_id, document_id)
    return result.rowcount or 0


async def delete_tenant_chunks(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    """Delete every chunk row (not committed) and vector of a tenant."""
    result = await session.execute(delete(Chunk).where(Chunk.tenant_id == tenant_id))
    await vector_store.delete_by_tenant(tenant_id)
    return result.rowcount or 0


async def tenant_stats(session: AsyncSession, tenant_id: uuid.UUID) -> dict:
    """Aggregate chunk statistics for one tenant."""
    stmt = select(
        func.count(Chunk.id),
        func.count(func.distinct(Chunk.document_id)),
        func.avg(Chunk.char_count),
        func.max(Chunk.created_at),
    ).where(Chunk.tenant_id == tenant_id)
    total, documents, avg_length, latest = (await session.execute(stmt)).one()
    return {
        "total_chunks": total or 0,
        "documents_with_chunks": documents or 0,
        "average_chunk_length": round(float(avg_length), 1) if avg_length is not None else 0.0,
        "latest_chunk_at": latest.isoformat() if latest else None,
    }
