"""Document ingestion — chunk, embed and store a document's knowledge."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from replydesk.models.base import utcnow
from replydesk.models.document import Document, DocumentStatus
from replydesk.services.chunk_repository import delete_document_chunks, store_batch
from replydesk.services.chunking import chunk_text
from replydesk.services.embedding import EmbeddingClient

logger = logging.getLogger(__name__)


class DocumentProcessingError(Exception):
    """The document could not be turned into stored chunks."""


class DocumentNotFoundError(DocumentProcessingError):
    pass


async def embed_chunks(
    embedder: EmbeddingClient, chunks: list[str]
) -> tuple[list[str], list[list[float]]]:
    """Embed chunks in batch, falling back to one at a time.

    Chunks whose embedding fails are dropped, so the returned lists stay
    aligned and in document order.
    """
    batch = await embedder.embed_batch(chunks)
    if batch.ok:
        return chunks, batch.value

    logger.warning(
        "Batch embedding of %d chunks failed (%s); embedding individually",
        len(chunks), batch.failure,
    )
    kept: list[str] = []
    vectors: list[list[float]] = []
    for i, chunk in enumerate(chunks):
        result = await embedder.embed(chunk)
        if result.ok:
            kept.append(chunk)
            vectors.append(result.value)
        else:
            logger.warning("Skipping chunk %d: embedding failed (%s)", i, result.failure)
    return kept, vectors


async def _lock_document(
    session: AsyncSession, tenant_id: uuid.UUID, document_id: uuid.UUID
) -> Document | None:
    stmt = (
        select(Document)
        .where(Document.id == document_id, Document.tenant_id == tenant_id)
        .with_for_update()
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def mark_failed(
    session: AsyncSession, tenant_id: uuid.UUID, document_id: uuid.UUID, message: str
) -> None:
    await session.rollback()
    doc = await _lock_document(session, tenant_id, document_id)
    if doc is None:
        return
    doc.status = DocumentStatus.FAILED
    doc.error_message = message[:2000]
    doc.updated_at = utcnow()
    session.add(doc)
    await session.commit()


async def process_document(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document_id: uuid.UUID,
    embedder: EmbeddingClient | None = None,
) -> int:
    """Regenerate a document's chunks and vectors.

    Holds a row lock on the document for the whole run; the new chunks and
    the ``ready`` status are committed together.

    Returns:
        The number of chunks stored.

    Raises:
        DocumentProcessingError: After marking the document ``failed``.
    """
    embedder = embedder or EmbeddingClient()

    doc = await _lock_document(session, tenant_id, document_id)
    if doc is None:
        raise DocumentNotFoundError(f"Document {document_id} not found for tenant {tenant_id}")

    doc.status = DocumentStatus.PROCESSING
    doc.error_message = None
    session.add(doc)
    await session.flush()

    if not doc.content or not doc.content.strip():
        await mark_failed(session, tenant_id, document_id, "Document has no content")
        raise DocumentProcessingError(f"Document {document_id} has no content")

    chunks = chunk_text(doc.content)
    if not chunks:
        await mark_failed(session, tenant_id, document_id, "Chunking produced no output")
        raise DocumentProcessingError(f"Document {document_id} produced no chunks")

    kept, vectors = await embed_chunks(embedder, chunks)
    if not kept:
        await mark_failed(session, tenant_id, document_id, "No chunk could be embedded")
        raise DocumentProcessingError(f"Embedding failed for every chunk of document {document_id}")
    if len(kept) < len(chunks):
        logger.warning(
            "Document %s: %d of %d chunks dropped after embedding failures",
            document_id, len(chunks) - len(kept), len(chunks),
        )

    doc.status = DocumentStatus.READY
    doc.chunk_count = len(kept)
    doc.last_processed_at = utcnow()
    doc.updated_at = utcnow()
    session.add(doc)

    stored = await store_batch(session, tenant_id, document_id, kept, vectors)
    if stored.failed_count:
        error = "; ".join(stored.errors) or "Chunk storage failed"
        await mark_failed(session, tenant_id, document_id, error)
        raise DocumentProcessingError(f"Storing chunks for document {document_id} failed: {error}")

    logger.info("Processed document %s: %d chunks", document_id, stored.stored_count)
    return stored.stored_count


async def delete_document(session: AsyncSession, tenant_id: uuid.UUID, document_id: uuid.UUID) -> bool:
    """Delete a tenant's document with its chunks and vectors."""
    doc = await _lock_document(session, tenant_id, document_id)
    if doc is None:
        return False
    removed = await delete_document_chunks(session, tenant_id, document_id)
    await session.delete(doc)
    await session.commit()
    logger.info("Deleted document %s (%d chunks)", document_id, removed)
    return True
