"""Document processing worker task — chunk, embed and store one document."""

from __future__ import annotations

import logging
import uuid

from arq import Retry

from replydesk.core.database import async_session_factory
from replydesk.services import ingestion
from replydesk.services.ingestion import DocumentNotFoundError

logger = logging.getLogger(__name__)

MAX_TRIES = 3
# Delay in seconds before the 2nd, 3rd, ... attempt
RETRY_DELAYS = (10, 30, 60)


async def process_document(ctx: dict, document_id: str, tenant_id: str) -> dict:
    """ARQ task: (re)build a document's chunks and vectors.

    Failures are retried with increasing delays; after the last attempt the
    document stays ``failed`` and the error is logged for manual follow-up.

    Args:
        ctx: ARQ worker context.
        document_id: UUID of the Document to process.
        tenant_id: UUID of the owning tenant.

    Returns:
        dict with chunk_count, or error.
    """
    job_try = ctx.get("job_try", 1)
    doc_uuid, tenant_uuid = uuid.UUID(document_id), uuid.UUID(tenant_id)

    async with async_session_factory() as session:
        try:
            chunk_count = await ingestion.process_document(session, tenant_uuid, doc_uuid)
        except DocumentNotFoundError:
            logger.error("Document %s not found for tenant %s", document_id, tenant_id)
            return {"error": "document_not_found"}
        except Exception as exc:
            if job_try >= MAX_TRIES:
                logger.error(
                    "Document %s permanently failed after %d attempts: %s",
                    document_id, job_try, exc,
                )
                await _mark_failed_safely(tenant_uuid, doc_uuid, str(exc))
                return {"error": str(exc)[:500]}

            delay = RETRY_DELAYS[min(job_try - 1, len(RETRY_DELAYS) - 1)]
            logger.warning(
                "Processing document %s failed (attempt %d/%d), retrying in %ds: %s",
                document_id, job_try, MAX_TRIES, delay, exc,
            )
            raise Retry(defer=delay) from exc

    return {"chunk_count": chunk_count}


async def _mark_failed_safely(tenant_id: uuid.UUID, document_id: uuid.UUID, message: str) -> None:
    async with async_session_factory() as session:
        try:
            await ingestion.mark_failed(session, tenant_id, document_id, message)
        except Exception:
            logger.exception("Failed to mark document %s as failed", document_id)
