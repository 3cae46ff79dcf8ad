"""Inbound Chatwoot webhook — verify, validate, and queue message processing."""

import json
import logging

from arq import create_pool
from arq.connections import ArqRedis
from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import select

from replydesk.api.deps import Session
from replydesk.core.config import get_settings
from replydesk.core.security import verify_signature
from replydesk.models.chatwoot_inbox import ChatwootInbox
from replydesk.workers.main import _redis_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

HANDLED_EVENT = "message.created"


class WebhookAck(BaseModel):
    status: str  # "queued" or "ignored"
    reason: str | None = None
    job_id: str | None = None


def _require_int(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing or invalid {field}",
        ) from None


async def _enqueue_message(**kwargs) -> str | None:
    """Enqueue an ARQ message-processing job.

    A _job_id that is still queued or running is not queued twice; message jobs
    keep no result, so a redelivery after a failed send is queued again.
    """
    redis: ArqRedis = await create_pool(_redis_settings())
    try:
        job = await redis.enqueue_job("process_chatwoot_message", **kwargs)
        return job.job_id if job else None
    finally:
        await redis.aclose()


@router.post("/chatwoot", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def chatwoot_webhook(
    request: Request,
    session: Session,
    x_chatwoot_signature: str | None = Header(default=None),
):
    body = await request.body()
    if not verify_signature(get_settings().chatwoot_webhook_secret, body, x_chatwoot_signature):
        logger.warning("Rejected Chatwoot webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload")

    event = payload.get("event")
    message_type = payload.get("message_type")
    if event != HANDLED_EVENT or message_type != "incoming":
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=WebhookAck(status="ignored", reason=f"{event}/{message_type}").model_dump(),
        )

    inbox_id = _require_int((payload.get("inbox") or {}).get("id"), "inbox id")
    conversation_id = _require_int((payload.get("conversation") or {}).get("id"), "conversation id")
    message_id = _require_int(payload.get("id"), "message id")
    content = payload.get("content") or ""

    result = await session.execute(select(ChatwootInbox).where(ChatwootInbox.inbox_id == inbox_id))
    inbox = result.scalar_one_or_none()
    if inbox is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown inbox")

    try:
        job_id = await _enqueue_message(
            _job_id=f"chatwoot:{conversation_id}:{message_id}",
            tenant_id=str(inbox.tenant_id),
            conversation_id=str(conversation_id),
            message_id=str(message_id),
            content=content,
            inbox_id=inbox_id,
        )
    except Exception:
        logger.exception("Could not queue message %s of conversation %s", message_id, conversation_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue unavailable",
        ) from None

    logger.info("Queued message %s of conversation %s (tenant %s)", message_id, conversation_id, inbox.tenant_id)
    return WebhookAck(status="queued", job_id=job_id)
