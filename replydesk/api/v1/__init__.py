"""V1 API router aggregation."""

from fastapi import APIRouter

from replydesk.api.v1.chatwoot_webhook import router as chatwoot_webhook_router
from replydesk.api.v1.system import router as system_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(chatwoot_webhook_router)
v1_router.include_router(system_router)
