"""FastAPI application entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from replydesk.api.v1 import v1_router
from replydesk.core.database import init_db
from replydesk.core.logging_setup import setup_logging


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    # Startup: ensure tables exist
    await init_db()
    yield


app = FastAPI(
    title="ReplyDesk",
    version="0.1.0",
    description="Knowledge-grounded automated replies for Chatwoot inboxes",
    lifespan=lifespan,
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
