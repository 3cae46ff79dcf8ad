"""System health endpoints — backing services and provider status."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from redis.asyncio import from_url
from sqlalchemy import text

from replydesk.api.deps import Session
from replydesk.core.config import get_settings
from replydesk.services import vector_store
from replydesk.services.completion import CompletionClient
from replydesk.services.embedding import EmbeddingClient

router = APIRouter(prefix="/system", tags=["system"])


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    qdrant: ServiceHealth
    redis: ServiceHealth


class ProviderStatus(BaseModel):
    embedding: dict
    completion: dict


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check connectivity to the database, Qdrant, and Redis."""
    db = await _check_database(session)
    qd = await _check_qdrant()
    rd = await _check_redis()

    overall = "ok" if all(s.status == "ok" for s in (db, qd, rd)) else "degraded"
    return HealthResponse(status=overall, database=db, qdrant=qd, redis=rd)


@router.get("/providers", response_model=ProviderStatus)
async def provider_status() -> ProviderStatus:
    """Whether provider credentials are configured, and current quota use."""
    return ProviderStatus(
        embedding=await EmbeddingClient().health_status(),
        completion=await CompletionClient().health_status(),
    )


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        return ServiceHealth(status="ok", latency_ms=int((time.monotonic() - t0) * 1000))
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_qdrant() -> ServiceHealth:
    try:
        t0 = time.monotonic()
        client = await vector_store.get_qdrant_client()
        collections = await client.get_collections()
        names = {c.name for c in collections.collections}
        detail = None if vector_store.collection_name() in names else "collection not created yet"
        return ServiceHealth(status="ok", detail=detail, latency_ms=int((time.monotonic() - t0) * 1000))
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis() -> ServiceHealth:
    settings = get_settings()
    try:
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True)
        try:
            pong = await redis.ping()
            latency = int((time.monotonic() - t0) * 1000)
            info = await redis.info("server")
        finally:
            await redis.aclose()
        version = info.get("redis_version")
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
