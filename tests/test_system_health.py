"""Tests for system health endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_root_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_system_health_returns_structure(client: AsyncClient, qdrant):
    """GET /v1/system/health returns status for all services."""
    resp = await client.get("/v1/system/health")
    assert resp.status_code == 200
    data = resp.json()
    assert "status" in data
    assert "database" in data
    assert "qdrant" in data
    assert "redis" in data
    # SQLite and in-memory Qdrant are always reachable in tests
    assert data["database"]["status"] == "ok"
    assert data["qdrant"]["status"] == "ok"
    assert data["qdrant"]["detail"] == "collection not created yet"


@pytest.mark.asyncio
async def test_system_health_redis_degrades_gracefully(client: AsyncClient, qdrant):
    """Redis reports error in the test env (not running)."""
    resp = await client.get("/v1/system/health")
    data = resp.json()
    assert data["redis"]["status"] in ("ok", "error")
    if data["redis"]["status"] == "error":
        assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_provider_status(client: AsyncClient):
    resp = await client.get("/v1/system/providers")
    assert resp.status_code == 200
    data = resp.json()
    assert data["embedding"]["configured"] is True
    assert data["embedding"]["model"] == "text-embedding-3-small"
    assert data["completion"]["model"] == "gpt-4o-mini"
    assert data["completion"]["rate_limit"]["max_requests_per_window"] == 1000
