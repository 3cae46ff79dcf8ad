"""Shared test fixtures — async SQLite in-memory DB, in-memory Qdrant, test client."""

import itertools
import os
import uuid
from collections.abc import AsyncGenerator
from types import SimpleNamespace

from cryptography.fernet import Fernet

# Settings are read once; configure the environment before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["QDRANT_URL"] = ":memory:"
os.environ["REDIS_URL"] = "redis://localhost:6390/15"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["CHATWOOT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["OPENAI_API_KEY"] = "sk-test"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from qdrant_client import AsyncQdrantClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import replydesk.models  # noqa: E402, F401
from replydesk.core.cache import get_cache  # noqa: E402
from replydesk.core.database import get_session  # noqa: E402
from replydesk.core.security import encrypt_value  # noqa: E402
from replydesk.main import app  # noqa: E402
from replydesk.models.chatwoot_inbox import ChatwootInbox  # noqa: E402
from replydesk.models.document import Document  # noqa: E402
from replydesk.models.tenant import Tenant  # noqa: E402
from replydesk.models.tenant_settings import TenantSettings  # noqa: E402
from replydesk.services import vector_store  # noqa: E402

_inbox_ids = itertools.count(1000)


@pytest.fixture(scope="session")
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture(scope="session")
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture(autouse=True)
async def _clear_cache():
    await get_cache().clear()
    yield
    await get_cache().clear()


@pytest.fixture
async def qdrant(monkeypatch) -> AsyncGenerator[AsyncQdrantClient, None]:
    """A fresh in-memory Qdrant per test."""
    client = AsyncQdrantClient(location=":memory:")
    monkeypatch.setattr(vector_store, "_client", client)
    yield client
    await client.close()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_tenant(session):
    """Create a tenant with settings and a Chatwoot inbox.

    Returns plain ids so callers never touch expired ORM objects.
    """

    async def _make(
        *,
        ai_enabled: bool = True,
        connected: bool = True,
        human_override: bool = True,
        confidence: float = 0.7,
        escalate: float = 0.4,
        blocked_keywords: str = "[]",
    ) -> SimpleNamespace:
        slug = f"tenant-{uuid.uuid4().hex[:10]}"
        tenant = Tenant(
            name=slug.title(),
            slug=slug,
            ai_enabled=ai_enabled,
            confidence_threshold=confidence,
            auto_escalate_threshold=escalate,
            human_override_enabled=human_override,
        )
        session.add(tenant)
        await session.flush()

        session.add(TenantSettings(
            tenant_id=tenant.id,
            chatwoot_connected=connected,
            blocked_keywords=blocked_keywords,
        ))
        inbox = ChatwootInbox(
            tenant_id=tenant.id,
            inbox_id=next(_inbox_ids),
            account_id=7,
            base_url="https://chat.example.com",
            encrypted_api_token=encrypt_value("cw-token"),
            is_connected=connected,
        )
        session.add(inbox)
        await session.commit()
        return SimpleNamespace(tenant_id=tenant.id, inbox_id=inbox.inbox_id)

    return _make


@pytest.fixture
def make_document(session):
    async def _make(tenant_id: uuid.UUID, content: str, title: str = "FAQ") -> uuid.UUID:
        doc = Document(tenant_id=tenant_id, title=title, content=content)
        session.add(doc)
        await session.commit()
        return doc.id

    return _make
