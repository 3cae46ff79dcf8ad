"""Async database engine and session factory."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from replydesk.core.config import get_settings

settings = get_settings()

_pool_kwargs = (
    {} if settings.database_url.startswith("sqlite") else {"pool_size": 20, "max_overflow": 10}
)

engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_pool_kwargs,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async DB session."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create any missing tables for the registered models."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
