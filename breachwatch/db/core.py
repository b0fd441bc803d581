"""
Engine and session factory construction.

Production runs on PostgreSQL (``postgresql+asyncpg://``); local runs and tests
may point ``DATABASE_URL`` at SQLite through aiosqlite.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.asyncio import create_async_engine as sa_create_async_engine
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)


def _normalize_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_from_url(url: str) -> AsyncEngine:
    db_url = _normalize_url(url)
    backend = db_url.split(":", 1)[0]
    if backend.startswith("sqlite"):
        logger.info("DB_ASYNC_ENGINE_INIT", extra={"meta": {"backend": backend, "pool_class": "NullPool"}})
        return sa_create_async_engine(db_url, poolclass=NullPool, future=True, echo=False)

    logger.info(
        "DB_ASYNC_ENGINE_INIT",
        extra={"meta": {"backend": backend, "pool_size": 10, "max_overflow": 20}},
    )
    return sa_create_async_engine(
        db_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_timeout=30,
        future=True,
        echo=False,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Subscribers outlive their session as request-scoped snapshots
    return async_sessionmaker(bind=engine, expire_on_commit=False, future=True)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit when the block exits cleanly, roll back otherwise.

    Usage:
        async with session_scope(session_factory) as session:
            session.add(obj)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


__all__ = ["create_engine_from_url", "create_session_factory", "init_models", "session_scope"]
