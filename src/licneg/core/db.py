"""
Database setup for the negotiation agent.

This module provides an asynchronous SQLAlchemy engine, a session factory
and helpers for creating the schema programmatically in development and
testing.

PostgreSQL (through ``asyncpg``) is used in production. Tests point
``DATABASE_URL`` at a SQLite file served by ``aiosqlite``.
"""
from __future__ import annotations

import contextlib
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


class Base(DeclarativeBase):  # type: ignore[call-arg]
    """Base class for declarative SQLAlchemy models.

    See ``licneg/core/models.py`` for the actual model definitions.
    """

    pass


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Return a cached asynchronous SQLAlchemy engine.

    The database URL is read from the current settings. Tests that change
    ``DATABASE_URL`` must clear this cache (and the session factory cache)
    to get a fresh engine.
    """
    settings = get_settings()
    return create_async_engine(settings.database_url, echo=False)


@lru_cache(maxsize=1)
def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return a cached session factory bound to the current engine."""
    return async_sessionmaker(bind=get_engine(), expire_on_commit=False, class_=AsyncSession)


@contextlib.asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Asynchronous context manager that yields a database session.

    The session is committed when the block exits normally and rolled back
    if it raises.

    >>> async with get_db_session() as session:
    ...     result = await session.execute(select(Negotiation).where(...))
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db_schema() -> None:
    """Create all tables in the database.

    Used in development and testing where migrations may not have run.
    Production deployments apply the Alembic revisions instead.
    """
    # Import models so that they are registered on the metadata
    from . import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the cached engine."""
    engine = get_engine()
    await engine.dispose()
    get_async_session_factory.cache_clear()
    get_engine.cache_clear()
