"""Database connection management for printsync.

Engines and session factories are built from a URL rather than at import
time, so the API, the CLI and tests can each point at their own database.
SQLite (via aiosqlite) is the default; any async SQLAlchemy URL works.

Usage:
    from src.db.connection import create_db_engine, create_session_factory, async_init_db

    engine = create_db_engine("sqlite:///./printsync.db")
    await async_init_db(engine)
    session_factory = create_session_factory(engine)

    async with session_scope(session_factory) as session:
        ...
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///./printsync.db"


def get_database_url(configured: str | None = None) -> str:
    """Resolve the database URL.

    Precedence:
    1. ``configured`` (from FulfillmentConfig.database_url)
    2. DATABASE_URL environment variable
    3. sqlite:///./printsync.db
    """
    if configured and configured.strip():
        return configured.strip()
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url
    return DEFAULT_DATABASE_URL


def to_async_url(url: str) -> str:
    """Convert a sync SQLite URL to its aiosqlite form.

    Converts sqlite:/// to sqlite+aiosqlite:///; other URLs are returned
    unchanged.
    """
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.endswith(":///"))


def create_db_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine for ``url`` (resolved via get_database_url).

    In-memory SQLite uses a StaticPool so every session shares the one
    connection that holds the schema.
    """
    resolved = to_async_url(get_database_url(url))
    kwargs: dict[str, Any] = {
        "echo": os.environ.get("SQL_ECHO", "").lower() == "true",
    }
    if _is_memory_sqlite(resolved):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    engine = create_async_engine(resolved, **kwargs)

    if resolved.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Enable referential integrity (disabled by default in SQLite)."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used by OrderStore and the API."""
    return async_sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Async context manager committing on success and rolling back on error.

    Usage:
        async with session_scope(factory) as session:
            session.add(order)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def async_init_db(engine: AsyncEngine) -> None:
    """Create all tables. Safe to call multiple times."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
