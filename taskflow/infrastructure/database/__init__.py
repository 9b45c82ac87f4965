"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 async. Production runs on PostgreSQL via asyncpg; the
same code runs on SQLite via aiosqlite for local development and tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from taskflow.config import settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


# Global engine and session maker
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine and session maker.

    Should be called during application startup.

    Args:
        database_url: Override for ``settings.database_url``
    """
    global _engine, _session_maker

    # asyncpg expects ssl= rather than libpq's sslmode=
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")

    engine_kwargs = {"echo": settings.debug, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow

    _engine = create_async_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(_engine)

    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    return _engine


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Make SAVEPOINT work on pysqlite based drivers.

    The driver's own transaction handling is switched off and BEGIN is
    emitted by SQLAlchemy instead, so ``begin_nested`` behaves as on
    PostgreSQL.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


async def close_database() -> None:
    """
    Close the database engine and dispose of connections.

    Should be called during application shutdown.
    """
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async generator for database sessions.

    For use with FastAPI's Depends(); commits on success, rolls back on error.

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    async with get_session_context() as session:
        yield session


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    For use in scheduler jobs and other background work.

    Usage:
        async with get_session_context() as session:
            summary = await build_reminder_service(session, dispatcher, policy).poll()
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """
    Create all database tables.

    This should only be used for development/testing.
    Production should use migrations (Alembic).
    """
    # Register models on Base.metadata
    from taskflow.infrastructure.database import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
