"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
async_sessionmaker for short-lived sessions. Stores open one session per
operation (``async with factory() as db``) instead of sharing a request
session, so background work such as the last-used timestamp update never
rides on a request's transaction.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tollgate.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the engine for the configured database.

    Pool sizing only applies to server databases; SQLite (tests, local
    experiments) uses SQLAlchemy's default pool for file databases.
    """
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=settings.debug)
    # Connection pool: min 5, max 20 connections.
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory — every store operation gets its own session."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
