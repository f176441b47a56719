"""
Database connection management and session handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)

from .config import get_settings
from .models.base import Base
from .cache import init_cache, close_cache

logger = logging.getLogger(__name__)

# Global engine and session factory
engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_database_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine. SQLite URLs (local runs, tests) skip pool tuning."""
    settings = get_settings()
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
        connect_args={
            "server_settings": {
                "application_name": "yogaswiss",
                "timezone": "UTC",
            }
        }
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory for database sessions."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async def init_database(create_tables: bool = True) -> None:
    """Initialize database connection, tables and the Redis cache."""
    global engine, async_session_factory

    logger.info("Initializing database connection...")

    engine = create_database_engine()
    async_session_factory = create_session_factory(engine)

    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    await init_cache()

    logger.info("Database and cache initialized successfully")


async def close_database() -> None:
    """Close database connections."""
    global engine, async_session_factory

    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_factory = None
        logger.info("Database connections closed")

    await close_cache()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session that commits on success and rolls back on error.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(query)
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for getting database sessions.

    Services only flush; the whole request is committed here.
    """
    async with get_db_session() as session:
        yield session
