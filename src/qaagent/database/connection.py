"""
Database Connection Management

SQLAlchemy engine and session factory for the execution ledger.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from ..config.settings import get_settings

logger = structlog.get_logger()

# SQLAlchemy declarative base
Base = declarative_base()

# Global engine instance
engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Construct async database URL from settings."""
    url = get_settings().database_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


async def init_db(database_url: str | None = None) -> None:
    """Initialize database engine and session factory."""
    global engine, SessionLocal

    if engine is not None:
        logger.warning("database_already_initialized")
        return

    settings = get_settings()
    database_url = database_url or get_database_url()
    logger.info("database_initializing", url=database_url.split("@")[-1])  # Hide credentials

    engine_kwargs: dict = {"echo": settings.debug, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
        )

    engine = create_async_engine(database_url, **engine_kwargs)

    SessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_initialized")


async def create_tables() -> None:
    """Create ledger tables directly (tests and local development; use Alembic otherwise)."""
    if engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    from . import models  # noqa: F401 - register tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database engine and cleanup connections."""
    global engine, SessionLocal

    if engine is None:
        return

    await engine.dispose()
    engine = None
    SessionLocal = None
    logger.info("database_closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the session factory.

    Raises:
        RuntimeError: If database not initialized
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional scope: commit on success, rollback on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get async database session from the global factory.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)

    Raises:
        RuntimeError: If database not initialized
    """
    async with session_scope(get_session_factory()) as session:
        yield session
