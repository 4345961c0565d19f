"""
PostgreSQL Client
=================

Async PostgreSQL client using SQLAlchemy 2.0 with asyncpg.

The engine URL can be overridden (``POSTGRES_DSN`` or ``configure()``)
so tooling and tests can run against another async driver such as
``sqlite+aiosqlite``.

Version: 0.1.0
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ORM models."""

    pass


def _engine_options(url: str) -> dict[str, Any]:
    """Pool options appropriate for the driver in ``url``."""
    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "pool_size": settings.postgres.pool_size,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


class PostgresClient:
    """
    Async database client wrapper.

    Manages connection pooling and session lifecycle.
    """

    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def configure(cls, url: str) -> AsyncEngine:
        """
        Replace the engine with one bound to ``url``.

        Args:
            url: Async SQLAlchemy URL

        Returns:
            The new engine
        """
        cls._engine = create_async_engine(
            url,
            echo=False,
            **_engine_options(url),
        )
        cls._session_factory = None
        logger.info("database_engine_configured", driver=cls._engine.dialect.name)
        return cls._engine

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        """Get or create the async engine."""
        if cls._engine is None:
            url = settings.postgres.async_url
            cls._engine = create_async_engine(
                url,
                echo=settings.debug and not settings.is_testing,
                **_engine_options(url),
            )
            logger.info(
                "postgres_engine_created",
                host=settings.postgres.host,
                database=settings.postgres.db,
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                cls.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def create_all(cls) -> None:
        """Create every table registered on ``Base.metadata``."""
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created", tables=len(Base.metadata.tables))

    @classmethod
    async def close(cls) -> None:
        """Close the engine and release all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("postgres_engine_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            async with cls.get_session_factory()() as session:
                result = await session.execute(text("SELECT 1"))
                _ = result.scalar()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "driver": cls.get_engine().dialect.name,
            }
        except Exception as e:
            logger.error("postgres_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }


async def get_postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that yields a database session.

    Usage:
        @router.get("/rules/{rule_id}")
        async def get_rule(rule_id: str, db: AsyncSession = Depends(get_postgres_session)):
            return await db.get(RegulatoryRuleModel, rule_id)
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def postgres_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Commits when the block exits normally and rolls back on error, so
    each ``async with`` is one unit of work.

    Usage:
        async with postgres_session() as session:
            result = await session.execute(select(EvidenceModel))
    """
    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
