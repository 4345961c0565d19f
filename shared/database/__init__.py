"""
Database Module
===============

Async SQLAlchemy client for the pipeline's relational store.

Usage:
    from shared.database import get_postgres_session, postgres_session

    # In FastAPI
    @router.get("/example")
    async def example(
        db: AsyncSession = Depends(get_postgres_session),
    ):
        result = await db.execute(select(RegulatoryRuleModel))
        ...

    # In batch jobs, one unit of work per block
    async with postgres_session() as db:
        ...
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    get_postgres_session,
    postgres_session,
)


__all__ = [
    "get_postgres_session",
    "postgres_session",
    "PostgresClient",
    "Base",
]
