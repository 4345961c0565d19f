"""
Test Configuration
==================

Pytest fixtures for the regulatory truth tests.

Database tests run against an in-memory SQLite database through
aiosqlite; every test gets a fresh schema.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "testing"

from shared.config import PipelineSettings  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def pipeline_config() -> PipelineSettings:
    """Pipeline settings with no delays and sequential batches."""
    return PipelineSettings(
        phase_delay_seconds=0,
        max_concurrency=1,
        heartbeat_timeout_seconds=1.0,
        heartbeat_poll_interval_seconds=0.05,
        fetch_timeout_seconds=5.0,
        fetch_retries=1,
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database with every table created."""
    # Registers the ORM tables on Base.metadata
    import services.regulatory_truth.models  # noqa: F401
    from shared.database.postgres import PostgresClient

    PostgresClient.configure(TEST_DATABASE_URL)
    await PostgresClient.create_all()
    yield PostgresClient.get_session_factory()
    await PostgresClient.close()


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A session on the test database; uncommitted work is discarded."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def regulatory_truth_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Regulatory Truth Service."""
    from services.regulatory_truth.main import app

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
