#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the regulatory truth schema in the configured database.

Usage:
    python scripts/init_databases.py
    python scripts/init_databases.py --url sqlite+aiosqlite:///regtruth.db

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_database(url: str | None) -> bool:
    """Create every table and verify the connection."""
    from sqlalchemy.exc import SQLAlchemyError

    # Registers the ORM tables on Base.metadata
    import services.regulatory_truth.models  # noqa: F401
    from shared.database.postgres import PostgresClient

    logger.info("database_init_started")

    try:
        if url:
            PostgresClient.configure(url)
        await PostgresClient.create_all()

        health = await PostgresClient.health_check()
        if health.get("status") != "healthy":
            logger.error("database_health_check_failed", error=health.get("error"))
            return False

        logger.info("database_initialized", driver=health.get("driver"), latency_ms=health.get("latency_ms"))
        return True

    except SQLAlchemyError as e:
        logger.error("database_init_failed", error=str(e))
        return False

    finally:
        await PostgresClient.close()


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize the regulatory truth database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Async SQLAlchemy URL (defaults to the configured PostgreSQL DSN)",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    ok = asyncio.run(init_database(args.url))
    sys.exit(0 if ok else 1)
