#!/usr/bin/env python3
"""
Live Run Script
===============

Run the pipeline phases against the configured database, validate the
invariants and print the verdict.

Without extraction or composition collaborators the run covers review,
arbitration, release, graph rebuild and repair over what is already
stored.

Usage:
    python scripts/run_live.py
    python scripts/run_live.py --no-heartbeat --artifacts-dir artifacts/
    python scripts/run_live.py --source vat-act=https://gov.example/vat@1

Exit codes: 0 GO, 1 NO-GO or INVALID, 2 CONDITIONAL-GO.

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.config import settings
from shared.logging import get_logger, setup_logging

setup_logging(log_level=settings.log_level.value, json_logs=settings.is_production, service_name="live-run")
logger = get_logger(__name__)


EXIT_CODES = {"GO": 0, "NO-GO": 1, "INVALID": 1, "CONDITIONAL-GO": 2}


async def main(args: argparse.Namespace) -> int:
    """Run once and map the verdict to an exit code."""
    from services.regulatory_truth.e2e.fetcher import HttpDocumentFetcher, parse_source
    from services.regulatory_truth.e2e.runner import LiveRunner
    from shared.database.postgres import PostgresClient

    config = settings.pipeline
    if args.artifacts_dir:
        config = config.model_copy(update={"artifacts_dir": Path(args.artifacts_dir)})

    try:
        sources = [parse_source(value) for value in args.source]
    except ValueError as e:
        logger.error("invalid_source", error=str(e))
        return 1

    try:
        await PostgresClient.create_all()
        async with HttpDocumentFetcher(timeout=config.fetch_timeout_seconds) as fetcher:
            runner = LiveRunner(
                PostgresClient.get_session_factory(),
                config,
                fetcher=fetcher if sources else None,
                sources=sources,
            )
            report = await runner.run(heartbeat=not args.no_heartbeat)
    finally:
        await PostgresClient.close()

    for phase in report.phases:
        logger.info("phase_summary", phase=phase.phase, success=phase.success, **phase.metrics)
    if report.invariants:
        logger.info("invariant_summary", **report.invariants.summary())
    logger.info("verdict", verdict=report.verdict.value, artifact=report.artifact_path)

    return EXIT_CODES[report.verdict.value]


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the regulatory truth pipeline and validate invariants",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--no-heartbeat",
        action="store_true",
        help="Skip the synthetic heartbeat conflict",
    )
    parser.add_argument(
        "--artifacts-dir",
        default=None,
        help="Directory for the JSON run report",
    )
    parser.add_argument(
        "--source",
        action="append",
        default=[],
        metavar="ID=URL[@HIERARCHY]",
        help="Source to fetch before the other phases (repeatable)",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    sys.exit(asyncio.run(main(args)))
