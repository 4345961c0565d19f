"""
Synthetic Heartbeat
===================

Liveness probe for the arbiter.

Creates a conflict between two equally weighted, clearly synthetic
source pointers and waits, with a bounded timeout, for the arbiter to
escalate or resolve it.

Version: 0.1.0
"""

import asyncio
import time
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.arbiter import Arbiter
from services.regulatory_truth.services.evidence import EvidenceStore
from services.regulatory_truth.services.extraction import Extractor
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import CandidateFact, ConflictStatus


logger = get_logger(__name__)


HEARTBEAT_CONCEPT = "synthetic-heartbeat"
HEARTBEAT_DOMAIN = "synthetic"
HEARTBEAT_CONFIDENCE = 0.95


@dataclass
class HeartbeatResult:
    """Whether the arbiter processed the synthetic conflict in time."""

    conflict_id: str
    processed: bool
    final_status: str
    elapsed_seconds: float

    def to_dict(self) -> dict[str, object]:
        return {
            "conflict_id": self.conflict_id,
            "processed": self.processed,
            "final_status": self.final_status,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class SyntheticHeartbeat:
    """Creates and watches the synthetic conflict."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        arbiter: Arbiter | None = None,
        config: PipelineSettings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config or get_settings().pipeline
        self.arbiter = arbiter or Arbiter(self.config)
        self.evidence_store = EvidenceStore()
        self.extractor = Extractor(self.evidence_store)

    async def create(self) -> str:
        """Store synthetic evidence, two disagreeing pointers and their conflict."""
        marker = new_id()
        quote_a = f"SYNTHETIC HEARTBEAT {marker} value A"
        quote_b = f"SYNTHETIC HEARTBEAT {marker} value B"

        async with self.session_factory() as db:
            evidence = await self.evidence_store.store(
                db,
                source_url=f"synthetic://heartbeat/{marker}",
                raw_content=f"{quote_a}\n{quote_b}\n",
                content_type="text/plain",
            )
            candidates = [
                CandidateFact(
                    domain=HEARTBEAT_DOMAIN,
                    value_type="text",
                    extracted_value=value,
                    exact_quote=quote,
                    confidence=HEARTBEAT_CONFIDENCE,
                )
                for value, quote in (("A", quote_a), ("B", quote_b))
            ]
            extraction = await self.extractor.extract(db, evidence.id, candidates)
            conflict = await self.arbiter.create_source_conflict(
                db, HEARTBEAT_CONCEPT, HEARTBEAT_DOMAIN, extraction.pointers
            )
            conflict.meta = {**(conflict.meta or {}), "synthetic": True}
            await db.commit()

        logger.info("heartbeat_conflict_created", conflict_id=conflict.id)
        return conflict.id

    async def status(self, conflict_id: str) -> str:
        """Current status of a conflict."""
        async with self.session_factory() as db:
            conflict = await self.arbiter.get_conflict(db, conflict_id)
            return conflict.status

    async def wait_until_processed(
        self,
        conflict_id: str,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> HeartbeatResult:
        """
        Poll until the conflict leaves OPEN or the timeout expires.

        Args:
            conflict_id: Synthetic conflict
            timeout: Seconds to wait (defaults to the configured timeout)
            poll_interval: Seconds between polls

        Returns:
            HeartbeatResult; ``processed`` is False on timeout
        """
        timeout = timeout if timeout is not None else self.config.heartbeat_timeout_seconds
        poll_interval = poll_interval if poll_interval is not None else self.config.heartbeat_poll_interval_seconds

        started = time.monotonic()
        deadline = started + timeout
        while True:
            status = await self.status(conflict_id)
            remaining = deadline - time.monotonic()
            if status != ConflictStatus.OPEN.value or remaining <= 0:
                break
            await asyncio.sleep(min(poll_interval, remaining))

        result = HeartbeatResult(
            conflict_id=conflict_id,
            processed=status != ConflictStatus.OPEN.value,
            final_status=status,
            elapsed_seconds=time.monotonic() - started,
        )
        if result.processed:
            logger.info("heartbeat_processed", **result.to_dict())
        else:
            logger.warning("heartbeat_timeout", **result.to_dict())
        return result

