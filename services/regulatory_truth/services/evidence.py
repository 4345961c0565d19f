"""
Evidence Store
==============

Content-addressed, immutable storage of fetched source material.

Features:
- Type-aware content normalization before hashing
- Idempotent storage on (source URL, content hash)
- Hash verification and audited hash repair
- Change detection against a previously seen hash

Version: 0.1.0
"""

import hashlib
import re
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.errors import EvidenceNotFoundError
from services.regulatory_truth.models import EvidenceModel
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.audit import AuditAction, record_audit
from shared.logging import get_logger


logger = get_logger(__name__)


DEFAULT_CONTENT_TYPE = "text/html"

# Content types whose markup is normalized before hashing
HTML_CONTENT_TYPES = frozenset({"text/html", "application/xhtml+xml"})

_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def _base_content_type(content_type: str | None) -> str:
    if not content_type:
        return DEFAULT_CONTENT_TYPE
    return content_type.split(";", 1)[0].strip().lower()


def normalize_content(content: str, content_type: str | None = DEFAULT_CONTENT_TYPE) -> str:
    """
    Normalize content for hashing.

    HTML drops comments and collapses whitespace runs so cosmetic
    re-renders do not look like changes. Every other type is returned
    unchanged.

    Args:
        content: Raw content
        content_type: MIME type, parameters allowed

    Returns:
        Content in hashing form
    """
    if _base_content_type(content_type) not in HTML_CONTENT_TYPES:
        return content

    without_comments = _HTML_COMMENT.sub("", content)
    return _WHITESPACE.sub(" ", without_comments).strip()


def compute_content_hash(content: str, content_type: str | None = DEFAULT_CONTENT_TYPE) -> str:
    """SHA-256 hex digest of the normalized content."""
    normalized = normalize_content(content, content_type)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def detect_content_change(
    content: str,
    previous_hash: str | None,
    content_type: str | None = DEFAULT_CONTENT_TYPE,
) -> tuple[bool, str]:
    """
    Compare content against a previously stored hash.

    Returns:
        (changed, new_hash). A missing previous hash counts as a change.
    """
    new_hash = compute_content_hash(content, content_type)
    return previous_hash is None or new_hash != previous_hash, new_hash


@dataclass
class HashRepair:
    """One evidence record whose stored hash was rewritten."""

    evidence_id: str
    old_hash: str
    new_hash: str


@dataclass
class RepairReport:
    """Outcome of a hash repair pass."""

    checked: int = 0
    repaired: list[HashRepair] = field(default_factory=list)

    @property
    def repaired_count(self) -> int:
        return len(self.repaired)


class EvidenceStore:
    """
    Stores and verifies immutable evidence.

    ``compute_content_hash`` is the only hash function used, both when
    writing and when verifying.
    """

    async def store(
        self,
        db: AsyncSession,
        source_url: str,
        raw_content: str,
        content_type: str | None = DEFAULT_CONTENT_TYPE,
        source_hierarchy: int | None = None,
    ) -> EvidenceModel:
        """
        Store fetched content.

        Identical content fetched again from the same URL returns the
        existing record instead of a duplicate.

        Args:
            db: Database session
            source_url: Where the content was fetched from
            raw_content: Content as fetched
            content_type: MIME type reported by the fetcher
            source_hierarchy: Authority rank of the source (1 strongest)

        Returns:
            The stored evidence
        """
        content_type = content_type or DEFAULT_CONTENT_TYPE
        content_hash = compute_content_hash(raw_content, content_type)

        result = await db.execute(
            select(EvidenceModel).where(
                EvidenceModel.source_url == source_url,
                EvidenceModel.content_hash == content_hash,
            )
        )
        existing = result.scalars().first()
        if existing is not None:
            logger.debug("evidence_unchanged", evidence_id=existing.id, source_url=source_url)
            return existing

        evidence = EvidenceModel(
            id=new_id(),
            source_url=source_url,
            content_type=content_type,
            raw_content=raw_content,
            content_hash=content_hash,
            source_hierarchy=source_hierarchy,
        )
        db.add(evidence)
        await record_audit(
            db,
            AuditAction.EVIDENCE_STORED,
            "evidence",
            evidence.id,
            metadata={"source_url": source_url, "content_hash": content_hash},
        )
        await db.flush()

        logger.info(
            "evidence_stored",
            evidence_id=evidence.id,
            source_url=source_url,
            content_hash=content_hash,
        )
        return evidence

    async def get(self, db: AsyncSession, evidence_id: str) -> EvidenceModel:
        """Load evidence or raise EvidenceNotFoundError."""
        evidence = await db.get(EvidenceModel, evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError(evidence_id)
        return evidence

    def verify(self, evidence: EvidenceModel) -> bool:
        """Check that the stored hash matches the content."""
        return compute_content_hash(evidence.raw_content, evidence.content_type) == evidence.content_hash

    async def find_mismatches(self, db: AsyncSession) -> list[EvidenceModel]:
        """All evidence whose stored hash does not match its content."""
        result = await db.execute(select(EvidenceModel).order_by(EvidenceModel.fetched_at))
        return [e for e in result.scalars().all() if not self.verify(e)]

    async def repair_hashes(
        self,
        db: AsyncSession,
        reason: str = "hash normalization changed",
        performed_by: str | None = None,
    ) -> RepairReport:
        """
        Recompute every evidence hash and rewrite mismatches.

        Each rewrite is audited with the old hash, the new hash and the
        reason.

        Args:
            db: Database session
            reason: Why the repair was run
            performed_by: Operator identity

        Returns:
            RepairReport with every repaired record
        """
        result = await db.execute(select(EvidenceModel).order_by(EvidenceModel.fetched_at))
        report = RepairReport()

        for evidence in result.scalars().all():
            report.checked += 1
            expected = compute_content_hash(evidence.raw_content, evidence.content_type)
            if expected == evidence.content_hash:
                continue

            repair = HashRepair(evidence.id, evidence.content_hash, expected)
            evidence.content_hash = expected
            await record_audit(
                db,
                AuditAction.EVIDENCE_HASH_REPAIRED,
                "evidence",
                evidence.id,
                performed_by=performed_by,
                metadata={"old_hash": repair.old_hash, "new_hash": repair.new_hash, "reason": reason},
            )
            report.repaired.append(repair)
            logger.warning(
                "evidence_hash_repaired",
                evidence_id=evidence.id,
                old_hash=repair.old_hash,
                new_hash=repair.new_hash,
            )

        await db.flush()
        logger.info("evidence_hash_repair_complete", checked=report.checked, repaired=report.repaired_count)
        return report
