"""
Invariant Validator
===================

Checks the eight hard invariants of the pipeline against live state
and rolls them up into a verdict.

Invariants:
- INV-1 Evidence immutability
- INV-2 Rule traceability
- INV-3 No-inference extraction
- INV-4 Conflict resolution integrity
- INV-5 Release hash determinism
- INV-6 Citation compliance
- INV-7 Discovery idempotency
- INV-8 Critical-tier human gate

Verdict: GO when all pass, NO-GO when any fails, CONDITIONAL-GO when
none fail but some are partial.

Version: 0.1.0
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import (
    DiscoveredItemModel,
    EvidenceModel,
    ExtractionRejectionModel,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    SourcePointerModel,
    rule_source_pointers,
)
from services.regulatory_truth.services.evidence import EvidenceStore
from services.regulatory_truth.services.extraction import RejectionType, find_quote_in_evidence
from services.regulatory_truth.services.release import Releaser
from shared.logging import get_logger
from shared.models.regulation import (
    AUTO_APPROVE_SYSTEM,
    SYSTEM_IDENTITIES,
    ConflictStatus,
    RiskTier,
    RuleStatus,
)


logger = get_logger(__name__)


# Identifiers listed in details before truncating
MAX_LISTED = 5


class InvariantStatus(str, Enum):
    """Outcome of one invariant check."""

    PASS = "PASS"
    FAIL = "FAIL"
    PARTIAL = "PARTIAL"


class Verdict(str, Enum):
    """Overall system verdict."""

    GO = "GO"
    NO_GO = "NO-GO"
    CONDITIONAL_GO = "CONDITIONAL-GO"
    INVALID = "INVALID"


class InvariantResult(BaseModel):
    """Result of one invariant check."""

    id: str = Field(..., description="Invariant ID (INV-1 .. INV-8)")
    name: str
    description: str
    status: InvariantStatus
    details: str
    metrics: dict[str, Any] = Field(default_factory=dict)


class InvariantReport(BaseModel):
    """All invariant results plus the verdict."""

    results: dict[str, InvariantResult] = Field(default_factory=dict)
    verdict: Verdict
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def failing(self) -> list[str]:
        return [r.id for r in self.results.values() if r.status == InvariantStatus.FAIL]

    @property
    def partial(self) -> list[str]:
        return [r.id for r in self.results.values() if r.status == InvariantStatus.PARTIAL]

    def summary(self) -> dict[str, int]:
        counts = {s.value: 0 for s in InvariantStatus}
        for result in self.results.values():
            counts[result.status.value] += 1
        return counts


def compute_verdict(results: list[InvariantResult]) -> Verdict:
    """Any FAIL is NO-GO; otherwise any PARTIAL is CONDITIONAL-GO; otherwise GO."""
    statuses = {r.status for r in results}
    if InvariantStatus.FAIL in statuses:
        return Verdict.NO_GO
    if InvariantStatus.PARTIAL in statuses:
        return Verdict.CONDITIONAL_GO
    return Verdict.GO


def _proportional(invalid: int, valid: int) -> InvariantStatus:
    if invalid == 0:
        return InvariantStatus.PASS
    return InvariantStatus.PARTIAL if valid > 0 else InvariantStatus.FAIL


def _listed(items: list[str]) -> str:
    shown = ", ".join(items[:MAX_LISTED])
    return f"{shown}, ..." if len(items) > MAX_LISTED else shown


class InvariantValidator:
    """Runs the invariant checks in one read-only session."""

    def __init__(
        self,
        evidence_store: EvidenceStore | None = None,
        releaser: Releaser | None = None,
    ) -> None:
        self.evidence_store = evidence_store or EvidenceStore()
        self.releaser = releaser or Releaser()

    async def check_evidence_immutability(self, db: AsyncSession) -> InvariantResult:
        """INV-1: stored content hash equals the recomputed hash."""
        result = await db.execute(select(EvidenceModel))
        evidence = list(result.scalars().all())
        invalid = [e.id for e in evidence if not self.evidence_store.verify(e)]
        valid = len(evidence) - len(invalid)

        return InvariantResult(
            id="INV-1",
            name="Evidence Immutability",
            description="contentHash matches the hash of the normalized raw content",
            status=_proportional(len(invalid), valid),
            details=(
                f"All {valid} evidence records have valid hashes"
                if not invalid
                else f"{len(invalid)}/{len(evidence)} records have invalid hashes: {_listed(invalid)}"
            ),
            metrics={"valid": valid, "invalid": len(invalid), "total": len(evidence)},
        )

    async def check_rule_traceability(self, db: AsyncSession) -> InvariantResult:
        """INV-2: every non-draft rule cites pointers whose evidence exists."""
        rules_result = await db.execute(
            select(RegulatoryRuleModel.id, RegulatoryRuleModel.concept_slug).where(
                RegulatoryRuleModel.status != RuleStatus.DRAFT.value
            )
        )
        rules = rules_result.all()

        chain_result = await db.execute(
            select(rule_source_pointers.c.rule_id, SourcePointerModel.id, EvidenceModel.id)
            .select_from(rule_source_pointers)
            .outerjoin(SourcePointerModel, SourcePointerModel.id == rule_source_pointers.c.pointer_id)
            .outerjoin(EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id)
        )
        pointer_counts: dict[str, int] = {}
        broken: set[str] = set()
        for rule_id, pointer_id, evidence_id in chain_result.all():
            pointer_counts[rule_id] = pointer_counts.get(rule_id, 0) + 1
            if pointer_id is None or evidence_id is None:
                broken.add(rule_id)

        orphans = [
            f"{slug} ({pointer_counts.get(rule_id, 0)} pointers)"
            for rule_id, slug in rules
            if pointer_counts.get(rule_id, 0) == 0 or rule_id in broken
        ]
        valid = len(rules) - len(orphans)

        return InvariantResult(
            id="INV-2",
            name="Rule Traceability",
            description="Every non-draft rule links to source pointers with existing evidence",
            status=_proportional(len(orphans), valid),
            details=(
                f"All {valid} rules have complete citation chains"
                if not orphans
                else f"{len(orphans)}/{len(rules)} rules lack source documentation: {_listed(orphans)}"
            ),
            metrics={"valid": valid, "orphan": len(orphans), "total": len(rules)},
        )

    async def check_no_inference(self, db: AsyncSession) -> InvariantResult:
        """
        INV-3: extraction rejects values without a quote match.

        Fails when a stored pointer's quote cannot be found in its
        evidence. Partial when there has been no extraction activity.
        """
        result = await db.execute(
            select(SourcePointerModel.id, SourcePointerModel.exact_quote, EvidenceModel.raw_content).join(
                EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id
            )
        )
        pointers = result.all()
        unmatched = [pid for pid, quote, content in pointers if not find_quote_in_evidence(content, quote).found]

        total_rejections = await db.scalar(select(func.count(ExtractionRejectionModel.id))) or 0
        no_quote_match = (
            await db.scalar(
                select(func.count(ExtractionRejectionModel.id)).where(
                    ExtractionRejectionModel.rejection_type == RejectionType.NO_QUOTE_MATCH.value
                )
            )
            or 0
        )

        if unmatched:
            status = InvariantStatus.FAIL
            details = f"{len(unmatched)} source pointers quote text absent from their evidence: {_listed(unmatched)}"
        elif not pointers and total_rejections == 0:
            status = InvariantStatus.PARTIAL
            details = "No extraction activity to verify"
        else:
            status = InvariantStatus.PASS
            details = (
                f"{len(pointers)} pointers verified; {no_quote_match} extractions rejected "
                f"for NO_QUOTE_MATCH ({total_rejections} total rejections)"
            )

        return InvariantResult(
            id="INV-3",
            name="No Inference Extraction",
            description="Extracted values must appear verbatim in source quotes",
            status=status,
            details=details,
            metrics={
                "pointers": len(pointers),
                "unmatchedPointers": len(unmatched),
                "noQuoteMatchRejections": no_quote_match,
                "totalRejections": total_rejections,
            },
        )

    async def check_conflict_resolution(self, db: AsyncSession) -> InvariantResult:
        """INV-4: no RESOLVED conflict lacks both a winning item and a human resolver."""
        result = await db.execute(
            select(
                RegulatoryConflictModel.id,
                RegulatoryConflictModel.resolution,
                RegulatoryConflictModel.resolved_by,
            ).where(RegulatoryConflictModel.status == ConflictStatus.RESOLVED.value)
        )
        resolved = result.all()

        without_evidence = []
        for conflict_id, resolution, resolved_by in resolved:
            has_winner = bool((resolution or {}).get("winningItemId"))
            human = bool(resolved_by) and resolved_by not in SYSTEM_IDENTITIES
            if not has_winner and not human:
                without_evidence.append(conflict_id)

        escalated = (
            await db.scalar(
                select(func.count(RegulatoryConflictModel.id)).where(
                    RegulatoryConflictModel.status == ConflictStatus.ESCALATED.value
                )
            )
            or 0
        )

        return InvariantResult(
            id="INV-4",
            name="Conflict Resolution Integrity",
            description="Conflicts cannot be auto-resolved without evidence",
            status=InvariantStatus.FAIL if without_evidence else InvariantStatus.PASS,
            details=(
                f"0 conflicts resolved without evidence ({escalated} escalated, {len(resolved)} resolved)"
                if not without_evidence
                else f"{len(without_evidence)} conflicts resolved without evidence: {_listed(without_evidence)}"
            ),
            metrics={
                "resolvedWithoutEvidence": len(without_evidence),
                "escalated": escalated,
                "resolved": len(resolved),
            },
        )

    async def check_release_hashes(self, db: AsyncSession) -> InvariantResult:
        """INV-5: every release hash recomputes identically."""
        verifications = await self.releaser.verify_all(db)
        invalid = [v.version for v in verifications if not v.valid]
        valid = len(verifications) - len(invalid)

        return InvariantResult(
            id="INV-5",
            name="Release Hash Determinism",
            description="Same rule content always produces the same release hash",
            status=_proportional(len(invalid), valid),
            details=(
                f"All {valid} releases have valid deterministic hashes"
                if not invalid
                else f"{len(invalid)}/{len(verifications)} releases have hash mismatches: {_listed(invalid)}"
            ),
            metrics={"valid": valid, "invalid": len(invalid), "total": len(verifications)},
        )

    async def check_citation_compliance(self, db: AsyncSession) -> InvariantResult:
        """INV-6: every PUBLISHED rule has at least one source pointer."""
        cited = select(rule_source_pointers.c.rule_id)
        total = (
            await db.scalar(
                select(func.count(RegulatoryRuleModel.id)).where(
                    RegulatoryRuleModel.status == RuleStatus.PUBLISHED.value
                )
            )
            or 0
        )
        result = await db.execute(
            select(RegulatoryRuleModel.id).where(
                RegulatoryRuleModel.status == RuleStatus.PUBLISHED.value,
                RegulatoryRuleModel.id.not_in(cited),
            )
        )
        uncited = list(result.scalars().all())

        return InvariantResult(
            id="INV-6",
            name="Citation Compliance",
            description="Only PUBLISHED rules with source pointers may be cited",
            status=InvariantStatus.FAIL if uncited else InvariantStatus.PASS,
            details=(
                f"All {total} PUBLISHED rules have source citations"
                if not uncited
                else f"{len(uncited)}/{total} PUBLISHED rules lack source citations: {_listed(uncited)}"
            ),
            metrics={"publishedWithoutSources": len(uncited), "totalPublished": total},
        )

    async def check_discovery_idempotency(self, db: AsyncSession) -> InvariantResult:
        """INV-7: no duplicate (endpoint, URL) discovery records."""
        result = await db.execute(
            select(DiscoveredItemModel.endpoint_id, DiscoveredItemModel.url, func.count(DiscoveredItemModel.id))
            .group_by(DiscoveredItemModel.endpoint_id, DiscoveredItemModel.url)
            .having(func.count(DiscoveredItemModel.id) > 1)
        )
        duplicates = result.all()
        total = await db.scalar(select(func.count(DiscoveredItemModel.id))) or 0

        return InvariantResult(
            id="INV-7",
            name="Discovery Idempotency",
            description="Re-running discovery produces no duplicate items",
            status=InvariantStatus.FAIL if duplicates else InvariantStatus.PASS,
            details=(
                f"0 duplicate discoveries ({total} total items)"
                if not duplicates
                else f"{len(duplicates)} duplicate (endpoint, url) combinations found"
            ),
            metrics={"duplicates": len(duplicates), "total": total},
        )

    async def check_human_gate(self, db: AsyncSession) -> InvariantResult:
        """INV-8: no T0/T1 rule carries an automated approver."""
        critical = (RiskTier.T0.value, RiskTier.T1.value)
        result = await db.execute(
            select(RegulatoryRuleModel.id).where(
                RegulatoryRuleModel.risk_tier.in_(critical),
                RegulatoryRuleModel.approved_by.in_(sorted(SYSTEM_IDENTITIES)),
            )
        )
        auto_approved = list(result.scalars().all())
        total = (
            await db.scalar(
                select(func.count(RegulatoryRuleModel.id)).where(RegulatoryRuleModel.risk_tier.in_(critical))
            )
            or 0
        )

        return InvariantResult(
            id="INV-8",
            name="Critical-Tier Human Gate",
            description=f"T0/T1 rules are never approved by {AUTO_APPROVE_SYSTEM} or another system identity",
            status=InvariantStatus.FAIL if auto_approved else InvariantStatus.PASS,
            details=(
                f"0 T0/T1 rules auto-approved ({total} total)"
                if not auto_approved
                else f"{len(auto_approved)} T0/T1 rules auto-approved: {_listed(auto_approved)}"
            ),
            metrics={"autoApprovedCritical": len(auto_approved), "totalT0T1": total},
        )

    @property
    def checks(self) -> list[Callable[[AsyncSession], Awaitable[InvariantResult]]]:
        return [
            self.check_evidence_immutability,
            self.check_rule_traceability,
            self.check_no_inference,
            self.check_conflict_resolution,
            self.check_release_hashes,
            self.check_citation_compliance,
            self.check_discovery_idempotency,
            self.check_human_gate,
        ]

    async def validate(self, db: AsyncSession) -> InvariantReport:
        """
        Run all eight checks and compute the verdict.

        Database errors propagate; the caller decides whether that makes
        the run INVALID.
        """
        results: dict[str, InvariantResult] = {}
        for check in self.checks:
            result = await check(db)
            results[result.id] = result
            log = logger.info if result.status == InvariantStatus.PASS else logger.warning
            log("invariant_checked", invariant=result.id, status=result.status.value, details=result.details)

        report = InvariantReport(results=results, verdict=compute_verdict(list(results.values())))
        logger.info("invariants_validated", verdict=report.verdict.value, **report.summary())
        return report
