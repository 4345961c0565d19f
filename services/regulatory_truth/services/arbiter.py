"""
Arbiter
=======

Detects and settles disagreements between candidate facts.

Workflow:
1. Conflicts are opened by the composer (pointers disagree) or by
   ``detect_rule_conflicts`` (rules overlap in time with different values)
2. ``arbitrate`` scores both candidates with a pluggable scorer
3. A clear winner resolves the conflict as ARBITER_SYSTEM; anything
   else escalates to a human
4. ``resolve_manually`` records the human decision

A RESOLVED conflict always carries a winning item or a human resolver.

Version: 0.1.0
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Protocol

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import (
    ConflictNotFoundError,
    ConflictResolutionError,
    PipelineError,
)
from services.regulatory_truth.graph import find_overriding_rules
from services.regulatory_truth.models import (
    EvidenceModel,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    SourcePointerModel,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.audit import AuditAction, record_audit
from services.regulatory_truth.services.review import ReviewService, rule_pointer_ids
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import (
    ARBITER_SYSTEM,
    SYSTEM_IDENTITIES,
    AuthorityLevel,
    ConflictStatus,
    ConflictType,
    RiskTier,
    RuleStatus,
)


logger = get_logger(__name__)


# Rule statuses that take part in temporal conflict detection
CONFLICT_CANDIDATE_STATUSES = (
    RuleStatus.PENDING_REVIEW.value,
    RuleStatus.APPROVED.value,
    RuleStatus.PUBLISHED.value,
)


# =============================================================================
# Candidates and scoring
# =============================================================================


@dataclass
class Candidate:
    """One side of a conflict, reduced to the facts the scorer weighs."""

    item_id: str
    authority_level: AuthorityLevel
    confidence: float
    source_hierarchy: int | None = None
    effective_date: date | None = None
    risk_tier: RiskTier | None = None
    status: str | None = None


class CandidateScorer(Protocol):
    """Scores a candidate; higher is stronger evidence."""

    def score(self, candidate: Candidate, reference_date: date) -> float:
        ...


@dataclass
class AuthorityScorer:
    """
    Weighted blend of authority, source hierarchy, recency and confidence.

    Each component is in [0, 1]. Recency decays with the distance from
    the most recent candidate's date.
    """

    authority_weight: float = 0.4
    hierarchy_weight: float = 0.2
    recency_weight: float = 0.2
    confidence_weight: float = 0.2

    def score(self, candidate: Candidate, reference_date: date) -> float:
        authority = (5 - candidate.authority_level.rank) / 4
        hierarchy = 1.0 / candidate.source_hierarchy if candidate.source_hierarchy else 0.0
        if candidate.effective_date is None:
            recency = 0.0
        else:
            days = max((reference_date - candidate.effective_date).days, 0)
            recency = 1.0 / (1.0 + days / 365)

        return (
            self.authority_weight * authority
            + self.hierarchy_weight * hierarchy
            + self.recency_weight * recency
            + self.confidence_weight * candidate.confidence
        )


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Resolved:
    """The conflict was settled in favour of ``winning_item_id``."""

    conflict_id: str
    winning_item_id: str
    losing_item_id: str
    resolved_by: str
    reason: str
    scores: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Escalated:
    """The evidence did not decide the conflict; a human must."""

    conflict_id: str
    reason: str
    scores: dict[str, float] = field(default_factory=dict)


Resolution = Resolved | Escalated


@dataclass
class ArbitrationBatchResult:
    """Counts from one arbitration pass."""

    processed: int = 0
    resolved: int = 0
    escalated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "resolved": self.resolved,
            "escalated": self.escalated,
            "failed": self.failed,
            "errors": self.errors,
        }


def _windows_overlap(a: RegulatoryRuleModel, b: RegulatoryRuleModel) -> bool:
    a_before_b_ends = b.effective_until is None or a.effective_from < b.effective_until
    b_before_a_ends = a.effective_until is None or b.effective_from < a.effective_until
    return a_before_b_ends and b_before_a_ends


class Arbiter:
    """
    Opens, arbitrates and records decisions on regulatory conflicts.

    Args:
        config: Confidence floor and escalation margin
        scorer: Candidate scoring strategy (defaults to AuthorityScorer)
        review_service: Used to reject losing rules
    """

    def __init__(
        self,
        config: PipelineSettings | None = None,
        scorer: CandidateScorer | None = None,
        review_service: ReviewService | None = None,
    ) -> None:
        self.config = config or get_settings().pipeline
        self.scorer = scorer or AuthorityScorer()
        self.review_service = review_service or ReviewService(self.config)

    async def get_conflict(self, db: AsyncSession, conflict_id: str) -> RegulatoryConflictModel:
        """Load a conflict or raise ConflictNotFoundError."""
        conflict = await db.get(RegulatoryConflictModel, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id)
        return conflict

    # =========================================================================
    # Detection
    # =========================================================================

    async def create_source_conflict(
        self,
        db: AsyncSession,
        concept_slug: str,
        domain: str,
        pointers: Sequence[SourcePointerModel],
    ) -> RegulatoryConflictModel:
        """
        Open a SOURCE_CONFLICT for pointers in one domain that disagree.

        The first two distinct values become items A and B; every
        involved pointer ID is kept in ``metadata.source_pointer_ids``.
        """
        by_value: dict[str, SourcePointerModel] = {}
        for pointer in sorted(pointers, key=lambda p: p.id):
            by_value.setdefault(pointer.extracted_value, pointer)
        first, second = list(by_value.values())[:2]

        conflict = RegulatoryConflictModel(
            id=new_id(),
            conflict_type=ConflictType.SOURCE_CONFLICT.value,
            status=ConflictStatus.OPEN.value,
            concept_slug=concept_slug,
            description=(
                f"Source pointers for {concept_slug} ({domain}) disagree: "
                + " vs ".join(repr(v) for v in sorted(by_value))
            ),
            item_a_id=first.id,
            item_b_id=second.id,
            meta={
                "domain": domain,
                "source_pointer_ids": sorted(p.id for p in pointers),
                "values": sorted(by_value),
            },
        )
        db.add(conflict)
        await record_audit(
            db,
            AuditAction.CONFLICT_CREATED,
            "conflict",
            conflict.id,
            metadata={"conflict_type": conflict.conflict_type, "concept_slug": concept_slug},
        )
        await db.flush()
        logger.info("source_conflict_created", conflict_id=conflict.id, concept_slug=concept_slug, domain=domain)
        return conflict

    async def _pair_has_conflict(self, db: AsyncSession, a_id: str, b_id: str) -> bool:
        result = await db.execute(
            select(RegulatoryConflictModel.id).where(
                RegulatoryConflictModel.conflict_type == ConflictType.TEMPORAL_CONFLICT.value,
                or_(
                    and_(RegulatoryConflictModel.item_a_id == a_id, RegulatoryConflictModel.item_b_id == b_id),
                    and_(RegulatoryConflictModel.item_a_id == b_id, RegulatoryConflictModel.item_b_id == a_id),
                ),
            )
        )
        return result.first() is not None

    async def detect_rule_conflicts(self, db: AsyncSession, concept_slug: str | None = None) -> list[str]:
        """
        Open TEMPORAL_CONFLICTs for rules that overlap with different values.

        Each pair of rules is only ever recorded once.

        Args:
            db: Database session
            concept_slug: Restrict detection to one concept

        Returns:
            IDs of the conflicts created
        """
        query = select(RegulatoryRuleModel).where(RegulatoryRuleModel.status.in_(CONFLICT_CANDIDATE_STATUSES))
        if concept_slug is not None:
            query = query.where(RegulatoryRuleModel.concept_slug == concept_slug)
        result = await db.execute(query.order_by(RegulatoryRuleModel.concept_slug, RegulatoryRuleModel.id))

        by_slug: dict[str, list[RegulatoryRuleModel]] = {}
        for rule in result.scalars().all():
            by_slug.setdefault(rule.concept_slug, []).append(rule)

        created: list[str] = []
        for slug, rules in by_slug.items():
            for i, a in enumerate(rules):
                for b in rules[i + 1 :]:
                    if a.value == b.value or not _windows_overlap(a, b):
                        continue
                    if await self._pair_has_conflict(db, a.id, b.id):
                        continue

                    conflict = RegulatoryConflictModel(
                        id=new_id(),
                        conflict_type=ConflictType.TEMPORAL_CONFLICT.value,
                        status=ConflictStatus.OPEN.value,
                        concept_slug=slug,
                        description=(
                            f"Rules for {slug} overlap in time with different values: "
                            f"{a.value!r} vs {b.value!r}"
                        ),
                        item_a_id=a.id,
                        item_b_id=b.id,
                        meta={"rule_ids": [a.id, b.id]},
                    )
                    db.add(conflict)
                    await record_audit(
                        db,
                        AuditAction.CONFLICT_CREATED,
                        "conflict",
                        conflict.id,
                        metadata={"conflict_type": conflict.conflict_type, "concept_slug": slug},
                    )
                    await db.flush()
                    created.append(conflict.id)

        if created:
            logger.info("rule_conflicts_detected", count=len(created), concept_slug=concept_slug)
        return created

    # =========================================================================
    # Candidate loading
    # =========================================================================

    async def _pointer_candidate(self, db: AsyncSession, pointer_id: str) -> Candidate | None:
        result = await db.execute(
            select(SourcePointerModel, EvidenceModel)
            .join(EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id)
            .where(SourcePointerModel.id == pointer_id)
        )
        row = result.first()
        if row is None:
            return None
        pointer, evidence = row
        return Candidate(
            item_id=pointer.id,
            authority_level=AuthorityLevel.from_source_hierarchy(evidence.source_hierarchy),
            confidence=pointer.confidence,
            source_hierarchy=evidence.source_hierarchy,
            effective_date=evidence.fetched_at.date() if evidence.fetched_at else None,
        )

    async def _rule_candidate(self, db: AsyncSession, rule_id: str) -> Candidate | None:
        rule = await db.get(RegulatoryRuleModel, rule_id)
        if rule is None:
            return None

        hierarchy_result = await db.execute(
            select(EvidenceModel.source_hierarchy)
            .join(SourcePointerModel, SourcePointerModel.evidence_id == EvidenceModel.id)
            .where(SourcePointerModel.id.in_(await rule_pointer_ids(db, rule_id)))
        )
        hierarchies = [h for h in hierarchy_result.scalars().all() if h is not None]

        return Candidate(
            item_id=rule.id,
            authority_level=AuthorityLevel(rule.authority_level),
            confidence=rule.confidence,
            source_hierarchy=min(hierarchies) if hierarchies else None,
            effective_date=rule.effective_from,
            risk_tier=RiskTier(rule.risk_tier),
            status=rule.status,
        )

    async def load_candidates(
        self,
        db: AsyncSession,
        conflict: RegulatoryConflictModel,
    ) -> list[Candidate | None]:
        """Both sides of a conflict; a side that no longer exists is None."""
        loader = (
            self._rule_candidate
            if conflict.conflict_type == ConflictType.TEMPORAL_CONFLICT.value
            else self._pointer_candidate
        )
        return [await loader(db, conflict.item_a_id), await loader(db, conflict.item_b_id)]

    # =========================================================================
    # Arbitration
    # =========================================================================

    def decide(self, conflict_id: str, candidates: list[Candidate]) -> Resolution:
        """
        Pure decision over two loaded candidates.

        Escalates when either candidate is below the confidence floor,
        when both are T0, or when the top score does not beat the
        runner-up by the configured margin.
        """
        low = [c.item_id for c in candidates if c.confidence < self.config.arbiter_min_confidence]
        if low:
            return Escalated(
                conflict_id,
                f"Candidate confidence below {self.config.arbiter_min_confidence:.2f}: {', '.join(low)}",
            )

        if all(c.risk_tier == RiskTier.T0 for c in candidates):
            return Escalated(conflict_id, "Both candidates are T0; a human must decide")

        reference = max((c.effective_date for c in candidates if c.effective_date), default=date.today())
        scores = {c.item_id: round(self.scorer.score(c, reference), 6) for c in candidates}
        ranked = sorted(candidates, key=lambda c: scores[c.item_id], reverse=True)
        winner, runner_up = ranked[0], ranked[1]
        margin = round(scores[winner.item_id] - scores[runner_up.item_id], 6)

        if margin < self.config.arbiter_escalation_margin:
            return Escalated(
                conflict_id,
                f"Scores too close to decide (margin {margin:.3f} < {self.config.arbiter_escalation_margin:.3f})",
                scores,
            )

        return Resolved(
            conflict_id=conflict_id,
            winning_item_id=winner.item_id,
            losing_item_id=runner_up.item_id,
            resolved_by=ARBITER_SYSTEM,
            reason=f"{winner.item_id} outscored {runner_up.item_id} by {margin:.3f}",
            scores=scores,
        )

    async def _escalate(self, db: AsyncSession, conflict: RegulatoryConflictModel, outcome: Escalated) -> Escalated:
        conflict.status = ConflictStatus.ESCALATED.value
        conflict.requires_human_review = True
        conflict.escalation_reason = outcome.reason
        if outcome.scores:
            conflict.meta = {**(conflict.meta or {}), "scores": outcome.scores}

        await record_audit(
            db,
            AuditAction.CONFLICT_ESCALATED,
            "conflict",
            conflict.id,
            performed_by=ARBITER_SYSTEM,
            metadata={"reason": outcome.reason, "scores": outcome.scores},
        )
        await db.flush()
        logger.warning("conflict_escalated", conflict_id=conflict.id, reason=outcome.reason)
        return outcome

    async def arbitrate(self, db: AsyncSession, conflict_id: str) -> Resolution:
        """
        Settle an OPEN conflict or escalate it.

        A resolved rule conflict rejects the losing rule. When the loser
        is already PUBLISHED the conflict escalates instead.

        Args:
            db: Database session
            conflict_id: Conflict to arbitrate

        Returns:
            Resolved or Escalated

        Raises:
            ConflictNotFoundError: if the conflict does not exist
            ConflictResolutionError: if the conflict is not OPEN
        """
        conflict = await self.get_conflict(db, conflict_id)
        if conflict.status != ConflictStatus.OPEN.value:
            raise ConflictResolutionError(
                f"Conflict {conflict_id} is {conflict.status}; only OPEN conflicts are arbitrated",
                {"conflict_id": conflict_id, "status": conflict.status},
            )

        loaded = await self.load_candidates(db, conflict)
        if any(c is None for c in loaded):
            missing = [item for item, c in zip((conflict.item_a_id, conflict.item_b_id), loaded) if c is None]
            return await self._escalate(
                db, conflict, Escalated(conflict_id, f"Candidate no longer exists: {', '.join(map(str, missing))}")
            )

        candidates = [c for c in loaded if c is not None]
        outcome = self.decide(conflict_id, candidates)
        if isinstance(outcome, Escalated):
            return await self._escalate(db, conflict, outcome)

        if conflict.conflict_type == ConflictType.TEMPORAL_CONFLICT.value:
            loser = next(c for c in candidates if c.item_id == outcome.losing_item_id)
            if loser.status == RuleStatus.PUBLISHED.value:
                return await self._escalate(
                    db,
                    conflict,
                    Escalated(conflict_id, f"Losing rule {loser.item_id} is already published", outcome.scores),
                )
            if loser.status != RuleStatus.REJECTED.value:
                await self.review_service.reject(
                    db,
                    loser.item_id,
                    reason=f"Lost conflict {conflict_id}: {outcome.reason}",
                    actor=ARBITER_SYSTEM,
                )

        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolved_by = outcome.resolved_by
        conflict.resolved_at = datetime.now(UTC)
        conflict.resolution = {
            "winningItemId": outcome.winning_item_id,
            "losingItemId": outcome.losing_item_id,
            "reason": outcome.reason,
            "scores": outcome.scores,
            "strategy": type(self.scorer).__name__,
        }
        await record_audit(
            db,
            AuditAction.CONFLICT_RESOLVED,
            "conflict",
            conflict.id,
            performed_by=outcome.resolved_by,
            metadata={"winning_item_id": outcome.winning_item_id, "reason": outcome.reason},
        )
        await db.flush()

        logger.info(
            "conflict_resolved",
            conflict_id=conflict_id,
            winning_item_id=outcome.winning_item_id,
            scores=outcome.scores,
        )
        return outcome

    async def resolve_manually(
        self,
        db: AsyncSession,
        conflict_id: str,
        resolver: str,
        winning_item_id: str | None = None,
        notes: str | None = None,
    ) -> RegulatoryConflictModel:
        """
        Record a human decision on an OPEN or ESCALATED conflict.

        For rule conflicts, a named winner rejects the other rule if it
        has not been published.

        Raises:
            ConflictResolutionError: if the resolver is empty or a system
                identity, the conflict is already resolved, or the winner
                is not one of the conflict's items
        """
        if not resolver or not resolver.strip() or resolver in SYSTEM_IDENTITIES:
            raise ConflictResolutionError(
                "Manual resolution requires a human resolver",
                {"conflict_id": conflict_id, "resolver": resolver},
            )

        conflict = await self.get_conflict(db, conflict_id)
        if conflict.status == ConflictStatus.RESOLVED.value:
            raise ConflictResolutionError(
                f"Conflict {conflict_id} is already resolved",
                {"conflict_id": conflict_id},
            )

        items = (conflict.item_a_id, conflict.item_b_id)
        if winning_item_id is not None and winning_item_id not in items:
            raise ConflictResolutionError(
                f"{winning_item_id} is not part of conflict {conflict_id}",
                {"conflict_id": conflict_id, "winning_item_id": winning_item_id},
            )

        if winning_item_id is not None and conflict.conflict_type == ConflictType.TEMPORAL_CONFLICT.value:
            loser_id = items[1] if winning_item_id == items[0] else items[0]
            loser = await db.get(RegulatoryRuleModel, loser_id)
            if loser is not None and loser.status not in (RuleStatus.PUBLISHED.value, RuleStatus.REJECTED.value):
                await self.review_service.reject(
                    db, loser_id, reason=f"Lost conflict {conflict_id} by human decision", actor=resolver
                )

        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolved_by = resolver.strip()
        conflict.resolved_at = datetime.now(UTC)
        conflict.requires_human_review = False
        conflict.resolution = {"winningItemId": winning_item_id, "notes": notes, "strategy": "manual"}

        await record_audit(
            db,
            AuditAction.CONFLICT_RESOLVED,
            "conflict",
            conflict.id,
            performed_by=conflict.resolved_by,
            metadata={"winning_item_id": winning_item_id, "notes": notes},
        )
        await db.flush()
        logger.info("conflict_resolved_manually", conflict_id=conflict_id, resolver=conflict.resolved_by)
        return conflict

    async def open_conflict_ids(self, db: AsyncSession) -> list[str]:
        """IDs of OPEN conflicts, oldest first."""
        result = await db.execute(
            select(RegulatoryConflictModel.id)
            .where(RegulatoryConflictModel.status == ConflictStatus.OPEN.value)
            .order_by(RegulatoryConflictModel.created_at, RegulatoryConflictModel.id)
        )
        return list(result.scalars().all())

    async def arbitrate_batch(self, session_factory: async_sessionmaker[AsyncSession]) -> ArbitrationBatchResult:
        """
        Arbitrate every OPEN conflict, one transaction per conflict.

        A failing conflict is rolled back and counted; the rest continue.
        """
        batch = ArbitrationBatchResult()
        async with session_factory() as db:
            conflict_ids = await self.open_conflict_ids(db)

        for conflict_id in conflict_ids:
            batch.processed += 1
            async with session_factory() as db:
                try:
                    outcome = await self.arbitrate(db, conflict_id)
                    await db.commit()
                except PipelineError as e:
                    await db.rollback()
                    batch.failed += 1
                    batch.errors.append(f"{conflict_id}: {e.message}")
                    logger.error("arbitration_failed", conflict_id=conflict_id, error=e.message)
                    continue

            if isinstance(outcome, Resolved):
                batch.resolved += 1
            else:
                batch.escalated += 1

        logger.info("arbitration_batch_complete", **batch.to_dict())
        return batch

    # =========================================================================
    # Precedence
    # =========================================================================

    async def resolve_rule_precedence(
        self,
        db: AsyncSession,
        rules: Sequence[RegulatoryRuleModel],
    ) -> RegulatoryRuleModel:
        """
        Pick the rule that takes precedence among several.

        A rule overriding another candidate wins first; then the
        strongest authority level; then the most recent effective date.

        Raises:
            ValueError: if no rules are given
        """
        if not rules:
            raise ValueError("resolve_rule_precedence requires at least one rule")

        ids = {r.id for r in rules}
        overridden: set[str] = set()
        for rule in rules:
            for overrider in await find_overriding_rules(db, rule.id, self.config.graph_namespace):
                if overrider in ids:
                    overridden.add(rule.id)

        remaining = [r for r in rules if r.id not in overridden] or list(rules)
        return min(
            remaining,
            key=lambda r: (AuthorityLevel(r.authority_level).rank, -r.effective_from.toordinal(), r.id),
        )
