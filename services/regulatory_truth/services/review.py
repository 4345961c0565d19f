"""
Review and Approval Gate
========================

Rule lifecycle state machine with risk-tiered approval.

Workflow:
1. Composer creates rule -> DRAFT
2. Submit -> PENDING_REVIEW
3. Approve (human, or automatic for T2/T3 above threshold) -> APPROVED
4. Publish (traceability, quote strength and coverage gate must pass) -> PUBLISHED
5. Reject at any point before publication -> REJECTED

Every transition is audited and triggers a graph rebuild for the rule.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import (
    HumanApprovalRequiredError,
    InvalidTransitionError,
    PipelineError,
    PublicationBlockedError,
    RuleNotFoundError,
)
from services.regulatory_truth.graph import EdgeBuilder
from services.regulatory_truth.models import (
    EvidenceModel,
    RegulatoryRuleModel,
    SourcePointerModel,
    rule_source_pointers,
)
from services.regulatory_truth.services.audit import AuditAction, record_audit
from services.regulatory_truth.services.coverage import CoverageGate
from services.regulatory_truth.services.extraction import (
    EXACT_MATCH_TIERS,
    is_match_type_acceptable_for_tier,
    verify_quote_offsets,
)
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import (
    AUTO_APPROVE_SYSTEM,
    SYSTEM_IDENTITIES,
    RiskTier,
    RuleStatus,
)


logger = get_logger(__name__)


class ReviewAction(str, Enum):
    """Rule workflow actions."""

    SUBMIT = "submit"
    APPROVE = "approve"
    PUBLISH = "publish"
    REJECT = "reject"


@dataclass
class RuleWorkflow:
    """Rule lifecycle state machine."""

    transitions: dict[RuleStatus, dict[ReviewAction, RuleStatus]] = field(
        default_factory=lambda: {
            RuleStatus.DRAFT: {
                ReviewAction.SUBMIT: RuleStatus.PENDING_REVIEW,
                ReviewAction.REJECT: RuleStatus.REJECTED,
            },
            RuleStatus.PENDING_REVIEW: {
                ReviewAction.APPROVE: RuleStatus.APPROVED,
                ReviewAction.REJECT: RuleStatus.REJECTED,
            },
            RuleStatus.APPROVED: {
                ReviewAction.PUBLISH: RuleStatus.PUBLISHED,
                ReviewAction.REJECT: RuleStatus.REJECTED,
            },
        }
    )

    def can_transition(self, current: RuleStatus, action: ReviewAction) -> bool:
        """Check if transition is valid."""
        return action in self.transitions.get(current, {})

    def get_next_status(self, current: RuleStatus, action: ReviewAction) -> RuleStatus | None:
        """Get the next status after an action."""
        if not self.can_transition(current, action):
            return None
        return self.transitions[current][action]


@dataclass
class AutoApproveResult:
    """Outcome of an automatic approval pass."""

    checked: int = 0
    approved: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)


async def rule_pointer_ids(db: AsyncSession, rule_id: str) -> list[str]:
    """IDs of the source pointers a rule cites, sorted."""
    result = await db.execute(
        select(rule_source_pointers.c.pointer_id)
        .where(rule_source_pointers.c.rule_id == rule_id)
        .order_by(rule_source_pointers.c.pointer_id)
    )
    return list(result.scalars().all())


class ReviewService:
    """
    Moves rules through review, approval and publication.

    Args:
        config: Pipeline thresholds
        coverage_gate: Gate consulted before publication
        edge_builder: Graph maintained after each transition
    """

    def __init__(
        self,
        config: PipelineSettings | None = None,
        coverage_gate: CoverageGate | None = None,
        edge_builder: EdgeBuilder | None = None,
    ) -> None:
        self.config = config or get_settings().pipeline
        self.workflow = RuleWorkflow()
        self.coverage_gate = coverage_gate or CoverageGate(self.config)
        self.edge_builder = edge_builder or EdgeBuilder(self.config)

    async def get_rule(self, db: AsyncSession, rule_id: str) -> RegulatoryRuleModel:
        """Load a rule or raise RuleNotFoundError."""
        rule = await db.get(RegulatoryRuleModel, rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def _transition(
        self,
        db: AsyncSession,
        rule: RegulatoryRuleModel,
        action: ReviewAction,
        actor: str | None,
        reason: str | None = None,
    ) -> RegulatoryRuleModel:
        current = RuleStatus(rule.status)
        target = self.workflow.get_next_status(current, action)
        if target is None:
            attempted = {
                ReviewAction.SUBMIT: RuleStatus.PENDING_REVIEW,
                ReviewAction.APPROVE: RuleStatus.APPROVED,
                ReviewAction.PUBLISH: RuleStatus.PUBLISHED,
                ReviewAction.REJECT: RuleStatus.REJECTED,
            }[action]
            raise InvalidTransitionError(rule.id, current.value, attempted.value)

        rule.status = target.value
        if target == RuleStatus.REJECTED:
            rule.rejection_reason = reason

        await record_audit(
            db,
            AuditAction.RULE_STATUS_CHANGED,
            "rule",
            rule.id,
            performed_by=actor,
            metadata={"from": current.value, "to": target.value, "reason": reason},
        )
        await db.flush()
        await self.edge_builder.rebuild_edges_for_rule(db, rule.id)

        logger.info(
            "rule_status_changed",
            rule_id=rule.id,
            from_status=current.value,
            to_status=target.value,
            actor=actor,
        )
        return rule

    # =========================================================================
    # Transitions
    # =========================================================================

    async def submit_for_review(self, db: AsyncSession, rule_id: str, actor: str | None = None) -> RegulatoryRuleModel:
        """DRAFT -> PENDING_REVIEW."""
        rule = await self.get_rule(db, rule_id)
        return await self._transition(db, rule, ReviewAction.SUBMIT, actor)

    async def approve(self, db: AsyncSession, rule_id: str, approver: str) -> RegulatoryRuleModel:
        """
        Human approval: PENDING_REVIEW -> APPROVED.

        Args:
            db: Database session
            rule_id: Rule to approve
            approver: Identity of the person approving

        Raises:
            HumanApprovalRequiredError: if the approver is empty or a
                system identity
            InvalidTransitionError: if the rule is not pending review
        """
        rule = await self.get_rule(db, rule_id)
        if not approver or not approver.strip() or approver in SYSTEM_IDENTITIES:
            raise HumanApprovalRequiredError(rule.id, rule.risk_tier, approver)
        return await self._approve(db, rule, approver.strip())

    async def _approve(self, db: AsyncSession, rule: RegulatoryRuleModel, approver: str) -> RegulatoryRuleModel:
        if RiskTier(rule.risk_tier).requires_human_approval and approver in SYSTEM_IDENTITIES:
            raise HumanApprovalRequiredError(rule.id, rule.risk_tier, approver)

        if not self.workflow.can_transition(RuleStatus(rule.status), ReviewAction.APPROVE):
            raise InvalidTransitionError(rule.id, rule.status, RuleStatus.APPROVED.value)

        rule.approved_by = approver
        rule.approved_at = datetime.now(UTC)
        return await self._transition(db, rule, ReviewAction.APPROVE, approver)

    async def reject(
        self,
        db: AsyncSession,
        rule_id: str,
        reason: str,
        actor: str | None = None,
    ) -> RegulatoryRuleModel:
        """Any pre-publication status -> REJECTED."""
        rule = await self.get_rule(db, rule_id)
        return await self._transition(db, rule, ReviewAction.REJECT, actor, reason=reason)

    # =========================================================================
    # Automatic approval
    # =========================================================================

    def auto_approve_eligible(self, rule: RegulatoryRuleModel) -> tuple[bool, str]:
        """
        Whether a rule may be approved without a human.

        Only T2/T3 rules at or above the confidence threshold qualify.
        """
        if RuleStatus(rule.status) != RuleStatus.PENDING_REVIEW:
            return False, f"status is {rule.status}"
        if RiskTier(rule.risk_tier).requires_human_approval:
            return False, f"{rule.risk_tier} requires human approval"
        if rule.confidence < self.config.auto_approve_threshold:
            return False, (
                f"confidence {rule.confidence:.2f} below threshold "
                f"{self.config.auto_approve_threshold:.2f}"
            )
        return True, "eligible"

    async def auto_approve(self, db: AsyncSession, rule_id: str) -> bool:
        """Approve a rule as AUTO_APPROVE_SYSTEM when eligible; returns whether it was approved."""
        rule = await self.get_rule(db, rule_id)
        eligible, reason = self.auto_approve_eligible(rule)
        if not eligible:
            logger.debug("auto_approve_skipped", rule_id=rule_id, reason=reason)
            return False

        await self._approve(db, rule, AUTO_APPROVE_SYSTEM)
        await record_audit(
            db,
            AuditAction.RULE_AUTO_APPROVED,
            "rule",
            rule.id,
            performed_by=AUTO_APPROVE_SYSTEM,
            metadata={"risk_tier": rule.risk_tier, "confidence": rule.confidence},
        )
        await db.flush()
        return True

    async def run_auto_approve(self, session_factory: async_sessionmaker[AsyncSession]) -> AutoApproveResult:
        """
        Try automatic approval on every PENDING_REVIEW rule.

        Each rule is approved in its own transaction; a rule whose graph
        rebuild or database write fails is rolled back and reported as
        skipped.
        """
        result = AutoApproveResult()
        async with session_factory() as db:
            rule_ids = await self.rule_ids_with_status(db, RuleStatus.PENDING_REVIEW)

        for rule_id in rule_ids:
            result.checked += 1
            async with session_factory() as db:
                rule = await self.get_rule(db, rule_id)
                eligible, reason = self.auto_approve_eligible(rule)
                if not eligible:
                    result.skipped[rule_id] = reason
                    continue
                try:
                    await self.auto_approve(db, rule_id)
                    await db.commit()
                except (PipelineError, SQLAlchemyError) as e:
                    await db.rollback()
                    error = e.message if isinstance(e, PipelineError) else str(e)
                    result.skipped[rule_id] = error
                    logger.error("auto_approve_failed", rule_id=rule_id, error=error)
                    continue
            result.approved.append(rule_id)

        logger.info(
            "auto_approve_complete",
            checked=result.checked,
            approved=len(result.approved),
            skipped=len(result.skipped),
        )
        return result

    async def rule_ids_with_status(self, db: AsyncSession, status: RuleStatus) -> list[str]:
        """IDs of rules in a status, oldest first."""
        result = await db.execute(
            select(RegulatoryRuleModel.id)
            .where(RegulatoryRuleModel.status == status.value)
            .order_by(RegulatoryRuleModel.created_at, RegulatoryRuleModel.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Publication
    # =========================================================================

    async def check_traceability(self, db: AsyncSession, rule_id: str) -> tuple[list[str], list[str]]:
        """
        Check a rule's citation chain.

        Returns:
            (blockers, evidence_ids) where evidence_ids are the cited
            evidence records that exist
        """
        pointer_ids = await rule_pointer_ids(db, rule_id)
        if not pointer_ids:
            return ["Rule cites no source pointers"], []

        result = await db.execute(
            select(SourcePointerModel.id, SourcePointerModel.evidence_id, EvidenceModel.id)
            .select_from(SourcePointerModel)
            .outerjoin(EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id)
            .where(SourcePointerModel.id.in_(pointer_ids))
        )
        rows = result.all()

        blockers: list[str] = []
        found_pointers = {pointer_id for pointer_id, _, _ in rows}
        for missing in sorted(set(pointer_ids) - found_pointers):
            blockers.append(f"Source pointer {missing} does not exist")

        evidence_ids: list[str] = []
        for pointer_id, evidence_id, joined_evidence in rows:
            if joined_evidence is None:
                blockers.append(f"Evidence {evidence_id} for pointer {pointer_id} does not exist")
            else:
                evidence_ids.append(evidence_id)

        return blockers, sorted(set(evidence_ids))

    async def check_quote_strength(self, db: AsyncSession, rule_id: str) -> list[str]:
        """
        T0 and T1 rules need exact quote matches with offsets that still
        select the quote in the raw evidence text.
        """
        rule = await db.get(RegulatoryRuleModel, rule_id)
        if rule is None or RiskTier(rule.risk_tier) not in EXACT_MATCH_TIERS:
            return []

        result = await db.execute(
            select(SourcePointerModel, EvidenceModel.raw_content)
            .join(EvidenceModel, EvidenceModel.id == SourcePointerModel.evidence_id)
            .where(SourcePointerModel.id.in_(await rule_pointer_ids(db, rule_id)))
            .order_by(SourcePointerModel.id)
        )

        blockers: list[str] = []
        for pointer, content in result.all():
            acceptable, reason = is_match_type_acceptable_for_tier(pointer.match_type, rule.risk_tier)
            if not acceptable:
                blockers.append(f"Source pointer {pointer.id}: {reason}")
            elif not verify_quote_offsets(
                content, pointer.exact_quote, pointer.quote_start, pointer.quote_end, pointer.match_type
            ):
                blockers.append(f"Source pointer {pointer.id}: quote offsets do not select the quote")
        return blockers

    async def publication_blockers(self, db: AsyncSession, rule_id: str) -> list[str]:
        """Everything preventing publication, independent of approval."""
        blockers, evidence_ids = await self.check_traceability(db, rule_id)
        blockers.extend(await self.check_quote_strength(db, rule_id))
        blockers.extend(await self.coverage_gate.check_evidence(db, evidence_ids))
        return blockers

    async def publish(self, db: AsyncSession, rule_id: str, actor: str | None = None) -> RegulatoryRuleModel:
        """
        APPROVED -> PUBLISHED.

        Raises:
            InvalidTransitionError: if the rule is not APPROVED
            PublicationBlockedError: if traceability or coverage fails
        """
        rule = await self.get_rule(db, rule_id)
        if not self.workflow.can_transition(RuleStatus(rule.status), ReviewAction.PUBLISH):
            raise InvalidTransitionError(rule.id, rule.status, RuleStatus.PUBLISHED.value)

        blockers = await self.publication_blockers(db, rule_id)
        if blockers:
            logger.warning("rule_publication_blocked", rule_id=rule_id, blockers=blockers)
            raise PublicationBlockedError(rule_id, blockers)

        return await self._transition(db, rule, ReviewAction.PUBLISH, actor)
