"""Tests for the review and approval gate."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import (
    HumanApprovalRequiredError,
    InvalidTransitionError,
    PublicationBlockedError,
    RuleNotFoundError,
)
from services.regulatory_truth.models import RegulatoryRuleModel
from services.regulatory_truth.services.audit import AuditAction, list_audit
from services.regulatory_truth.services.review import ReviewAction, ReviewService, RuleWorkflow
from shared.config import PipelineSettings
from shared.models.regulation import AUTO_APPROVE_SYSTEM, RiskTier, RuleStatus
from tests.factories import add_cited_rule, add_coverage, add_evidence, add_pointer, add_rule


@pytest.fixture
def review(pipeline_config: PipelineSettings) -> ReviewService:
    """Review service with test settings."""
    return ReviewService(pipeline_config)


class TestRuleWorkflow:
    """Tests for the lifecycle state machine."""

    def test_valid_transitions(self) -> None:
        workflow = RuleWorkflow()
        assert workflow.get_next_status(RuleStatus.DRAFT, ReviewAction.SUBMIT) == RuleStatus.PENDING_REVIEW
        assert workflow.get_next_status(RuleStatus.PENDING_REVIEW, ReviewAction.APPROVE) == RuleStatus.APPROVED
        assert workflow.get_next_status(RuleStatus.APPROVED, ReviewAction.PUBLISH) == RuleStatus.PUBLISHED

    def test_no_shortcuts(self) -> None:
        workflow = RuleWorkflow()
        assert not workflow.can_transition(RuleStatus.DRAFT, ReviewAction.APPROVE)
        assert not workflow.can_transition(RuleStatus.DRAFT, ReviewAction.PUBLISH)
        assert not workflow.can_transition(RuleStatus.PUBLISHED, ReviewAction.REJECT)
        assert not workflow.can_transition(RuleStatus.REJECTED, ReviewAction.SUBMIT)


class TestTransitions:
    """Tests for submit, approve and reject."""

    @pytest.mark.asyncio
    async def test_human_approval_flow(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.DRAFT, risk_tier=RiskTier.T0)

        await review.submit_for_review(db, rule.id, actor="author@example.com")
        approved = await review.approve(db, rule.id, " reviewer@example.com ")

        assert approved.status == RuleStatus.APPROVED.value
        assert approved.approved_by == "reviewer@example.com"
        assert approved.approved_at is not None

        audit = await list_audit(db, entity_id=rule.id, action=AuditAction.RULE_STATUS_CHANGED)
        assert [(a.meta["from"], a.meta["to"]) for a in audit] == [
            ("DRAFT", "PENDING_REVIEW"),
            ("PENDING_REVIEW", "APPROVED"),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("approver", ["", "   ", AUTO_APPROVE_SYSTEM, "ARBITER_SYSTEM"])
    async def test_system_or_empty_approver_refused(
        self,
        db: AsyncSession,
        review: ReviewService,
        approver: str,
    ) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.PENDING_REVIEW, risk_tier=RiskTier.T1)

        with pytest.raises(HumanApprovalRequiredError):
            await review.approve(db, rule.id, approver)
        assert rule.status == RuleStatus.PENDING_REVIEW.value

    @pytest.mark.asyncio
    async def test_approve_draft_is_invalid(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.DRAFT)

        with pytest.raises(InvalidTransitionError):
            await review.approve(db, rule.id, "reviewer@example.com")

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.PENDING_REVIEW)

        await review.reject(db, rule.id, reason="wrong article", actor="reviewer@example.com")

        assert rule.status == RuleStatus.REJECTED.value
        assert rule.rejection_reason == "wrong article"

    @pytest.mark.asyncio
    async def test_published_cannot_be_rejected(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.PUBLISHED)

        with pytest.raises(InvalidTransitionError):
            await review.reject(db, rule.id, reason="too late")

    @pytest.mark.asyncio
    async def test_unknown_rule(self, db: AsyncSession, review: ReviewService) -> None:
        with pytest.raises(RuleNotFoundError):
            await review.submit_for_review(db, "missing")


class TestAutoApprove:
    """Tests for automatic approval of low-risk rules."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("tier", "confidence", "expected"),
        [
            (RiskTier.T2, 0.95, True),
            (RiskTier.T3, 0.90, True),
            (RiskTier.T2, 0.89, False),
            (RiskTier.T1, 0.99, False),
            (RiskTier.T0, 0.99, False),
        ],
    )
    async def test_eligibility(
        self,
        db: AsyncSession,
        review: ReviewService,
        tier: RiskTier,
        confidence: float,
        expected: bool,
    ) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.PENDING_REVIEW, risk_tier=tier, confidence=confidence)

        eligible, _ = review.auto_approve_eligible(rule)

        assert eligible is expected

    @pytest.mark.asyncio
    async def test_run_auto_approve(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        review: ReviewService,
    ) -> None:
        async with session_factory() as db:
            low = await add_cited_rule(db, concept_slug="low-risk", status=RuleStatus.PENDING_REVIEW)
            critical = await add_cited_rule(
                db,
                concept_slug="critical",
                status=RuleStatus.PENDING_REVIEW,
                risk_tier=RiskTier.T0,
            )
            await db.commit()

        result = await review.run_auto_approve(session_factory)

        assert result.checked == 2
        assert result.approved == [low.id]
        assert "T0 requires human approval" in result.skipped[critical.id]

        async with session_factory() as db:
            approved = await db.get(RegulatoryRuleModel, low.id)
            assert approved.status == RuleStatus.APPROVED.value
            assert approved.approved_by == AUTO_APPROVE_SYSTEM
            assert (await db.get(RegulatoryRuleModel, critical.id)).status == RuleStatus.PENDING_REVIEW.value
            assert await list_audit(db, entity_id=low.id, action=AuditAction.RULE_AUTO_APPROVED)

    @pytest.mark.asyncio
    async def test_database_error_skips_only_that_rule(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        review: ReviewService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async with session_factory() as db:
            broken = await add_cited_rule(db, concept_slug="broken", status=RuleStatus.PENDING_REVIEW)
            healthy = await add_cited_rule(db, concept_slug="healthy", status=RuleStatus.PENDING_REVIEW)
            await db.commit()

        auto_approve = review.auto_approve

        async def failing_auto_approve(db: AsyncSession, rule_id: str) -> bool:
            if rule_id == broken.id:
                raise OperationalError("UPDATE regulatory_rules", {}, Exception("database is locked"))
            return await auto_approve(db, rule_id)

        monkeypatch.setattr(review, "auto_approve", failing_auto_approve)

        result = await review.run_auto_approve(session_factory)

        assert result.checked == 2
        assert result.approved == [healthy.id]
        assert "database is locked" in result.skipped[broken.id]

        async with session_factory() as db:
            assert (await db.get(RegulatoryRuleModel, broken.id)).status == RuleStatus.PENDING_REVIEW.value
            assert (await db.get(RegulatoryRuleModel, healthy.id)).status == RuleStatus.APPROVED.value


class TestPublication:
    """Tests for the publication gate."""

    @pytest.mark.asyncio
    async def test_publish_with_full_trace(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db)

        await review.publish(db, rule.id, actor="publisher@example.com")

        assert rule.status == RuleStatus.PUBLISHED.value

    @pytest.mark.asyncio
    async def test_uncited_rule_blocked(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_rule(db)

        with pytest.raises(PublicationBlockedError) as exc_info:
            await review.publish(db, rule.id)

        assert exc_info.value.blockers == ["Rule cites no source pointers"]
        assert rule.status == RuleStatus.APPROVED.value

    @pytest.mark.asyncio
    async def test_missing_coverage_blocked(self, db: AsyncSession, review: ReviewService) -> None:
        evidence = await add_evidence(db)
        pointer = await add_pointer(db, evidence)
        rule = await add_rule(db, pointers=[pointer])

        blockers = await review.publication_blockers(db, rule.id)

        assert blockers == [f"{evidence.id}: No coverage report"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier", [RiskTier.T0, RiskTier.T1])
    async def test_critical_tier_blocked_on_normalized_quote(
        self,
        db: AsyncSession,
        review: ReviewService,
        tier: RiskTier,
    ) -> None:
        evidence = await add_evidence(db, content="The standard VAT rate is \u201c25%\u201d.")
        pointer = await add_pointer(db, evidence, quote='The standard VAT rate is "25%"')
        await add_coverage(db, evidence)
        rule = await add_rule(db, pointers=[pointer], risk_tier=tier)

        blockers = await review.publication_blockers(db, rule.id)

        assert blockers == [
            f"Source pointer {pointer.id}: {tier.value} rules require an exact quote match, "
            "but only a normalized match was found"
        ]

    @pytest.mark.asyncio
    async def test_normalized_quote_ok_below_critical_tiers(self, db: AsyncSession, review: ReviewService) -> None:
        evidence = await add_evidence(db, content="The standard VAT rate is \u201c25%\u201d.")
        pointer = await add_pointer(db, evidence, quote='The standard VAT rate is "25%"')
        await add_coverage(db, evidence)
        rule = await add_rule(db, pointers=[pointer], risk_tier=RiskTier.T2)

        assert await review.publication_blockers(db, rule.id) == []

    @pytest.mark.asyncio
    async def test_critical_tier_blocked_on_stale_offsets(self, db: AsyncSession, review: ReviewService) -> None:
        evidence = await add_evidence(db)
        pointer = await add_pointer(db, evidence)
        await add_coverage(db, evidence)
        rule = await add_rule(db, pointers=[pointer], risk_tier=RiskTier.T0)
        pointer.quote_start += 1
        await db.flush()

        blockers = await review.publication_blockers(db, rule.id)

        assert blockers == [f"Source pointer {pointer.id}: quote offsets do not select the quote"]

    @pytest.mark.asyncio
    async def test_publish_requires_approval(self, db: AsyncSession, review: ReviewService) -> None:
        rule = await add_cited_rule(db, status=RuleStatus.PENDING_REVIEW)

        with pytest.raises(InvalidTransitionError):
            await review.publish(db, rule.id)
