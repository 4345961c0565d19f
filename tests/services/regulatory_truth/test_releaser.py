"""Tests for releases."""

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.content_sync import ChangeType, EventType
from services.regulatory_truth.errors import (
    PublicationBlockedError,
    ReleaseError,
    ReleaseNotFoundError,
    RuleNotFoundError,
)
from services.regulatory_truth.models import ContentSyncEventModel
from services.regulatory_truth.services.audit import AuditAction, list_audit
from services.regulatory_truth.services.release import (
    Releaser,
    bump_version,
    compute_release_hash,
)
from shared.config import PipelineSettings
from shared.models.regulation import RiskTier, RuleStatus
from tests.factories import add_cited_rule, add_rule


@pytest.fixture
def releaser(pipeline_config: PipelineSettings) -> Releaser:
    """Releaser with test settings."""
    return Releaser(pipeline_config)


class TestReleaseHash:
    """Tests for content hashing."""

    @pytest.mark.asyncio
    async def test_order_independent(self, db: AsyncSession) -> None:
        a = await add_rule(db, concept_slug="a")
        b = await add_rule(db, concept_slug="b")

        assert compute_release_hash([a, b]) == compute_release_hash([b, a])

    @pytest.mark.asyncio
    async def test_changes_with_content(self, db: AsyncSession) -> None:
        rule = await add_rule(db)
        before = compute_release_hash([rule])

        rule.value = "26"

        assert compute_release_hash([rule]) != before

    @pytest.mark.asyncio
    async def test_ignores_status(self, db: AsyncSession) -> None:
        rule = await add_rule(db)
        before = compute_release_hash([rule])

        rule.status = RuleStatus.PUBLISHED.value

        assert compute_release_hash([rule]) == before


class TestBumpVersion:
    """Tests for semantic versioning."""

    @pytest.mark.parametrize(
        ("previous", "tiers", "expected"),
        [
            (None, [RiskTier.T0], "1.0.0"),
            ("1.4.2", [RiskTier.T3, RiskTier.T0], "2.0.0"),
            ("1.4.2", [RiskTier.T1, RiskTier.T2], "1.5.0"),
            ("1.4.2", [RiskTier.T2, RiskTier.T3], "1.4.3"),
        ],
    )
    def test_bump(self, previous: str | None, tiers: list[RiskTier], expected: str) -> None:
        assert bump_version(previous, tiers) == expected


class TestRelease:
    """Tests for Releaser.release."""

    @pytest.mark.asyncio
    async def test_release_publishes_and_emits(self, db: AsyncSession, releaser: Releaser) -> None:
        rule = await add_cited_rule(db, risk_tier=RiskTier.T1)

        release = await releaser.release(db, [rule.id, rule.id], actor="release-manager")

        assert release.version == "1.0.0"
        assert release.released_by == "release-manager"
        assert rule.status == RuleStatus.PUBLISHED.value
        assert await releaser.release_rule_ids(db, release.id) == [rule.id]
        assert release.content_hash == compute_release_hash([rule])

        events = (await db.execute(select(ContentSyncEventModel))).scalars().all()
        assert len(events) == 1
        assert events[0].event_type == EventType.RULE_RELEASED.value
        assert events[0].change_type == ChangeType.CREATE.value
        assert events[0].severity == "major"
        assert events[0].payload["newValue"] == "25"

        assert await list_audit(db, entity_id=release.id, action=AuditAction.RELEASE_CREATED)

    @pytest.mark.asyncio
    async def test_successor_release_is_update(self, db: AsyncSession, releaser: Releaser) -> None:
        first = await add_cited_rule(db, effective_from=date(2024, 1, 1))
        await releaser.release(db, [first.id])
        second = await add_cited_rule(db, effective_from=date(2025, 1, 1), value="26", risk_tier=RiskTier.T3)

        release = await releaser.release(db, [second.id])

        assert release.version == "1.0.1"
        event = (
            await db.execute(select(ContentSyncEventModel).where(ContentSyncEventModel.rule_id == second.id))
        ).scalar_one()
        assert event.change_type == ChangeType.UPDATE.value

    @pytest.mark.asyncio
    async def test_published_rules_rebundled_without_new_events(self, db: AsyncSession, releaser: Releaser) -> None:
        rule = await add_cited_rule(db)
        await releaser.release(db, [rule.id])

        again = await releaser.release(db, [rule.id])

        assert again.version == "1.0.1"
        events = (await db.execute(select(ContentSyncEventModel))).scalars().all()
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unapproved_rule_refused(self, db: AsyncSession, releaser: Releaser) -> None:
        draft = await add_cited_rule(db, status=RuleStatus.DRAFT)

        with pytest.raises(ReleaseError):
            await releaser.release(db, [draft.id])

    @pytest.mark.asyncio
    async def test_empty_and_unknown_refused(self, db: AsyncSession, releaser: Releaser) -> None:
        with pytest.raises(ReleaseError):
            await releaser.release(db, [])
        with pytest.raises(RuleNotFoundError):
            await releaser.release(db, ["missing"])

    @pytest.mark.asyncio
    async def test_blocked_rule_refused(self, db: AsyncSession, releaser: Releaser) -> None:
        uncited = await add_rule(db)

        with pytest.raises(PublicationBlockedError):
            await releaser.release(db, [uncited.id])


class TestVerification:
    """Tests for verification and repair."""

    @pytest.mark.asyncio
    async def test_verify_and_repair(self, db: AsyncSession, releaser: Releaser) -> None:
        rule = await add_cited_rule(db)
        release = await releaser.release(db, [rule.id])
        assert (await releaser.verify_release(db, release.id)).valid

        rule.value = "26"
        await db.flush()

        verification = await releaser.verify_release(db, release.id)
        assert not verification.valid
        assert verification.rule_count == 1

        report = await releaser.repair_release_hashes(db, reason="value corrected", performed_by="ops@example.com")

        assert report.checked == 1
        assert [r.release_id for r in report.repaired] == [release.id]
        assert (await releaser.verify_release(db, release.id)).valid
        audit = await list_audit(db, entity_id=release.id, action=AuditAction.RELEASE_HASH_REPAIRED)
        assert audit[0].meta["reason"] == "value corrected"

    @pytest.mark.asyncio
    async def test_unknown_release(self, db: AsyncSession, releaser: Releaser) -> None:
        with pytest.raises(ReleaseNotFoundError):
            await releaser.verify_release(db, "missing")
