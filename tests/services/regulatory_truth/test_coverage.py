"""Tests for the coverage gate."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import CoverageReportModel
from services.regulatory_truth.services.coverage import (
    ContentClass,
    CoverageGate,
    ShapeCounts,
    can_publish,
)
from shared.config import PipelineSettings
from shared.models.regulation import ContentClassification
from tests.factories import add_coverage, add_evidence


@pytest.fixture
def gate(pipeline_config: PipelineSettings) -> CoverageGate:
    """Coverage gate with default thresholds."""
    return CoverageGate(pipeline_config)


def classified(primary_type: str, confidence: float = 0.95) -> ContentClassification:
    return ContentClassification(primary_type=primary_type, confidence=confidence)


class TestCalculate:
    """Tests for coverage scoring."""

    def test_logic_with_claims_is_complete(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("LOGIC"), ShapeCounts(claims=3))

        assert report.is_complete
        assert report.coverage_score == 1.0
        assert report.present_shapes == ["claims"]
        assert not report.blockers

    def test_missing_required_shape_blocks(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("PROCESS"), ShapeCounts(claims=3))

        assert not report.is_complete
        assert report.missing_shapes == ["processes"]
        assert "Missing required shape: processes" in report.blockers

    def test_partial_mixed_coverage_below_minimum(self, gate: CoverageGate) -> None:
        """MIXED with only claims scores 1/3, below the 0.8 minimum."""
        report = gate.calculate("ev-1", classified("MIXED"), ShapeCounts(claims=2))

        assert report.coverage_score == pytest.approx(0.3333, abs=1e-4)
        assert not report.is_complete
        assert any("below minimum" in b for b in report.blockers)
        assert not any("Missing required" in b for b in report.blockers)

    def test_low_confidence_only_warns(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("LOGIC", confidence=0.4), ShapeCounts(claims=1))

        assert report.is_complete
        assert report.warnings
        assert report.recommendation == "manual content classification"

    def test_unrecognized_type_falls_back_to_unknown(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("poetry"), ShapeCounts(claims=1))

        assert report.content_class == ContentClass.UNKNOWN
        assert report.is_complete

    def test_unknown_without_claims_blocked_by_score(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("UNKNOWN"), ShapeCounts())

        assert report.coverage_score == 0.0
        assert not report.is_complete

    def test_pointers_without_claims_warns(self, gate: CoverageGate) -> None:
        report = gate.calculate("ev-1", classified("PROCESS"), ShapeCounts(processes=1, source_pointers=2))

        assert report.is_complete
        assert "Source pointers present without claims" in report.warnings


class TestStoredReports:
    """Tests for persisted reports and the publication check."""

    @pytest.mark.asyncio
    async def test_report_is_upserted(self, db: AsyncSession, gate: CoverageGate) -> None:
        evidence = await add_evidence(db)

        await gate.generate_report(db, evidence.id, classified("LOGIC"), ShapeCounts())
        row = await db.get(CoverageReportModel, evidence.id)
        assert row is not None
        assert not row.is_complete

        await gate.generate_report(db, evidence.id, classified("LOGIC"), ShapeCounts(claims=1))
        row = await db.get(CoverageReportModel, evidence.id)
        assert row.is_complete
        assert row.shape_counts["claims"] == 1

    @pytest.mark.asyncio
    async def test_check_evidence(self, db: AsyncSession, gate: CoverageGate) -> None:
        covered = await add_evidence(db, source_url="https://gov.example/covered")
        incomplete = await add_evidence(db, source_url="https://gov.example/incomplete")
        uncovered = await add_evidence(db, source_url="https://gov.example/uncovered")
        await add_coverage(db, covered)
        await add_coverage(db, incomplete, claims=0)

        blockers = await gate.check_evidence(db, [covered.id, incomplete.id, uncovered.id])

        assert len(blockers) == 2
        assert any(b.startswith(f"{uncovered.id}: No coverage report") for b in blockers)
        assert any(b.startswith(f"{incomplete.id}: Coverage gate failed") for b in blockers)

    def test_can_publish_without_report(self) -> None:
        assert can_publish(None) == (False, "No coverage report")
