"""
Coverage Gate
=============

Blocks publication of rules drawn from evidence whose extraction is
incomplete for its content type.

Each content class expects certain extraction shapes. The coverage
score is the fraction of expected shapes present, and publication
requires the score to reach the minimum with no required shape missing.

Version: 0.1.0
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import CoverageReportModel
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import ContentClassification


logger = get_logger(__name__)


class ContentClass(str, Enum):
    """Classifier content types."""

    LOGIC = "LOGIC"
    PROCESS = "PROCESS"
    REFERENCE = "REFERENCE"
    DOCUMENT = "DOCUMENT"
    TRANSITIONAL = "TRANSITIONAL"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"


class Shape(str, Enum):
    """Extraction shapes counted by the gate."""

    CLAIMS = "claims"
    PROCESSES = "processes"
    REFERENCE_TABLES = "reference_tables"
    ASSETS = "assets"
    TRANSITIONAL_PROVISIONS = "transitional_provisions"


@dataclass(frozen=True)
class ShapeRequirement:
    """Shapes expected for a content class, and which of them are required."""

    expected: tuple[Shape, ...]
    required: tuple[Shape, ...]


SHAPE_REQUIREMENTS: dict[ContentClass, ShapeRequirement] = {
    ContentClass.LOGIC: ShapeRequirement((Shape.CLAIMS,), (Shape.CLAIMS,)),
    ContentClass.PROCESS: ShapeRequirement((Shape.PROCESSES,), (Shape.PROCESSES,)),
    ContentClass.REFERENCE: ShapeRequirement((Shape.REFERENCE_TABLES,), (Shape.REFERENCE_TABLES,)),
    ContentClass.DOCUMENT: ShapeRequirement((Shape.ASSETS,), (Shape.ASSETS,)),
    ContentClass.TRANSITIONAL: ShapeRequirement(
        (Shape.TRANSITIONAL_PROVISIONS, Shape.CLAIMS),
        (Shape.TRANSITIONAL_PROVISIONS,),
    ),
    ContentClass.MIXED: ShapeRequirement(
        (Shape.CLAIMS, Shape.PROCESSES, Shape.REFERENCE_TABLES),
        (Shape.CLAIMS,),
    ),
    ContentClass.UNKNOWN: ShapeRequirement((Shape.CLAIMS,), ()),
}


@dataclass
class ShapeCounts:
    """Number of extracted items per shape for one evidence record."""

    claims: int = 0
    processes: int = 0
    reference_tables: int = 0
    assets: int = 0
    transitional_provisions: int = 0

    # Pointers created without a claim extractor
    source_pointers: int = 0

    @classmethod
    def from_shapes(cls, shapes: Iterable[str]) -> "ShapeCounts":
        """Tally accepted items by their shape name."""
        counts = cls()
        for shape in shapes:
            name = Shape(shape).value
            setattr(counts, name, getattr(counts, name) + 1)
        return counts

    def count(self, shape: Shape) -> int:
        return getattr(self, shape.value)

    def to_dict(self) -> dict[str, int]:
        return {
            "claims": self.claims,
            "processes": self.processes,
            "reference_tables": self.reference_tables,
            "assets": self.assets,
            "transitional_provisions": self.transitional_provisions,
            "source_pointers": self.source_pointers,
        }


@dataclass
class CoverageReport:
    """Gate outcome for one evidence record."""

    evidence_id: str
    content_class: ContentClass
    classification_confidence: float
    coverage_score: float
    is_complete: bool
    expected_shapes: list[str] = field(default_factory=list)
    present_shapes: list[str] = field(default_factory=list)
    missing_shapes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    recommendation: str | None = None


def _content_class(value: str) -> ContentClass:
    try:
        return ContentClass(value.upper())
    except ValueError:
        return ContentClass.UNKNOWN


class CoverageGate:
    """Computes, stores and enforces coverage reports."""

    def __init__(self, config: PipelineSettings | None = None) -> None:
        self.config = config or get_settings().pipeline

    def calculate(
        self,
        evidence_id: str,
        classification: ContentClassification,
        counts: ShapeCounts,
    ) -> CoverageReport:
        """
        Score extraction coverage against the classified content type.

        Args:
            evidence_id: Evidence the counts belong to
            classification: Classifier output
            counts: Extracted items per shape

        Returns:
            CoverageReport
        """
        content_class = _content_class(classification.primary_type)
        requirement = SHAPE_REQUIREMENTS[content_class]

        present = [s for s in requirement.expected if counts.count(s) > 0]
        missing = [s for s in requirement.expected if counts.count(s) == 0]
        missing_required = [s for s in requirement.required if counts.count(s) == 0]
        score = len(present) / len(requirement.expected) if requirement.expected else 1.0

        warnings: list[str] = []
        blockers: list[str] = []
        recommendation = None

        if classification.confidence < self.config.low_classification_confidence:
            warnings.append(
                f"Low classification confidence ({classification.confidence:.2f}); "
                "content type may be wrong"
            )
            recommendation = "manual content classification"

        if counts.source_pointers > 0 and counts.claims == 0:
            warnings.append("Source pointers present without claims")

        for shape in missing_required:
            blockers.append(f"Missing required shape: {shape.value}")

        if score < self.config.coverage_min_score:
            blockers.append(
                f"Coverage score {score:.2f} below minimum {self.config.coverage_min_score:.2f}"
            )

        return CoverageReport(
            evidence_id=evidence_id,
            content_class=content_class,
            classification_confidence=classification.confidence,
            coverage_score=round(score, 4),
            is_complete=not blockers,
            expected_shapes=[s.value for s in requirement.expected],
            present_shapes=[s.value for s in present],
            missing_shapes=[s.value for s in missing],
            warnings=warnings,
            blockers=blockers,
            recommendation=recommendation,
        )

    async def generate_report(
        self,
        db: AsyncSession,
        evidence_id: str,
        classification: ContentClassification,
        counts: ShapeCounts,
    ) -> CoverageReport:
        """Calculate and store the latest coverage report for an evidence record."""
        report = self.calculate(evidence_id, classification, counts)

        row = await db.get(CoverageReportModel, evidence_id)
        if row is None:
            row = CoverageReportModel(evidence_id=evidence_id)
            db.add(row)

        row.primary_content_type = report.content_class.value
        row.classification_confidence = report.classification_confidence
        row.shape_counts = counts.to_dict()
        row.coverage_score = report.coverage_score
        row.missing_shapes = report.missing_shapes
        row.warnings = report.warnings
        row.blockers = report.blockers
        row.is_complete = report.is_complete
        await db.flush()

        logger.info(
            "coverage_report_generated",
            evidence_id=evidence_id,
            content_class=report.content_class.value,
            score=report.coverage_score,
            is_complete=report.is_complete,
        )
        return report

    async def check_evidence(self, db: AsyncSession, evidence_ids: list[str]) -> list[str]:
        """
        Blockers preventing publication of a rule citing these evidence records.

        Evidence without a stored report blocks publication.
        """
        blockers: list[str] = []
        for evidence_id in sorted(set(evidence_ids)):
            row = await db.get(CoverageReportModel, evidence_id)
            allowed, reason = can_publish(row)
            if not allowed:
                blockers.append(f"{evidence_id}: {reason}")
        return blockers


def can_publish(report: CoverageReportModel | None) -> tuple[bool, str]:
    """Whether a stored coverage report allows publication, with the reason."""
    if report is None:
        return False, "No coverage report"
    if not report.is_complete:
        detail = "; ".join(report.blockers or [])
        return False, f"Coverage gate failed: {detail}" if detail else "Coverage gate failed"
    return True, "Coverage complete"
