"""
Coverage Report Database Model
==============================

Per-evidence record of which extraction shapes were found.

Version: 0.1.0
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    String,
)

from services.regulatory_truth.models.base import utcnow
from shared.database.postgres import Base


class CoverageReportModel(Base):
    """Latest coverage gate outcome for one piece of evidence."""

    __tablename__ = "coverage_reports"

    evidence_id = Column(String(36), ForeignKey("evidence.id"), primary_key=True)
    primary_content_type = Column(String(20), nullable=False)
    classification_confidence = Column(Float, nullable=False, default=0.0)
    shape_counts = Column(JSON, nullable=False, default=dict)
    coverage_score = Column(Float, nullable=False, default=0.0)
    missing_shapes = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)
    blockers = Column(JSON, nullable=False, default=list)
    is_complete = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
