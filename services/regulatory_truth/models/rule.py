"""
Regulatory Rule Database Models
===============================

SQLAlchemy ORM model for versioned rules and their citations.

Version: 0.1.0
"""

from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base
from shared.models.regulation import RuleStatus


rule_source_pointers = Table(
    "rule_source_pointers",
    Base.metadata,
    Column("rule_id", String(36), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("pointer_id", String(36), ForeignKey("source_pointers.id"), primary_key=True),
)


class RegulatoryRuleModel(Base):
    """
    A versioned, risk-tiered regulatory claim.

    ``applies_when`` holds the canonical JSON of a validated AppliesWhen
    expression. ``depends_on`` and ``overrides`` are lists of concept
    slugs feeding DEPENDS_ON and OVERRIDES graph edges.
    """

    __tablename__ = "regulatory_rules"
    __table_args__ = (
        Index("ix_rules_concept", "concept_slug"),
        Index("ix_rules_topic", "topic_key"),
        Index("ix_rules_status", "status"),
        Index("ix_rules_effective", "effective_from"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    concept_slug = Column(String(200), nullable=False)
    topic_key = Column(String(200), nullable=False)
    title = Column(String(500), nullable=False, default="")

    applies_when = Column(Text, nullable=False)
    value = Column(Text, nullable=False)
    value_type = Column(String(50), nullable=False)

    risk_tier = Column(String(2), nullable=False)
    authority_level = Column(String(20), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)

    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)

    depends_on = Column(JSON, default=list)
    overrides = Column(JSON, default=list)

    status = Column(String(20), nullable=False, default=RuleStatus.DRAFT.value)
    approved_by = Column(String(200))
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<RegulatoryRule {self.id}: {self.concept_slug} ({self.status})>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "concept_slug": self.concept_slug,
            "topic_key": self.topic_key,
            "value": self.value,
            "value_type": self.value_type,
            "risk_tier": self.risk_tier,
            "authority_level": self.authority_level,
            "status": self.status,
            "confidence": self.confidence,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_until": self.effective_until.isoformat() if self.effective_until else None,
            "approved_by": self.approved_by,
        }
