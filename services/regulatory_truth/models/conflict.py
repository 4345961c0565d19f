"""
Regulatory Conflict Database Model
==================================

SQLAlchemy ORM model for disagreements between candidate facts.

Version: 0.1.0
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    String,
    Text,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base
from shared.models.regulation import ConflictStatus


class RegulatoryConflictModel(Base):
    """
    Disagreement between two candidate items (pointers or rules).

    A RESOLVED conflict carries ``resolution["winningItemId"]`` or a
    human ``resolved_by``; anything else must stay ESCALATED.
    """

    __tablename__ = "regulatory_conflicts"
    __table_args__ = (
        Index("ix_conflicts_status", "status"),
        Index("ix_conflicts_items", "item_a_id", "item_b_id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conflict_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=ConflictStatus.OPEN.value)
    concept_slug = Column(String(200))
    description = Column(Text, nullable=False, default="")

    item_a_id = Column(String(36))
    item_b_id = Column(String(36))
    meta = Column("metadata", JSON, default=dict)

    resolution = Column(JSON)
    resolved_by = Column(String(200))
    resolved_at = Column(DateTime(timezone=True))

    requires_human_review = Column(Boolean, nullable=False, default=False)
    escalation_reason = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RegulatoryConflict {self.id}: {self.conflict_type} ({self.status})>"
