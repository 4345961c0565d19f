"""
Content Sync Event Database Model
=================================

SQLAlchemy ORM model for deterministic change notifications.

Version: 0.1.0
"""

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Index,
    String,
)

from services.regulatory_truth.models.base import utcnow
from shared.database.postgres import Base


class ContentSyncEventModel(Base):
    """
    A change event keyed by its deterministic ``event_id``.

    The primary key is the uniqueness constraint that makes repeated
    emission of the same logical change a no-op.
    """

    __tablename__ = "content_sync_events"
    __table_args__ = (
        Index("ix_content_sync_events_rule", "rule_id"),
        Index("ix_content_sync_events_status", "status"),
    )

    event_id = Column(String(64), primary_key=True)
    event_type = Column(String(50), nullable=False)
    rule_id = Column(String(36), nullable=False)
    concept_id = Column(String(200), nullable=False)
    domain = Column(String(100), nullable=False)
    change_type = Column(String(20), nullable=False)
    severity = Column(String(20), nullable=False)
    effective_from = Column(Date, nullable=False)
    source_pointer_ids = Column(JSON, nullable=False)
    signature = Column(JSON, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
