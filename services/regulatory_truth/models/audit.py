"""
Audit and Discovery Database Models
===================================

Append-only audit trail and the discovery ledger used to keep source
discovery idempotent.

Version: 0.1.0
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    UniqueConstraint,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base


class AuditLogModel(Base):
    """One recorded action on a pipeline entity."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_action", "action"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    performed_by = Column(String(200))
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class DiscoveredItemModel(Base):
    """A URL found on a monitored endpoint."""

    __tablename__ = "discovered_items"
    __table_args__ = (
        UniqueConstraint("endpoint_id", "url", name="uq_discovered_items_endpoint_url"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    endpoint_id = Column(String(100), nullable=False)
    url = Column(String(2048), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    discovered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
