"""
Evidence Database Models
========================

SQLAlchemy ORM models for fetched evidence and the quote-backed facts
extracted from it.

Version: 0.1.0
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base


class EvidenceModel(Base):
    """
    Immutable snapshot of fetched source content.

    ``content_hash`` is the SHA-256 of the content after type-specific
    normalization. Rows are never updated except by hash repair.
    """

    __tablename__ = "evidence"
    __table_args__ = (
        Index("ix_evidence_source_hash", "source_url", "content_hash"),
        Index("ix_evidence_fetched", "fetched_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    source_url = Column(String(2048), nullable=False)
    content_type = Column(String(128), nullable=False, default="text/html")
    raw_content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)

    # 1 = constitution/law, higher numbers are weaker sources
    source_hierarchy = Column(Integer)

    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Evidence {self.id}: {self.source_url}>"


class SourcePointerModel(Base):
    """One extracted fact, backed by a verbatim quote from its evidence."""

    __tablename__ = "source_pointers"
    __table_args__ = (
        Index("ix_source_pointers_evidence", "evidence_id"),
        Index("ix_source_pointers_domain", "domain"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    evidence_id = Column(
        String(36),
        ForeignKey("evidence.id", ondelete="RESTRICT"),
        nullable=False,
    )

    domain = Column(String(100), nullable=False)
    value_type = Column(String(50), nullable=False)
    extracted_value = Column(Text, nullable=False)
    display_value = Column(Text)
    exact_quote = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)

    # Character offsets of the located quote
    quote_start = Column(Integer)
    quote_end = Column(Integer)
    match_type = Column(String(20))
    shape = Column(String(30), nullable=False, default="claims")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SourcePointer {self.id}: {self.domain}={self.extracted_value}>"


class ExtractionRejectionModel(Base):
    """A candidate fact refused by the extractor, kept for metrics and audit."""

    __tablename__ = "extraction_rejections"
    __table_args__ = (
        Index("ix_extraction_rejections_type", "rejection_type"),
        Index("ix_extraction_rejections_evidence", "evidence_id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    evidence_id = Column(String(36), nullable=False)
    rejection_type = Column(String(50), nullable=False)
    domain = Column(String(100))
    extracted_value = Column(Text)
    exact_quote = Column(Text)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
