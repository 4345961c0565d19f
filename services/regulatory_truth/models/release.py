"""
Rule Release Database Models
============================

SQLAlchemy ORM model for immutable, hash-sealed bundles of rules.

Version: 0.1.0
"""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base


release_rules = Table(
    "release_rules",
    Base.metadata,
    Column("release_id", String(36), ForeignKey("rule_releases.id", ondelete="CASCADE"), primary_key=True),
    Column("rule_id", String(36), ForeignKey("regulatory_rules.id"), primary_key=True),
)


class RuleReleaseModel(Base):
    """A published release and its integrity hash."""

    __tablename__ = "rule_releases"

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(String(20), nullable=False, unique=True)
    content_hash = Column(String(64), nullable=False)
    released_by = Column(String(200))
    released_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RuleRelease {self.version}: {self.content_hash[:12]}>"
