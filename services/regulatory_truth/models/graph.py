"""
Graph Edge Database Model
=========================

Adjacency-list table for the supersession/dependency graph.

Version: 0.1.0
"""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)

from services.regulatory_truth.models.base import new_id, utcnow
from shared.database.postgres import Base


class GraphEdgeModel(Base):
    """Directed relation between two rules within a namespace."""

    __tablename__ = "graph_edges"
    __table_args__ = (
        UniqueConstraint(
            "from_rule_id", "to_rule_id", "relation", "namespace",
            name="uq_graph_edges_from_to_relation_namespace",
        ),
        Index("ix_graph_edges_from", "from_rule_id", "relation"),
        Index("ix_graph_edges_to", "to_rule_id", "relation"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    from_rule_id = Column(String(36), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), nullable=False)
    to_rule_id = Column(String(36), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), nullable=False)
    relation = Column(String(20), nullable=False)
    namespace = Column(String(50), nullable=False, default="SRG")
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<GraphEdge {self.from_rule_id} -{self.relation}-> {self.to_rule_id}>"
