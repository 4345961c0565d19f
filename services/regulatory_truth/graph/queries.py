"""
Graph Queries
=============

Transitive supersession queries and edge traces. All walks keep a
visited set, so they terminate even on a graph that was corrupted
outside the cycle check.

Version: 0.1.0
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import GraphEdgeModel
from shared.models.regulation import EdgeType


@dataclass
class TraceEdge:
    """An edge visited while building a trace."""

    from_rule_id: str
    to_rule_id: str
    relation: str
    direction: str  # "outgoing" or "incoming"

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_rule_id,
            "to": self.to_rule_id,
            "type": self.relation,
            "direction": self.direction,
        }


@dataclass
class EdgeTrace:
    """Why a rule was selected: what it supersedes and what overrides it."""

    selected_rule_id: str
    traversed_edges: list[TraceEdge] = field(default_factory=list)
    supersession_chain: list[str] = field(default_factory=list)
    overridden_by: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectedRuleId": self.selected_rule_id,
            "traversedEdges": [e.to_dict() for e in self.traversed_edges],
            "supersessionChain": self.supersession_chain,
            "overriddenBy": self.overridden_by,
        }


async def _neighbours(
    db: AsyncSession,
    rule_id: str,
    relation: EdgeType,
    namespace: str,
    incoming: bool,
) -> list[str]:
    if incoming:
        query = select(GraphEdgeModel.from_rule_id).where(GraphEdgeModel.to_rule_id == rule_id)
        order = GraphEdgeModel.from_rule_id
    else:
        query = select(GraphEdgeModel.to_rule_id).where(GraphEdgeModel.from_rule_id == rule_id)
        order = GraphEdgeModel.to_rule_id
    result = await db.execute(
        query.where(
            GraphEdgeModel.relation == relation.value,
            GraphEdgeModel.namespace == namespace,
        ).order_by(order)
    )
    return list(result.scalars().all())


async def _closure(
    db: AsyncSession,
    rule_id: str,
    namespace: str,
    incoming: bool,
) -> list[str]:
    found: list[str] = []
    visited = {rule_id}
    queue = deque([rule_id])

    while queue:
        current = queue.popleft()
        for neighbour in await _neighbours(db, current, EdgeType.SUPERSEDES, namespace, incoming):
            if neighbour in visited:
                continue
            visited.add(neighbour)
            found.append(neighbour)
            queue.append(neighbour)

    return found


async def find_superseding_rules(db: AsyncSession, rule_id: str, namespace: str = "SRG") -> list[str]:
    """Every rule that supersedes ``rule_id``, directly or transitively, nearest first."""
    return await _closure(db, rule_id, namespace, incoming=True)


async def find_superseded_rules(db: AsyncSession, rule_id: str, namespace: str = "SRG") -> list[str]:
    """Every rule ``rule_id`` supersedes, directly or transitively, nearest first."""
    return await _closure(db, rule_id, namespace, incoming=False)


async def find_overriding_rules(db: AsyncSession, rule_id: str, namespace: str = "SRG") -> list[str]:
    """Rules with an OVERRIDES edge pointing at ``rule_id``."""
    return await _neighbours(db, rule_id, EdgeType.OVERRIDES, namespace, incoming=True)


async def build_edge_trace(db: AsyncSession, rule_id: str, namespace: str = "SRG") -> EdgeTrace:
    """
    Trace a selected rule through the graph.

    Follows the outgoing SUPERSEDES chain from the rule to the oldest
    predecessor, then adds incoming OVERRIDES edges.

    Args:
        db: Database session
        rule_id: The selected rule
        namespace: Graph namespace

    Returns:
        EdgeTrace with edges in traversal order
    """
    trace = EdgeTrace(selected_rule_id=rule_id)

    visited: set[str] = set()
    current: str | None = rule_id
    while current is not None and current not in visited:
        visited.add(current)
        older = await _neighbours(db, current, EdgeType.SUPERSEDES, namespace, incoming=False)
        if not older:
            break
        target = older[0]
        trace.traversed_edges.append(TraceEdge(current, target, EdgeType.SUPERSEDES.value, "outgoing"))
        trace.supersession_chain.append(target)
        current = target

    for overriding_id in await find_overriding_rules(db, rule_id, namespace):
        trace.traversed_edges.append(TraceEdge(overriding_id, rule_id, EdgeType.OVERRIDES.value, "incoming"))
        trace.overridden_by.append(overriding_id)

    return trace
