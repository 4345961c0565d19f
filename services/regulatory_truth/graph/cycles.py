"""
Cycle Prevention
================

Every graph edge is created through ``create_edge_with_cycle_check``,
which refuses any edge that would close a cycle in its namespace. The
check runs in the caller's transaction, against edges already flushed
in that transaction.

Version: 0.1.0
"""

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.errors import CycleDetectedError
from services.regulatory_truth.models import GraphEdgeModel
from services.regulatory_truth.models.base import new_id
from shared.logging import get_logger
from shared.models.regulation import EdgeType


logger = get_logger(__name__)


async def _successors(
    db: AsyncSession,
    node_ids: set[str],
    namespace: str,
) -> dict[str, set[str]]:
    """Outgoing neighbours (any relation) for a frontier of nodes."""
    result = await db.execute(
        select(GraphEdgeModel.from_rule_id, GraphEdgeModel.to_rule_id).where(
            GraphEdgeModel.namespace == namespace,
            GraphEdgeModel.from_rule_id.in_(node_ids),
        )
    )
    adjacency: dict[str, set[str]] = {}
    for from_id, to_id in result.all():
        adjacency.setdefault(from_id, set()).add(to_id)
    return adjacency


async def find_path(
    db: AsyncSession,
    from_rule_id: str,
    to_rule_id: str,
    namespace: str = "SRG",
) -> list[str] | None:
    """
    Shortest directed path between two rules, over all relations.

    Returns:
        Rule IDs from ``from_rule_id`` to ``to_rule_id`` inclusive, or
        None when unreachable
    """
    if from_rule_id == to_rule_id:
        return [from_rule_id]

    parents: dict[str, str] = {}
    visited = {from_rule_id}
    frontier = {from_rule_id}

    while frontier:
        adjacency = await _successors(db, frontier, namespace)
        next_frontier: set[str] = set()
        for node in sorted(frontier):
            for neighbour in sorted(adjacency.get(node, ())):
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                parents[neighbour] = node
                if neighbour == to_rule_id:
                    path = [neighbour]
                    while path[-1] != from_rule_id:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                next_frontier.add(neighbour)
        frontier = next_frontier

    return None


async def would_create_cycle(
    db: AsyncSession,
    from_rule_id: str,
    to_rule_id: str,
    namespace: str = "SRG",
) -> bool:
    """True for a self-loop or when ``to_rule_id`` already reaches ``from_rule_id``."""
    if from_rule_id == to_rule_id:
        return True
    return await find_path(db, to_rule_id, from_rule_id, namespace) is not None


async def create_edge_with_cycle_check(
    db: AsyncSession,
    from_rule_id: str,
    to_rule_id: str,
    relation: EdgeType,
    namespace: str = "SRG",
    notes: str | None = None,
) -> tuple[GraphEdgeModel, bool]:
    """
    Create an edge unless it would close a cycle.

    Args:
        db: Database session (the caller owns the transaction)
        from_rule_id: Source rule
        to_rule_id: Target rule
        relation: Edge relation
        namespace: Graph namespace
        notes: Free-form provenance

    Returns:
        (edge, created). An identical existing edge is returned with
        created=False.

    Raises:
        CycleDetectedError: if the edge would create a cycle
    """
    existing = await db.execute(
        select(GraphEdgeModel).where(
            GraphEdgeModel.from_rule_id == from_rule_id,
            GraphEdgeModel.to_rule_id == to_rule_id,
            GraphEdgeModel.relation == relation.value,
            GraphEdgeModel.namespace == namespace,
        )
    )
    edge = existing.scalars().first()
    if edge is not None:
        return edge, False

    if await would_create_cycle(db, from_rule_id, to_rule_id, namespace):
        logger.warning(
            "graph_cycle_rejected",
            from_rule_id=from_rule_id,
            to_rule_id=to_rule_id,
            relation=relation.value,
            namespace=namespace,
        )
        raise CycleDetectedError(from_rule_id, to_rule_id, relation.value, namespace)

    edge = GraphEdgeModel(
        id=new_id(),
        from_rule_id=from_rule_id,
        to_rule_id=to_rule_id,
        relation=relation.value,
        namespace=namespace,
        notes=notes,
    )
    db.add(edge)
    await db.flush()
    return edge, True


@dataclass
class AcyclicityReport:
    """Result of a whole-namespace cycle scan."""

    namespace: str
    is_acyclic: bool = True
    node_count: int = 0
    edge_count: int = 0
    cycle: list[str] = field(default_factory=list)


async def validate_graph_acyclicity(db: AsyncSession, namespace: str = "SRG") -> AcyclicityReport:
    """
    Scan a namespace for cycles with an iterative depth-first search.

    Edges are only ever added through the cycle check, so a cycle here
    means rows were written some other way.
    """
    result = await db.execute(
        select(GraphEdgeModel.from_rule_id, GraphEdgeModel.to_rule_id).where(
            GraphEdgeModel.namespace == namespace
        )
    )
    adjacency: dict[str, list[str]] = {}
    nodes: set[str] = set()
    edge_count = 0
    for from_id, to_id in result.all():
        adjacency.setdefault(from_id, []).append(to_id)
        nodes.update((from_id, to_id))
        edge_count += 1

    report = AcyclicityReport(namespace=namespace, node_count=len(nodes), edge_count=edge_count)

    # 0 = unvisited, 1 = on stack, 2 = done
    state: dict[str, int] = {}
    for root in sorted(nodes):
        if state.get(root):
            continue
        stack: list[tuple[str, int]] = [(root, 0)]
        path: list[str] = []
        while stack:
            node, index = stack.pop()
            if index == 0:
                state[node] = 1
                path.append(node)
            children = sorted(adjacency.get(node, ()))
            if index < len(children):
                stack.append((node, index + 1))
                child = children[index]
                if state.get(child) == 1:
                    report.is_acyclic = False
                    report.cycle = path[path.index(child):] + [child]
                    return report
                if not state.get(child):
                    stack.append((child, 0))
            else:
                state[node] = 2
                path.pop()

    return report
