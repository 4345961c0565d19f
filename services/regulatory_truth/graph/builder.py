"""
Edge Builder
============

Derives SUPERSEDES, DEPENDS_ON and OVERRIDES edges for a rule.

- SUPERSEDES: among APPROVED/PUBLISHED rules sharing a concept slug,
  each rule points at the immediately preceding rule(s) by
  effective_from. Rules with the same effective_from are not linked.
- DEPENDS_ON: concept_ref nodes in applies_when plus the explicit
  depends_on list, each resolved to the rule currently registered for
  that slug.
- OVERRIDES: the rule's exception markers, pointing at every eligible
  rule with the overridden slug.

A rebuild runs in the caller's transaction. A cycle raises
CycleDetectedError and the caller rolls the whole rebuild back.

Version: 0.1.0
"""

import asyncio
import weakref
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.dsl import extract_concept_refs, parse_applies_when
from services.regulatory_truth.errors import RuleNotFoundError
from services.regulatory_truth.graph.cycles import create_edge_with_cycle_check
from services.regulatory_truth.models import GraphEdgeModel, RegulatoryRuleModel
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import EdgeType, RuleStatus


logger = get_logger(__name__)


GRAPH_ELIGIBLE_STATUSES = (RuleStatus.APPROVED.value, RuleStatus.PUBLISHED.value)

# Entries disappear once no rebuild holds the lock
_rule_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def rule_lock(rule_id: str) -> asyncio.Lock:
    """In-process lock serializing edge rebuilds of one rule across all builders."""
    lock = _rule_locks.get(rule_id)
    if lock is None:
        lock = asyncio.Lock()
        _rule_locks[rule_id] = lock
    return lock


@dataclass
class EdgeBuildResult:
    """Edges created and deleted per relation by one rebuild."""

    rule_id: str
    created: dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in EdgeType})
    deleted: dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in EdgeType})

    @property
    def total_created(self) -> int:
        return sum(self.created.values())

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


def dependency_slugs(rule: RegulatoryRuleModel) -> list[str]:
    """Concept slugs a rule depends on, de-duplicated, concept_ref first."""
    slugs = extract_concept_refs(parse_applies_when(rule.applies_when))
    for slug in rule.depends_on or []:
        if slug not in slugs:
            slugs.append(slug)
    return slugs


def _covers(rule: RegulatoryRuleModel, on: date) -> bool:
    return rule.effective_from <= on and (rule.effective_until is None or on < rule.effective_until)


class EdgeBuilder:
    """
    Maintains the supersession/dependency graph for rules.

    Rebuilds for the same rule are serialized by a process-wide lock
    (see ``rule_lock``) and a row lock on the rule.
    """

    def __init__(self, config: PipelineSettings | None = None) -> None:
        self.config = config or get_settings().pipeline

    @property
    def namespace(self) -> str:
        return self.config.graph_namespace

    async def _eligible_rules(self, db: AsyncSession, concept_slug: str) -> list[RegulatoryRuleModel]:
        result = await db.execute(
            select(RegulatoryRuleModel)
            .where(
                RegulatoryRuleModel.concept_slug == concept_slug,
                RegulatoryRuleModel.status.in_(GRAPH_ELIGIBLE_STATUSES),
            )
            .order_by(RegulatoryRuleModel.effective_from, RegulatoryRuleModel.id)
        )
        return list(result.scalars().all())

    async def _delete_edges(self, db: AsyncSession, result: EdgeBuildResult, *conditions: object) -> None:
        rows = await db.execute(
            select(GraphEdgeModel.id, GraphEdgeModel.relation).where(
                GraphEdgeModel.namespace == self.namespace,
                *conditions,
            )
        )
        found = rows.all()
        if not found:
            return
        for _, relation in found:
            result.deleted[relation] += 1
        await db.execute(delete(GraphEdgeModel).where(GraphEdgeModel.id.in_([edge_id for edge_id, _ in found])))
        await db.flush()

    async def _resolve_target(
        self,
        db: AsyncSession,
        concept_slug: str,
        on: date,
        exclude_id: str,
    ) -> RegulatoryRuleModel | None:
        """Rule registered for a slug: the newest one covering ``on``, else the newest."""
        candidates = [r for r in await self._eligible_rules(db, concept_slug) if r.id != exclude_id]
        if not candidates:
            return None
        covering = [r for r in candidates if _covers(r, on)]
        return (covering or candidates)[-1]

    # =========================================================================
    # SUPERSEDES
    # =========================================================================

    async def rebuild_supersession_chain(self, db: AsyncSession, concept_slug: str, result: EdgeBuildResult) -> None:
        """
        Bring the SUPERSEDES chain for a concept slug in line with its rules.

        Only stale edges are deleted and only missing edges created.
        """
        rules = await self._eligible_rules(db, concept_slug)

        desired: set[tuple[str, str]] = set()
        previous_group: list[RegulatoryRuleModel] = []
        index = 0
        while index < len(rules):
            group = [r for r in rules[index:] if r.effective_from == rules[index].effective_from]
            for rule in group:
                for older in previous_group:
                    desired.add((rule.id, older.id))
            previous_group = group
            index += len(group)

        slug_rule_ids = select(RegulatoryRuleModel.id).where(RegulatoryRuleModel.concept_slug == concept_slug)
        existing_rows = await db.execute(
            select(GraphEdgeModel.id, GraphEdgeModel.from_rule_id, GraphEdgeModel.to_rule_id).where(
                GraphEdgeModel.namespace == self.namespace,
                GraphEdgeModel.relation == EdgeType.SUPERSEDES.value,
                or_(
                    GraphEdgeModel.from_rule_id.in_(slug_rule_ids),
                    GraphEdgeModel.to_rule_id.in_(slug_rule_ids),
                ),
            )
        )
        existing = {(from_id, to_id): edge_id for edge_id, from_id, to_id in existing_rows.all()}

        stale = [edge_id for pair, edge_id in existing.items() if pair not in desired]
        if stale:
            await self._delete_edges(db, result, GraphEdgeModel.id.in_(stale))

        for from_id, to_id in sorted(desired - existing.keys()):
            _, created = await create_edge_with_cycle_check(
                db, from_id, to_id, EdgeType.SUPERSEDES, self.namespace, notes=f"chain:{concept_slug}"
            )
            if created:
                result.created[EdgeType.SUPERSEDES.value] += 1

    # =========================================================================
    # Rebuild
    # =========================================================================

    async def rebuild_edges_for_rule(self, db: AsyncSession, rule_id: str) -> EdgeBuildResult:
        """
        Recompute every edge kind for one rule.

        Deletes the rule's stale outgoing edges first. A rule that is not
        APPROVED or PUBLISHED also loses its incoming edges and drops out
        of its supersession chain.

        Args:
            db: Database session (the caller owns the transaction)
            rule_id: Rule whose status or effective window changed

        Returns:
            EdgeBuildResult

        Raises:
            RuleNotFoundError: if the rule does not exist
            CycleDetectedError: if a derived edge would create a cycle
        """
        async with rule_lock(rule_id):
            locked = await db.execute(
                select(RegulatoryRuleModel).where(RegulatoryRuleModel.id == rule_id).with_for_update()
            )
            rule = locked.scalars().first()
            if rule is None:
                raise RuleNotFoundError(rule_id)

            result = EdgeBuildResult(rule_id=rule_id)

            await self._delete_edges(
                db,
                result,
                GraphEdgeModel.from_rule_id == rule_id,
                GraphEdgeModel.relation.in_([EdgeType.DEPENDS_ON.value, EdgeType.OVERRIDES.value]),
            )

            if rule.status not in GRAPH_ELIGIBLE_STATUSES:
                await self._delete_edges(db, result, GraphEdgeModel.to_rule_id == rule_id)
                await self.rebuild_supersession_chain(db, rule.concept_slug, result)
                logger.info("graph_edges_cleared", rule_id=rule_id, status=rule.status, deleted=result.total_deleted)
                return result

            await self.rebuild_supersession_chain(db, rule.concept_slug, result)

            for slug in dependency_slugs(rule):
                target = await self._resolve_target(db, slug, rule.effective_from, exclude_id=rule_id)
                if target is None:
                    logger.debug("graph_dependency_unresolved", rule_id=rule_id, concept_slug=slug)
                    continue
                _, created = await create_edge_with_cycle_check(
                    db, rule_id, target.id, EdgeType.DEPENDS_ON, self.namespace, notes=f"depends_on:{slug}"
                )
                if created:
                    result.created[EdgeType.DEPENDS_ON.value] += 1

            for slug in rule.overrides or []:
                for target in await self._eligible_rules(db, slug):
                    if target.id == rule_id:
                        continue
                    _, created = await create_edge_with_cycle_check(
                        db, rule_id, target.id, EdgeType.OVERRIDES, self.namespace, notes=f"overrides:{slug}"
                    )
                    if created:
                        result.created[EdgeType.OVERRIDES.value] += 1

            logger.info(
                "graph_edges_rebuilt",
                rule_id=rule_id,
                created=result.total_created,
                deleted=result.total_deleted,
            )
            return result
