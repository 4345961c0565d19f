"""Tests for the supersession/dependency graph."""

import asyncio
import gc
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.errors import CycleDetectedError
from services.regulatory_truth.graph import (
    EdgeBuilder,
    build_edge_trace,
    create_edge_with_cycle_check,
    find_superseded_rules,
    find_superseding_rules,
    rule_lock,
    validate_graph_acyclicity,
)
from services.regulatory_truth.graph import builder as builder_module
from services.regulatory_truth.models import GraphEdgeModel, RegulatoryRuleModel
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.review import ReviewService
from shared.config import PipelineSettings
from shared.models.regulation import EdgeType, RuleStatus
from tests.factories import add_rule


@pytest.fixture
def builder(pipeline_config: PipelineSettings) -> EdgeBuilder:
    """Edge builder in the default namespace."""
    return EdgeBuilder(pipeline_config)


async def vat_chain(db: AsyncSession, builder: EdgeBuilder) -> list[RegulatoryRuleModel]:
    """Rules for 2023, 2024 and 2025 with their SUPERSEDES chain built."""
    rules = [await add_rule(db, effective_from=date(year, 1, 1)) for year in (2023, 2024, 2025)]
    await builder.rebuild_edges_for_rule(db, rules[-1].id)
    return rules


async def edge_pairs(db: AsyncSession, relation: EdgeType = EdgeType.SUPERSEDES) -> set[tuple[str, str]]:
    result = await db.execute(
        select(GraphEdgeModel.from_rule_id, GraphEdgeModel.to_rule_id).where(
            GraphEdgeModel.relation == relation.value
        )
    )
    return {(from_id, to_id) for from_id, to_id in result.all()}


class TestSupersession:
    """Tests for SUPERSEDES chains."""

    @pytest.mark.asyncio
    async def test_chain_links_neighbours(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, mid, new = await vat_chain(db, builder)

        assert await edge_pairs(db) == {(mid.id, old.id), (new.id, mid.id)}

    @pytest.mark.asyncio
    async def test_transitive_queries(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, mid, new = await vat_chain(db, builder)

        assert await find_superseding_rules(db, old.id) == [mid.id, new.id]
        assert await find_superseded_rules(db, new.id) == [mid.id, old.id]
        assert await find_superseding_rules(db, new.id) == []

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        _, mid, _ = await vat_chain(db, builder)

        result = await builder.rebuild_edges_for_rule(db, mid.id)

        assert result.total_created == 0
        assert result.total_deleted == 0

    @pytest.mark.asyncio
    async def test_same_date_rules_not_linked(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        a = await add_rule(db, value="25")
        await add_rule(db, value="26")

        await builder.rebuild_edges_for_rule(db, a.id)

        assert await edge_pairs(db) == set()

    @pytest.mark.asyncio
    async def test_rejection_relinks_chain(
        self,
        db: AsyncSession,
        builder: EdgeBuilder,
        pipeline_config: PipelineSettings,
    ) -> None:
        old, mid, new = await vat_chain(db, builder)
        review = ReviewService(pipeline_config, edge_builder=builder)

        await review.reject(db, mid.id, reason="withdrawn")

        assert await edge_pairs(db) == {(new.id, old.id)}

    @pytest.mark.asyncio
    async def test_edge_trace(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, mid, new = await vat_chain(db, builder)

        trace = await build_edge_trace(db, new.id)

        assert trace.supersession_chain == [mid.id, old.id]
        assert [e.to_dict()["type"] for e in trace.traversed_edges] == ["SUPERSEDES", "SUPERSEDES"]
        assert trace.to_dict()["selectedRuleId"] == new.id


class TestCycles:
    """Tests for cycle prevention."""

    @pytest.mark.asyncio
    async def test_closing_edge_rejected(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, _, new = await vat_chain(db, builder)

        with pytest.raises(CycleDetectedError) as exc_info:
            await create_edge_with_cycle_check(db, old.id, new.id, EdgeType.SUPERSEDES)

        assert exc_info.value.namespace == "SRG"
        assert await db.scalar(select(func.count(GraphEdgeModel.id))) == 2

    @pytest.mark.asyncio
    async def test_self_loop_rejected(self, db: AsyncSession) -> None:
        rule = await add_rule(db)

        with pytest.raises(CycleDetectedError):
            await create_edge_with_cycle_check(db, rule.id, rule.id, EdgeType.DEPENDS_ON)

    @pytest.mark.asyncio
    async def test_namespaces_are_separate(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, _, new = await vat_chain(db, builder)

        _, created = await create_edge_with_cycle_check(db, old.id, new.id, EdgeType.SUPERSEDES, namespace="DRAFTS")

        assert created

    @pytest.mark.asyncio
    async def test_duplicate_edge_not_created(self, db: AsyncSession) -> None:
        a = await add_rule(db, concept_slug="a")
        b = await add_rule(db, concept_slug="b")

        first, created = await create_edge_with_cycle_check(db, a.id, b.id, EdgeType.DEPENDS_ON)
        second, created_again = await create_edge_with_cycle_check(db, a.id, b.id, EdgeType.DEPENDS_ON)

        assert created and not created_again
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_mutual_dependency_rejected(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        a = await add_rule(db, concept_slug="a", depends_on=["b"])
        b = await add_rule(db, concept_slug="b", applies_when='{"op":"concept_ref","concept":"a"}')

        await builder.rebuild_edges_for_rule(db, a.id)
        assert await edge_pairs(db, EdgeType.DEPENDS_ON) == {(a.id, b.id)}

        with pytest.raises(CycleDetectedError):
            await builder.rebuild_edges_for_rule(db, b.id)

    @pytest.mark.asyncio
    async def test_acyclicity_scan(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        old, mid, new = await vat_chain(db, builder)

        report = await validate_graph_acyclicity(db)
        assert report.is_acyclic
        assert report.node_count == 3
        assert report.edge_count == 2

        # Bypasses the cycle check
        db.add(
            GraphEdgeModel(
                id=new_id(),
                from_rule_id=old.id,
                to_rule_id=new.id,
                relation=EdgeType.SUPERSEDES.value,
                namespace="SRG",
            )
        )
        await db.flush()

        report = await validate_graph_acyclicity(db)
        assert not report.is_acyclic
        assert set(report.cycle) >= {old.id, new.id}

        # Walks still terminate on the corrupted graph
        assert await find_superseding_rules(db, old.id) == [mid.id, new.id]


class TestDependencies:
    """Tests for DEPENDS_ON and OVERRIDES edges."""

    @pytest.mark.asyncio
    async def test_dependency_resolves_to_covering_rule(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        await add_rule(db, concept_slug="vat-threshold", effective_from=date(2020, 1, 1), value="300000")
        current = await add_rule(db, concept_slug="vat-threshold", effective_from=date(2024, 1, 1), value="40000")
        await add_rule(db, concept_slug="vat-threshold", effective_from=date(2030, 1, 1), value="60000")
        rule = await add_rule(
            db,
            concept_slug="vat-registration",
            effective_from=date(2025, 1, 1),
            applies_when='{"op":"concept_ref","concept":"vat-threshold"}',
        )

        await builder.rebuild_edges_for_rule(db, rule.id)

        assert await edge_pairs(db, EdgeType.DEPENDS_ON) == {(rule.id, current.id)}

    @pytest.mark.asyncio
    async def test_overrides_every_target(self, db: AsyncSession, builder: EdgeBuilder) -> None:
        a = await add_rule(db, effective_from=date(2024, 1, 1))
        b = await add_rule(db, effective_from=date(2025, 1, 1))
        await add_rule(db, status=RuleStatus.DRAFT, effective_from=date(2026, 1, 1))
        exception = await add_rule(db, concept_slug="vat-tourism-exception", overrides=["vat-standard-rate"])

        result = await builder.rebuild_edges_for_rule(db, exception.id)

        assert result.created[EdgeType.OVERRIDES.value] == 2
        assert await edge_pairs(db, EdgeType.OVERRIDES) == {(exception.id, a.id), (exception.id, b.id)}


class TestRebuildLocking:
    """Tests for the per-rule rebuild lock."""

    def test_lock_shared_per_rule(self) -> None:
        lock = rule_lock("rule-a")

        assert rule_lock("rule-a") is lock
        assert rule_lock("rule-b") is not lock

    def test_unused_lock_is_dropped(self) -> None:
        rule_lock("rule-c")
        gc.collect()

        assert "rule-c" not in builder_module._rule_locks

    @pytest.mark.asyncio
    async def test_rebuild_waits_across_builders(self, db: AsyncSession, pipeline_config: PipelineSettings) -> None:
        rule = await add_rule(db)

        async with rule_lock(rule.id):
            task = asyncio.create_task(EdgeBuilder(pipeline_config).rebuild_edges_for_rule(db, rule.id))
            await asyncio.sleep(0.05)
            assert not task.done()

        result = await task
        assert result.rule_id == rule.id
