"""Tests for the Regulatory Truth API."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.errors import (
    AppliesWhenError,
    CycleDetectedError,
    ReleaseError,
    RuleNotFoundError,
)
from services.regulatory_truth.main import status_code_for
from services.regulatory_truth.models import RegulatoryRuleModel
from services.regulatory_truth.services.arbiter import Arbiter
from shared.models.regulation import AUTO_APPROVE_SYSTEM, AuthorityLevel, RiskTier, RuleStatus
from tests.factories import add_cited_rule


class TestHealth:
    """Tests for service endpoints."""

    @pytest.mark.asyncio
    async def test_root(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Regulatory Truth Service"

    @pytest.mark.asyncio
    async def test_health(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"]["status"] == "healthy"


class TestErrorMapping:
    """Tests for pipeline error status codes."""

    def test_status_codes(self) -> None:
        assert status_code_for(RuleNotFoundError("r")) == 404
        assert status_code_for(CycleDetectedError("a", "b", "SUPERSEDES", "SRG")) == 409
        assert status_code_for(AppliesWhenError(["bad"])) == 422
        assert status_code_for(ReleaseError("empty")) == 400


class TestRuleRoutes:
    """Tests for rule selection and review endpoints."""

    @pytest.mark.asyncio
    async def test_select_without_coverage(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get(
            "/api/v1/rules/select", params={"topic": "vat-standard-rate", "as_of": "2025-06-01"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reason"] == "NO_COVERAGE"
        assert data["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_rule(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/api/v1/rules/missing")

        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_review_flow(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            rule = await add_cited_rule(db, status=RuleStatus.DRAFT, risk_tier=RiskTier.T0)
            await db.commit()

        response = await regulatory_truth_client.post(f"/api/v1/rules/{rule.id}/submit", json={"actor": "author"})
        assert response.status_code == 200
        assert response.json()["status"] == "PENDING_REVIEW"

        response = await regulatory_truth_client.post(
            f"/api/v1/rules/{rule.id}/approve", json={"approver": AUTO_APPROVE_SYSTEM}
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "HUMAN_APPROVAL_REQUIRED"

        response = await regulatory_truth_client.post(
            f"/api/v1/rules/{rule.id}/approve", json={"approver": "reviewer@example.com"}
        )
        assert response.status_code == 200
        assert response.json()["approved_by"] == "reviewer@example.com"

        response = await regulatory_truth_client.get(f"/api/v1/rules/{rule.id}")
        assert response.json()["status"] == "APPROVED"
        assert len(response.json()["source_pointer_ids"]) == 1

        response = await regulatory_truth_client.post(f"/api/v1/rules/{rule.id}/submit", json={})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_trace(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            rule = await add_cited_rule(db)
            await db.commit()

        response = await regulatory_truth_client.get(f"/api/v1/rules/{rule.id}/trace")

        assert response.status_code == 200
        assert response.json()["selectedRuleId"] == rule.id
        assert response.json()["overriddenBy"] == []

    @pytest.mark.asyncio
    async def test_reject(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            rule = await add_cited_rule(db, status=RuleStatus.PENDING_REVIEW)
            await db.commit()

        response = await regulatory_truth_client.post(
            f"/api/v1/rules/{rule.id}/reject", json={"reason": "wrong article", "actor": "reviewer"}
        )

        assert response.status_code == 200
        async with session_factory() as db:
            stored = await db.get(RegulatoryRuleModel, rule.id)
            assert stored.status == RuleStatus.REJECTED.value


class TestReleaseRoutes:
    """Tests for release endpoints."""

    @pytest.mark.asyncio
    async def test_create_select_and_verify(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            rule = await add_cited_rule(db)
            await db.commit()

        response = await regulatory_truth_client.post(
            "/api/v1/releases", json={"rule_ids": [rule.id], "actor": "release-manager"}
        )
        assert response.status_code == 201
        release = response.json()
        assert release["version"] == "1.0.0"
        assert release["rule_ids"] == [rule.id]

        response = await regulatory_truth_client.get(f"/api/v1/releases/{release['id']}/verify")
        assert response.status_code == 200
        assert response.json()["valid"] is True

        response = await regulatory_truth_client.get(
            "/api/v1/rules/select", params={"topic": "vat-standard-rate", "as_of": "2025-06-01"}
        )
        assert response.json()["reason"] == "EFFECTIVE"
        assert response.json()["ruleId"] == rule.id

        response = await regulatory_truth_client.get("/api/v1/releases")
        assert [r["id"] for r in response.json()] == [release["id"]]

    @pytest.mark.asyncio
    async def test_empty_release_rejected(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.post("/api/v1/releases", json={"rule_ids": []})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_draft_release_refused(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            rule = await add_cited_rule(db, status=RuleStatus.DRAFT)
            await db.commit()

        response = await regulatory_truth_client.post("/api/v1/releases", json={"rule_ids": [rule.id]})

        assert response.status_code == 400
        assert response.json()["error_code"] == "RELEASE_FAILED"


class TestConflictRoutes:
    """Tests for conflict endpoints."""

    @pytest.mark.asyncio
    async def test_arbitrate_and_list(
        self,
        regulatory_truth_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as db:
            law = await add_cited_rule(db, value="25")
            await add_cited_rule(db, value="22", authority_level=AuthorityLevel.PRACTICE)
            [conflict_id] = await Arbiter().detect_rule_conflicts(db)
            await db.commit()

        response = await regulatory_truth_client.get("/api/v1/conflicts", params={"status": "OPEN"})
        assert [c["id"] for c in response.json()] == [conflict_id]

        response = await regulatory_truth_client.post(f"/api/v1/conflicts/{conflict_id}/arbitrate")
        assert response.status_code == 200
        assert response.json()["outcome"] == "RESOLVED"
        assert response.json()["winning_item_id"] == law.id

        response = await regulatory_truth_client.post(
            f"/api/v1/conflicts/{conflict_id}/resolve", json={"resolver": "lawyer@example.com"}
        )
        assert response.status_code == 409

        response = await regulatory_truth_client.get(f"/api/v1/conflicts/{conflict_id}")
        assert response.json()["status"] == "RESOLVED"


class TestInvariantRoutes:
    """Tests for the invariant endpoint."""

    @pytest.mark.asyncio
    async def test_empty_database_verdict(self, regulatory_truth_client: AsyncClient) -> None:
        response = await regulatory_truth_client.get("/api/v1/invariants")

        assert response.status_code == 200
        data = response.json()
        assert data["verdict"] == "CONDITIONAL-GO"
        assert data["results"]["INV-3"]["status"] == "PARTIAL"
