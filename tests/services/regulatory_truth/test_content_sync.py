"""Tests for content sync event emission."""

from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.content_sync import (
    ChangeType,
    ContentSyncEmitter,
    EmitEventParams,
    EventType,
    InvalidPayloadError,
    MissingPointersError,
    Severity,
    build_payload,
)
from services.regulatory_truth.models import ContentSyncEventModel
from shared.models.regulation import RiskTier


def params(**overrides: object) -> EmitEventParams:
    fields: dict[str, object] = {
        "event_type": EventType.RULE_RELEASED,
        "rule_id": "rule-1",
        "concept_id": "vat-standard-rate",
        "domain": "vat",
        "change_type": ChangeType.CREATE,
        "effective_from": date(2025, 1, 1),
        "tier": RiskTier.T0,
        "source_pointer_ids": ["p-2", "p-1"],
        "confidence_level": 0.95,
        "new_value": "25",
    }
    fields.update(overrides)
    return EmitEventParams(**fields)  # type: ignore[arg-type]


class TestEmitter:
    """Tests for ContentSyncEmitter.emit."""

    @pytest.mark.asyncio
    async def test_emit_is_idempotent(self, db: AsyncSession) -> None:
        emitter = ContentSyncEmitter()

        first = await emitter.emit(db, params())
        second = await emitter.emit(db, params(source_pointer_ids=["p-1", "p-2"]))

        assert first.is_new
        assert not second.is_new
        assert first.event_id == second.event_id
        assert first.severity == Severity.BREAKING
        assert await db.scalar(select(func.count()).select_from(ContentSyncEventModel)) == 1

    @pytest.mark.asyncio
    async def test_racing_writers_store_one_event(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        emitter = ContentSyncEmitter()

        async with session_factory() as first_db, session_factory() as second_db:
            await first_db.execute(select(func.count()).select_from(ContentSyncEventModel))

            winner = await emitter.emit(second_db, params())
            await second_db.commit()

            loser = await emitter.emit(first_db, params())
            await first_db.commit()

        assert winner.is_new
        assert not loser.is_new
        assert loser.event_id == winner.event_id
        async with session_factory() as db:
            assert await db.scalar(select(func.count()).select_from(ContentSyncEventModel)) == 1

    @pytest.mark.asyncio
    async def test_different_change_new_event(self, db: AsyncSession) -> None:
        emitter = ContentSyncEmitter()

        first = await emitter.emit(db, params())
        second = await emitter.emit(db, params(new_value="26"))

        assert first.event_id != second.event_id
        assert second.is_new

    @pytest.mark.asyncio
    async def test_stored_event(self, db: AsyncSession) -> None:
        result = await ContentSyncEmitter().emit(db, params())

        event = await db.get(ContentSyncEventModel, result.event_id)
        assert event.status == "PENDING"
        assert event.source_pointer_ids == ["p-1", "p-2"]
        assert event.payload["sourcePointerIds"] == ["p-1", "p-2"]
        assert event.signature["ruleId"] == "rule-1"

    @pytest.mark.asyncio
    async def test_missing_pointers_refused(self, db: AsyncSession) -> None:
        with pytest.raises(MissingPointersError):
            await ContentSyncEmitter().emit(db, params(source_pointer_ids=[]))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("override", [{"concept_id": ""}, {"domain": ""}])
    async def test_invalid_payload_refused(self, db: AsyncSession, override: dict[str, str]) -> None:
        with pytest.raises(InvalidPayloadError):
            await ContentSyncEmitter().emit(db, params(**override))


class TestPayload:
    """Tests for the event payload."""

    def test_optional_fields_omitted(self) -> None:
        payload = build_payload(params(confidence_level=None, new_value=None), Severity.INFO)

        assert payload["version"] == 1
        assert payload["effectiveFrom"] == "2025-01-01"
        assert "confidenceLevel" not in payload
        assert "newValue" not in payload
        assert "previousValue" not in payload

    def test_previous_value_included(self) -> None:
        payload = build_payload(params(previous_value="24", change_type=ChangeType.UPDATE), Severity.BREAKING)

        assert payload["previousValue"] == "24"
        assert payload["changeType"] == "update"
