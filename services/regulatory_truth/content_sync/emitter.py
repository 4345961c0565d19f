"""
Content Sync Emitter
====================

Writes change events for downstream documentation sync.

Every event must cite source pointers. The event ID is derived from a
canonical signature and written with ``ON CONFLICT DO NOTHING``, so
re-emitting the same logical change is a no-op, including when two
writers race on the same event.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.content_sync.errors import (
    DbWriteFailedError,
    InvalidPayloadError,
    MissingPointersError,
)
from services.regulatory_truth.content_sync.signature import (
    ChangeType,
    EventType,
    Severity,
    build_event_signature,
    determine_severity,
    generate_event_id,
)
from services.regulatory_truth.models import ContentSyncEventModel
from shared.logging import get_logger
from shared.models.regulation import RiskTier


logger = get_logger(__name__)


PAYLOAD_VERSION = 1


@dataclass
class EmitEventParams:
    """A logical rule change to announce."""

    event_type: EventType
    rule_id: str
    concept_id: str
    domain: str
    change_type: ChangeType
    effective_from: date
    tier: RiskTier
    source_pointer_ids: list[str] = field(default_factory=list)
    confidence_level: float | None = None
    previous_value: str | None = None
    new_value: str | None = None


@dataclass
class EmitResult:
    """Event ID and whether this call wrote it."""

    event_id: str
    is_new: bool
    severity: Severity


def build_payload(params: EmitEventParams, severity: Severity) -> dict[str, Any]:
    """Version 1 event payload; optional values are omitted when unset."""
    payload: dict[str, Any] = {
        "version": PAYLOAD_VERSION,
        "ruleId": params.rule_id,
        "conceptId": params.concept_id,
        "domain": params.domain,
        "changeType": ChangeType(params.change_type).value,
        "effectiveFrom": params.effective_from.isoformat(),
        "sourcePointerIds": sorted(params.source_pointer_ids),
        "severity": severity.value,
    }
    if params.confidence_level is not None:
        payload["confidenceLevel"] = params.confidence_level
    if params.previous_value is not None:
        payload["previousValue"] = params.previous_value
    if params.new_value is not None:
        payload["newValue"] = params.new_value
    return payload


def _insert_ignoring_duplicates(db: AsyncSession, values: dict[str, Any]) -> Any:
    """``INSERT ... ON CONFLICT (event_id) DO NOTHING`` for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(ContentSyncEventModel.__table__)
    elif dialect == "sqlite":
        stmt = sqlite.insert(ContentSyncEventModel.__table__)
    else:
        raise NotImplementedError(f"content sync events are not supported on {dialect}")
    return stmt.values(**values).on_conflict_do_nothing(index_elements=["event_id"])


class ContentSyncEmitter:
    """Emits deterministic, idempotent content sync events."""

    async def emit(self, db: AsyncSession, params: EmitEventParams) -> EmitResult:
        """
        Write an event unless one with the same ID exists.

        Args:
            db: Database session (the caller owns the transaction)
            params: The change to announce

        Returns:
            EmitResult with ``is_new=False`` when the event already existed

        Raises:
            MissingPointersError: if ``source_pointer_ids`` is empty
            InvalidPayloadError: if the concept or domain is empty
            DbWriteFailedError: if the insert fails for any reason other
                than the event already existing
        """
        if not params.source_pointer_ids:
            raise MissingPointersError(params.rule_id)
        if not params.concept_id:
            raise InvalidPayloadError("conceptId is required")
        if not params.domain:
            raise InvalidPayloadError("domain is required")

        severity = determine_severity(params.tier, params.change_type)
        signature = build_event_signature(
            rule_id=params.rule_id,
            concept_id=params.concept_id,
            event_type=params.event_type,
            effective_from=params.effective_from.isoformat(),
            source_pointer_ids=params.source_pointer_ids,
            new_value=params.new_value,
        )
        event_id = generate_event_id(signature)

        values: dict[str, Any] = {
            "event_id": event_id,
            "event_type": EventType(params.event_type).value,
            "rule_id": params.rule_id,
            "concept_id": params.concept_id,
            "domain": params.domain,
            "change_type": ChangeType(params.change_type).value,
            "severity": severity.value,
            "effective_from": params.effective_from,
            "source_pointer_ids": sorted(params.source_pointer_ids),
            "signature": signature,
            "payload": build_payload(params, severity),
            "status": "PENDING",
        }
        try:
            result = await db.execute(_insert_ignoring_duplicates(db, values))
        except SQLAlchemyError as e:
            raise DbWriteFailedError(event_id, str(getattr(e, "orig", e))) from e

        # Zero rows means another writer already holds this event_id
        if result.rowcount == 0:
            logger.debug("content_sync_event_exists", event_id=event_id, rule_id=params.rule_id)
            return EmitResult(event_id=event_id, is_new=False, severity=severity)

        logger.info(
            "content_sync_event_emitted",
            event_id=event_id,
            event_type=EventType(params.event_type).value,
            rule_id=params.rule_id,
            severity=severity.value,
        )
        return EmitResult(event_id=event_id, is_new=True, severity=severity)
