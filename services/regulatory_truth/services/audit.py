"""
Audit Trail
===========

Append-only record of pipeline actions and the idempotent discovery
ledger.

Version: 0.1.0
"""

from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import AuditLogModel, DiscoveredItemModel
from services.regulatory_truth.models.base import new_id
from shared.logging import get_logger


logger = get_logger(__name__)


class AuditAction(str, Enum):
    """Audited pipeline actions."""

    EVIDENCE_STORED = "EVIDENCE_STORED"
    EVIDENCE_HASH_REPAIRED = "EVIDENCE_HASH_REPAIRED"
    EXTRACTION_REJECTED = "EXTRACTION_REJECTED"
    RULE_CREATED = "RULE_CREATED"
    RULE_REJECTED_DSL = "RULE_REJECTED_DSL"
    RULE_STATUS_CHANGED = "RULE_STATUS_CHANGED"
    RULE_AUTO_APPROVED = "RULE_AUTO_APPROVED"
    CONFLICT_CREATED = "CONFLICT_CREATED"
    CONFLICT_RESOLVED = "CONFLICT_RESOLVED"
    CONFLICT_ESCALATED = "CONFLICT_ESCALATED"
    RELEASE_CREATED = "RELEASE_CREATED"
    RELEASE_HASH_REPAIRED = "RELEASE_HASH_REPAIRED"


async def record_audit(
    db: AsyncSession,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    performed_by: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLogModel:
    """
    Append an audit entry in the caller's transaction.

    Args:
        db: Database session
        action: What happened
        entity_type: Kind of entity acted on
        entity_id: ID of the entity
        performed_by: Actor identity, human or system
        metadata: Extra detail (old/new values, reasons)

    Returns:
        The added audit row
    """
    entry = AuditLogModel(
        id=new_id(),
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        meta=metadata or {},
    )
    db.add(entry)
    logger.debug("audit_recorded", action=action.value, entity_type=entity_type, entity_id=entity_id)
    return entry


async def list_audit(
    db: AsyncSession,
    entity_id: str | None = None,
    action: AuditAction | None = None,
) -> list[AuditLogModel]:
    """Audit entries, oldest first, optionally filtered."""
    query = select(AuditLogModel)
    if entity_id is not None:
        query = query.where(AuditLogModel.entity_id == entity_id)
    if action is not None:
        query = query.where(AuditLogModel.action == action.value)
    result = await db.execute(query.order_by(AuditLogModel.created_at))
    return list(result.scalars().all())


async def record_discovery(
    db: AsyncSession,
    endpoint_id: str,
    url: str,
) -> tuple[str, bool]:
    """
    Record a discovered URL, treating a duplicate as already done.

    Commits its own unit of work so a duplicate only rolls back this row.

    Args:
        db: Database session with no pending work
        endpoint_id: Monitored endpoint the URL was found on
        url: Discovered URL

    Returns:
        (item_id, is_new)
    """
    item = DiscoveredItemModel(id=new_id(), endpoint_id=endpoint_id, url=url)
    db.add(item)
    try:
        await db.commit()
        return item.id, True
    except IntegrityError:
        await db.rollback()

    result = await db.execute(
        select(DiscoveredItemModel.id).where(
            DiscoveredItemModel.endpoint_id == endpoint_id,
            DiscoveredItemModel.url == url,
        )
    )
    existing_id = result.scalar_one()
    logger.debug("discovery_duplicate", endpoint_id=endpoint_id, url=url)
    return existing_id, False
