"""
Conflicts Routes
================

API endpoints for inspecting, arbitrating and resolving conflicts.

Version: 0.1.0
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import RegulatoryConflictModel
from services.regulatory_truth.services.arbiter import Arbiter, Resolved
from shared.config import settings
from shared.database.postgres import get_postgres_session
from shared.models.regulation import ConflictStatus


router = APIRouter()


class ResolveRequest(BaseModel):
    """Human resolution of a conflict."""

    resolver: str = Field(..., min_length=1)
    winning_item_id: str | None = None
    notes: str | None = None


def get_arbiter() -> Arbiter:
    return Arbiter(settings.pipeline)


def conflict_to_dict(conflict: RegulatoryConflictModel) -> dict[str, Any]:
    return {
        "id": conflict.id,
        "conflict_type": conflict.conflict_type,
        "status": conflict.status,
        "concept_slug": conflict.concept_slug,
        "description": conflict.description,
        "item_a_id": conflict.item_a_id,
        "item_b_id": conflict.item_b_id,
        "metadata": conflict.meta or {},
        "resolution": conflict.resolution,
        "resolved_by": conflict.resolved_by,
        "resolved_at": conflict.resolved_at.isoformat() if conflict.resolved_at else None,
        "requires_human_review": conflict.requires_human_review,
        "escalation_reason": conflict.escalation_reason,
    }


@router.get("")
async def list_conflicts(
    status: ConflictStatus | None = Query(default=None, description="Filter by status"),
    db: AsyncSession = Depends(get_postgres_session),
) -> list[dict[str, Any]]:
    """List conflicts, newest first."""
    query = select(RegulatoryConflictModel).order_by(RegulatoryConflictModel.created_at.desc())
    if status:
        query = query.where(RegulatoryConflictModel.status == status.value)
    result = await db.execute(query)
    return [conflict_to_dict(c) for c in result.scalars().all()]


@router.get("/{conflict_id}")
async def get_conflict(
    conflict_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    arbiter: Arbiter = Depends(get_arbiter),
) -> dict[str, Any]:
    """Get a conflict by ID."""
    return conflict_to_dict(await arbiter.get_conflict(db, conflict_id))


@router.post("/{conflict_id}/arbitrate")
async def arbitrate_conflict(
    conflict_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    arbiter: Arbiter = Depends(get_arbiter),
) -> dict[str, Any]:
    """Run automatic arbitration on an OPEN conflict."""
    outcome = await arbiter.arbitrate(db, conflict_id)
    if isinstance(outcome, Resolved):
        return {"outcome": "RESOLVED", "winning_item_id": outcome.winning_item_id, "reason": outcome.reason}
    return {"outcome": "ESCALATED", "reason": outcome.reason, "scores": outcome.scores}


@router.post("/{conflict_id}/resolve")
async def resolve_conflict(
    conflict_id: str,
    request: ResolveRequest,
    db: AsyncSession = Depends(get_postgres_session),
    arbiter: Arbiter = Depends(get_arbiter),
) -> dict[str, Any]:
    """Record a human decision on an OPEN or ESCALATED conflict."""
    conflict = await arbiter.resolve_manually(
        db,
        conflict_id,
        request.resolver,
        winning_item_id=request.winning_item_id,
        notes=request.notes,
    )
    return conflict_to_dict(conflict)
