"""
Rules Routes
============

API endpoints for selecting, inspecting and reviewing rules.

Version: 0.1.0
"""

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.graph import build_edge_trace, select_rule
from services.regulatory_truth.services.review import ReviewService, rule_pointer_ids
from shared.config import settings
from shared.database.postgres import get_postgres_session
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class ApproveRequest(BaseModel):
    """Human approval of a rule."""

    approver: str = Field(..., min_length=1, description="Identity of the approving reviewer")


class RejectRequest(BaseModel):
    """Rejection of a rule."""

    reason: str = Field(..., min_length=1)
    actor: str | None = None


class SubmitRequest(BaseModel):
    """Submission of a draft for review."""

    actor: str | None = None


def get_review_service() -> ReviewService:
    return ReviewService(settings.pipeline)


@router.get("/select")
async def select(
    topic: str = Query(..., min_length=1, description="Topic key"),
    as_of: date = Query(..., description="Date of interest (YYYY-MM-DD)"),
    db: AsyncSession = Depends(get_postgres_session),
) -> dict[str, Any]:
    """
    Select the published rule governing a topic on a date.

    Returns the rule ID with its edge trace, NO_COVERAGE with the
    earliest future coverage date, or CONFLICT_MULTIPLE_EFFECTIVE with
    the tied rule IDs.
    """
    selection = await select_rule(db, topic, as_of, settings.pipeline.graph_namespace)
    return selection.to_dict()


@router.get("/{rule_id}")
async def get_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, Any]:
    """Get a rule with the source pointers it cites."""
    rule = await service.get_rule(db, rule_id)
    return {**rule.to_dict(), "source_pointer_ids": await rule_pointer_ids(db, rule_id)}


@router.get("/{rule_id}/trace")
async def get_rule_trace(
    rule_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, Any]:
    """Supersession chain and overriding rules for a rule."""
    await service.get_rule(db, rule_id)
    trace = await build_edge_trace(db, rule_id, settings.pipeline.graph_namespace)
    return trace.to_dict()


@router.post("/{rule_id}/submit")
async def submit_rule(
    rule_id: str,
    request: SubmitRequest,
    db: AsyncSession = Depends(get_postgres_session),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, Any]:
    """Move a draft to PENDING_REVIEW."""
    rule = await service.submit_for_review(db, rule_id, request.actor)
    return rule.to_dict()


@router.post("/{rule_id}/approve")
async def approve_rule(
    rule_id: str,
    request: ApproveRequest,
    db: AsyncSession = Depends(get_postgres_session),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, Any]:
    """
    Approve a rule pending review.

    System identities are refused; T0/T1 rules can only be approved here.
    """
    rule = await service.approve(db, rule_id, request.approver)
    logger.info("rule_approved_via_api", rule_id=rule_id, approver=request.approver)
    return rule.to_dict()


@router.post("/{rule_id}/reject")
async def reject_rule(
    rule_id: str,
    request: RejectRequest,
    db: AsyncSession = Depends(get_postgres_session),
    service: ReviewService = Depends(get_review_service),
) -> dict[str, Any]:
    """Reject a rule that has not been published."""
    rule = await service.reject(db, rule_id, request.reason, request.actor)
    return rule.to_dict()
