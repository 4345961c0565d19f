"""
Releases Routes
===============

API endpoints for creating and verifying rule releases.

Version: 0.1.0
"""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import RuleReleaseModel
from services.regulatory_truth.services.release import Releaser
from shared.config import settings
from shared.database.postgres import get_postgres_session


router = APIRouter()


class ReleaseRequest(BaseModel):
    """Rules to bundle into a new release."""

    rule_ids: list[str] = Field(..., min_length=1)
    actor: str | None = None


def get_releaser() -> Releaser:
    return Releaser(settings.pipeline)


async def release_to_dict(db: AsyncSession, releaser: Releaser, release: RuleReleaseModel) -> dict[str, Any]:
    return {
        "id": release.id,
        "version": release.version,
        "content_hash": release.content_hash,
        "released_by": release.released_by,
        "released_at": release.released_at.isoformat() if release.released_at else None,
        "rule_ids": await releaser.release_rule_ids(db, release.id),
    }


@router.get("")
async def list_releases(
    db: AsyncSession = Depends(get_postgres_session),
    releaser: Releaser = Depends(get_releaser),
) -> list[dict[str, Any]]:
    """List releases, oldest first."""
    result = await db.execute(select(RuleReleaseModel).order_by(RuleReleaseModel.released_at))
    return [await release_to_dict(db, releaser, r) for r in result.scalars().all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_release(
    request: ReleaseRequest,
    db: AsyncSession = Depends(get_postgres_session),
    releaser: Releaser = Depends(get_releaser),
) -> dict[str, Any]:
    """
    Publish and bundle approved rules into a new release.

    The whole release is refused if any rule is not approved or fails
    the publication gate.
    """
    release = await releaser.release(db, request.rule_ids, request.actor)
    return await release_to_dict(db, releaser, release)


@router.get("/{release_id}")
async def get_release(
    release_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    releaser: Releaser = Depends(get_releaser),
) -> dict[str, Any]:
    """Get a release by ID."""
    release = await releaser.get_release(db, release_id)
    return await release_to_dict(db, releaser, release)


@router.get("/{release_id}/verify")
async def verify_release(
    release_id: str,
    db: AsyncSession = Depends(get_postgres_session),
    releaser: Releaser = Depends(get_releaser),
) -> dict[str, Any]:
    """Recompute a release's hash and compare it with the stored one."""
    verification = await releaser.verify_release(db, release_id)
    return verification.to_dict()
