"""
Invariants Routes
=================

Live invariant checks and the resulting verdict.

Version: 0.1.0
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.e2e.invariants import InvariantReport, InvariantValidator
from services.regulatory_truth.services.evidence import EvidenceStore
from services.regulatory_truth.services.release import Releaser
from shared.config import settings
from shared.database.postgres import get_postgres_session


router = APIRouter()


@router.get("", response_model=InvariantReport)
async def check_invariants(db: AsyncSession = Depends(get_postgres_session)) -> InvariantReport:
    """Run INV-1 to INV-8 against the current state."""
    validator = InvariantValidator(EvidenceStore(), Releaser(settings.pipeline))
    return await validator.validate(db)
