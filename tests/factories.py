"""
Test Factories
==============

Helpers that put evidence, pointers, coverage reports and rules into a
test database.
"""

from datetime import date

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import (
    EvidenceModel,
    RegulatoryRuleModel,
    SourcePointerModel,
    rule_source_pointers,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.coverage import CoverageGate, ShapeCounts
from services.regulatory_truth.services.evidence import EvidenceStore
from services.regulatory_truth.services.extraction import Extractor
from shared.models.regulation import (
    AuthorityLevel,
    CandidateFact,
    ContentClassification,
    RiskTier,
    RuleStatus,
)


VAT_TEXT = "Article 38. The standard VAT rate is 25%. The reduced rate is 13%."


async def add_evidence(
    db: AsyncSession,
    content: str = VAT_TEXT,
    source_url: str = "https://gov.example/vat-act",
    content_type: str = "text/plain",
    source_hierarchy: int | None = 1,
) -> EvidenceModel:
    return await EvidenceStore().store(
        db,
        source_url=source_url,
        raw_content=content,
        content_type=content_type,
        source_hierarchy=source_hierarchy,
    )


async def add_pointer(
    db: AsyncSession,
    evidence: EvidenceModel,
    quote: str = "The standard VAT rate is 25%",
    value: str = "25",
    domain: str = "vat",
    confidence: float = 0.95,
) -> SourcePointerModel:
    result = await Extractor().extract(
        db,
        evidence.id,
        [
            CandidateFact(
                domain=domain,
                value_type="percentage",
                extracted_value=value,
                exact_quote=quote,
                confidence=confidence,
            )
        ],
    )
    assert result.pointers, f"quote not found: {quote!r}"
    return result.pointers[0]


async def add_coverage(db: AsyncSession, evidence: EvidenceModel, claims: int = 1) -> None:
    await CoverageGate().generate_report(
        db,
        evidence.id,
        ContentClassification(primary_type="LOGIC", confidence=0.95),
        ShapeCounts(claims=claims),
    )


async def add_rule(
    db: AsyncSession,
    concept_slug: str = "vat-standard-rate",
    value: str = "25",
    effective_from: date = date(2025, 1, 1),
    effective_until: date | None = None,
    status: RuleStatus = RuleStatus.APPROVED,
    risk_tier: RiskTier = RiskTier.T2,
    authority_level: AuthorityLevel = AuthorityLevel.LAW,
    confidence: float = 0.95,
    pointers: list[SourcePointerModel] | None = None,
    topic_key: str | None = None,
    depends_on: list[str] | None = None,
    overrides: list[str] | None = None,
    approved_by: str | None = "reviewer@example.com",
    applies_when: str = '{"op":"true"}',
) -> RegulatoryRuleModel:
    """Insert a rule directly, bypassing composition and review."""
    rule = RegulatoryRuleModel(
        id=new_id(),
        concept_slug=concept_slug,
        topic_key=topic_key or concept_slug,
        applies_when=applies_when,
        value=value,
        value_type="percentage",
        risk_tier=risk_tier.value,
        authority_level=authority_level.value,
        confidence=confidence,
        effective_from=effective_from,
        effective_until=effective_until,
        depends_on=depends_on or [],
        overrides=overrides or [],
        status=status.value,
        approved_by=approved_by if status in (RuleStatus.APPROVED, RuleStatus.PUBLISHED) else None,
    )
    db.add(rule)
    await db.flush()
    if pointers:
        await db.execute(
            insert(rule_source_pointers),
            [{"rule_id": rule.id, "pointer_id": p.id} for p in pointers],
        )
        await db.flush()
    return rule


async def add_cited_rule(db: AsyncSession, **kwargs: object) -> RegulatoryRuleModel:
    """A rule citing a fresh pointer on evidence with a complete coverage report."""
    evidence = await add_evidence(db, source_url=f"https://gov.example/{new_id()}")
    pointer = await add_pointer(db, evidence)
    await add_coverage(db, evidence)
    return await add_rule(db, pointers=[pointer], **kwargs)  # type: ignore[arg-type]
