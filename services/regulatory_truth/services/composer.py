"""
Rule Composer
=============

Assembles DRAFT regulatory rules from quote-backed source pointers.

Composition is fail-closed:
- no pointers, or pointers that do not exist, reject the rule
- T0 and T1 rules reject pointers located only by normalized matching
- an AppliesWhen expression that does not validate rejects the rule and
  is audited with the validation problems
- pointers in one domain that disagree on a value open a source
  conflict instead of producing a rule

Version: 0.1.0
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.regulatory_truth.dsl import parse_applies_when, to_canonical_json
from services.regulatory_truth.errors import AppliesWhenError, CompositionError, PipelineError
from services.regulatory_truth.models import (
    EvidenceModel,
    RegulatoryRuleModel,
    SourcePointerModel,
    rule_source_pointers,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.arbiter import Arbiter
from services.regulatory_truth.services.audit import AuditAction, record_audit
from services.regulatory_truth.services.extraction import is_match_type_acceptable_for_tier
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import AuthorityLevel, RiskTier, RuleProposal, RuleStatus


logger = get_logger(__name__)


class RuleProposer(Protocol):
    """Collaborator that drafts a rule proposal from a group of pointers."""

    async def propose(self, domain: str, pointers: list[SourcePointerModel]) -> RuleProposal | None:
        ...


@dataclass
class CompositionResult:
    """Outcome of composing one rule."""

    success: bool
    rule: RegulatoryRuleModel | None = None
    conflict_id: str | None = None
    reason: str | None = None
    error: str | None = None


@dataclass
class ComposeBatchResult:
    """Counts from composing many pointer groups."""

    composed: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: dict[str, str] = field(default_factory=dict)


def group_pointers_by_domain(pointers: list[SourcePointerModel]) -> dict[str, list[SourcePointerModel]]:
    """Group pointers by domain, each group ordered by pointer ID."""
    groups: dict[str, list[SourcePointerModel]] = defaultdict(list)
    for pointer in sorted(pointers, key=lambda p: p.id):
        groups[pointer.domain].append(pointer)
    return dict(groups)


class Composer:
    """Turns rule proposals plus cited pointers into DRAFT rules."""

    def __init__(
        self,
        config: PipelineSettings | None = None,
        arbiter: Arbiter | None = None,
    ) -> None:
        self.config = config or get_settings().pipeline
        self.arbiter = arbiter or Arbiter(self.config)

    async def _load_pointers(self, db: AsyncSession, pointer_ids: list[str]) -> list[SourcePointerModel]:
        if not pointer_ids:
            raise CompositionError("NO_POINTERS", "A rule must cite at least one source pointer")

        unique_ids = sorted(set(pointer_ids))
        result = await db.execute(select(SourcePointerModel).where(SourcePointerModel.id.in_(unique_ids)))
        pointers = list(result.scalars().all())

        missing = sorted(set(unique_ids) - {p.id for p in pointers})
        if missing:
            raise CompositionError(
                "UNKNOWN_POINTERS",
                f"Unknown source pointers: {', '.join(missing)}",
                {"pointer_ids": missing},
            )
        return sorted(pointers, key=lambda p: p.id)

    @staticmethod
    def _check_quote_strength(pointers: list[SourcePointerModel], tier: RiskTier) -> None:
        weak = sorted(p.id for p in pointers if not is_match_type_acceptable_for_tier(p.match_type, tier)[0])
        if weak:
            raise CompositionError(
                "NON_EXACT_QUOTE",
                f"{tier.value} rules require exact quote matches; weaker matches: {', '.join(weak)}",
                {"pointer_ids": weak},
            )

    async def derive_authority_level(self, db: AsyncSession, pointers: list[SourcePointerModel]) -> AuthorityLevel:
        """Authority of the strongest evidence source behind the pointers."""
        result = await db.execute(
            select(EvidenceModel.source_hierarchy).where(
                EvidenceModel.id.in_(sorted({p.evidence_id for p in pointers}))
            )
        )
        hierarchies = [h for h in result.scalars().all() if h is not None]
        return AuthorityLevel.from_source_hierarchy(min(hierarchies) if hierarchies else None)

    async def compose(
        self,
        db: AsyncSession,
        pointer_ids: list[str],
        proposal: RuleProposal,
    ) -> CompositionResult:
        """
        Create a DRAFT rule citing the given pointers.

        Args:
            db: Database session (the caller owns the transaction)
            pointer_ids: Source pointers the rule cites
            proposal: Drafted rule content

        Returns:
            CompositionResult; on failure ``reason`` is one of NO_POINTERS,
            UNKNOWN_POINTERS, NON_EXACT_QUOTE, INVALID_APPLIES_WHEN or
            SOURCE_CONFLICT
        """
        try:
            pointers = await self._load_pointers(db, pointer_ids)
            self._check_quote_strength(pointers, proposal.risk_tier)
        except CompositionError as e:
            logger.warning("rule_composition_rejected", concept_slug=proposal.concept_slug, reason=e.reason)
            return CompositionResult(success=False, reason=e.reason, error=e.message)

        try:
            expr = parse_applies_when(proposal.applies_when)
        except AppliesWhenError as e:
            await record_audit(
                db,
                AuditAction.RULE_REJECTED_DSL,
                "rule_proposal",
                proposal.concept_slug[:64],
                metadata={"problems": e.problems, "pointer_ids": sorted(set(pointer_ids))},
            )
            await db.flush()
            logger.warning("rule_rejected_invalid_dsl", concept_slug=proposal.concept_slug, problems=e.problems)
            return CompositionResult(success=False, reason=e.code, error=e.message)

        for domain, group in group_pointers_by_domain(pointers).items():
            if len({p.extracted_value for p in group}) > 1:
                conflict = await self.arbiter.create_source_conflict(db, proposal.concept_slug, domain, group)
                return CompositionResult(
                    success=False,
                    conflict_id=conflict.id,
                    reason="SOURCE_CONFLICT",
                    error=f"Source pointers in domain {domain} disagree",
                )

        authority = proposal.authority_level or await self.derive_authority_level(db, pointers)
        confidence = min([proposal.confidence, *(p.confidence for p in pointers)])

        rule = RegulatoryRuleModel(
            id=new_id(),
            concept_slug=proposal.concept_slug,
            topic_key=proposal.topic_key or proposal.concept_slug,
            title=proposal.title,
            applies_when=to_canonical_json(expr),
            value=proposal.value,
            value_type=proposal.value_type,
            risk_tier=proposal.risk_tier.value,
            authority_level=authority.value,
            confidence=confidence,
            effective_from=proposal.effective_from,
            effective_until=proposal.effective_until,
            depends_on=list(proposal.depends_on),
            overrides=list(proposal.overrides),
            status=RuleStatus.DRAFT.value,
        )
        db.add(rule)
        await db.flush()
        await db.execute(
            insert(rule_source_pointers),
            [{"rule_id": rule.id, "pointer_id": p.id} for p in pointers],
        )
        await record_audit(
            db,
            AuditAction.RULE_CREATED,
            "rule",
            rule.id,
            metadata={
                "concept_slug": rule.concept_slug,
                "risk_tier": rule.risk_tier,
                "pointer_ids": [p.id for p in pointers],
            },
        )
        await db.flush()

        logger.info(
            "rule_composed",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            risk_tier=rule.risk_tier,
            confidence=confidence,
            pointers=len(pointers),
        )
        return CompositionResult(success=True, rule=rule)

    async def compose_batch(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        groups: dict[str, list[SourcePointerModel]],
        proposer: RuleProposer,
    ) -> ComposeBatchResult:
        """
        Compose one rule per pointer group, concurrently.

        Each group runs in its own transaction; a failing group is rolled
        back and recorded without affecting the others.
        """
        batch = ComposeBatchResult()
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def compose_group(domain: str, pointers: list[SourcePointerModel]) -> None:
            async with semaphore:
                proposal = await proposer.propose(domain, pointers)
                if proposal is None:
                    batch.skipped += 1
                    return

                async with session_factory() as db:
                    try:
                        result = await self.compose(db, [p.id for p in pointers], proposal)
                        await db.commit()
                    except PipelineError as e:
                        await db.rollback()
                        batch.failed[domain] = e.message
                        logger.error("compose_group_failed", domain=domain, error=e.message)
                        return

                if result.success and result.rule is not None:
                    batch.composed.append(result.rule.id)
                elif result.conflict_id is not None:
                    batch.conflicts.append(result.conflict_id)
                else:
                    batch.failed[domain] = result.error or "composition failed"

        await asyncio.gather(*(compose_group(domain, pointers) for domain, pointers in groups.items()))

        logger.info(
            "compose_batch_complete",
            composed=len(batch.composed),
            conflicts=len(batch.conflicts),
            skipped=batch.skipped,
            failed=len(batch.failed),
        )
        return batch
