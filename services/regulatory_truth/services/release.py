"""
Releaser
========

Bundles approved rules into immutable, hash-sealed releases.

Features:
- Deterministic snapshot ordering and canonical JSON hashing
- Semantic version bump driven by the riskiest rule in the bundle
- Publication through the approval gate
- RULE_RELEASED content sync events per published rule
- Hash verification and audited hash repair

Version: 0.1.0
"""

import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.content_sync import (
    ChangeType,
    ContentSyncEmitter,
    EmitEventParams,
    EventType,
)
from services.regulatory_truth.errors import ReleaseError, ReleaseNotFoundError, RuleNotFoundError
from services.regulatory_truth.graph import find_superseded_rules
from services.regulatory_truth.models import (
    RegulatoryRuleModel,
    RuleReleaseModel,
    SourcePointerModel,
    release_rules,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.audit import AuditAction, record_audit
from services.regulatory_truth.services.review import ReviewService, rule_pointer_ids
from shared.config import PipelineSettings, get_settings
from shared.logging import get_logger
from shared.models.regulation import RiskTier, RuleSnapshot, RuleStatus


logger = get_logger(__name__)


FIRST_VERSION = "1.0.0"

RELEASABLE_STATUSES = (RuleStatus.APPROVED.value, RuleStatus.PUBLISHED.value)


# =============================================================================
# Hashing
# =============================================================================


def sort_rules_for_release(rules: Sequence[RegulatoryRuleModel]) -> list[RegulatoryRuleModel]:
    """Release order: concept slug, then effective date, then ID."""
    return sorted(rules, key=lambda r: (r.concept_slug, r.effective_from, r.id))


def rule_snapshot(rule: RegulatoryRuleModel) -> RuleSnapshot:
    """Canonical projection of a rule."""
    return RuleSnapshot(
        concept_slug=rule.concept_slug,
        applies_when=rule.applies_when,
        value=rule.value,
        value_type=rule.value_type,
        effective_from=rule.effective_from.isoformat(),
        effective_until=rule.effective_until.isoformat() if rule.effective_until else None,
    )


def canonical_release_json(snapshots: Sequence[RuleSnapshot]) -> str:
    """Sorted-key, whitespace-free JSON of an ordered snapshot list."""
    return json.dumps(
        [s.canonical_dict() for s in snapshots],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_release_hash(rules: Sequence[RegulatoryRuleModel]) -> str:
    """SHA-256 hex of the canonical snapshots of ``rules`` in release order."""
    snapshots = [rule_snapshot(r) for r in sort_rules_for_release(rules)]
    return hashlib.sha256(canonical_release_json(snapshots).encode("utf-8")).hexdigest()


def _parse_version(version: str) -> tuple[int, int, int]:
    major, minor, patch = (int(part) for part in version.split("."))
    return major, minor, patch


def bump_version(previous: str | None, tiers: Sequence[RiskTier]) -> str:
    """
    Next semantic version for a bundle.

    Any T0 rule bumps major, any T1 bumps minor, anything else patch.
    The first release is 1.0.0.
    """
    if previous is None:
        return FIRST_VERSION
    major, minor, patch = _parse_version(previous)
    if RiskTier.T0 in tiers:
        return f"{major + 1}.0.0"
    if RiskTier.T1 in tiers:
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


@dataclass
class ReleaseVerification:
    """Stored versus recomputed hash of a release."""

    release_id: str
    version: str
    stored_hash: str
    computed_hash: str
    rule_count: int

    @property
    def valid(self) -> bool:
        return self.stored_hash == self.computed_hash

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "version": self.version,
            "stored_hash": self.stored_hash,
            "computed_hash": self.computed_hash,
            "rule_count": self.rule_count,
            "valid": self.valid,
        }


@dataclass
class ReleaseRepairReport:
    """Releases whose stored hash was rewritten."""

    checked: int = 0
    repaired: list[ReleaseVerification] = field(default_factory=list)


class Releaser:
    """
    Builds, verifies and repairs rule releases.

    Args:
        config: Pipeline settings
        review_service: Gate used to publish APPROVED rules
        emitter: Content sync event emitter
    """

    def __init__(
        self,
        config: PipelineSettings | None = None,
        review_service: ReviewService | None = None,
        emitter: ContentSyncEmitter | None = None,
    ) -> None:
        self.config = config or get_settings().pipeline
        self.review_service = review_service or ReviewService(self.config)
        self.emitter = emitter or ContentSyncEmitter()

    async def get_release(self, db: AsyncSession, release_id: str) -> RuleReleaseModel:
        """Load a release or raise ReleaseNotFoundError."""
        release = await db.get(RuleReleaseModel, release_id)
        if release is None:
            raise ReleaseNotFoundError(release_id)
        return release

    async def release_rule_ids(self, db: AsyncSession, release_id: str) -> list[str]:
        """IDs of the rules bundled in a release, sorted."""
        result = await db.execute(
            select(release_rules.c.rule_id)
            .where(release_rules.c.release_id == release_id)
            .order_by(release_rules.c.rule_id)
        )
        return list(result.scalars().all())

    async def _release_rules(self, db: AsyncSession, release_id: str) -> list[RegulatoryRuleModel]:
        result = await db.execute(
            select(RegulatoryRuleModel)
            .join(release_rules, release_rules.c.rule_id == RegulatoryRuleModel.id)
            .where(release_rules.c.release_id == release_id)
        )
        return list(result.scalars().all())

    async def latest_version(self, db: AsyncSession) -> str | None:
        """Highest released semantic version, or None before the first release."""
        result = await db.execute(select(RuleReleaseModel.version))
        versions = list(result.scalars().all())
        if not versions:
            return None
        return max(versions, key=_parse_version)

    async def next_version(self, db: AsyncSession, rules: Sequence[RegulatoryRuleModel]) -> str:
        """Version the next release of ``rules`` would get."""
        return bump_version(await self.latest_version(db), [RiskTier(r.risk_tier) for r in rules])

    # =========================================================================
    # Release
    # =========================================================================

    async def _emit_released(self, db: AsyncSession, rule: RegulatoryRuleModel) -> None:
        pointer_ids = await rule_pointer_ids(db, rule.id)
        domain_result = await db.execute(
            select(SourcePointerModel.domain).where(SourcePointerModel.id.in_(pointer_ids)).order_by(SourcePointerModel.id)
        )
        domain = domain_result.scalars().first() or rule.concept_slug
        superseded = await find_superseded_rules(db, rule.id, self.config.graph_namespace)

        await self.emitter.emit(
            db,
            EmitEventParams(
                event_type=EventType.RULE_RELEASED,
                rule_id=rule.id,
                concept_id=rule.concept_slug,
                domain=domain,
                change_type=ChangeType.UPDATE if superseded else ChangeType.CREATE,
                effective_from=rule.effective_from,
                tier=RiskTier(rule.risk_tier),
                source_pointer_ids=pointer_ids,
                confidence_level=rule.confidence,
                new_value=rule.value,
            ),
        )

    async def release(
        self,
        db: AsyncSession,
        rule_ids: list[str],
        actor: str | None = None,
    ) -> RuleReleaseModel:
        """
        Publish and bundle rules into a new release.

        APPROVED rules are published through the approval gate first;
        PUBLISHED rules are bundled as they are.

        Args:
            db: Database session (the caller owns the transaction)
            rule_ids: Rules to release
            actor: Who triggered the release

        Returns:
            The new RuleReleaseModel

        Raises:
            ReleaseError: if no rules are given or a rule is not releasable
            RuleNotFoundError: if a rule does not exist
            PublicationBlockedError: if an APPROVED rule fails the gate
        """
        unique_ids = sorted(set(rule_ids))
        if not unique_ids:
            raise ReleaseError("A release must contain at least one rule")

        result = await db.execute(select(RegulatoryRuleModel).where(RegulatoryRuleModel.id.in_(unique_ids)))
        rules = {r.id: r for r in result.scalars().all()}
        for rule_id in unique_ids:
            if rule_id not in rules:
                raise RuleNotFoundError(rule_id)

        not_releasable = [r.id for r in rules.values() if r.status not in RELEASABLE_STATUSES]
        if not_releasable:
            raise ReleaseError(
                f"Rules not approved: {', '.join(sorted(not_releasable))}",
                {"rule_ids": sorted(not_releasable)},
            )

        newly_published: list[RegulatoryRuleModel] = []
        for rule in sort_rules_for_release(list(rules.values())):
            if rule.status == RuleStatus.APPROVED.value:
                await self.review_service.publish(db, rule.id, actor)
                newly_published.append(rule)

        ordered = sort_rules_for_release(list(rules.values()))
        release = RuleReleaseModel(
            id=new_id(),
            version=await self.next_version(db, ordered),
            content_hash=compute_release_hash(ordered),
            released_by=actor,
        )
        db.add(release)
        await db.flush()
        await db.execute(
            insert(release_rules),
            [{"release_id": release.id, "rule_id": r.id} for r in ordered],
        )

        for rule in newly_published:
            await self._emit_released(db, rule)

        await record_audit(
            db,
            AuditAction.RELEASE_CREATED,
            "release",
            release.id,
            performed_by=actor,
            metadata={
                "version": release.version,
                "content_hash": release.content_hash,
                "rule_ids": [r.id for r in ordered],
            },
        )
        await db.flush()

        logger.info(
            "release_created",
            release_id=release.id,
            version=release.version,
            content_hash=release.content_hash,
            rules=len(ordered),
            published=len(newly_published),
        )
        return release

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify_release(self, db: AsyncSession, release_id: str) -> ReleaseVerification:
        """Recompute a release's hash from its current rules."""
        release = await self.get_release(db, release_id)
        rules = await self._release_rules(db, release_id)
        return ReleaseVerification(
            release_id=release.id,
            version=release.version,
            stored_hash=release.content_hash,
            computed_hash=compute_release_hash(rules),
            rule_count=len(rules),
        )

    async def verify_all(self, db: AsyncSession) -> list[ReleaseVerification]:
        """Verify every release, oldest first."""
        result = await db.execute(select(RuleReleaseModel.id).order_by(RuleReleaseModel.released_at))
        return [await self.verify_release(db, release_id) for release_id in result.scalars().all()]

    async def repair_release_hashes(
        self,
        db: AsyncSession,
        reason: str,
        performed_by: str | None = None,
    ) -> ReleaseRepairReport:
        """
        Rewrite stored hashes that no longer match their rules.

        Every rewrite is audited with the old hash, the new hash and the
        reason.
        """
        report = ReleaseRepairReport()
        for verification in await self.verify_all(db):
            report.checked += 1
            if verification.valid:
                continue

            release = await self.get_release(db, verification.release_id)
            release.content_hash = verification.computed_hash
            await record_audit(
                db,
                AuditAction.RELEASE_HASH_REPAIRED,
                "release",
                release.id,
                performed_by=performed_by,
                metadata={
                    "old_hash": verification.stored_hash,
                    "new_hash": verification.computed_hash,
                    "reason": reason,
                },
            )
            report.repaired.append(verification)
            logger.warning(
                "release_hash_repaired",
                release_id=release.id,
                old_hash=verification.stored_hash,
                new_hash=verification.computed_hash,
            )

        await db.flush()
        return report
