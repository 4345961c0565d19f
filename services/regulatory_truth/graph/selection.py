"""
Rule Selection
==============

Picks the authoritative PUBLISHED rule for a topic on a date, using
SUPERSEDES edges to break ties between simultaneously effective rules.
Ties that the graph cannot break are reported, never arbitrated at
read time.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.graph.queries import (
    EdgeTrace,
    build_edge_trace,
    find_overriding_rules,
    find_superseding_rules,
)
from services.regulatory_truth.models import RegulatoryRuleModel
from shared.logging import get_logger
from shared.models.regulation import RuleStatus


logger = get_logger(__name__)


class SelectionReason(str, Enum):
    """Outcome of a rule selection."""

    EFFECTIVE = "EFFECTIVE"
    NO_COVERAGE = "NO_COVERAGE"
    CONFLICT_MULTIPLE_EFFECTIVE = "CONFLICT_MULTIPLE_EFFECTIVE"


@dataclass
class RuleSelection:
    """Result of selecting a rule for a topic and date."""

    topic: str
    as_of: date
    reason: SelectionReason
    rule: RegulatoryRuleModel | None = None
    earliest_coverage_date: str | None = None
    conflicting_rule_ids: list[str] = field(default_factory=list)
    edge_trace: EdgeTrace | None = None
    overriding_rule_ids: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.reason == SelectionReason.EFFECTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "asOf": self.as_of.isoformat(),
            "success": self.success,
            "reason": self.reason.value,
            "ruleId": self.rule.id if self.rule else None,
            "earliestCoverageDate": self.earliest_coverage_date,
            "conflictingRuleIds": self.conflicting_rule_ids,
            "edgeTrace": self.edge_trace.to_dict() if self.edge_trace else None,
            "overridingRuleIds": self.overriding_rule_ids,
        }


def is_effective(rule: RegulatoryRuleModel, as_of: date) -> bool:
    """Whether ``[effective_from, effective_until)`` covers ``as_of``."""
    if rule.effective_from > as_of:
        return False
    return rule.effective_until is None or as_of < rule.effective_until


async def select_rule(
    db: AsyncSession,
    topic: str,
    as_of: date,
    namespace: str = "SRG",
) -> RuleSelection:
    """
    Select the rule that governs ``topic`` on ``as_of``.

    Args:
        db: Database session
        topic: Topic key the rules are mapped to
        as_of: Date of interest
        namespace: Graph namespace holding SUPERSEDES edges

    Returns:
        RuleSelection with reason EFFECTIVE, NO_COVERAGE, or
        CONFLICT_MULTIPLE_EFFECTIVE
    """
    result = await db.execute(
        select(RegulatoryRuleModel)
        .where(
            RegulatoryRuleModel.topic_key == topic,
            RegulatoryRuleModel.status == RuleStatus.PUBLISHED.value,
        )
        .order_by(RegulatoryRuleModel.effective_from.desc(), RegulatoryRuleModel.id)
    )
    rules = list(result.scalars().all())
    candidates = [r for r in rules if is_effective(r, as_of)]

    if not candidates:
        future = [r.effective_from for r in rules if r.effective_from > as_of]
        selection = RuleSelection(
            topic=topic,
            as_of=as_of,
            reason=SelectionReason.NO_COVERAGE,
            earliest_coverage_date=min(future).isoformat() if future else None,
        )
        logger.info("rule_selection_no_coverage", topic=topic, as_of=as_of.isoformat())
        return selection

    if len(candidates) == 1:
        authoritative = candidates
    else:
        candidate_ids = {r.id for r in candidates}
        superseded: set[str] = set()
        for rule in candidates:
            superseding = await find_superseding_rules(db, rule.id, namespace)
            if candidate_ids.intersection(superseding):
                superseded.add(rule.id)
        authoritative = [r for r in candidates if r.id not in superseded]

    if len(authoritative) != 1:
        tied = sorted(r.id for r in (authoritative or candidates))
        logger.warning("rule_selection_conflict", topic=topic, as_of=as_of.isoformat(), rule_ids=tied)
        return RuleSelection(
            topic=topic,
            as_of=as_of,
            reason=SelectionReason.CONFLICT_MULTIPLE_EFFECTIVE,
            conflicting_rule_ids=tied,
        )

    rule = authoritative[0]
    return RuleSelection(
        topic=topic,
        as_of=as_of,
        reason=SelectionReason.EFFECTIVE,
        rule=rule,
        edge_trace=await build_edge_trace(db, rule.id, namespace),
        overriding_rule_ids=await find_overriding_rules(db, rule.id, namespace),
    )
