"""
Event Signatures
================

Deterministic identity for content sync events. The event ID is the
SHA-256 of the canonical JSON of a signature, so the same logical
change always maps to the same ID.

Version: 0.1.0
"""

import hashlib
import json
from enum import Enum
from typing import Any

from shared.models.regulation import RiskTier


class EventType(str, Enum):
    """Kinds of content sync events."""

    RULE_RELEASED = "RULE_RELEASED"
    RULE_SUPERSEDED = "RULE_SUPERSEDED"
    RULE_EFFECTIVE = "RULE_EFFECTIVE"
    SOURCE_CHANGED = "SOURCE_CHANGED"
    POINTERS_CHANGED = "POINTERS_CHANGED"
    CONFIDENCE_DROPPED = "CONFIDENCE_DROPPED"


class ChangeType(str, Enum):
    """What happened to the rule."""

    CREATE = "create"
    UPDATE = "update"
    REPEAL = "repeal"


class Severity(str, Enum):
    """Downstream impact of a change."""

    BREAKING = "breaking"
    MAJOR = "major"
    MINOR = "minor"
    INFO = "info"


_TIER_SEVERITY = {
    RiskTier.T0: Severity.BREAKING,
    RiskTier.T1: Severity.MAJOR,
    RiskTier.T2: Severity.MINOR,
    RiskTier.T3: Severity.INFO,
}


def determine_severity(tier: RiskTier | str, change_type: ChangeType | str) -> Severity:
    """A repeal is always breaking; otherwise severity follows the risk tier."""
    if ChangeType(change_type) == ChangeType.REPEAL:
        return Severity.BREAKING
    return _TIER_SEVERITY[RiskTier(tier)]


def hash_source_pointer_ids(pointer_ids: list[str]) -> str:
    """Order-independent SHA-256 of a pointer ID list. The input is not modified."""
    joined = ",".join(sorted(pointer_ids))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def canonical_json(value: Any) -> str:
    """JSON with sorted keys, no whitespace, and None-valued keys omitted."""

    def strip_none(v: Any) -> Any:
        if isinstance(v, dict):
            return {k: strip_none(item) for k, item in v.items() if item is not None}
        if isinstance(v, list):
            return [strip_none(item) for item in v]
        return v

    return json.dumps(strip_none(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_event_signature(
    rule_id: str,
    concept_id: str,
    event_type: EventType | str,
    effective_from: str,
    source_pointer_ids: list[str],
    new_value: str | None = None,
) -> dict[str, Any]:
    """
    Canonical signature of a logical change.

    Args:
        rule_id: Changed rule
        concept_id: Concept the rule belongs to
        event_type: Event type
        effective_from: ISO date (YYYY-MM-DD)
        source_pointer_ids: Cited pointers, any order
        new_value: New rule value, when relevant

    Returns:
        Signature dict (None-valued fields omitted)
    """
    signature: dict[str, Any] = {
        "ruleId": rule_id,
        "conceptId": concept_id,
        "type": EventType(event_type).value,
        "effectiveFrom": effective_from,
        "sourcePointerIdsHash": hash_source_pointer_ids(source_pointer_ids),
    }
    if new_value is not None:
        signature["newValue"] = new_value
    return signature


def generate_event_id(signature: dict[str, Any]) -> str:
    """SHA-256 hex of the canonical JSON of a signature."""
    return hashlib.sha256(canonical_json(signature).encode("utf-8")).hexdigest()
