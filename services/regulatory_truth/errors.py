"""
Pipeline Errors
===============

Typed exceptions raised by the regulatory truth pipeline.

Validation rejections and structural violations are raised to the
caller. Escalated conflicts are outcomes, not errors, and never appear
here.

Version: 0.1.0
"""

from typing import Any


class PipelineError(Exception):
    """Base class for pipeline errors."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form for API responses and reports."""
        return {"error": self.message, "error_code": self.code, "details": self.details}


# =============================================================================
# Lookups
# =============================================================================


class NotFoundError(PipelineError):
    """A referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class EvidenceNotFoundError(NotFoundError):
    def __init__(self, evidence_id: str) -> None:
        super().__init__("Evidence", evidence_id)


class RuleNotFoundError(NotFoundError):
    def __init__(self, rule_id: str) -> None:
        super().__init__("Rule", rule_id)


class ConflictNotFoundError(NotFoundError):
    def __init__(self, conflict_id: str) -> None:
        super().__init__("Conflict", conflict_id)


class ReleaseNotFoundError(NotFoundError):
    def __init__(self, release_id: str) -> None:
        super().__init__("Release", release_id)


# =============================================================================
# Validation rejections
# =============================================================================


class AppliesWhenError(PipelineError):
    """An AppliesWhen expression failed to parse or validate."""

    code = "INVALID_APPLIES_WHEN"

    def __init__(self, problems: list[str]) -> None:
        super().__init__(
            "Invalid AppliesWhen expression: " + "; ".join(problems),
            {"problems": problems},
        )
        self.problems = problems


class CompositionError(PipelineError):
    """A rule could not be composed from the given pointers."""

    code = "COMPOSITION_FAILED"

    def __init__(self, reason: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, {"reason": reason, **(details or {})})
        self.reason = reason


# =============================================================================
# Review state machine
# =============================================================================


class InvalidTransitionError(PipelineError):
    """The requested status change is not allowed from the current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, rule_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Rule {rule_id} cannot move from {current} to {target}",
            {"rule_id": rule_id, "current": current, "target": target},
        )


class HumanApprovalRequiredError(PipelineError):
    """A T0/T1 rule was offered an automated or empty approver."""

    code = "HUMAN_APPROVAL_REQUIRED"

    def __init__(self, rule_id: str, risk_tier: str, approver: str | None) -> None:
        super().__init__(
            f"Rule {rule_id} ({risk_tier}) requires a human approver",
            {"rule_id": rule_id, "risk_tier": risk_tier, "approver": approver},
        )


class PublicationBlockedError(PipelineError):
    """Publication refused by the traceability check or coverage gate."""

    code = "PUBLICATION_BLOCKED"

    def __init__(self, rule_id: str, blockers: list[str]) -> None:
        super().__init__(
            f"Rule {rule_id} cannot be published: " + "; ".join(blockers),
            {"rule_id": rule_id, "blockers": blockers},
        )
        self.blockers = blockers


# =============================================================================
# Structural violations
# =============================================================================


class CycleDetectedError(PipelineError):
    """Adding the edge would close a cycle in its namespace."""

    code = "CYCLE_DETECTED"

    def __init__(self, from_rule_id: str, to_rule_id: str, relation: str, namespace: str) -> None:
        super().__init__(
            f"Edge {from_rule_id} -{relation}-> {to_rule_id} would create a cycle in {namespace}",
            {
                "from_rule_id": from_rule_id,
                "to_rule_id": to_rule_id,
                "relation": relation,
                "namespace": namespace,
            },
        )
        self.from_rule_id = from_rule_id
        self.to_rule_id = to_rule_id
        self.relation = relation
        self.namespace = namespace


class ReleaseError(PipelineError):
    """A release could not be built from the requested rules."""

    code = "RELEASE_FAILED"


class ConflictResolutionError(PipelineError):
    """A human resolution was malformed."""

    code = "INVALID_RESOLUTION"
