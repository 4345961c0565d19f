"""
Regulation Models
=================

Domain enums and Pydantic models for evidence, source pointers,
regulatory rules, conflicts and releases.

Version: 0.1.0
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class RiskTier(str, Enum):
    """Criticality of a rule. T0 is the most critical."""

    T0 = "T0"
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"

    @property
    def requires_human_approval(self) -> bool:
        """T0 and T1 rules can only be approved by a person."""
        return self in (RiskTier.T0, RiskTier.T1)


class RuleStatus(str, Enum):
    """Lifecycle status of a regulatory rule."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"


class AuthorityLevel(str, Enum):
    """Legal weight of the sources behind a rule."""

    LAW = "LAW"
    GUIDANCE = "GUIDANCE"
    PROCEDURE = "PROCEDURE"
    PRACTICE = "PRACTICE"

    @property
    def rank(self) -> int:
        """Lower rank means stronger authority."""
        return {
            AuthorityLevel.LAW: 1,
            AuthorityLevel.GUIDANCE: 2,
            AuthorityLevel.PROCEDURE: 3,
            AuthorityLevel.PRACTICE: 4,
        }[self]

    @classmethod
    def from_source_hierarchy(cls, hierarchy: int | None) -> "AuthorityLevel":
        """Map an evidence source hierarchy (1 = law) to an authority level."""
        if hierarchy is None:
            return cls.PRACTICE
        if hierarchy <= 2:
            return cls.LAW
        if hierarchy == 3:
            return cls.GUIDANCE
        if hierarchy == 4:
            return cls.PROCEDURE
        return cls.PRACTICE


class ConflictType(str, Enum):
    """Kinds of disagreement the arbiter handles."""

    SOURCE_CONFLICT = "SOURCE_CONFLICT"  # Pointers disagree on a value
    TEMPORAL_CONFLICT = "TEMPORAL_CONFLICT"  # Rules overlap in time with different values


class ConflictStatus(str, Enum):
    """Conflict lifecycle status."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class EdgeType(str, Enum):
    """Relations in the supersession/dependency graph."""

    SUPERSEDES = "SUPERSEDES"  # newer rule -> immediately preceding rule
    OVERRIDES = "OVERRIDES"  # exception rule -> overridden rule
    DEPENDS_ON = "DEPENDS_ON"  # rule -> rule it references


# Identity recorded on rules approved without a human reviewer
AUTO_APPROVE_SYSTEM = "AUTO_APPROVE_SYSTEM"

# Identity recorded on conflicts the arbiter resolves on evidence
ARBITER_SYSTEM = "ARBITER_SYSTEM"

SYSTEM_IDENTITIES = frozenset({AUTO_APPROVE_SYSTEM, ARBITER_SYSTEM})


# =============================================================================
# Inputs from collaborators
# =============================================================================


class CandidateFact(BaseModel):
    """A fact proposed by an extraction collaborator, not yet verified."""

    domain: str = Field(..., description="Subject area (e.g., vat, pausal, contributions)")
    value_type: str = Field(..., description="Value kind (percentage, currency, date, ...)")
    extracted_value: str = Field(..., description="Normalized value")
    display_value: str | None = Field(default=None, description="Value as shown to people")
    exact_quote: str = Field(default="", description="Verbatim quote from the evidence")
    confidence: float = Field(default=0.0, description="Extractor confidence")
    shape: Literal["claims", "processes", "reference_tables", "assets", "transitional_provisions"] = Field(
        default="claims",
        description="Extraction shape counted by the coverage gate",
    )
    risk_tier: RiskTier | None = Field(
        default=None,
        description="Tier of the rule this fact is expected to support, when known",
    )


class RuleProposal(BaseModel):
    """A rule draft proposed by a composing collaborator."""

    concept_slug: str = Field(..., min_length=1, description="Stable concept identifier")
    title: str = Field(default="", description="Human-readable title")
    topic_key: str | None = Field(
        default=None,
        description="Topic used for rule selection (defaults to concept_slug)",
    )
    applies_when: dict[str, Any] | str = Field(
        default_factory=lambda: {"op": "true"},
        description="AppliesWhen expression as JSON object or string",
    )
    value: str = Field(..., description="Rule value")
    value_type: str = Field(..., description="Value kind")
    risk_tier: RiskTier = RiskTier.T2
    authority_level: AuthorityLevel | None = Field(
        default=None,
        description="Derived from the cited evidence when omitted",
    )
    effective_from: date
    effective_until: date | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    depends_on: list[str] = Field(default_factory=list, description="Concept slugs referenced")
    overrides: list[str] = Field(default_factory=list, description="Concept slugs this rule overrides")

    @field_validator("effective_until")
    @classmethod
    def until_after_from(cls, v: date | None, info: ValidationInfo) -> date | None:
        """An effective window must not be empty."""
        start = info.data.get("effective_from")
        if v is not None and start is not None and v <= start:
            raise ValueError("effective_until must be after effective_from")
        return v


class ContentClassification(BaseModel):
    """Classifier output for one piece of evidence."""

    primary_type: str = Field(..., description="LOGIC, PROCESS, REFERENCE, DOCUMENT, TRANSITIONAL, MIXED")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


# =============================================================================
# Outputs
# =============================================================================


class RuleSnapshot(BaseModel):
    """Canonical projection of a rule used for release hashing."""

    concept_slug: str
    applies_when: str
    value: str
    value_type: str
    effective_from: str
    effective_until: str | None = None

    def canonical_dict(self) -> dict[str, Any]:
        """Keys as serialized into the release hash."""
        return {
            "conceptSlug": self.concept_slug,
            "appliesWhen": self.applies_when,
            "value": self.value,
            "valueType": self.value_type,
            "effectiveFrom": self.effective_from,
            "effectiveUntil": self.effective_until,
        }


class RuleSummary(BaseModel):
    """Rule as exposed over HTTP."""

    id: str
    concept_slug: str
    topic_key: str
    value: str
    value_type: str
    risk_tier: RiskTier
    authority_level: AuthorityLevel
    status: RuleStatus
    effective_from: date
    effective_until: date | None = None
    confidence: float
    approved_by: str | None = None
    approved_at: datetime | None = None
    source_pointer_ids: list[str] = Field(default_factory=list)


class ReleaseSummary(BaseModel):
    """Release as exposed over HTTP."""

    id: str
    version: str
    content_hash: str
    released_at: datetime
    rule_ids: list[str] = Field(default_factory=list)
