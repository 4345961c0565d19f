"""
Shared Models
=============

Pydantic models and enums shared across the pipeline.

Models:
- Regulation models (RuleProposal, CandidateFact, RuleSnapshot, ...)
- Common response models (HealthResponse, ErrorResponse)
"""

from shared.models.common import ErrorResponse, HealthResponse
from shared.models.regulation import (
    ARBITER_SYSTEM,
    AUTO_APPROVE_SYSTEM,
    SYSTEM_IDENTITIES,
    AuthorityLevel,
    CandidateFact,
    ConflictStatus,
    ConflictType,
    ContentClassification,
    EdgeType,
    ReleaseSummary,
    RiskTier,
    RuleProposal,
    RuleSnapshot,
    RuleStatus,
    RuleSummary,
)


__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    # Enums
    "RiskTier",
    "RuleStatus",
    "AuthorityLevel",
    "ConflictType",
    "ConflictStatus",
    "EdgeType",
    # Identities
    "AUTO_APPROVE_SYSTEM",
    "ARBITER_SYSTEM",
    "SYSTEM_IDENTITIES",
    # Inputs
    "CandidateFact",
    "RuleProposal",
    "ContentClassification",
    # Outputs
    "RuleSnapshot",
    "RuleSummary",
    "ReleaseSummary",
]
