"""
AppliesWhen DSL
===============

Typed applicability expressions for regulatory rules.

Version: 0.1.0
"""

from services.regulatory_truth.dsl.applies_when import (
    AndExpr,
    BetweenExpr,
    ConceptRef,
    DateInEffectExpr,
    ExistsExpr,
    FalseExpr,
    FieldCompare,
    InExpr,
    MatchesExpr,
    NotExpr,
    OrExpr,
    TrueExpr,
    evaluate,
    extract_concept_refs,
    get_field_value,
    parse_applies_when,
    to_canonical_json,
)


__all__ = [
    # Nodes
    "AndExpr",
    "OrExpr",
    "NotExpr",
    "FieldCompare",
    "InExpr",
    "ExistsExpr",
    "BetweenExpr",
    "MatchesExpr",
    "DateInEffectExpr",
    "ConceptRef",
    "TrueExpr",
    "FalseExpr",
    # Functions
    "parse_applies_when",
    "evaluate",
    "extract_concept_refs",
    "get_field_value",
    "to_canonical_json",
]
