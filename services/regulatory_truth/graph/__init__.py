"""
Supersession/Dependency Graph
=============================

DAG of SUPERSEDES, OVERRIDES and DEPENDS_ON edges between rules.

Modules:
- cycles: cycle-checked edge creation and acyclicity scans
- builder: edge derivation per rule
- queries: transitive supersession queries and edge traces
- selection: authoritative rule selection for a topic and date

Version: 0.1.0
"""

from services.regulatory_truth.graph.builder import (
    GRAPH_ELIGIBLE_STATUSES,
    EdgeBuilder,
    EdgeBuildResult,
    dependency_slugs,
    rule_lock,
)
from services.regulatory_truth.graph.cycles import (
    AcyclicityReport,
    create_edge_with_cycle_check,
    find_path,
    validate_graph_acyclicity,
    would_create_cycle,
)
from services.regulatory_truth.graph.queries import (
    EdgeTrace,
    TraceEdge,
    build_edge_trace,
    find_overriding_rules,
    find_superseded_rules,
    find_superseding_rules,
)
from services.regulatory_truth.graph.selection import (
    RuleSelection,
    SelectionReason,
    is_effective,
    select_rule,
)


__all__ = [
    # Builder
    "EdgeBuilder",
    "EdgeBuildResult",
    "GRAPH_ELIGIBLE_STATUSES",
    "dependency_slugs",
    "rule_lock",
    # Cycles
    "AcyclicityReport",
    "create_edge_with_cycle_check",
    "find_path",
    "validate_graph_acyclicity",
    "would_create_cycle",
    # Queries
    "EdgeTrace",
    "TraceEdge",
    "build_edge_trace",
    "find_overriding_rules",
    "find_superseded_rules",
    "find_superseding_rules",
    # Selection
    "RuleSelection",
    "SelectionReason",
    "is_effective",
    "select_rule",
]
