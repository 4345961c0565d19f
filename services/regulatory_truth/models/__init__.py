"""
Regulatory Truth Database Models
================================

SQLAlchemy ORM models for the pipeline's relational store.

Tables:
- evidence, source_pointers, extraction_rejections
- regulatory_rules, rule_source_pointers
- regulatory_conflicts
- graph_edges
- rule_releases, release_rules
- content_sync_events
- coverage_reports
- audit_log, discovered_items

Version: 0.1.0
"""

from services.regulatory_truth.models.audit import AuditLogModel, DiscoveredItemModel
from services.regulatory_truth.models.conflict import RegulatoryConflictModel
from services.regulatory_truth.models.coverage import CoverageReportModel
from services.regulatory_truth.models.event import ContentSyncEventModel
from services.regulatory_truth.models.evidence import (
    EvidenceModel,
    ExtractionRejectionModel,
    SourcePointerModel,
)
from services.regulatory_truth.models.graph import GraphEdgeModel
from services.regulatory_truth.models.release import RuleReleaseModel, release_rules
from services.regulatory_truth.models.rule import RegulatoryRuleModel, rule_source_pointers


__all__ = [
    # Evidence
    "EvidenceModel",
    "SourcePointerModel",
    "ExtractionRejectionModel",
    # Rules
    "RegulatoryRuleModel",
    "rule_source_pointers",
    # Conflicts
    "RegulatoryConflictModel",
    # Graph
    "GraphEdgeModel",
    # Releases
    "RuleReleaseModel",
    "release_rules",
    # Events
    "ContentSyncEventModel",
    # Coverage
    "CoverageReportModel",
    # Audit
    "AuditLogModel",
    "DiscoveredItemModel",
]
