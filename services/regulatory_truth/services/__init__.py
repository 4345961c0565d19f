"""
Regulatory Truth Services
=========================

Business logic for each pipeline stage.

Version: 0.1.0
"""

from services.regulatory_truth.services.audit import (
    AuditAction,
    list_audit,
    record_audit,
    record_discovery,
)
from services.regulatory_truth.services.evidence import (
    EvidenceStore,
    compute_content_hash,
    detect_content_change,
    normalize_content,
)
from services.regulatory_truth.services.extraction import (
    CandidateExtractor,
    ExtractionMetrics,
    ExtractionResult,
    Extractor,
    MatchType,
    RejectionType,
    find_quote_in_evidence,
    is_match_type_acceptable_for_tier,
    normalize_for_match,
    verify_quote_offsets,
)
from services.regulatory_truth.services.coverage import (
    ContentClass,
    CoverageGate,
    CoverageReport,
    Shape,
    ShapeCounts,
    can_publish,
)
from services.regulatory_truth.services.review import (
    AutoApproveResult,
    ReviewService,
    RuleWorkflow,
    rule_pointer_ids,
)
from services.regulatory_truth.services.arbiter import (
    Arbiter,
    ArbitrationBatchResult,
    AuthorityScorer,
    Candidate,
    CandidateScorer,
    Escalated,
    Resolution,
    Resolved,
)
from services.regulatory_truth.services.composer import (
    ComposeBatchResult,
    Composer,
    CompositionResult,
    RuleProposer,
    group_pointers_by_domain,
)
from services.regulatory_truth.services.release import (
    Releaser,
    ReleaseVerification,
    bump_version,
    compute_release_hash,
    rule_snapshot,
)


__all__ = [
    # Audit
    "AuditAction",
    "list_audit",
    "record_audit",
    "record_discovery",
    # Evidence
    "EvidenceStore",
    "compute_content_hash",
    "detect_content_change",
    "normalize_content",
    # Extraction
    "CandidateExtractor",
    "ExtractionMetrics",
    "ExtractionResult",
    "Extractor",
    "MatchType",
    "RejectionType",
    "find_quote_in_evidence",
    "is_match_type_acceptable_for_tier",
    "normalize_for_match",
    "verify_quote_offsets",
    # Coverage
    "ContentClass",
    "CoverageGate",
    "CoverageReport",
    "Shape",
    "ShapeCounts",
    "can_publish",
    # Review
    "AutoApproveResult",
    "ReviewService",
    "RuleWorkflow",
    "rule_pointer_ids",
    # Arbiter
    "Arbiter",
    "ArbitrationBatchResult",
    "AuthorityScorer",
    "Candidate",
    "CandidateScorer",
    "Escalated",
    "Resolution",
    "Resolved",
    # Composer
    "ComposeBatchResult",
    "Composer",
    "CompositionResult",
    "RuleProposer",
    "group_pointers_by_domain",
    # Release
    "Releaser",
    "ReleaseVerification",
    "bump_version",
    "compute_release_hash",
    "rule_snapshot",
]
