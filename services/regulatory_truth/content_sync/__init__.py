"""
Content Sync
============

Deterministic, idempotent change events for downstream publishing.

Version: 0.1.0
"""

from services.regulatory_truth.content_sync.emitter import (
    ContentSyncEmitter,
    EmitEventParams,
    EmitResult,
    build_payload,
)
from services.regulatory_truth.content_sync.errors import (
    ContentSyncError,
    DbWriteFailedError,
    DeadLetterReason,
    ErrorKind,
    InvalidPayloadError,
    MissingPointersError,
    UnmappedConceptError,
    classify_error,
)
from services.regulatory_truth.content_sync.signature import (
    ChangeType,
    EventType,
    Severity,
    build_event_signature,
    canonical_json,
    determine_severity,
    generate_event_id,
    hash_source_pointer_ids,
)


__all__ = [
    "ContentSyncEmitter",
    "EmitEventParams",
    "EmitResult",
    "build_payload",
    "ContentSyncError",
    "DbWriteFailedError",
    "DeadLetterReason",
    "ErrorKind",
    "InvalidPayloadError",
    "MissingPointersError",
    "UnmappedConceptError",
    "classify_error",
    "ChangeType",
    "EventType",
    "Severity",
    "build_event_signature",
    "canonical_json",
    "determine_severity",
    "generate_event_id",
    "hash_source_pointer_ids",
]
