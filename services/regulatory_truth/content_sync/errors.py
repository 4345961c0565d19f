"""
Content Sync Errors
===================

Error taxonomy for event emission and downstream sync. PERMANENT errors
go to a dead-letter queue; TRANSIENT errors are retried on the next
cycle.

Version: 0.1.0
"""

from enum import Enum
from typing import Any

from services.regulatory_truth.errors import PipelineError


class ErrorKind(str, Enum):
    """Whether retrying can help."""

    PERMANENT = "PERMANENT"
    TRANSIENT = "TRANSIENT"


class DeadLetterReason(str, Enum):
    """Why an event was dead-lettered."""

    UNMAPPED_CONCEPT = "UNMAPPED_CONCEPT"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    MISSING_POINTERS = "MISSING_POINTERS"
    CONTENT_NOT_FOUND = "CONTENT_NOT_FOUND"
    PATCH_CONFLICT = "PATCH_CONFLICT"
    UNKNOWN = "UNKNOWN"


class ContentSyncError(PipelineError):
    """Base class for content sync errors."""

    code = "CONTENT_SYNC_ERROR"
    kind = ErrorKind.PERMANENT
    dead_letter_reason: DeadLetterReason | None = DeadLetterReason.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "kind": self.kind.value,
            "dead_letter_reason": self.dead_letter_reason.value if self.dead_letter_reason else None,
        }


class MissingPointersError(ContentSyncError):
    """An event was requested without any source pointers."""

    code = "MISSING_POINTERS"
    dead_letter_reason = DeadLetterReason.MISSING_POINTERS

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Event has no sourcePointerIds for rule: {rule_id}", {"rule_id": rule_id})
        self.rule_id = rule_id


class UnmappedConceptError(ContentSyncError):
    """No documentation target is registered for the concept."""

    code = "UNMAPPED_CONCEPT"
    dead_letter_reason = DeadLetterReason.UNMAPPED_CONCEPT

    def __init__(self, concept_id: str) -> None:
        super().__init__(f"No content mapping for concept: {concept_id}", {"concept_id": concept_id})
        self.concept_id = concept_id


class InvalidPayloadError(ContentSyncError):
    """The event payload failed validation."""

    code = "INVALID_PAYLOAD"
    dead_letter_reason = DeadLetterReason.INVALID_PAYLOAD

    def __init__(self, reason: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(f"Invalid event payload: {reason}", {"reason": reason})
        self.reason = reason
        self.payload = payload


class DbWriteFailedError(ContentSyncError):
    """The event row could not be written."""

    code = "DB_WRITE_FAILED"
    kind = ErrorKind.TRANSIENT
    dead_letter_reason = None

    def __init__(self, event_id: str, cause: str) -> None:
        super().__init__(f"Failed to write event {event_id}: {cause}", {"event_id": event_id})
        self.event_id = event_id


def classify_error(error: BaseException) -> tuple[ErrorKind, DeadLetterReason | None]:
    """
    Decide how an error during sync should be handled.

    Unknown errors are treated as transient so a later cycle can retry.
    """
    if isinstance(error, ContentSyncError):
        return error.kind, error.dead_letter_reason
    return ErrorKind.TRANSIENT, None
