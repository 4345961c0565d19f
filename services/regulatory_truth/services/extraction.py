"""
Quote-Backed Extraction
=======================

Turns candidate facts from an extraction collaborator into source
pointers. A candidate is accepted only when its quote occurs verbatim
(or after typographic normalization) in the evidence text; candidates
for T0 and T1 rules need the verbatim form. Pointer offsets always
index the raw evidence text. Everything else is recorded as a typed
rejection.

Version: 0.1.0
"""

import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import (
    EvidenceModel,
    ExtractionRejectionModel,
    SourcePointerModel,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.audit import AuditAction, record_audit
from services.regulatory_truth.services.evidence import EvidenceStore
from shared.logging import get_logger
from shared.models.regulation import CandidateFact, RiskTier


logger = get_logger(__name__)


class MatchType(str, Enum):
    """How a quote was located."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    NOT_FOUND = "not_found"


class RejectionType(str, Enum):
    """Reasons a candidate fact is refused."""

    NO_QUOTE_MATCH = "NO_QUOTE_MATCH"
    EMPTY_QUOTE = "EMPTY_QUOTE"
    INVALID_CONFIDENCE = "INVALID_CONFIDENCE"
    EXACT_MATCH_REQUIRED = "EXACT_MATCH_REQUIRED"


# =============================================================================
# Quote Matching
# =============================================================================


_DOUBLE_QUOTES = "“”„‟«»‹›″＂"
_APOSTROPHES = "‘’‚‛′＇"
_QUOTE_TABLE = str.maketrans(
    {**{c: '"' for c in _DOUBLE_QUOTES}, **{c: "'" for c in _APOSTROPHES}}
)

EXACT_MATCH_TIERS = frozenset({RiskTier.T0, RiskTier.T1})


def _fold(cluster: str) -> str:
    cluster = unicodedata.normalize("NFKC", cluster)
    cluster = cluster.replace("\u00a0", " ").replace("\u00ad", "")
    return cluster.translate(_QUOTE_TABLE)


def _normalize_with_offsets(text: str) -> tuple[str, list[int], list[int]]:
    """
    Normalize text and keep, for every output character, the raw span it came from.

    A base character and the combining marks after it are folded as one
    cluster. Runs of whitespace collapse to a single space spanning the
    whole run; leading and trailing whitespace is dropped.

    Returns:
        (normalized, starts, ends) where normalized[k] came from
        text[starts[k]:ends[k]]
    """
    chars: list[str] = []
    starts: list[int] = []
    ends: list[int] = []
    space: tuple[int, int] | None = None

    i = 0
    while i < len(text):
        j = i + 1
        while j < len(text) and unicodedata.combining(text[j]):
            j += 1

        for char in _fold(text[i:j]):
            if char.isspace():
                space = (space[0], j) if space else (i, j)
                continue
            if space and chars:
                chars.append(" ")
                starts.append(space[0])
                ends.append(space[1])
            space = None
            chars.append(char)
            starts.append(i)
            ends.append(j)
        i = j

    return "".join(chars), starts, ends


def normalize_for_match(text: str) -> str:
    """
    Normalize text for quote comparison.

    Applies NFKC, turns non-breaking spaces into spaces, drops soft
    hyphens, folds typographic quotes and apostrophes to ASCII, then
    collapses whitespace.
    """
    return _normalize_with_offsets(text)[0]


@dataclass
class QuoteMatch:
    """Result of locating a quote in evidence text."""

    found: bool
    match_type: MatchType
    start: int | None = None
    end: int | None = None


def find_quote_in_evidence(content: str, quote: str) -> QuoteMatch:
    """
    Locate a quote in evidence content.

    Tries an exact substring first, then a match on normalized text.
    Offsets always index the raw content: for a normalized match,
    ``content[start:end]`` normalizes to the normalized quote. A
    normalized hit whose raw span does not verify is skipped.

    Args:
        content: Evidence text
        quote: Quote to find

    Returns:
        QuoteMatch
    """
    if not quote or not quote.strip():
        return QuoteMatch(found=False, match_type=MatchType.NOT_FOUND)

    start = content.find(quote)
    if start >= 0:
        return QuoteMatch(True, MatchType.EXACT, start, start + len(quote))

    normalized_quote = normalize_for_match(quote)
    if not normalized_quote:
        return QuoteMatch(found=False, match_type=MatchType.NOT_FOUND)

    normalized_content, starts, ends = _normalize_with_offsets(content)
    hit = normalized_content.find(normalized_quote)
    while hit >= 0:
        start = starts[hit]
        end = ends[hit + len(normalized_quote) - 1]
        if normalize_for_match(content[start:end]) == normalized_quote:
            return QuoteMatch(True, MatchType.NORMALIZED, start, end)
        hit = normalized_content.find(normalized_quote, hit + 1)

    return QuoteMatch(found=False, match_type=MatchType.NOT_FOUND)


def verify_quote_offsets(
    content: str,
    quote: str,
    start: int | None,
    end: int | None,
    match_type: str | None,
) -> bool:
    """Check that stored offsets still select the quote in ``content``."""
    if start is None or end is None or not 0 <= start <= end <= len(content):
        return False
    if match_type == MatchType.EXACT.value:
        return content[start:end] == quote
    return normalize_for_match(content[start:end]) == normalize_for_match(quote)


def is_match_type_acceptable_for_tier(
    match_type: MatchType | str | None,
    tier: RiskTier | str,
) -> tuple[bool, str | None]:
    """
    Whether a quote match is strong enough for a rule of ``tier``.

    T0 and T1 rules need an exact match; T2 and T3 also accept a
    normalized one.

    Returns:
        (acceptable, reason) where reason explains a refusal
    """
    match_type = MatchType(match_type) if match_type else MatchType.NOT_FOUND
    tier = RiskTier(tier)

    if match_type is MatchType.NOT_FOUND:
        return False, "Quote not found in evidence"
    if match_type is MatchType.NORMALIZED and tier in EXACT_MATCH_TIERS:
        return False, f"{tier.value} rules require an exact quote match, but only a normalized match was found"
    return True, None


# =============================================================================
# Extractor
# =============================================================================


class CandidateExtractor(Protocol):
    """Collaborator that proposes facts from evidence text."""

    async def extract(self, evidence: EvidenceModel) -> list[CandidateFact]:
        ...


@dataclass
class Rejection:
    """A refused candidate."""

    candidate: CandidateFact
    rejection_type: RejectionType
    reason: str


@dataclass
class ExtractionResult:
    """Pointers accepted and candidates rejected for one evidence record."""

    evidence_id: str
    pointers: list[SourcePointerModel] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.pointers) + len(self.rejections)


@dataclass
class ExtractionMetrics:
    """Accepted/rejected counters; the rejection rate is monitored."""

    accepted: int = 0
    rejected: int = 0
    rejected_by_type: dict[str, int] = field(default_factory=dict)

    @property
    def rejection_rate(self) -> float:
        total = self.accepted + self.rejected
        return self.rejected / total if total else 0.0

    def add(self, result: ExtractionResult) -> None:
        """Fold one extraction result into the counters."""
        self.accepted += len(result.pointers)
        self.rejected += len(result.rejections)
        for rejection in result.rejections:
            key = rejection.rejection_type.value
            self.rejected_by_type[key] = self.rejected_by_type.get(key, 0) + 1


class Extractor:
    """
    Enforces the no-inference contract on candidate facts.

    Accepted candidates become SourcePointers carrying the matched
    offsets. Rejected candidates are persisted with their typed reason.
    """

    def __init__(self, evidence_store: EvidenceStore | None = None) -> None:
        self.evidence_store = evidence_store or EvidenceStore()

    def check_candidate(self, content: str, candidate: CandidateFact) -> tuple[QuoteMatch | None, Rejection | None]:
        """
        Validate one candidate against evidence content.

        Returns:
            (match, None) when accepted, (None, rejection) otherwise
        """
        if not candidate.exact_quote or not candidate.exact_quote.strip():
            return None, Rejection(candidate, RejectionType.EMPTY_QUOTE, "Candidate has no quote")

        if not 0.0 <= candidate.confidence <= 1.0:
            return None, Rejection(
                candidate,
                RejectionType.INVALID_CONFIDENCE,
                f"Confidence {candidate.confidence} outside [0, 1]",
            )

        match = find_quote_in_evidence(content, candidate.exact_quote)
        if not match.found:
            return None, Rejection(
                candidate,
                RejectionType.NO_QUOTE_MATCH,
                "Quote not found in evidence text",
            )

        if candidate.risk_tier is not None:
            acceptable, reason = is_match_type_acceptable_for_tier(match.match_type, candidate.risk_tier)
            if not acceptable:
                return None, Rejection(candidate, RejectionType.EXACT_MATCH_REQUIRED, reason or "")
        return match, None

    async def extract(
        self,
        db: AsyncSession,
        evidence_id: str,
        candidates: list[CandidateFact],
    ) -> ExtractionResult:
        """
        Accept or reject candidate facts for one evidence record.

        Args:
            db: Database session
            evidence_id: Evidence the candidates were drawn from
            candidates: Proposed facts

        Returns:
            ExtractionResult with the stored pointers and rejections
        """
        evidence = await self.evidence_store.get(db, evidence_id)
        result = ExtractionResult(evidence_id=evidence_id)

        for candidate in candidates:
            match, rejection = self.check_candidate(evidence.raw_content, candidate)

            if rejection is not None:
                db.add(
                    ExtractionRejectionModel(
                        id=new_id(),
                        evidence_id=evidence_id,
                        rejection_type=rejection.rejection_type.value,
                        domain=candidate.domain,
                        extracted_value=candidate.extracted_value,
                        exact_quote=candidate.exact_quote,
                        reason=rejection.reason,
                    )
                )
                result.rejections.append(rejection)
                logger.info(
                    "extraction_rejected",
                    evidence_id=evidence_id,
                    rejection_type=rejection.rejection_type.value,
                    domain=candidate.domain,
                )
                continue

            pointer = SourcePointerModel(
                id=new_id(),
                evidence_id=evidence_id,
                domain=candidate.domain,
                value_type=candidate.value_type,
                extracted_value=candidate.extracted_value,
                display_value=candidate.display_value or candidate.extracted_value,
                exact_quote=candidate.exact_quote,
                confidence=candidate.confidence,
                quote_start=match.start,
                quote_end=match.end,
                match_type=match.match_type.value,
                shape=candidate.shape,
            )
            db.add(pointer)
            result.pointers.append(pointer)

        if result.rejections:
            await record_audit(
                db,
                AuditAction.EXTRACTION_REJECTED,
                "evidence",
                evidence_id,
                metadata={
                    "rejected": len(result.rejections),
                    "types": sorted({r.rejection_type.value for r in result.rejections}),
                },
            )

        await db.flush()
        logger.info(
            "extraction_complete",
            evidence_id=evidence_id,
            accepted=len(result.pointers),
            rejected=len(result.rejections),
        )
        return result

    async def evidence_pending_extraction(self, db: AsyncSession) -> list[str]:
        """IDs of evidence with neither pointers nor rejections yet."""
        pointer_count = (
            select(func.count(SourcePointerModel.id))
            .where(SourcePointerModel.evidence_id == EvidenceModel.id)
            .scalar_subquery()
        )
        rejection_count = (
            select(func.count(ExtractionRejectionModel.id))
            .where(ExtractionRejectionModel.evidence_id == EvidenceModel.id)
            .scalar_subquery()
        )
        result = await db.execute(
            select(EvidenceModel.id)
            .where(pointer_count == 0, rejection_count == 0)
            .order_by(EvidenceModel.fetched_at)
        )
        return list(result.scalars().all())
