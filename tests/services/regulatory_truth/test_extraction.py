"""Tests for quote-backed extraction."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.regulatory_truth.models import ExtractionRejectionModel
from services.regulatory_truth.services.audit import AuditAction, list_audit
from services.regulatory_truth.services.extraction import (
    ExtractionMetrics,
    Extractor,
    MatchType,
    RejectionType,
    find_quote_in_evidence,
    is_match_type_acceptable_for_tier,
    normalize_for_match,
    verify_quote_offsets,
)
from shared.models.regulation import CandidateFact, RiskTier
from tests.factories import VAT_TEXT, add_evidence


def candidate(quote: str, value: str = "25", confidence: float = 0.9) -> CandidateFact:
    return CandidateFact(
        domain="vat",
        value_type="percentage",
        extracted_value=value,
        exact_quote=quote,
        confidence=confidence,
    )


class TestQuoteMatching:
    """Tests for find_quote_in_evidence."""

    def test_exact_match_offsets(self) -> None:
        match = find_quote_in_evidence(VAT_TEXT, "standard VAT rate is 25%")
        assert match.found
        assert match.match_type == MatchType.EXACT
        assert VAT_TEXT[match.start : match.end] == "standard VAT rate is 25%"

    def test_typographic_normalization(self) -> None:
        content = "The so\u00adcalled \u201cflat\u201d rate applies."
        match = find_quote_in_evidence(content, 'The socalled "flat" rate applies.')
        assert match.found
        assert match.match_type == MatchType.NORMALIZED

    def test_paraphrase_not_found(self) -> None:
        match = find_quote_in_evidence(VAT_TEXT, "VAT is twenty-five percent")
        assert not match.found
        assert match.match_type == MatchType.NOT_FOUND

    def test_blank_quote_not_found(self) -> None:
        assert not find_quote_in_evidence(VAT_TEXT, "   ").found

    def test_normalize_for_match(self) -> None:
        assert normalize_for_match("  a ‘b’  \n c ") == "a 'b' c"

    def test_normalized_offsets_index_raw_content(self) -> None:
        content = "Article 38. The  standard\u00a0VAT rate is \u201c25%\u201d."
        quote = 'The standard VAT rate is "25%"'

        match = find_quote_in_evidence(content, quote)

        assert match.match_type == MatchType.NORMALIZED
        assert match.start == content.index("The")
        assert content[match.start : match.end] == "The  standard\u00a0VAT rate is \u201c25%\u201d"
        assert normalize_for_match(content[match.start : match.end]) == normalize_for_match(quote)

    def test_combining_marks_map_to_whole_cluster(self) -> None:
        content = "Cafe\u0301 tax applies"

        match = find_quote_in_evidence(content, "Caf\u00e9 tax")

        assert match.match_type == MatchType.NORMALIZED
        assert content[match.start : match.end] == "Cafe\u0301 tax"

    def test_match_inside_ligature_not_found(self) -> None:
        """A hit that starts mid-ligature has no raw span of its own."""
        match = find_quote_in_evidence("\ufb01nal rate", "inal rate")

        assert not match.found
        assert match.start is None


class TestQuoteOffsets:
    """Tests for verify_quote_offsets."""

    def test_exact_offsets(self) -> None:
        start = VAT_TEXT.index("The standard")
        quote = "The standard VAT rate is 25%"
        assert verify_quote_offsets(VAT_TEXT, quote, start, start + len(quote), "exact")
        assert not verify_quote_offsets(VAT_TEXT, quote, start + 1, start + len(quote) + 1, "exact")

    def test_normalized_offsets(self) -> None:
        content = "The  standard rate"
        assert verify_quote_offsets(content, "The standard rate", 0, len(content), "normalized")

    def test_missing_or_out_of_range(self) -> None:
        assert not verify_quote_offsets(VAT_TEXT, "Article 38", None, 10, "exact")
        assert not verify_quote_offsets(VAT_TEXT, "Article 38", 0, len(VAT_TEXT) + 5, "exact")


class TestTierPolicy:
    """Tests for is_match_type_acceptable_for_tier."""

    @pytest.mark.parametrize(
        ("match_type", "tier", "acceptable"),
        [
            (MatchType.EXACT, RiskTier.T0, True),
            (MatchType.EXACT, RiskTier.T3, True),
            (MatchType.NORMALIZED, RiskTier.T0, False),
            (MatchType.NORMALIZED, RiskTier.T1, False),
            (MatchType.NORMALIZED, RiskTier.T2, True),
            (MatchType.NORMALIZED, RiskTier.T3, True),
            (MatchType.NOT_FOUND, RiskTier.T3, False),
        ],
    )
    def test_acceptability(self, match_type: MatchType, tier: RiskTier, acceptable: bool) -> None:
        ok, reason = is_match_type_acceptable_for_tier(match_type, tier)
        assert ok is acceptable
        assert (reason is None) is acceptable

    def test_refusal_names_tier(self) -> None:
        _, reason = is_match_type_acceptable_for_tier("normalized", "T1")
        assert reason is not None
        assert "T1" in reason
        assert "exact" in reason


class TestExtractor:
    """Tests for Extractor.extract."""

    @pytest.mark.asyncio
    async def test_accepts_and_rejects(self, db: AsyncSession) -> None:
        evidence = await add_evidence(db)
        result = await Extractor().extract(
            db,
            evidence.id,
            [
                candidate("The standard VAT rate is 25%"),
                candidate("The rate is about a quarter", value="25"),
                candidate(""),
                candidate("The reduced rate is 13%", value="13", confidence=1.5),
            ],
        )

        assert len(result.pointers) == 1
        pointer = result.pointers[0]
        assert pointer.evidence_id == evidence.id
        assert pointer.match_type == MatchType.EXACT.value
        assert VAT_TEXT[pointer.quote_start : pointer.quote_end] == pointer.exact_quote

        assert [r.rejection_type for r in result.rejections] == [
            RejectionType.NO_QUOTE_MATCH,
            RejectionType.EMPTY_QUOTE,
            RejectionType.INVALID_CONFIDENCE,
        ]
        assert result.total == 4

        stored = await db.scalar(select(func.count(ExtractionRejectionModel.id)))
        assert stored == 3

        audit = await list_audit(db, entity_id=evidence.id, action=AuditAction.EXTRACTION_REJECTED)
        assert audit[0].meta["rejected"] == 3

    @pytest.mark.asyncio
    async def test_critical_tier_candidate_needs_exact_quote(self, db: AsyncSession) -> None:
        evidence = await add_evidence(db, content="The standard VAT rate is \u201c25%\u201d.")
        quote = 'The standard VAT rate is "25%"'

        result = await Extractor().extract(
            db,
            evidence.id,
            [
                candidate(quote).model_copy(update={"risk_tier": RiskTier.T0}),
                candidate(quote).model_copy(update={"risk_tier": RiskTier.T2}),
            ],
        )

        assert [r.rejection_type for r in result.rejections] == [RejectionType.EXACT_MATCH_REQUIRED]
        assert "T0" in result.rejections[0].reason

        pointer = result.pointers[0]
        assert pointer.match_type == MatchType.NORMALIZED.value
        quoted = evidence.raw_content[pointer.quote_start : pointer.quote_end]
        assert quoted == "The standard VAT rate is \u201c25%\u201d"

    @pytest.mark.asyncio
    async def test_pointer_keeps_candidate_shape(self, db: AsyncSession) -> None:
        evidence = await add_evidence(db)
        result = await Extractor().extract(
            db,
            evidence.id,
            [
                candidate("The standard VAT rate is 25%"),
                candidate("The reduced rate is 13%", value="13").model_copy(update={"shape": "reference_tables"}),
            ],
        )

        assert [p.shape for p in result.pointers] == ["claims", "reference_tables"]

    @pytest.mark.asyncio
    async def test_pending_extraction(self, db: AsyncSession) -> None:
        """Evidence leaves the queue after any pointer or rejection."""
        extractor = Extractor()
        done = await add_evidence(db, source_url="https://gov.example/a")
        rejected = await add_evidence(db, source_url="https://gov.example/b")
        waiting = await add_evidence(db, source_url="https://gov.example/c")

        await extractor.extract(db, done.id, [candidate("The standard VAT rate is 25%")])
        await extractor.extract(db, rejected.id, [candidate("nowhere in the text")])

        assert await extractor.evidence_pending_extraction(db) == [waiting.id]


class TestExtractionMetrics:
    """Tests for rejection rate accounting."""

    @pytest.mark.asyncio
    async def test_rejection_rate(self, db: AsyncSession) -> None:
        evidence = await add_evidence(db)
        result = await Extractor().extract(
            db,
            evidence.id,
            [candidate("The standard VAT rate is 25%"), candidate("missing quote")],
        )

        metrics = ExtractionMetrics()
        metrics.add(result)

        assert metrics.rejection_rate == 0.5
        assert metrics.rejected_by_type == {"NO_QUOTE_MATCH": 1}

    def test_empty_rate_is_zero(self) -> None:
        assert ExtractionMetrics().rejection_rate == 0.0
