"""
Live Pipeline Runner
====================

Runs the whole pipeline against a live database, then validates the
invariants and issues a verdict.

Workflow:
1. Create the synthetic heartbeat conflict
2. Phases: fetch (optional) -> extract -> compose -> review ->
   arbitrate -> release -> graph -> repair
3. Wait for the heartbeat to be processed
4. Validate invariants and collect metrics
5. Write the run report as a JSON artifact

A failing phase is recorded and the next phase still runs.

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from services.regulatory_truth.e2e.heartbeat import HeartbeatResult, SyntheticHeartbeat
from services.regulatory_truth.e2e.invariants import InvariantReport, InvariantValidator, Verdict
from services.regulatory_truth.errors import PipelineError
from services.regulatory_truth.graph import GRAPH_ELIGIBLE_STATUSES, validate_graph_acyclicity
from services.regulatory_truth.models import (
    EvidenceModel,
    ExtractionRejectionModel,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    RuleReleaseModel,
    SourcePointerModel,
    release_rules,
    rule_source_pointers,
)
from services.regulatory_truth.models.base import new_id
from services.regulatory_truth.services.arbiter import Arbiter
from services.regulatory_truth.services.audit import record_discovery
from services.regulatory_truth.services.composer import Composer, RuleProposer, group_pointers_by_domain
from services.regulatory_truth.services.coverage import CoverageGate, ShapeCounts
from services.regulatory_truth.services.evidence import EvidenceStore
from services.regulatory_truth.services.extraction import (
    CandidateExtractor,
    ExtractionMetrics,
    Extractor,
    RejectionType,
)
from services.regulatory_truth.services.release import Releaser
from services.regulatory_truth.services.review import ReviewService
from shared.config import PipelineSettings, get_settings
from shared.logging import bind_context, clear_context, get_logger
from shared.models.regulation import ContentClassification, ConflictType, RiskTier, RuleStatus


logger = get_logger(__name__)


PhaseMetrics = dict[str, float | int]


# =============================================================================
# Collaborators
# =============================================================================


@dataclass
class SourceEndpoint:
    """A monitored source location."""

    endpoint_id: str
    url: str
    source_hierarchy: int | None = None


@dataclass
class FetchedDocument:
    """Content returned by a fetcher."""

    url: str
    content: str
    content_type: str | None = None


class DocumentFetcher(Protocol):
    """Collaborator that downloads a source document."""

    async def fetch(self, url: str) -> FetchedDocument:
        ...


class ContentClassifier(Protocol):
    """Collaborator that classifies evidence content for the coverage gate."""

    async def classify(self, evidence: EvidenceModel) -> ContentClassification:
        ...


# =============================================================================
# Results
# =============================================================================


class PhaseResult(BaseModel):
    """Outcome of one pipeline phase."""

    phase: str
    success: bool
    duration: float = Field(..., description="Seconds")
    metrics: PhaseMetrics = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class RunReport(BaseModel):
    """Everything a live run produced."""

    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    verdict: Verdict
    invalid_reason: str | None = None
    phases: list[PhaseResult] = Field(default_factory=list)
    invariants: InvariantReport | None = None
    heartbeat: dict[str, Any] | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    artifact_path: str | None = None


async def run_phase(name: str, fn: Callable[[], Awaitable[PhaseMetrics]]) -> PhaseResult:
    """
    Run one phase, turning an exception into a failed PhaseResult.

    Cancellation is not caught, so a cancelled run stops issuing phases.
    """
    started = time.monotonic()
    errors: list[str] = []
    metrics: PhaseMetrics = {}

    logger.info("phase_started", phase=name)
    try:
        metrics = await fn()
    except Exception as e:
        errors.append(f"{type(e).__name__}: {e}")
        logger.error("phase_failed", phase=name, error=str(e), error_type=type(e).__name__)

    result = PhaseResult(
        phase=name,
        success=not errors,
        duration=round(time.monotonic() - started, 3),
        metrics=metrics,
        errors=errors,
    )
    logger.info("phase_completed", phase=name, success=result.success, duration=result.duration, **metrics)
    return result


# =============================================================================
# Runner
# =============================================================================


class LiveRunner:
    """
    Drives the pipeline phases and the invariant harness.

    Args:
        session_factory: Sessions for the live database
        config: Pipeline settings
        candidate_extractor: Proposes facts from evidence
        proposer: Drafts rule proposals from pointer groups
        classifier: Classifies evidence for the coverage gate
        fetcher: Downloads sources; the fetch phase runs only when given
        sources: Endpoints to fetch
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PipelineSettings | None = None,
        candidate_extractor: CandidateExtractor | None = None,
        proposer: RuleProposer | None = None,
        classifier: ContentClassifier | None = None,
        fetcher: DocumentFetcher | None = None,
        sources: list[SourceEndpoint] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config or get_settings().pipeline
        self.candidate_extractor = candidate_extractor
        self.proposer = proposer
        self.classifier = classifier
        self.fetcher = fetcher
        self.sources = sources or []

        self.evidence_store = EvidenceStore()
        self.extractor = Extractor(self.evidence_store)
        self.coverage_gate = CoverageGate(self.config)
        self.review_service = ReviewService(self.config, coverage_gate=self.coverage_gate)
        self.arbiter = Arbiter(self.config, review_service=self.review_service)
        self.composer = Composer(self.config, arbiter=self.arbiter)
        self.releaser = Releaser(self.config, review_service=self.review_service)
        self.validator = InvariantValidator(self.evidence_store, self.releaser)
        self.heartbeat = SyntheticHeartbeat(session_factory, self.arbiter, self.config)

    # =========================================================================
    # Phases
    # =========================================================================

    async def _fetch_once(self, url: str) -> FetchedDocument:
        return await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.config.fetch_timeout_seconds)

    async def _fetch_with_retry(self, url: str) -> FetchedDocument:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(self.config.fetch_retries),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                "fetch_retry",
                url=url,
                attempt=retry_state.attempt_number,
            ),
        )
        return await retrying(self._fetch_once, url)

    async def fetch_phase(self) -> PhaseMetrics:
        """Discover and store every source; a failing source is skipped."""
        metrics: PhaseMetrics = {"sources": len(self.sources), "new_items": 0, "stored": 0, "failed": 0}
        for source in self.sources:
            async with self.session_factory() as db:
                _, is_new = await record_discovery(db, source.endpoint_id, source.url)
            metrics["new_items"] += int(is_new)

            try:
                document = await self._fetch_with_retry(source.url)
            except Exception as e:
                metrics["failed"] += 1
                logger.warning("source_fetch_failed", url=source.url, error=str(e))
                continue

            try:
                async with self.session_factory() as db:
                    await self.evidence_store.store(
                        db,
                        source_url=document.url,
                        raw_content=document.content,
                        content_type=document.content_type,
                        source_hierarchy=source.source_hierarchy,
                    )
                    await db.commit()
            except (PipelineError, SQLAlchemyError) as e:
                metrics["failed"] += 1
                logger.error("source_store_failed", url=document.url, error=str(e))
                continue
            metrics["stored"] += 1
        return metrics

    async def extract_phase(self) -> PhaseMetrics:
        """Extract candidate facts from evidence not yet processed."""
        if self.candidate_extractor is None:
            return {"processed": 0}

        async with self.session_factory() as db:
            pending = await self.extractor.evidence_pending_extraction(db)

        totals = ExtractionMetrics()
        for evidence_id in pending:
            async with self.session_factory() as db:
                evidence = await self.evidence_store.get(db, evidence_id)
                candidates = await self.candidate_extractor.extract(evidence)
                result = await self.extractor.extract(db, evidence_id, candidates)

                classification = (
                    await self.classifier.classify(evidence)
                    if self.classifier is not None
                    else ContentClassification(primary_type="UNKNOWN", confidence=0.0)
                )
                await self.coverage_gate.generate_report(
                    db,
                    evidence_id,
                    classification,
                    ShapeCounts.from_shapes(p.shape for p in result.pointers),
                )
                await db.commit()
            totals.add(result)

        return {
            "processed": len(pending),
            "accepted": totals.accepted,
            "rejected": totals.rejected,
            "rejection_rate": round(totals.rejection_rate, 4),
        }

    async def _uncited_pointers(self, db: AsyncSession) -> list[SourcePointerModel]:
        cited = select(rule_source_pointers.c.pointer_id)
        result = await db.execute(select(SourcePointerModel).where(SourcePointerModel.id.not_in(cited)))
        pointers = list(result.scalars().all())

        conflicts = await db.execute(
            select(RegulatoryConflictModel.meta).where(
                RegulatoryConflictModel.conflict_type == ConflictType.SOURCE_CONFLICT.value
            )
        )
        in_conflict = {pid for meta in conflicts.scalars().all() for pid in (meta or {}).get("source_pointer_ids", [])}
        return [p for p in pointers if p.id not in in_conflict]

    async def compose_phase(self) -> PhaseMetrics:
        """Compose one rule per domain from pointers no rule cites yet."""
        if self.proposer is None:
            return {"groups": 0}

        async with self.session_factory() as db:
            groups = group_pointers_by_domain(await self._uncited_pointers(db))

        batch = await self.composer.compose_batch(self.session_factory, groups, self.proposer)
        return {
            "groups": len(groups),
            "composed": len(batch.composed),
            "conflicts": len(batch.conflicts),
            "skipped": batch.skipped,
            "failed": len(batch.failed),
        }

    async def review_phase(self) -> PhaseMetrics:
        """Submit drafts for review, then auto-approve the eligible ones."""
        async with self.session_factory() as db:
            drafts = await self.review_service.rule_ids_with_status(db, RuleStatus.DRAFT)

        submitted = failed = 0
        for rule_id in drafts:
            async with self.session_factory() as db:
                try:
                    await self.review_service.submit_for_review(db, rule_id, actor="live-runner")
                    await db.commit()
                except PipelineError as e:
                    await db.rollback()
                    failed += 1
                    logger.error("submit_for_review_failed", rule_id=rule_id, error=e.message)
                    continue
            submitted += 1

        result = await self.review_service.run_auto_approve(self.session_factory)
        return {
            "submitted": submitted,
            "failed": failed,
            "approved": len(result.approved),
            "skipped": len(result.skipped),
        }

    async def arbitrate_phase(self) -> PhaseMetrics:
        """Detect rule conflicts, then arbitrate everything OPEN."""
        async with self.session_factory() as db:
            detected = await self.arbiter.detect_rule_conflicts(db)
            await db.commit()

        batch = await self.arbiter.arbitrate_batch(self.session_factory)
        return {
            "detected": len(detected),
            "processed": batch.processed,
            "resolved": batch.resolved,
            "escalated": batch.escalated,
            "failed": batch.failed,
        }

    async def release_phase(self) -> PhaseMetrics:
        """Release every approved, unreleased rule that passes the publication gate."""
        async with self.session_factory() as db:
            released = select(release_rules.c.rule_id)
            result = await db.execute(
                select(RegulatoryRuleModel.id).where(
                    RegulatoryRuleModel.status == RuleStatus.APPROVED.value,
                    RegulatoryRuleModel.id.not_in(released),
                )
            )
            candidates = list(result.scalars().all())

            publishable = []
            for rule_id in candidates:
                blockers = await self.review_service.publication_blockers(db, rule_id)
                if blockers:
                    logger.info("release_candidate_blocked", rule_id=rule_id, blockers=blockers)
                else:
                    publishable.append(rule_id)

        if not publishable:
            return {"released": 0, "rules": 0, "blocked": len(candidates)}

        async with self.session_factory() as db:
            release = await self.releaser.release(db, publishable, actor="live-runner")
            await db.commit()

        logger.info("release_phase_complete", version=release.version, rules=len(publishable))
        return {"released": 1, "rules": len(publishable), "blocked": len(candidates) - len(publishable)}

    async def graph_phase(self) -> PhaseMetrics:
        """Rebuild edges for every graph-eligible rule and check acyclicity."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(RegulatoryRuleModel.id).where(RegulatoryRuleModel.status.in_(GRAPH_ELIGIBLE_STATUSES))
            )
            rule_ids = list(result.scalars().all())

        created = deleted = failed = 0
        for rule_id in rule_ids:
            async with self.session_factory() as db:
                try:
                    build = await self.review_service.edge_builder.rebuild_edges_for_rule(db, rule_id)
                    await db.commit()
                except PipelineError as e:
                    await db.rollback()
                    failed += 1
                    logger.error("graph_rebuild_failed", rule_id=rule_id, error=e.message)
                    continue
            created += build.total_created
            deleted += build.total_deleted

        async with self.session_factory() as db:
            report = await validate_graph_acyclicity(db, self.config.graph_namespace)

        return {
            "rules": len(rule_ids),
            "created": created,
            "deleted": deleted,
            "failed": failed,
            "acyclic": int(report.is_acyclic),
        }

    async def repair_phase(self) -> PhaseMetrics:
        """Repair evidence and release hashes; every repair is audited."""
        async with self.session_factory() as db:
            evidence = await self.evidence_store.repair_hashes(db, reason="live-run repair", performed_by="live-runner")
            releases = await self.releaser.repair_release_hashes(
                db, reason="live-run repair", performed_by="live-runner"
            )
            await db.commit()
        return {"evidence_repaired": evidence.repaired_count, "releases_repaired": len(releases.repaired)}

    # =========================================================================
    # Metrics and artifacts
    # =========================================================================

    async def collect_metrics(self) -> dict[str, Any]:
        """Counts describing the database after the run."""
        async with self.session_factory() as db:

            async def grouped(column: Any) -> dict[str, int]:
                result = await db.execute(select(column, func.count()).group_by(column))
                return {str(key): count for key, count in result.all()}

            rules_by_status = {s.value: 0 for s in RuleStatus} | await grouped(RegulatoryRuleModel.status)
            rules_by_tier = {t.value: 0 for t in RiskTier} | await grouped(RegulatoryRuleModel.risk_tier)
            conflicts_by_status = await grouped(RegulatoryConflictModel.status)

            rejections = await db.scalar(select(func.count(ExtractionRejectionModel.id))) or 0
            quote_mismatches = (
                await db.scalar(
                    select(func.count(ExtractionRejectionModel.id)).where(
                        ExtractionRejectionModel.rejection_type == RejectionType.NO_QUOTE_MATCH.value
                    )
                )
                or 0
            )
            pointers = await db.scalar(select(func.count(SourcePointerModel.id))) or 0
            evidence = await db.scalar(select(func.count(EvidenceModel.id))) or 0
            releases = await db.scalar(select(func.count(RuleReleaseModel.id))) or 0

        extracted = pointers + rejections
        return {
            "evidence": evidence,
            "rules_by_status": rules_by_status,
            "rules_by_tier": rules_by_tier,
            "conflicts_by_status": conflicts_by_status,
            "releases": releases,
            "extraction_rejection_rate": round(rejections / extracted, 4) if extracted else 0.0,
            "quote_mismatch_rate": round(quote_mismatches / rejections, 4) if rejections else 0.0,
        }

    def write_artifact(self, report: RunReport) -> Path | None:
        """Write the run report to ``artifacts_dir/<run_id>.json`` when configured."""
        if self.config.artifacts_dir is None:
            return None
        directory = Path(self.config.artifacts_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{report.run_id}.json"
        report.artifact_path = str(path)
        path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        logger.info("run_artifact_written", path=str(path))
        return path

    # =========================================================================
    # Run
    # =========================================================================

    def phases(self) -> list[tuple[str, Callable[[], Awaitable[PhaseMetrics]]]]:
        """Phases in execution order."""
        ordered: list[tuple[str, Callable[[], Awaitable[PhaseMetrics]]]] = []
        if self.fetcher is not None:
            ordered.append(("fetch", self.fetch_phase))
        ordered.extend(
            [
                ("extract", self.extract_phase),
                ("compose", self.compose_phase),
                ("review", self.review_phase),
                ("arbitrate", self.arbitrate_phase),
                ("release", self.release_phase),
                ("graph", self.graph_phase),
                ("repair", self.repair_phase),
            ]
        )
        return ordered

    async def run(self, heartbeat: bool = True) -> RunReport:
        """
        Run every phase, then validate invariants.

        Args:
            heartbeat: Create and wait for the synthetic conflict

        Returns:
            RunReport; the verdict is INVALID when the invariant checks
            could not run
        """
        run_id = new_id()
        bind_context(run_id=run_id)
        report = RunReport(run_id=run_id, started_at=datetime.now(UTC), verdict=Verdict.INVALID)
        logger.info("live_run_started", phases=[name for name, _ in self.phases()])

        try:
            heartbeat_id = None
            if heartbeat:
                try:
                    heartbeat_id = await self.heartbeat.create()
                except (SQLAlchemyError, PipelineError) as e:
                    report.heartbeat = {"processed": False, "error": str(e)}
                    logger.error("heartbeat_create_failed", error=str(e))

            for index, (name, fn) in enumerate(self.phases()):
                if index and self.config.phase_delay_seconds:
                    await asyncio.sleep(self.config.phase_delay_seconds)
                report.phases.append(await run_phase(name, fn))

            if heartbeat_id is not None:
                beat: HeartbeatResult = await self.heartbeat.wait_until_processed(heartbeat_id)
                report.heartbeat = beat.to_dict()

            try:
                async with self.session_factory() as db:
                    report.invariants = await self.validator.validate(db)
                report.verdict = report.invariants.verdict
            except (SQLAlchemyError, PipelineError) as e:
                report.invalid_reason = f"Invariant checks failed to run: {e}"
                logger.error("invariant_validation_failed", error=str(e))

            report.metrics = await self.collect_metrics()
            report.finished_at = datetime.now(UTC)
            self.write_artifact(report)

            logger.info(
                "live_run_complete",
                verdict=report.verdict.value,
                failing=report.invariants.failing if report.invariants else [],
                failed_phases=[p.phase for p in report.phases if not p.success],
            )
            return report
        finally:
            clear_context()
