"""
Live Verification
=================

Invariant validation, synthetic heartbeat and the live pipeline runner.

Modules:
- invariants: INV-1 to INV-8 and the GO / NO-GO / CONDITIONAL-GO verdict
- heartbeat: synthetic conflict proving the arbiter is alive
- runner: phase-by-phase live run producing a RunReport
- fetcher: httpx client for the fetch phase

Version: 0.1.0
"""

from services.regulatory_truth.e2e.fetcher import HttpDocumentFetcher, parse_source
from services.regulatory_truth.e2e.heartbeat import HeartbeatResult, SyntheticHeartbeat
from services.regulatory_truth.e2e.invariants import (
    InvariantReport,
    InvariantResult,
    InvariantStatus,
    InvariantValidator,
    Verdict,
    compute_verdict,
)
from services.regulatory_truth.e2e.runner import (
    FetchedDocument,
    LiveRunner,
    PhaseResult,
    RunReport,
    SourceEndpoint,
    run_phase,
)


__all__ = [
    # Invariants
    "InvariantReport",
    "InvariantResult",
    "InvariantStatus",
    "InvariantValidator",
    "Verdict",
    "compute_verdict",
    # Heartbeat
    "HeartbeatResult",
    "SyntheticHeartbeat",
    # Runner
    "FetchedDocument",
    "LiveRunner",
    "PhaseResult",
    "RunReport",
    "SourceEndpoint",
    "run_phase",
    # Fetcher
    "HttpDocumentFetcher",
    "parse_source",
]
