"""
Regulatory Truth Routes
=======================

API route handlers for the Regulatory Truth Service.

Routes:
- rules: Rule selection, lookup, review and approval
- conflicts: Arbitration and manual resolution
- releases: Release creation and hash verification
- invariants: Live invariant verdict
"""

from services.regulatory_truth.routes import conflicts, invariants, releases, rules


__all__ = ["conflicts", "invariants", "releases", "rules"]
