"""
REGTRUTH Services
=================

Services for the regulatory truth platform.

Services:
- regulatory_truth: evidence, extraction, rule composition, review,
  arbitration, releases, the rule graph and the invariant harness
"""

__all__ = [
    "regulatory_truth",
]
