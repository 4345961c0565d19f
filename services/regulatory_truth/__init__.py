"""
Regulatory Truth Service
========================

Turns fetched regulatory sources into published, verifiable rules.

Features:
- Content-addressed evidence with audited hash repair
- Quote-backed extraction (no inferred values)
- Fail-closed rule composition with the AppliesWhen DSL
- Risk-tiered approval and a coverage gate
- Conflict arbitration with escalation
- Hash-sealed releases
- Supersession/dependency graph and rule selection
- Idempotent content sync events
- Invariant validation with a GO/NO-GO verdict

Port: 8010
"""

__version__ = "0.1.0"
