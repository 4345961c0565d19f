"""
Regulatory Truth Test Suite
===========================

Test organization:
- tests/unit/                      - Pure functions (no database)
- tests/services/regulatory_truth/ - Services, graph, harness and API
                                     against in-memory SQLite

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest --cov=services          # With coverage
"""
