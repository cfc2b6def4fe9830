"""
CredVault Test Suite
====================

Test organization:
- tests/unit/          - Unit tests (mock ledger, in-memory blob store, SQLite)

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest --cov=credvault          # With coverage
"""
