"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Payment, Refund, SettlementRequest, GatewayEvent constraints
- test_state_transitions.py: django-fsm edges
- test_ledger_service.py: LedgerService
- test_bucket_calculator.py: Daily settlement buckets
- test_settlement_coordinator.py: Claims and request lifecycle
- test_aggregation.py: Reporting queries
- test_locks.py / test_optimistic_locking.py: Concurrency utilities
- test_views.py: API endpoint tests

Usage:
    pytest payments/tests/
    pytest payments/tests/test_settlement_coordinator.py
"""
