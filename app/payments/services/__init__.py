"""
Payment services for the ledger and vendor settlements.

This module provides:
- LedgerService: Records payments, status transitions and refunds
- SettlementBucketCalculator: Derives a vendor's daily settlement bucket
- SettlementCoordinator: Claims pending revenue and drives settlement requests
- AggregationReporter: Read-only totals for dashboards

Usage:
    from payments.services import LedgerService, SettlementCoordinator

    # Record a gateway confirmation
    result = LedgerService.record_transition(payment_id, "completed", at=captured_at)

    # Merchant asks for today's money now
    result = SettlementCoordinator.request_urgent_settlement(
        vendor_id=vendor_id,
        day=date(2025, 1, 10),
        requested_amount_cents=600,
    )
"""

from payments.services.aggregation import AggregationReporter
from payments.services.bucket_calculator import SettlementBucketCalculator
from payments.services.ledger_service import LedgerService, RefundOutcome
from payments.services.settlement_coordinator import SettlementCoordinator

__all__ = [
    "AggregationReporter",
    "LedgerService",
    "RefundOutcome",
    "SettlementBucketCalculator",
    "SettlementCoordinator",
]
