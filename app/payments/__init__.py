"""
Payments app: ledger and vendor settlement reconciliation.

This app handles:
- Payment records and their status lifecycle
- Partial and full refunds
- Daily settlement buckets per vendor and transaction date
- Urgent and scheduled settlement requests
- Gateway event ingestion

Usage:
    from payments.services import LedgerService, SettlementCoordinator

    # Record a capture
    LedgerService.record_transition(payment_id, "completed", at=captured_at)

    # Claim a day's pending revenue
    SettlementCoordinator.request_urgent_settlement(vendor_id, day, 600)
"""
