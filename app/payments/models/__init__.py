"""
Payment domain models.

This module contains all payment-related models:
- Payment: One ledger entry per charge attempt
- Refund: Money returned to customers, owned by a Payment
- SettlementRequest: A vendor payout claim for one transaction date
- SettlementCursor: Per-(vendor, date) compare-and-swap anchor for claims
- GatewayEvent: Gateway event tracking for idempotent processing
"""

from payments.models.gateway_event import GatewayEvent
from payments.models.payment import Payment, generate_payment_id
from payments.models.refund import Refund
from payments.models.settlement import (
    SettlementCursor,
    SettlementRequest,
    generate_settlement_id,
)

__all__ = [
    "GatewayEvent",
    "Payment",
    "Refund",
    "SettlementCursor",
    "SettlementRequest",
    "generate_payment_id",
    "generate_settlement_id",
]
