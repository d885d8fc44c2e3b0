"""
Data types for ledger and settlement operations.

This module defines dataclasses used for type-safe data transfer between
the API layer, Celery tasks and the services.

Types:
    CreatePaymentParams: Inbound payment creation from the booking service
    GatewayEventParams: One gateway delivery (authorized, captured, ...)
    DailySettlementBucket: Derived partition of a vendor's day
    PaymentStats: Aggregated totals over a date range
    DailyTotal: One row of a per-day breakdown
    VendorPendingSettlement: One row of the pending-vendors listing

Usage:
    from payments.types import CreatePaymentParams

    params = CreatePaymentParams(
        user_id=user_id,
        vendor_id=vendor_id,
        base_amount_cents=900,
        tax_amount_cents=100,
        final_amount_cents=1000,
        method_type="card",
        card_type="credit",
        card_last4="4242",
    )
    result = LedgerService.create_payment(params)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from payments.exceptions import InvalidAmountError, PaymentValidationError
from payments.state_machines import PaymentMethodType


@dataclass
class CreatePaymentParams:
    """
    Parameters for creating a Payment.

    References are opaque ids supplied by the booking/order service; the
    ledger never calls back into it.

    Required Attributes:
        user_id: Paying customer
        vendor_id: Vendor receiving settlement
        base_amount_cents: Pre-tax, pre-discount amount
        final_amount_cents: Charged amount (must equal base + tax - discount)

    Optional Attributes:
        booking_id/station_id: Booking references
        tax_amount_cents/discount_amount_cents: Pre-computed inputs
        currency: Defaults to SETTLEMENT_CURRENCY
        method_type/gateway: Payment instrument and processor
        card_type/bank_name/card_last4: Card variant only
        payment_id: External id override (generated when omitted)
        metadata: Client context (ip address, user agent, device, location)
    """

    user_id: uuid.UUID
    vendor_id: uuid.UUID
    base_amount_cents: int
    final_amount_cents: int

    booking_id: uuid.UUID | None = None
    station_id: uuid.UUID | None = None
    tax_amount_cents: int = 0
    discount_amount_cents: int = 0
    currency: str | None = None
    method_type: str = PaymentMethodType.UPI
    gateway: str = "razorpay"
    card_type: str | None = None
    bank_name: str | None = None
    card_last4: str | None = None
    payment_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Check amount arithmetic and the payment-method variant.

        Raises:
            InvalidAmountError: Negative amounts or final != base + tax - discount
            PaymentValidationError: Card details on a non-card method
        """
        amounts = {
            "base_amount_cents": self.base_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "final_amount_cents": self.final_amount_cents,
        }
        negative = {name: value for name, value in amounts.items() if value < 0}
        if negative:
            raise InvalidAmountError("Amounts cannot be negative", details=negative)

        expected = self.base_amount_cents + self.tax_amount_cents - self.discount_amount_cents
        if self.final_amount_cents != expected:
            raise InvalidAmountError(
                "final_amount_cents must equal base + tax - discount",
                details={"expected": expected, "provided": self.final_amount_cents},
            )

        has_card_details = any([self.card_type, self.bank_name, self.card_last4])
        if self.method_type != PaymentMethodType.CARD and has_card_details:
            raise PaymentValidationError(
                "Card details are only allowed for card payments",
                details={"method_type": self.method_type},
            )
        if self.card_last4 and not (len(self.card_last4) == 4 and self.card_last4.isdigit()):
            raise PaymentValidationError(
                "card_last4 must be four digits",
                details={"card_last4": self.card_last4},
            )


@dataclass
class GatewayEventParams:
    """
    One event delivered by the gateway adapter.

    Attributes:
        payment_id: External payment id
        event: GatewayEventType value
        at: When the gateway says it happened
        gateway_ids: Opaque ids to merge into transaction_details
            (gateway_payment_id, gateway_order_id, gateway_signature,
            ref_number, transaction_id)
        amount_cents: Captured amount, checked against final_amount_cents
        refund_id: Refund the event refers to (refund events only)
        refund_reference: Gateway refund reference (refund events only)
        reason: Failure/cancellation reason
    """

    payment_id: str
    event: str
    at: datetime
    gateway_ids: dict[str, str] = field(default_factory=dict)
    amount_cents: int | None = None
    refund_id: uuid.UUID | None = None
    refund_reference: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class DailySettlementBucket:
    """
    Derived partition of one vendor's revenue for one transaction date.

    Never persisted. The three parts always sum to total_to_be_received:

        payment_settled + in_settlement_process + pending_settlement
            == total_to_be_received

    Attributes:
        vendor_id: Vendor the bucket belongs to
        date: Transaction date (the payments' completed_at date)
        total_to_be_received: Sum of net amounts of payments completed on date
        payment_settled: Part claimed by SETTLED requests
        in_settlement_process: Part claimed by PENDING/PROCESSING requests
        pending_settlement: Unclaimed part
        refund_hold: Part of pending_settlement whose payments have a refund
            still pending; it cannot be claimed until the refund resolves
        payment_count: Number of payments in the bucket
        pending_payment_ids: Payments making up pending_settlement
    """

    vendor_id: uuid.UUID
    date: date
    total_to_be_received: int = 0
    payment_settled: int = 0
    in_settlement_process: int = 0
    pending_settlement: int = 0
    refund_hold: int = 0
    payment_count: int = 0
    pending_payment_ids: tuple[uuid.UUID, ...] = ()

    @property
    def claimable_settlement(self) -> int:
        return self.pending_settlement - self.refund_hold

    @property
    def needs_settlement(self) -> bool:
        return self.claimable_settlement > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor_id": str(self.vendor_id),
            "date": self.date.isoformat(),
            "total_to_be_received": self.total_to_be_received,
            "payment_settled": self.payment_settled,
            "in_settlement_process": self.in_settlement_process,
            "pending_settlement": self.pending_settlement,
            "refund_hold": self.refund_hold,
            "claimable_settlement": self.claimable_settlement,
            "payment_count": self.payment_count,
            "pending_payment_ids": [str(pk) for pk in self.pending_payment_ids],
            "needs_settlement": self.needs_settlement,
        }


@dataclass(frozen=True)
class PaymentStats:
    """
    Aggregated totals for dashboards.

    Amounts are minor units; avg_amount is rounded down to a whole unit.
    """

    count: int = 0
    total_amount: int = 0
    total_refunded: int = 0
    avg_amount: int = 0


@dataclass(frozen=True)
class DailyTotal:
    """Completed-payment totals for one calendar day."""

    date: date
    count: int
    total_amount: int
    total_refunded: int
    net_amount: int


@dataclass(frozen=True)
class VendorPendingSettlement:
    """A vendor with unclaimed revenue on a given date."""

    vendor_id: uuid.UUID
    date: date
    pending_settlement: int
    payment_count: int
