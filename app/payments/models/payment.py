"""
Payment model: one record per charge attempt.

A Payment is created when the booking/order service starts a charge, is
advanced by gateway confirmations, and is never deleted. Refunds hang off
it as an append-only relation; the denormalised total_refunded_cents and
net_amount_cents columns are maintained in the same transaction that marks
a refund processed.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentStatus

    payment = Payment.objects.create(
        user_id=user_id,
        vendor_id=vendor_id,
        base_amount_cents=900,
        tax_amount_cents=100,
        final_amount_cents=1000,
        net_amount_cents=1000,
        initiated_at=now,
    )

    # State transitions using django-fsm
    payment.start_processing(at=now)  # pending -> processing
    payment.complete(at=now)          # processing -> completed
    payment.save()
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from payments.state_machines import (
    CardType,
    PaymentGateway,
    PaymentMethodType,
    PaymentSettlementStatus,
    PaymentStatus,
)


def generate_payment_id() -> str:
    """Return a new external payment id: ``PAY`` + 12 upper-case hex chars."""
    return f"PAY{uuid.uuid4().hex[:12].upper()}"


def default_currency() -> str:
    return settings.SETTLEMENT_CURRENCY


class Payment(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Ledger entry for a single charge attempt.

    Uses django-fsm for the status machine and the version column for
    optimistic concurrency. Amount columns are integer minor units.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED

    Failure Flow:
        PENDING/PROCESSING -> FAILED
        PENDING/PROCESSING -> CANCELLED

    Refund Flow (driven by processed refunds):
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED
        COMPLETED/PARTIALLY_REFUNDED -> REFUNDED

    Fields:
        payment_id: Immutable external identifier
        booking_id/user_id/vendor_id/station_id: Opaque references owned
            by other subsystems (never foreign keys)
        *_amount_cents: base + tax - discount = final
        method_type/gateway: Payment instrument and processor
        card_type/bank_name/card_last4: Card variant details
        transaction_id/transaction_details: Gateway-issued identifiers
        status: Current FSM state
        *_at: Lifecycle timestamps, each set at most once
        total_refunded_cents: Sum of processed refunds
        net_amount_cents: final - total_refunded, never negative
        settlement_status/settlement_request: Current settlement claim
        metadata: Client context (ip address, user agent, device, location)
        notes: Free-form admin/vendor/system notes

    Note:
        Lifecycle timestamps come from an explicit clock argument on each
        transition so histories can be constructed deterministically.
    """

    # ==========================================================================
    # Identity & References
    # ==========================================================================

    payment_id = models.CharField(
        max_length=32,
        unique=True,
        default=generate_payment_id,
        editable=False,
        help_text="External payment id (PAYXXXXXXXXXXXX), immutable",
    )

    booking_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Booking this payment belongs to (owned by booking service)",
    )

    user_id = models.UUIDField(
        db_index=True,
        help_text="Paying customer (owned by the accounts service)",
    )

    vendor_id = models.UUIDField(
        db_index=True,
        help_text="Vendor receiving settlement for this payment",
    )

    station_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Charging station the booking was made at",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    base_amount_cents = models.PositiveBigIntegerField(
        help_text="Pre-tax, pre-discount amount in smallest currency unit",
    )

    tax_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Pre-computed tax in smallest currency unit",
    )

    discount_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Pre-computed discount in smallest currency unit",
    )

    final_amount_cents = models.PositiveBigIntegerField(
        help_text="Charged amount: base + tax - discount",
    )

    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Payment Method
    # ==========================================================================

    method_type = models.CharField(
        max_length=20,
        choices=PaymentMethodType.choices,
        default=PaymentMethodType.UPI,
        help_text="Payment instrument",
    )

    gateway = models.CharField(
        max_length=20,
        choices=PaymentGateway.choices,
        default=PaymentGateway.RAZORPAY,
        help_text="Gateway that processed the charge",
    )

    card_type = models.CharField(
        max_length=10,
        choices=CardType.choices,
        null=True,
        blank=True,
        help_text="Credit or debit (card payments only)",
    )

    bank_name = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Issuing bank (card payments only)",
    )

    card_last4 = models.CharField(
        max_length=4,
        null=True,
        blank=True,
        help_text="Last four digits of the card (card payments only)",
    )

    # ==========================================================================
    # Gateway Transaction
    # ==========================================================================

    transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway transaction reference",
    )

    transaction_details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Opaque gateway ids (gateway_payment_id, gateway_order_id, ...)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment (managed by FSM)",
    )

    # ==========================================================================
    # Lifecycle Timestamps
    # ==========================================================================

    initiated_at = models.DateTimeField(
        help_text="When the charge attempt started",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway authorized the charge",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the charge was captured; defines the settlement date",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge failed",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge was cancelled",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the first refund was processed (full or partial)",
    )

    # ==========================================================================
    # Refund Totals (denormalised, maintained transactionally)
    # ==========================================================================

    total_refunded_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Sum of processed refunds",
    )

    net_amount_cents = models.PositiveBigIntegerField(
        help_text="final_amount_cents - total_refunded_cents",
    )

    # ==========================================================================
    # Settlement Claim
    # ==========================================================================

    settlement_status = models.CharField(
        max_length=10,
        choices=PaymentSettlementStatus.choices,
        default=PaymentSettlementStatus.NONE,
        db_index=True,
        help_text="Whether a settlement request currently claims this payment",
    )

    settlement_request = models.ForeignKey(
        "payments.SettlementRequest",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
        help_text="Settlement request holding the claim, if any",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Client context: ip_address, user_agent, device_info, location",
    )

    notes = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form notes keyed by author (admin, vendor, system)",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway failure or cancellation reason",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["vendor_id", "completed_at"], name="payments_pa_vendor__5e2d18_idx"),
            models.Index(fields=["status", "completed_at"], name="payments_pa_status_a07c3f_idx"),
            models.Index(
                fields=["vendor_id", "settlement_status"],
                name="payments_pa_vendor__93bb41_idx",
            ),
            models.Index(fields=["user_id", "created_at"], name="payments_pa_user_id_6c1f0e_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    final_amount_cents=(
                        F("base_amount_cents")
                        + F("tax_amount_cents")
                        - F("discount_amount_cents")
                    )
                ),
                name="payment_final_amount_arithmetic",
            ),
            models.CheckConstraint(
                condition=Q(total_refunded_cents__lte=F("final_amount_cents")),
                name="payment_refunds_within_final",
            ),
            models.CheckConstraint(
                condition=Q(
                    net_amount_cents=F("final_amount_cents") - F("total_refunded_cents")
                ),
                name="payment_net_amount_arithmetic",
            ),
            models.CheckConstraint(
                condition=(
                    Q(
                        settlement_status=PaymentSettlementStatus.NONE,
                        settlement_request__isnull=True,
                    )
                    | Q(
                        settlement_status__in=[
                            PaymentSettlementStatus.CLAIMED,
                            PaymentSettlementStatus.SETTLED,
                        ],
                        settlement_request__isnull=False,
                    )
                ),
                name="payment_settlement_tag_consistent",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with payment id, status and amount."""
        amount_display = f"{self.final_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Payment({self.payment_id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def start_processing(self, at: datetime | None = None):
        """
        Gateway authorized the charge.

        Transition: PENDING -> PROCESSING
        """
        self.processed_at = at or timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.PROCESSING,
        target=PaymentStatus.COMPLETED,
    )
    def complete(self, at: datetime | None = None):
        """
        Gateway captured the charge.

        Transition: PROCESSING -> COMPLETED

        completed_at becomes the payment's permanent settlement bucket key.
        """
        self.completed_at = at or timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def fail(self, at: datetime | None = None, reason: str | None = None):
        """
        Mark payment as failed.

        Transition: PENDING/PROCESSING -> FAILED
        """
        self.failed_at = at or timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self, at: datetime | None = None, reason: str | None = None):
        """
        Cancel the payment before capture.

        Transition: PENDING/PROCESSING -> CANCELLED

        Once completed a payment can only be refunded.
        """
        self.cancelled_at = at or timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self, at: datetime | None = None):
        """
        Mark as partially refunded.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED
        """
        if self.refunded_at is None:
            self.refunded_at = at or timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.REFUNDED,
    )
    def refund_full(self, at: datetime | None = None):
        """
        Mark as fully refunded.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED

        Called when a processed refund brings net_amount_cents to zero.
        """
        if self.refunded_at is None:
            self.refunded_at = at or timezone.now()

    # ==========================================================================
    # Ledger Helpers
    # ==========================================================================

    def record_processed_refund(self, amount_cents: int, at: datetime | None = None) -> None:
        """
        Fold a processed refund into the running totals and status.

        Does not save - caller must save inside the same transaction that
        marks the refund processed.
        """
        self.total_refunded_cents += amount_cents
        self.net_amount_cents = self.final_amount_cents - self.total_refunded_cents
        if self.net_amount_cents == 0:
            self.refund_full(at=at)
        else:
            self.refund_partial(at=at)

    def lifecycle_timestamps(self) -> list[datetime]:
        """Lifecycle timestamps already recorded, in lifecycle order."""
        candidates = [
            self.initiated_at,
            self.processed_at,
            self.completed_at,
            self.failed_at,
            self.cancelled_at,
            self.refunded_at,
        ]
        return [ts for ts in candidates if ts is not None]

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_card(self) -> bool:
        return self.method_type == PaymentMethodType.CARD

    @property
    def can_be_refunded(self) -> bool:
        """
        Whether a further refund may be requested.

        Partially refunded payments with remaining balance stay refundable.
        Once claimed for settlement the amount is committed to a payout and
        the payment stops accepting refunds.
        """
        return (
            self.status in [PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED]
            and self.net_amount_cents > 0
            and self.settlement_status == PaymentSettlementStatus.NONE
        )

    @property
    def settlement_tag(self) -> str:
        """Render the claim tag: ``none``, ``claimed:<id>`` or ``settled:<id>``."""
        if self.settlement_status == PaymentSettlementStatus.NONE:
            return PaymentSettlementStatus.NONE.value
        return f"{self.settlement_status}:{self.settlement_request_id}"

    def summary(self) -> dict[str, Any]:
        """
        Compact view for receipts and merchant dashboards.

        Returns:
            Dict with ids, amounts (minor units), status and method
        """
        return {
            "payment_id": self.payment_id,
            "amount_cents": self.final_amount_cents,
            "currency": self.currency,
            "status": self.status,
            "method": self.method_type,
            "gateway": self.gateway,
            "transaction_id": self.transaction_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "total_refunded_cents": self.total_refunded_cents,
            "net_amount_cents": self.net_amount_cents,
            "settlement": self.settlement_tag,
        }
