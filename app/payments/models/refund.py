"""
Refund model for tracking money returned to customers.

A Refund is owned by its Payment and is never deleted. Refunds are
appended as PENDING; the payment's totals and status change only when the
gateway confirms the refund (PENDING -> PROCESSED).

Usage:
    from payments.models import Refund

    refund = Refund.objects.create(
        payment=payment,
        amount_cents=400,
        reason="Customer requested cancellation",
        requested_at=now,
    )

    # After the gateway confirms
    refund.mark_processed(at=now, refund_reference="rfnd_123")
    refund.save()
"""

from __future__ import annotations

from datetime import datetime

from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from payments.state_machines import RefundStatus


class Refund(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Represents money returned to a customer from a payment.

    State Flow:
        PENDING -> PROCESSED
        PENDING -> FAILED

    Fields:
        payment: Payment being refunded (PROTECT - refunds are audit records)
        amount_cents: Refund amount in smallest currency unit
        reason: Why the refund was issued
        status: Current FSM state
        requested_at: When the refund was appended
        processed_at: When the gateway confirmed the refund
        failed_at: When the gateway reported failure
        refund_reference: Gateway refund reference
        failure_reason: Gateway failure details
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
        help_text="Payment being refunded",
    )

    # ==========================================================================
    # Amount & Details
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit",
    )

    reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Reason for the refund",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    requested_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the refund was requested",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway confirmed the refund",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway reported the refund failed",
    )

    # ==========================================================================
    # Gateway Info
    # ==========================================================================

    refund_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Gateway refund reference",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if refund failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        # Append order is the refund sequence of a payment
        ordering = ["requested_at", "created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment", "status"], name="payments_re_payment_7d4a92_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount_cents})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.PROCESSED,
    )
    def mark_processed(
        self,
        at: datetime | None = None,
        refund_reference: str | None = None,
    ):
        """
        Gateway confirmed the refund.

        Transition: PENDING -> PROCESSED

        The owning Payment must fold the amount into its totals in the
        same transaction (Payment.record_processed_refund).
        """
        self.processed_at = at or timezone.now()
        if refund_reference:
            self.refund_reference = refund_reference

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.FAILED,
    )
    def mark_failed(self, at: datetime | None = None, reason: str | None = None):
        """
        Gateway reported the refund failed.

        Transition: PENDING -> FAILED

        The payment is untouched; the amount becomes refundable again.
        """
        self.failed_at = at or timezone.now()
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        return self.status == RefundStatus.PENDING

    @property
    def is_processed(self) -> bool:
        return self.status == RefundStatus.PROCESSED
