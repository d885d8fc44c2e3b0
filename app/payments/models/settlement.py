"""
Settlement models: payout requests to vendors and the per-day claim cursor.

SettlementRequest records a batch of payments claimed for payout to a
vendor, always scoped to the calendar date the payments were completed on.
SettlementCursor is a one-row-per-(vendor, date) record whose version is
compare-and-swapped by every claim, so two concurrent claims for the same
day cannot both succeed.

Usage:
    from payments.models import SettlementCursor, SettlementRequest

    cursor, _ = SettlementCursor.objects.get_or_create(
        vendor_id=vendor_id,
        transaction_date=date(2025, 1, 10),
    )

    request = SettlementRequest.objects.create(
        vendor_id=vendor_id,
        transaction_date=date(2025, 1, 10),
        requested_at=now,
        request_type=SettlementRequestType.URGENT,
        claimed_payment_ids=[str(p.id) for p in payments],
        claimed_amount_cents=600,
    )

    request.begin_processing(at=now)  # pending -> processing
    request.settle(at=now)            # processing -> settled
    request.save()
"""

from __future__ import annotations

import uuid
from datetime import datetime

from django.db import models
from django.db.models import Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from payments.state_machines import SettlementRequestStatus, SettlementRequestType


def generate_settlement_id() -> str:
    """Return a human-readable settlement id: ``STL`` + timestamp + 4 chars."""
    return f"STL{timezone.now():%Y%m%d%H%M%S}{uuid.uuid4().hex[:4].upper()}"


class SettlementRequest(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A claim on a vendor's pending payments for one transaction date.

    Forward-only lifecycle. Requests are never deleted; failed requests are
    kept for audit and their payments released back to pending.

    State Flow:
        PENDING -> PROCESSING -> SETTLED

    Compensation Flow:
        PENDING/PROCESSING -> FAILED

    Fields:
        settlement_id: Human-readable identifier shown to merchants
        vendor_id: Vendor being paid
        transaction_date: Date of the payments covered (immutable)
        requested_at: When the request was filed
        request_type: NORMAL (scheduled) or URGENT (on demand)
        claimed_payment_ids: Payment UUIDs claimed at creation (fixed)
        claimed_amount_cents: Sum of their net amounts at claim time
        status: Current FSM state
        processing_started_at/processed_at/failed_at: Lifecycle timestamps
        reason: Requester's note
        payment_reference/processing_notes: Operator completion data
        failure_reason: Why the request failed
        metadata: Request context (requested date, is_past_date flag)

    Note:
        A payment id appears in at most one non-failed request. The claim
        step enforces this; see SettlementCoordinator.
    """

    # ==========================================================================
    # Identity & Scope
    # ==========================================================================

    settlement_id = models.CharField(
        max_length=40,
        unique=True,
        default=generate_settlement_id,
        editable=False,
        help_text="Human-readable settlement id (STL...)",
    )

    vendor_id = models.UUIDField(
        db_index=True,
        help_text="Vendor receiving the payout",
    )

    transaction_date = models.DateField(
        db_index=True,
        help_text="Calendar date of the claimed payments (immutable)",
    )

    requested_at = models.DateTimeField(
        help_text="When the request was filed",
    )

    request_type = models.CharField(
        max_length=10,
        choices=SettlementRequestType.choices,
        default=SettlementRequestType.URGENT,
        help_text="NORMAL (nightly) or URGENT (merchant initiated)",
    )

    # ==========================================================================
    # Claim
    # ==========================================================================

    claimed_payment_ids = models.JSONField(
        default=list,
        help_text="UUIDs of the payments claimed at creation",
    )

    claimed_amount_cents = models.PositiveBigIntegerField(
        help_text="Sum of claimed payments' net amounts at claim time",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SettlementRequestStatus.PENDING,
        choices=SettlementRequestStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the request (managed by FSM)",
    )

    processing_started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When an operator or worker picked the request up",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payout was confirmed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the request was failed",
    )

    # ==========================================================================
    # Notes & Operator Data
    # ==========================================================================

    reason = models.TextField(
        blank=True,
        default="",
        help_text="Requester's note",
    )

    payment_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Bank/transfer reference recorded on completion",
    )

    processing_notes = models.TextField(
        blank=True,
        default="",
        help_text="Operator notes recorded on completion",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Why the request failed",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Request context (requested_date, is_past_date)",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-requested_at", "-created_at"]
        verbose_name = "Settlement Request"
        verbose_name_plural = "Settlement Requests"
        indexes = [
            models.Index(
                fields=["vendor_id", "transaction_date"],
                name="payments_se_vendor__c1a5e2_idx",
            ),
            models.Index(fields=["vendor_id", "status"], name="payments_se_vendor__8d03b7_idx"),
            models.Index(fields=["status", "requested_at"], name="payments_se_status_4f9e61_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(claimed_amount_cents__gt=0),
                name="settlement_request_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"SettlementRequest({self.settlement_id}, {self.transaction_date}, "
            f"{self.status}, {self.claimed_amount_cents})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SettlementRequestStatus.PENDING,
        target=SettlementRequestStatus.PROCESSING,
    )
    def begin_processing(self, at: datetime | None = None):
        """
        Operator or worker picked up the request.

        Transition: PENDING -> PROCESSING
        """
        self.processing_started_at = at or timezone.now()

    @transition(
        field=status,
        source=SettlementRequestStatus.PROCESSING,
        target=SettlementRequestStatus.SETTLED,
    )
    def settle(
        self,
        at: datetime | None = None,
        payment_reference: str = "",
        processing_notes: str = "",
    ):
        """
        Payout confirmed.

        Transition: PROCESSING -> SETTLED

        Claimed payments must be tagged settled in the same transaction.
        """
        self.processed_at = at or timezone.now()
        self.payment_reference = payment_reference or ""
        self.processing_notes = processing_notes or ""

    @transition(
        field=status,
        source=[SettlementRequestStatus.PENDING, SettlementRequestStatus.PROCESSING],
        target=SettlementRequestStatus.FAILED,
    )
    def fail(self, at: datetime | None = None, reason: str | None = None):
        """
        Abandon the request.

        Transition: PENDING/PROCESSING -> FAILED

        Claimed payments must be released in the same transaction.
        """
        self.failed_at = at or timezone.now()
        self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_open(self) -> bool:
        """Whether the request still holds its claimed payments."""
        return self.status in SettlementRequestStatus.open()


class SettlementCursor(BaseModel):
    """
    Compare-and-swap anchor for claims on one (vendor, transaction date).

    Every successful claim increments version with a conditional UPDATE
    (``WHERE version = <observed>``). A claim that observed an older
    version updates zero rows and is rejected as a concurrent claim.
    Released requests and refund changes on the day's payments bump the
    version too, so claims never act on a bucket they did not see.

    Fields:
        vendor_id: Vendor the cursor belongs to
        transaction_date: Transaction date the cursor guards
        version: Bumped by claims, releases and refund changes for this pair
        last_claimed_at: When the most recent claim committed
    """

    vendor_id = models.UUIDField(
        help_text="Vendor the cursor belongs to",
    )

    transaction_date = models.DateField(
        help_text="Transaction date the cursor guards",
    )

    version = models.PositiveIntegerField(
        default=0,
        help_text="Bumped by every successful claim",
    )

    last_claimed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent claim committed",
    )

    class Meta:
        verbose_name = "Settlement Cursor"
        verbose_name_plural = "Settlement Cursors"
        constraints = [
            models.UniqueConstraint(
                fields=["vendor_id", "transaction_date"],
                name="settlement_cursor_unique_vendor_date",
            ),
        ]

    def __str__(self) -> str:
        return f"SettlementCursor({self.vendor_id}, {self.transaction_date}, v{self.version})"
