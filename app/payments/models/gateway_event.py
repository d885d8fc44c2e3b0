"""
GatewayEvent model for payment-gateway event tracking.

Stores every signed event received from the gateway adapter for idempotent
processing and audit trails. The unique event_id constraint ensures
duplicate deliveries are detected and handled correctly.

Usage:
    from payments.models import GatewayEvent
    from payments.state_machines import GatewayEventStatus

    event, created = GatewayEvent.objects.get_or_create(
        event_id="evt_123",
        defaults={
            "event_type": "captured",
            "payment_id": "PAY0A1B2C3D4E5F",
            "payload": body,
        },
    )

    if not created and event.is_processed:
        # Duplicate delivery - already applied to the ledger
        return HttpResponse(status=200)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import GatewayEventStatus, GatewayEventType


class GatewayEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks gateway events for idempotent processing.

    Processing Flow:
        1. Event arrives, verify HMAC signature
        2. Insert/get GatewayEvent with event_id
        3. If exists and PROCESSED -> return 200 (duplicate)
        4. If exists and PROCESSING -> return 200 (in progress)
        5. Queue process_gateway_event
        6. Task applies the event to the ledger
        7. Set status to PROCESSED or FAILED
        8. If FAILED, retry_failed_gateway_events picks it up later

    Fields:
        event_id: Gateway event id, unique for idempotency
        event_type: One of GatewayEventType
        payment_id: External id of the payment the event refers to
        payload: Full JSON body as delivered
        status: Processing status
        processed_at: When the event was applied to the ledger
        error_message: Error details if processing failed
        retry_count: Number of processing attempts

    Note:
        Ledger operations are themselves idempotent, so re-applying a
        PROCESSED event would not change state; the status check only
        avoids the extra work.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Gateway event id - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=32,
        choices=GatewayEventType.choices,
        db_index=True,
        help_text="Gateway event type",
    )

    payment_id = models.CharField(
        max_length=32,
        db_index=True,
        help_text="External payment id the event refers to",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full event body as delivered",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=GatewayEventStatus.choices,
        default=GatewayEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Gateway Event"
        verbose_name_plural = "Gateway Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payments_ga_status_2b7c40_idx"),
            models.Index(fields=["status", "retry_count"], name="payments_ga_status_e91a3d_idx"),
        ]

    def __str__(self) -> str:
        return f"GatewayEvent({self.event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == GatewayEventStatus.PROCESSED

    @property
    def is_processing(self) -> bool:
        return self.status == GatewayEventStatus.PROCESSING

    @property
    def is_failed(self) -> bool:
        return self.status == GatewayEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Check if event can be retried (failed with retry count < max)."""
        return self.is_failed and self.retry_count < settings.PAYMENT_GATEWAY_EVENT_MAX_RETRIES

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = GatewayEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = GatewayEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = GatewayEventStatus.FAILED
        self.error_message = error_message
