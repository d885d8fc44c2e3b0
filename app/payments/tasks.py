"""
Celery tasks for gateway event processing.

This module provides async tasks for:
- Applying stored gateway events to the ledger
- Retrying failed or never-queued gateway events

Settlement tasks live in payments.workers.settlement_executor.

Usage:
    from payments.tasks import process_gateway_event

    # Queue a stored event for async processing
    process_gateway_event.delay(str(gateway_event.id))

    # Re-queue failed events (typically via celery-beat)
    from payments.tasks import retry_failed_gateway_events
    retry_failed_gateway_events.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from payments.models import GatewayEvent
from payments.state_machines import GatewayEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Events left PENDING this long were never queued (broker outage)
UNQUEUED_THRESHOLD_MINUTES = 5

# Events re-queued per retry run
RETRY_BATCH_SIZE = 100


# =============================================================================
# Gateway Event Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_gateway_event(self, gateway_event_id: str) -> dict:
    """
    Apply a stored gateway event to the ledger.

    This task:
    1. Loads the GatewayEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler for its type
    5. Marks as processed or failed

    A handler failure (e.g. an out-of-order INVALID_TRANSITION) marks the
    event FAILED without raising; retry_failed_gateway_events re-queues it.
    Unexpected exceptions are re-raised for Celery's retry with backoff.

    Args:
        gateway_event_id: UUID of the GatewayEvent to process

    Returns:
        Dict with processing result status
    """
    from payments.webhooks.handlers import dispatch_gateway_event

    if isinstance(gateway_event_id, str):
        gateway_event_id = UUID(gateway_event_id)

    try:
        gateway_event = GatewayEvent.objects.get(id=gateway_event_id)
    except GatewayEvent.DoesNotExist:
        logger.error(
            "GatewayEvent not found",
            extra={"stored_event_id": str(gateway_event_id)},
        )
        return {"status": "not_found", "gateway_event_id": str(gateway_event_id)}

    if gateway_event.is_processed:
        logger.info(
            "GatewayEvent already processed, skipping",
            extra={"gateway_event_id": gateway_event.event_id},
        )
        return {
            "status": "already_processed",
            "gateway_event_id": str(gateway_event_id),
        }

    gateway_event.mark_processing()
    gateway_event.save()

    try:
        result = dispatch_gateway_event(gateway_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        gateway_event.mark_failed(error_msg)
        gateway_event.save()

        logger.exception(
            "Gateway event processing failed with exception",
            extra={"gateway_event_id": gateway_event.event_id, "error": error_msg},
        )
        raise

    if result.success:
        gateway_event.mark_processed()
        gateway_event.save()
        logger.info(
            "Gateway event processed successfully",
            extra={
                "gateway_event_id": gateway_event.event_id,
                "payment_id": gateway_event.payment_id,
            },
        )
        return {
            "status": "processed",
            "gateway_event_id": str(gateway_event_id),
            "event_id": gateway_event.event_id,
        }

    error_msg = result.error or "Handler returned failure"
    gateway_event.mark_failed(f"{result.error_code}: {error_msg}")
    gateway_event.save()
    logger.warning(
        f"Gateway event handler failed: {error_msg}",
        extra={
            "gateway_event_id": gateway_event.event_id,
            "payment_id": gateway_event.payment_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "gateway_event_id": str(gateway_event_id),
        "error": error_msg,
        "error_code": result.error_code,
    }


@shared_task
def retry_failed_gateway_events() -> dict:
    """
    Periodic task to re-queue gateway events that did not apply.

    Picks up FAILED events under the retry limit, and PENDING events that
    were stored but never queued.

    Returns:
        Dict with count of events queued for retry
    """
    unqueued_before = timezone.now() - timedelta(minutes=UNQUEUED_THRESHOLD_MINUTES)
    events = GatewayEvent.objects.filter(
        Q(
            status=GatewayEventStatus.FAILED,
            retry_count__lt=settings.PAYMENT_GATEWAY_EVENT_MAX_RETRIES,
        )
        | Q(status=GatewayEventStatus.PENDING, created_at__lt=unqueued_before)
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for gateway_event in events:
        try:
            process_gateway_event.delay(str(gateway_event.id))
            queued_count += 1
            logger.info(
                "Queued gateway event for retry",
                extra={
                    "gateway_event_id": gateway_event.event_id,
                    "retry_count": gateway_event.retry_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to queue gateway event for retry: {e}",
                extra={"gateway_event_id": gateway_event.event_id},
            )

    logger.info(
        f"Queued {queued_count} gateway events for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}
