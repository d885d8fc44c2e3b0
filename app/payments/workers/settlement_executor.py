"""
Settlement executor worker for vendor payouts.

This module provides Celery tasks that move settlement requests forward
without an operator.

Tasks:
- schedule_daily_settlements: Nightly task that files NORMAL requests for
  yesterday's pending revenue of every vendor
- process_pending_settlements: Periodic task that scans PENDING requests
  and queues one pickup task per request
- begin_single_settlement: Moves one request to PROCESSING under a
  distributed lock

Completing or failing a request stays an operator action (the bank
transfer happens outside this system).

Usage:
    # Typically called via celery-beat schedule
    from payments.workers import process_pending_settlements, schedule_daily_settlements

    schedule_daily_settlements.delay()
    process_pending_settlements.delay()

    # Pick up a specific request
    begin_single_settlement.delay(str(request.id))
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock
from payments.models import SettlementRequest
from payments.state_machines import SettlementRequestStatus, SettlementRequestType

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum requests to queue per scan
BATCH_SIZE = 100


# =============================================================================
# Periodic Task: File Nightly Requests
# =============================================================================


@shared_task(bind=True)
def schedule_daily_settlements(self, transaction_date: str | None = None) -> dict:
    """
    File NORMAL settlement requests for one transaction date.

    Defaults to yesterday in the SETTLEMENT_TIMEZONE calendar. Vendors
    whose pending amount was already claimed by an urgent request are
    skipped naturally (nothing pending).

    Args:
        transaction_date: ISO date to settle instead of yesterday

    Returns:
        Dict with created/failed counts, or status "disabled"
    """
    from payments.services import AggregationReporter, SettlementCoordinator
    from payments.services.bucket_calculator import SettlementBucketCalculator

    if not settings.NORMAL_SETTLEMENT_ENABLED:
        logger.info("Normal settlements disabled, skipping nightly scheduling")
        return {"status": "disabled"}

    if transaction_date:
        day = date.fromisoformat(transaction_date)
    else:
        tz = SettlementBucketCalculator.settlement_timezone()
        day = timezone.localtime(timezone.now(), tz).date() - timedelta(days=1)

    logger.info(
        "Scheduling normal settlements",
        extra={"transaction_date": day.isoformat()},
    )

    vendors = AggregationReporter.vendors_with_pending_settlements(day).data or []

    created_count = 0
    failed_count = 0
    for row in vendors:
        result = SettlementCoordinator.request_settlement(
            row.vendor_id,
            day,
            requested_amount_cents=None,
            request_type=SettlementRequestType.NORMAL,
            reason="Scheduled daily settlement",
        )
        if result.success:
            created_count += 1
        else:
            failed_count += 1
            logger.warning(
                f"Could not file normal settlement: {result.error}",
                extra={
                    "vendor_id": str(row.vendor_id),
                    "transaction_date": day.isoformat(),
                    "error_code": result.error_code,
                },
            )

    logger.info(
        f"Normal settlement scheduling complete: {created_count} created",
        extra={
            "transaction_date": day.isoformat(),
            "created_count": created_count,
            "failed_count": failed_count,
        },
    )
    return {
        "status": "scheduled",
        "transaction_date": day.isoformat(),
        "created_count": created_count,
        "failed_count": failed_count,
    }


# =============================================================================
# Periodic Task: Scan for Pending Requests
# =============================================================================


@shared_task(bind=True)
def process_pending_settlements(self) -> dict:
    """
    Scan for PENDING settlement requests and queue pickup tasks.

    Oldest requests first, at most BATCH_SIZE per run.

    Returns:
        Dict with:
        - queued_count: Number of requests queued

    Note:
        Idempotent. begin_single_settlement takes a per-request lock and
        the transition itself is a no-op on a request already processing.
    """
    logger.info("Starting pending settlement scan")

    pending_ids = list(
        SettlementRequest.objects.filter(status=SettlementRequestStatus.PENDING)
        .order_by("requested_at", "created_at")
        .values_list("id", flat=True)[:BATCH_SIZE]
    )

    queued_count = 0
    for request_id in pending_ids:
        try:
            begin_single_settlement.delay(str(request_id))
            queued_count += 1
        except Exception as e:
            logger.error(
                f"Failed to queue settlement request: {e}",
                extra={"settlement_request_id": str(request_id)},
            )

    logger.info(
        f"Pending settlement scan complete: queued {queued_count} requests",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Individual Pickup Task
# =============================================================================


@shared_task(bind=True, acks_late=True)
def begin_single_settlement(self, request_id: str) -> dict:
    """
    Move one settlement request to PROCESSING.

    Args:
        request_id: UUID of the SettlementRequest

    Returns:
        Dict with status: "processing", "lock_failed", "not_found" or
        "failed" (with error_code)
    """
    from payments.services import SettlementCoordinator

    try:
        request_uuid = UUID(str(request_id))
    except ValueError:
        logger.error(f"Invalid settlement request id format: {request_id}")
        return {"status": "not_found", "request_id": request_id}

    try:
        with DistributedLock.for_settlement_request(request_uuid):
            result = SettlementCoordinator.begin_processing(request_uuid)
    except LockAcquisitionError:
        logger.info(
            "Settlement request held by another worker",
            extra={"settlement_request_id": str(request_uuid)},
        )
        return {"status": "lock_failed", "request_id": str(request_uuid)}

    if result.success:
        return {"status": "processing", "request_id": str(request_uuid)}

    status = "not_found" if result.error_code == "SETTLEMENT_REQUEST_NOT_FOUND" else "failed"
    return {
        "status": status,
        "request_id": str(request_uuid),
        "error": result.error,
        "error_code": result.error_code,
    }
