"""
Settlement coordinator: claims a vendor's pending revenue for payout.

This module provides the SettlementCoordinator class which turns the
pending slice of a DailySettlementBucket into a SettlementRequest and
drives the request through its lifecycle.

Claim protocol:
    1. Read the (vendor, date) SettlementCursor version
    2. Recompute the bucket; reject if nothing is claimable or the caller's
       amount differs from the claimable amount (pending minus payments
       whose refund is still pending)
    3. In one transaction: compare-and-swap the cursor version, re-read the
       claimable payments, insert the request and tag them with a
       conditional UPDATE
    4. Any mismatch rolls the whole claim back as CONCURRENT_CLAIM

Two claims for the same day can therefore never both succeed, and a
payment is held by at most one open request.

Refunds bump the same cursor, and claimed payments refuse refunds, so the
amount a request holds never exceeds what its payments are still worth.

Usage:
    from payments.services import SettlementCoordinator

    result = SettlementCoordinator.request_urgent_settlement(
        vendor_id=vendor_id,
        day=date(2025, 1, 10),
        requested_amount_cents=600,
        reason="Weekend cash flow",
    )
    if result.success:
        request = result.data
    elif result.error_code == "AMOUNT_MISMATCH":
        refresh(result.details["calculated"])

    # Operator side
    SettlementCoordinator.begin_processing(request.id)
    SettlementCoordinator.complete_settlement(request.id, payment_reference="UTR123")
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime

from django.db.models import F, QuerySet
from django.utils import timezone

from django_fsm import can_proceed

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from payments.exceptions import (
    AmountMismatchError,
    ConcurrentClaimError,
    InvalidAmountError,
    InvalidSettlementStateError,
    NothingToSettleError,
    PaymentValidationError,
    SettlementRequestNotFoundError,
    StaleRecordError,
    log_level_for,
)
from payments.locks import compare_and_swap_version
from payments.models import Payment, SettlementCursor, SettlementRequest
from payments.services.bucket_calculator import SettlementBucketCalculator
from payments.state_machines import (
    PaymentSettlementStatus,
    RefundStatus,
    SettlementRequestStatus,
    SettlementRequestType,
)

logger = logging.getLogger(__name__)


class SettlementCoordinator(BaseService):
    """
    Creates and advances settlement requests.

    State Machine (enforced by django-fsm on SettlementRequest):
        PENDING -> PROCESSING -> SETTLED
        PENDING/PROCESSING -> FAILED (claimed payments released)

    Concurrency:
        Claims for one (vendor, date) are serialized by the SettlementCursor
        version. Lifecycle operations lock the request row.
    """

    # =========================================================================
    # Claiming
    # =========================================================================

    @classmethod
    def request_urgent_settlement(
        cls,
        vendor_id: uuid.UUID,
        day: date,
        requested_amount_cents: int,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[SettlementRequest]:
        """
        Merchant-initiated claim of a day's pending revenue.

        Args:
            vendor_id: Vendor requesting payout
            day: Transaction date to settle
            requested_amount_cents: The claimable amount the merchant saw;
                must equal the freshly computed claimable amount
            reason: Merchant's note
            now: Clock value for requested_at

        Returns:
            ServiceResult with the created SettlementRequest, or a failure
            with NOTHING_TO_SETTLE / AMOUNT_MISMATCH / CONCURRENT_CLAIM
        """
        return cls.request_settlement(
            vendor_id,
            day,
            requested_amount_cents=requested_amount_cents,
            request_type=SettlementRequestType.URGENT,
            reason=reason,
            now=now,
        )

    @classmethod
    def request_settlement(
        cls,
        vendor_id: uuid.UUID,
        day: date,
        requested_amount_cents: int | None = None,
        request_type: str = SettlementRequestType.URGENT,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[SettlementRequest]:
        """
        Shared claim path for urgent and scheduled (normal) requests.

        requested_amount_cents=None claims whatever is claimable; the nightly
        scheduler uses this. Otherwise it must match the claimable amount.
        """
        now = now or timezone.now()
        extra = {
            "vendor_id": str(vendor_id),
            "transaction_date": day.isoformat() if day else None,
            "request_type": str(request_type),
        }
        try:
            request = cls._claim(
                vendor_id,
                day,
                requested_amount_cents,
                request_type=request_type,
                reason=reason,
                now=now,
            )
        except BaseApplicationError as e:
            return cls.handle_exception(
                e, "request_settlement", log_level=log_level_for(e), extra=extra
            )

        cls.get_logger().info(
            "Settlement request created",
            extra={
                **extra,
                "settlement_request_id": str(request.id),
                "claimed_amount_cents": request.claimed_amount_cents,
                "payment_count": len(request.claimed_payment_ids),
            },
        )
        return ServiceResult.success(request)

    @classmethod
    def _claim(
        cls,
        vendor_id: uuid.UUID,
        day: date,
        requested_amount_cents: int | None,
        request_type: str,
        reason: str,
        now: datetime,
    ) -> SettlementRequest:
        if vendor_id is None or day is None:
            raise PaymentValidationError(
                "vendor_id and date are required",
                details={
                    "vendor_id": str(vendor_id) if vendor_id else None,
                    "date": day.isoformat() if day else None,
                },
            )
        if requested_amount_cents is not None and requested_amount_cents < 0:
            raise InvalidAmountError(
                "Requested amount cannot be negative",
                details={"provided": requested_amount_cents},
            )

        # The observed version must be read before the bucket so that any
        # claim or refund committing in between is detected by the swap below.
        cursor, _ = SettlementCursor.objects.get_or_create(
            vendor_id=vendor_id,
            transaction_date=day,
        )
        observed_version = cursor.version

        bucket = SettlementBucketCalculator.build_bucket(vendor_id, day)
        claimable = bucket.claimable_settlement

        if claimable <= 0:
            raise NothingToSettleError(
                "No pending amount to settle for this date",
                details={
                    "vendor_id": str(vendor_id),
                    "date": day.isoformat(),
                    "total_to_be_received": bucket.total_to_be_received,
                    "refund_hold": bucket.refund_hold,
                },
            )

        if requested_amount_cents is not None and requested_amount_cents != claimable:
            raise AmountMismatchError(
                "Amount mismatch. Please refresh and try again.",
                details={
                    "calculated": claimable,
                    "provided": requested_amount_cents,
                    "refund_hold": bucket.refund_hold,
                },
            )

        tz = SettlementBucketCalculator.settlement_timezone()
        today = timezone.localtime(now, tz).date()

        try:
            with cls.atomic():
                # Refunds bump the same cursor, so once the swap succeeds no
                # refund can land on this day's payments until we commit.
                compare_and_swap_version(
                    SettlementCursor,
                    cursor.pk,
                    observed_version,
                    last_claimed_at=now,
                )

                candidates = cls._pending_payments(vendor_id, day)
                candidate_total = sum(net for _, net in candidates)
                if not candidates or candidate_total != claimable:
                    raise ConcurrentClaimError(
                        "Pending payments changed while claiming. Please retry.",
                        details={"calculated": claimable, "claimable": candidate_total},
                    )
                payment_ids = [pk for pk, _ in candidates]

                request = SettlementRequest.objects.create(
                    vendor_id=vendor_id,
                    transaction_date=day,
                    requested_at=now,
                    request_type=request_type,
                    claimed_payment_ids=[str(pk) for pk in payment_ids],
                    claimed_amount_cents=candidate_total,
                    reason=reason or "",
                    metadata={
                        "requested_date": today.isoformat(),
                        "is_past_date": day < today,
                    },
                )

                tagged = (
                    Payment.objects.filter(
                        pk__in=payment_ids,
                        settlement_request__isnull=True,
                        settlement_status=PaymentSettlementStatus.NONE,
                    )
                    .exclude(refunds__status=RefundStatus.PENDING)
                    .update(
                        settlement_request=request,
                        settlement_status=PaymentSettlementStatus.CLAIMED,
                        version=F("version") + 1,
                        updated_at=now,
                    )
                )
                if tagged != len(payment_ids):
                    raise ConcurrentClaimError(
                        "Some payments were claimed by another request. Please retry.",
                        details={"expected": len(payment_ids), "claimed": tagged},
                    )
        except StaleRecordError as e:
            raise ConcurrentClaimError(
                "Another settlement request for this date was created. Please retry.",
                details={"vendor_id": str(vendor_id), "date": day.isoformat()},
            ) from e

        return request

    @classmethod
    def _pending_payments(cls, vendor_id: uuid.UUID, day: date) -> list[tuple[uuid.UUID, int]]:
        """
        Unclaimed payments of the day with a positive net amount, as (id, net).

        Payments with a refund still pending are left out until it resolves.
        """
        return list(
            SettlementBucketCalculator.payments_for_day(vendor_id, day)
            .filter(
                settlement_request__isnull=True,
                settlement_status=PaymentSettlementStatus.NONE,
                net_amount_cents__gt=0,
            )
            .exclude(refunds__status=RefundStatus.PENDING)
            .order_by("completed_at", "id")
            .values_list("id", "net_amount_cents")
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    def begin_processing(
        cls,
        request_id: uuid.UUID,
        now: datetime | None = None,
    ) -> ServiceResult[SettlementRequest]:
        """
        Move a request from PENDING to PROCESSING.

        Idempotent when the request is already processing.

        Returns:
            ServiceResult with the request, or SETTLEMENT_REQUEST_NOT_FOUND /
            INVALID_STATE
        """
        try:
            with cls.atomic():
                request = cls._lock_request(request_id)
                if request.status == SettlementRequestStatus.PROCESSING:
                    return ServiceResult.success(request)
                if not can_proceed(request.begin_processing):
                    raise cls._invalid_state(request, SettlementRequestStatus.PROCESSING)
                request.begin_processing(at=now or timezone.now())
                request.save()
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "begin_processing",
                log_level=log_level_for(e),
                extra={"settlement_request_id": str(request_id)},
            )

        cls.get_logger().info(
            "Settlement request processing",
            extra={"settlement_request_id": str(request_id)},
        )
        return ServiceResult.success(request)

    @classmethod
    def complete_settlement(
        cls,
        request_id: uuid.UUID,
        payment_reference: str = "",
        processing_notes: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[SettlementRequest]:
        """
        Record a confirmed payout.

        The request becomes SETTLED and every payment it claimed is tagged
        settled in the same transaction.

        Returns:
            ServiceResult with the request, or SETTLEMENT_REQUEST_NOT_FOUND /
            INVALID_STATE (request not processing)
        """
        now = now or timezone.now()
        try:
            with cls.atomic():
                request = cls._lock_request(request_id)
                if request.status != SettlementRequestStatus.PROCESSING:
                    raise cls._invalid_state(request, SettlementRequestStatus.SETTLED)

                request.settle(
                    at=now,
                    payment_reference=payment_reference,
                    processing_notes=processing_notes,
                )
                request.save()

                settled = Payment.objects.filter(
                    settlement_request=request,
                    settlement_status=PaymentSettlementStatus.CLAIMED,
                ).update(
                    settlement_status=PaymentSettlementStatus.SETTLED,
                    version=F("version") + 1,
                    updated_at=now,
                )
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "complete_settlement",
                log_level=log_level_for(e),
                extra={"settlement_request_id": str(request_id)},
            )

        cls.get_logger().info(
            "Settlement request settled",
            extra={
                "settlement_request_id": str(request_id),
                "vendor_id": str(request.vendor_id),
                "claimed_amount_cents": request.claimed_amount_cents,
                "payment_count": settled,
            },
        )
        return ServiceResult.success(request)

    @classmethod
    def fail_settlement(
        cls,
        request_id: uuid.UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[SettlementRequest]:
        """
        Abandon a request and release its payments back to pending.

        Idempotent on a failed request. A settled request is left untouched
        and an INVALID_STATE result is returned.
        """
        now = now or timezone.now()
        released = 0
        try:
            with cls.atomic():
                request = cls._lock_request(request_id)
                if request.status == SettlementRequestStatus.FAILED:
                    return ServiceResult.success(request)
                if request.status == SettlementRequestStatus.SETTLED:
                    raise cls._invalid_state(request, SettlementRequestStatus.FAILED)

                request.fail(at=now, reason=reason)
                request.save()

                released = Payment.objects.filter(settlement_request=request).update(
                    settlement_request=None,
                    settlement_status=PaymentSettlementStatus.NONE,
                    version=F("version") + 1,
                    updated_at=now,
                )

                # Claims that read the bucket before the release must retry
                SettlementCursor.objects.filter(
                    vendor_id=request.vendor_id,
                    transaction_date=request.transaction_date,
                ).update(version=F("version") + 1)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "fail_settlement",
                log_level=log_level_for(e),
                extra={"settlement_request_id": str(request_id)},
            )

        cls.get_logger().warning(
            "Settlement request failed",
            extra={
                "settlement_request_id": str(request_id),
                "vendor_id": str(request.vendor_id),
                "released_payments": released,
                "reason": reason,
            },
        )
        return ServiceResult.success(request)

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_request(cls, request_id: uuid.UUID) -> ServiceResult[SettlementRequest]:
        request = SettlementRequest.objects.filter(pk=request_id).first()
        if request is None:
            return cls.handle_exception(
                cls._not_found(request_id),
                "get_request",
                log_level=logging.INFO,
            )
        return ServiceResult.success(request)

    @classmethod
    def list_requests(
        cls,
        vendor_id: uuid.UUID,
        day: date | None = None,
        status: str | None = None,
    ) -> ServiceResult[QuerySet[SettlementRequest]]:
        """
        Settlement requests of a vendor, newest first.

        Args:
            vendor_id: Vendor to list for
            day: Restrict to one transaction date
            status: Restrict to one SettlementRequestStatus value

        Returns:
            ServiceResult with a QuerySet (paginated by the caller)
        """
        if status and status not in SettlementRequestStatus.values:
            return ServiceResult.failure(
                f"Unknown settlement status '{status}'",
                error_code="VALIDATION_ERROR",
                errors={"status": [f"Must be one of {', '.join(SettlementRequestStatus.values)}."]},
            )

        queryset = SettlementRequest.objects.filter(vendor_id=vendor_id)
        if day is not None:
            queryset = queryset.filter(transaction_date=day)
        if status:
            queryset = queryset.filter(status=status)
        return ServiceResult.success(queryset.order_by("-requested_at", "-created_at"))

    @classmethod
    def claimed_payments(cls, request: SettlementRequest) -> QuerySet[Payment]:
        """Payments currently held or settled by the request."""
        return Payment.objects.filter(settlement_request=request).order_by("completed_at")

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _not_found(cls, request_id: uuid.UUID) -> SettlementRequestNotFoundError:
        return SettlementRequestNotFoundError(
            f"Settlement request {request_id} not found",
            details={"request_id": str(request_id)},
        )

    @classmethod
    def _lock_request(cls, request_id: uuid.UUID) -> SettlementRequest:
        request = SettlementRequest.objects.select_for_update().filter(pk=request_id).first()
        if request is None:
            raise cls._not_found(request_id)
        return request

    @classmethod
    def _invalid_state(
        cls,
        request: SettlementRequest,
        target: str,
    ) -> InvalidSettlementStateError:
        return InvalidSettlementStateError(
            f"Cannot move settlement request from '{request.status}' to '{target}'",
            details={
                "request_id": str(request.id),
                "current_status": request.status,
                "target_status": str(target),
            },
        )
