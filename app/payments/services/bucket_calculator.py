"""
Settlement bucket calculator.

Derives, on demand, how one vendor's revenue for one transaction date
splits into settled, in-process and pending parts. Nothing is stored: the
bucket is recomputed from the ledger each time, so it can never drift from
the payments it summarises.

Bucketing:
    A payment belongs to the date on which it completed, read in the
    SETTLEMENT_TIMEZONE calendar. That date never changes, so settling a
    day's payments on a later day leaves both days' buckets stable.

Usage:
    from payments.services import SettlementBucketCalculator

    result = SettlementBucketCalculator.compute_bucket(vendor_id, date(2025, 1, 10))
    bucket = result.data
    assert (
        bucket.payment_settled
        + bucket.in_settlement_process
        + bucket.pending_settlement
    ) == bucket.total_to_be_received
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings
from django.db.models import OuterRef, QuerySet, Subquery, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.services import BaseService, ServiceResult

from payments.models import Payment, Refund
from payments.state_machines import (
    PaymentSettlementStatus,
    PaymentStatus,
    RefundStatus,
    SettlementRequestStatus,
)
from payments.types import DailySettlementBucket


class SettlementBucketCalculator(BaseService):
    """
    Computes DailySettlementBucket values from the ledger.

    Classification of each payment completed on the date:
        settled tag                         -> payment_settled
        claimed tag, request still open     -> in_settlement_process
        anything else                       -> pending_settlement

    Amounts are current net amounts. Claimed and settled payments no longer
    accept refunds, so a request's claimed amount always matches the net
    amounts of the payments it holds.

    An unclaimed payment with a refund still pending is counted as pending
    but held back from claims (refund_hold) until the gateway resolves the
    refund.
    """

    @classmethod
    def settlement_timezone(cls) -> ZoneInfo:
        return ZoneInfo(settings.SETTLEMENT_TIMEZONE)

    @classmethod
    def day_bounds(cls, day: date) -> tuple[datetime, datetime]:
        """
        Half-open [start, end) instant range covering day in the settlement calendar.
        """
        tz = cls.settlement_timezone()
        start = datetime.combine(day, time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
        return start, end

    @classmethod
    def transaction_date(cls, completed_at: datetime) -> date:
        """Calendar date a completion instant is bucketed under."""
        return timezone.localtime(completed_at, cls.settlement_timezone()).date()

    @classmethod
    def payments_for_day(cls, vendor_id: uuid.UUID, day: date) -> QuerySet[Payment]:
        """Settleable payments of the vendor completed on day."""
        start, end = cls.day_bounds(day)
        return Payment.objects.filter(
            vendor_id=vendor_id,
            status__in=PaymentStatus.settleable(),
            completed_at__gte=start,
            completed_at__lt=end,
        )

    @classmethod
    def compute_bucket(
        cls,
        vendor_id: uuid.UUID,
        day: date,
    ) -> ServiceResult[DailySettlementBucket]:
        """
        Compute the settlement bucket for a vendor and transaction date.

        Args:
            vendor_id: Vendor to compute for
            day: Transaction date

        Returns:
            ServiceResult with DailySettlementBucket (all zeros when the
            vendor had no completed payments that day)
        """
        validation = cls.validate_required(vendor_id=vendor_id, date=day)
        if validation is not None:
            return validation

        bucket = cls.build_bucket(vendor_id, day)
        cls.get_logger().debug(
            "Bucket computed",
            extra={
                "vendor_id": str(vendor_id),
                "transaction_date": day.isoformat(),
                "pending_settlement": bucket.pending_settlement,
            },
        )
        return ServiceResult.success(bucket)

    @classmethod
    def build_bucket(cls, vendor_id: uuid.UUID, day: date) -> DailySettlementBucket:
        """Build the bucket without the ServiceResult wrapper (for other services)."""
        pending_refunds = (
            Refund.objects.filter(payment=OuterRef("pk"), status=RefundStatus.PENDING)
            .order_by()
            .values("payment")
            .annotate(total=Sum("amount_cents"))
            .values("total")
        )
        payments = (
            cls.payments_for_day(vendor_id, day)
            .select_related("settlement_request")
            .annotate(pending_refund_cents=Coalesce(Subquery(pending_refunds), 0))
        )
        return cls.classify(vendor_id, day, payments)

    @classmethod
    def classify(
        cls,
        vendor_id: uuid.UUID,
        day: date,
        payments: Iterable[Payment],
    ) -> DailySettlementBucket:
        total = settled = in_process = pending = held = count = 0
        pending_ids: list[uuid.UUID] = []

        for payment in payments:
            net = payment.net_amount_cents
            total += net
            count += 1

            if payment.settlement_status == PaymentSettlementStatus.SETTLED:
                settled += net
            elif (
                payment.settlement_status == PaymentSettlementStatus.CLAIMED
                and payment.settlement_request is not None
                and payment.settlement_request.status in SettlementRequestStatus.open()
            ):
                in_process += net
            else:
                pending += net
                if net > 0:
                    pending_ids.append(payment.id)
                    if getattr(payment, "pending_refund_cents", 0):
                        held += net

        return DailySettlementBucket(
            vendor_id=vendor_id,
            date=day,
            total_to_be_received=total,
            payment_settled=settled,
            in_settlement_process=in_process,
            pending_settlement=pending,
            refund_hold=held,
            payment_count=count,
            pending_payment_ids=tuple(pending_ids),
        )
