"""
Aggregation reporter for dashboards and admin listings.

Every figure is a single aggregate query over an indexed range of the
ledger ((status, completed_at) and (vendor_id, completed_at)); nothing here
writes.

Usage:
    from payments.services import AggregationReporter

    result = AggregationReporter.get_stats(date(2025, 1, 1), date(2025, 1, 31))
    stats = result.data
    print(stats.count, stats.total_amount, stats.avg_amount)

    result = AggregationReporter.daily_breakdown(vendor_id, start, end)
    for row in result.data:
        print(row.date, row.net_amount)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from django.db.models import Count, Sum
from django.db.models.functions import Coalesce, TruncDate

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from payments.exceptions import PaymentValidationError
from payments.models import Payment, SettlementRequest
from payments.services.bucket_calculator import SettlementBucketCalculator
from payments.state_machines import (
    PaymentSettlementStatus,
    PaymentStatus,
    SettlementRequestStatus,
)
from payments.types import DailyTotal, PaymentStats, VendorPendingSettlement

# Longest range daily_breakdown will expand into rows
MAX_BREAKDOWN_DAYS = 366


class AggregationReporter(BaseService):
    """Read-only totals over the payment ledger."""

    @classmethod
    def get_stats(
        cls,
        start: date | datetime,
        end: date | datetime,
        statuses: Iterable[str] | None = None,
        vendor_id: uuid.UUID | None = None,
    ) -> ServiceResult[PaymentStats]:
        """
        Count and sum payments in a range.

        The range applies to completed_at, or to initiated_at for payments
        that never completed. Both ends are inclusive: dates cover whole days
        in the settlement calendar, datetimes include payments at exactly
        the start and end instants.

        Args:
            start: First day (or instant) of the range
            end: Last day (or instant) of the range
            statuses: Statuses to include (default completed, refunded,
                partially refunded)
            vendor_id: Restrict to one vendor

        Returns:
            ServiceResult with PaymentStats; zero counts for an empty range
        """
        try:
            range_start, range_end = cls._instant_range(start, end)
            status_filter = cls._statuses(statuses)
        except BaseApplicationError as e:
            return cls.handle_exception(e, "get_stats", log_level=logging.INFO)

        queryset = Payment.objects.annotate(
            activity_at=Coalesce("completed_at", "initiated_at"),
        ).filter(
            status__in=status_filter,
            activity_at__gte=range_start,
            activity_at__lt=range_end,
        )
        if vendor_id is not None:
            queryset = queryset.filter(vendor_id=vendor_id)

        totals = queryset.aggregate(
            count=Count("id"),
            total_amount=Sum("final_amount_cents"),
            total_refunded=Sum("total_refunded_cents"),
        )
        count = totals["count"] or 0
        total_amount = totals["total_amount"] or 0
        return ServiceResult.success(
            PaymentStats(
                count=count,
                total_amount=total_amount,
                total_refunded=totals["total_refunded"] or 0,
                avg_amount=total_amount // count if count else 0,
            )
        )

    @classmethod
    def total_withdrawn(cls, vendor_id: uuid.UUID) -> ServiceResult[int]:
        """Sum of claimed amounts over the vendor's settled requests."""
        total = SettlementRequest.objects.filter(
            vendor_id=vendor_id,
            status=SettlementRequestStatus.SETTLED,
        ).aggregate(total=Sum("claimed_amount_cents"))["total"]
        return ServiceResult.success(total or 0)

    @classmethod
    def vendors_with_pending_settlements(
        cls,
        day: date,
    ) -> ServiceResult[list[VendorPendingSettlement]]:
        """
        Vendors holding unclaimed revenue for a transaction date.

        Sorted by pending amount, largest first.
        """
        start, end = SettlementBucketCalculator.day_bounds(day)
        vendor_ids = (
            Payment.objects.filter(
                status__in=PaymentStatus.settleable(),
                completed_at__gte=start,
                completed_at__lt=end,
                settlement_status=PaymentSettlementStatus.NONE,
                net_amount_cents__gt=0,
            )
            .order_by()
            .values_list("vendor_id", flat=True)
            .distinct()
        )

        rows = []
        for vendor_id in vendor_ids:
            bucket = SettlementBucketCalculator.build_bucket(vendor_id, day)
            if bucket.needs_settlement:
                rows.append(
                    VendorPendingSettlement(
                        vendor_id=vendor_id,
                        date=day,
                        pending_settlement=bucket.pending_settlement,
                        payment_count=len(bucket.pending_payment_ids),
                    )
                )
        rows.sort(key=lambda row: row.pending_settlement, reverse=True)
        return ServiceResult.success(rows)

    @classmethod
    def daily_breakdown(
        cls,
        vendor_id: uuid.UUID,
        start: date,
        end: date,
    ) -> ServiceResult[list[DailyTotal]]:
        """
        Per-day totals of the vendor's settleable payments, by completion date.

        Every day in [start, end] gets a row; days without payments are zero.
        """
        try:
            if start > end:
                raise PaymentValidationError(
                    "start must not be after end",
                    details={"start": start.isoformat(), "end": end.isoformat()},
                )
            if (end - start).days + 1 > MAX_BREAKDOWN_DAYS:
                raise PaymentValidationError(
                    f"Range cannot exceed {MAX_BREAKDOWN_DAYS} days",
                    details={"start": start.isoformat(), "end": end.isoformat()},
                )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "daily_breakdown", log_level=logging.INFO)

        range_start, _ = SettlementBucketCalculator.day_bounds(start)
        _, range_end = SettlementBucketCalculator.day_bounds(end)
        tz = SettlementBucketCalculator.settlement_timezone()

        grouped = (
            Payment.objects.filter(
                vendor_id=vendor_id,
                status__in=PaymentStatus.settleable(),
                completed_at__gte=range_start,
                completed_at__lt=range_end,
            )
            .annotate(day=TruncDate("completed_at", tzinfo=tz))
            .values("day")
            .annotate(
                count=Count("id"),
                total_amount=Sum("final_amount_cents"),
                total_refunded=Sum("total_refunded_cents"),
                net_amount=Sum("net_amount_cents"),
            )
            .order_by("day")
        )
        by_day = {row["day"]: row for row in grouped}

        rows = []
        current = start
        while current <= end:
            row = by_day.get(current)
            rows.append(
                DailyTotal(
                    date=current,
                    count=row["count"] if row else 0,
                    total_amount=(row["total_amount"] or 0) if row else 0,
                    total_refunded=(row["total_refunded"] or 0) if row else 0,
                    net_amount=(row["net_amount"] or 0) if row else 0,
                )
            )
            current += timedelta(days=1)
        return ServiceResult.success(rows)

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _instant_range(
        cls,
        start: date | datetime,
        end: date | datetime,
    ) -> tuple[datetime, datetime]:
        """Convert the inclusive range to a half-open [start, end) instant range."""
        if start is None or end is None:
            raise PaymentValidationError(
                "start and end are required",
                details={"start": str(start), "end": str(end)},
            )

        if isinstance(start, datetime):
            range_start = start
        else:
            range_start, _ = SettlementBucketCalculator.day_bounds(start)

        if isinstance(end, datetime):
            range_end = end + timedelta(microseconds=1)
        else:
            _, range_end = SettlementBucketCalculator.day_bounds(end)

        if range_start >= range_end:
            raise PaymentValidationError(
                "start must not be after end",
                details={"start": str(start), "end": str(end)},
            )
        return range_start, range_end

    @classmethod
    def _statuses(cls, statuses: Iterable[str] | None) -> list[str]:
        if not statuses:
            return PaymentStatus.settleable()
        statuses = list(statuses)
        unknown = [status for status in statuses if status not in PaymentStatus.values]
        if unknown:
            raise PaymentValidationError(
                "Unknown payment status",
                details={"unknown": unknown},
            )
        return statuses
