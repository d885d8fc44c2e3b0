"""
Tests for AggregationReporter.

Tests cover:
1. Range statistics (status filters, inclusive dates, averages)
2. Total withdrawn per vendor
3. Vendors with pending settlements
4. Per-day breakdown
"""

from datetime import timedelta

import pytest

from payments.services import AggregationReporter, LedgerService, SettlementCoordinator
from payments.state_machines import PaymentStatus
from payments.tests.factories import (
    TXN_DATE,
    PaymentFactory,
    at,
    create_completed_payment,
)


def refund(payment, amount, when):
    created = LedgerService.apply_refund(payment.payment_id, amount).data
    LedgerService.mark_refund_processed(payment.payment_id, created.id, at=when)


# =============================================================================
# Statistics
# =============================================================================


class TestGetStats:
    """Tests for AggregationReporter.get_stats."""

    def test_empty_range(self, db):
        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert (stats.count, stats.total_amount, stats.total_refunded, stats.avg_amount) == (
            0,
            0,
            0,
            0,
        )

    def test_counts_settleable_payments(self, day_payments):
        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert stats.count == 3
        assert stats.total_amount == 600
        assert stats.avg_amount == 200

    def test_average_rounds_down(self, db, vendor_id):
        for amount in (100, 100, 101):
            create_completed_payment(vendor_id=vendor_id, amount_cents=amount, completed_at=at(9))

        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert stats.total_amount == 301
        assert stats.avg_amount == 100

    def test_refunds_reported_separately(self, completed_payment):
        refund(completed_payment, 250, at(12))

        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert stats.count == 1
        assert stats.total_amount == 1000
        assert stats.total_refunded == 250

    def test_default_excludes_unfinished(self, pending_payment, completed_payment):
        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert stats.count == 1

    def test_pending_payments_use_initiated_at(self, pending_payment, completed_payment):
        stats = AggregationReporter.get_stats(
            TXN_DATE, TXN_DATE, statuses=[PaymentStatus.PENDING]
        ).data

        assert stats.count == 1
        assert stats.total_amount == pending_payment.final_amount_cents

    def test_end_date_is_inclusive(self, db, vendor_id):
        create_completed_payment(vendor_id=vendor_id, amount_cents=500, completed_at=at(23, 59))
        create_completed_payment(
            vendor_id=vendor_id,
            amount_cents=700,
            completed_at=at(0, 0, day=TXN_DATE + timedelta(days=1)),
        )

        stats = AggregationReporter.get_stats(TXN_DATE, TXN_DATE).data

        assert stats.total_amount == 500

    def test_datetime_bounds(self, day_payments):
        stats = AggregationReporter.get_stats(at(10), at(15)).data

        # 11:00 and 15:00 fall inside; the end instant is inclusive
        assert stats.total_amount == 500

    def test_datetime_bounds_include_both_instants(self, day_payments):
        exact = AggregationReporter.get_stats(at(11), at(15)).data
        short = AggregationReporter.get_stats(at(11), at(14, 59)).data

        assert exact.count == 2
        assert exact.total_amount == 500
        assert short.total_amount == 200

    def test_vendor_filter(self, completed_payment, other_vendor_id):
        create_completed_payment(vendor_id=other_vendor_id, amount_cents=300, completed_at=at(9))

        stats = AggregationReporter.get_stats(
            TXN_DATE, TXN_DATE, vendor_id=other_vendor_id
        ).data

        assert stats.total_amount == 300

    def test_unknown_status_rejected(self, db):
        result = AggregationReporter.get_stats(TXN_DATE, TXN_DATE, statuses=["paid"])

        assert result.error_code == "PAYMENT_VALIDATION_ERROR"
        assert result.details == {"unknown": ["paid"]}

    def test_reversed_range_rejected(self, db):
        result = AggregationReporter.get_stats(TXN_DATE, TXN_DATE - timedelta(days=1))

        assert result.error_code == "PAYMENT_VALIDATION_ERROR"


# =============================================================================
# Withdrawals and Pending Vendors
# =============================================================================


class TestTotalWithdrawn:
    """Tests for AggregationReporter.total_withdrawn."""

    def test_sums_only_settled_requests(self, db, vendor_id):
        create_completed_payment(vendor_id=vendor_id, amount_cents=400, completed_at=at(9))
        settled = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 400, now=at(10)
        ).data
        SettlementCoordinator.begin_processing(settled.id, now=at(11))
        SettlementCoordinator.complete_settlement(settled.id, now=at(12))

        create_completed_payment(vendor_id=vendor_id, amount_cents=600, completed_at=at(13))
        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, 600, now=at(14))

        assert AggregationReporter.total_withdrawn(vendor_id).data == 400

    def test_zero_without_requests(self, db, vendor_id):
        assert AggregationReporter.total_withdrawn(vendor_id).data == 0


class TestVendorsWithPendingSettlements:
    """Tests for AggregationReporter.vendors_with_pending_settlements."""

    def test_sorted_by_pending_amount(self, db, vendor_id, other_vendor_id):
        create_completed_payment(vendor_id=vendor_id, amount_cents=200, completed_at=at(9))
        create_completed_payment(vendor_id=other_vendor_id, amount_cents=500, completed_at=at(9))
        create_completed_payment(vendor_id=other_vendor_id, amount_cents=100, completed_at=at(10))

        rows = AggregationReporter.vendors_with_pending_settlements(TXN_DATE).data

        assert [row.vendor_id for row in rows] == [other_vendor_id, vendor_id]
        assert rows[0].pending_settlement == 600
        assert rows[0].payment_count == 2
        assert rows[1].pending_settlement == 200

    def test_fully_claimed_vendor_excluded(self, completed_payment, vendor_id):
        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, 1000, now=at(12))

        assert AggregationReporter.vendors_with_pending_settlements(TXN_DATE).data == []

    def test_other_days_excluded(self, completed_payment):
        next_day = TXN_DATE + timedelta(days=1)

        assert AggregationReporter.vendors_with_pending_settlements(next_day).data == []


# =============================================================================
# Daily Breakdown
# =============================================================================


class TestDailyBreakdown:
    """Tests for AggregationReporter.daily_breakdown."""

    def test_zero_filled_rows(self, day_payments, vendor_id):
        start = TXN_DATE - timedelta(days=1)
        end = TXN_DATE + timedelta(days=1)

        rows = AggregationReporter.daily_breakdown(vendor_id, start, end).data

        assert [row.date for row in rows] == [start, TXN_DATE, end]
        assert rows[0].count == 0
        assert rows[1].count == 3
        assert rows[1].total_amount == 600
        assert rows[1].net_amount == 600
        assert rows[2].net_amount == 0

    def test_net_reflects_refunds(self, completed_payment, vendor_id):
        refund(completed_payment, 300, at(12))

        row = AggregationReporter.daily_breakdown(vendor_id, TXN_DATE, TXN_DATE).data[0]

        assert row.total_amount == 1000
        assert row.total_refunded == 300
        assert row.net_amount == 700

    def test_ignores_unfinished_payments(self, db, vendor_id):
        PaymentFactory(vendor_id=vendor_id, initiated_at=at(9))

        row = AggregationReporter.daily_breakdown(vendor_id, TXN_DATE, TXN_DATE).data[0]

        assert row.count == 0

    @pytest.mark.parametrize(
        "start_offset,end_offset",
        [(1, 0), (0, 366)],
        ids=["reversed", "too_long"],
    )
    def test_invalid_range(self, db, vendor_id, start_offset, end_offset):
        result = AggregationReporter.daily_breakdown(
            vendor_id,
            TXN_DATE + timedelta(days=start_offset),
            TXN_DATE + timedelta(days=end_offset),
        )

        assert result.error_code == "PAYMENT_VALIDATION_ERROR"
