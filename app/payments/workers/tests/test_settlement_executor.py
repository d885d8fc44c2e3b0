"""
Tests for settlement_executor worker tasks.

Tests cover:
- schedule_daily_settlements filing NORMAL requests
- process_pending_settlements queuing pickups
- begin_single_settlement under the per-request lock
"""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from django.utils import timezone

from payments.models import Payment, SettlementRequest
from payments.services import SettlementCoordinator
from payments.state_machines import (
    PaymentSettlementStatus,
    SettlementRequestStatus,
    SettlementRequestType,
)
from payments.tests.factories import TXN_DATE, SettlementRequestFactory, at
from payments.workers.settlement_executor import (
    begin_single_settlement,
    process_pending_settlements,
    schedule_daily_settlements,
)


# =============================================================================
# schedule_daily_settlements Tests
# =============================================================================


class TestScheduleDailySettlements:
    """Tests for the nightly NORMAL request task."""

    def test_files_one_request_per_vendor(self, vendor_revenue, txn_date_iso):
        result = schedule_daily_settlements(txn_date_iso)

        assert result == {
            "status": "scheduled",
            "transaction_date": txn_date_iso,
            "created_count": 2,
            "failed_count": 0,
        }
        requests = SettlementRequest.objects.filter(transaction_date=TXN_DATE)
        assert {r.vendor_id: r.claimed_amount_cents for r in requests} == vendor_revenue
        assert {r.request_type for r in requests} == {SettlementRequestType.NORMAL}

    def test_claims_every_pending_payment(self, vendor_revenue, txn_date_iso):
        schedule_daily_settlements(txn_date_iso)

        assert Payment.objects.filter(settlement_status=PaymentSettlementStatus.CLAIMED).exists()
        assert not Payment.objects.filter(
            settlement_status=PaymentSettlementStatus.NONE,
            net_amount_cents__gt=0,
        ).exists()

    def test_second_run_files_nothing(self, vendor_revenue, txn_date_iso):
        schedule_daily_settlements(txn_date_iso)

        result = schedule_daily_settlements(txn_date_iso)

        assert result["created_count"] == 0
        assert SettlementRequest.objects.count() == 2

    def test_skips_vendor_already_settled_urgently(self, vendor_revenue, txn_date_iso):
        vendor_id, amount = next(iter(vendor_revenue.items()))
        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, amount)

        result = schedule_daily_settlements(txn_date_iso)

        assert result["created_count"] == 1
        assert SettlementRequest.objects.filter(vendor_id=vendor_id).count() == 1

    def test_defaults_to_yesterday(self, db):
        yesterday = timezone.now().date() - timedelta(days=1)

        result = schedule_daily_settlements()

        assert result["transaction_date"] == yesterday.isoformat()
        assert result["created_count"] == 0

    def test_disabled_by_setting(self, vendor_revenue, txn_date_iso, settings):
        settings.NORMAL_SETTLEMENT_ENABLED = False

        result = schedule_daily_settlements(txn_date_iso)

        assert result == {"status": "disabled"}
        assert not SettlementRequest.objects.exists()


# =============================================================================
# process_pending_settlements Tests
# =============================================================================


class TestProcessPendingSettlements:
    """Tests for the pending request scan."""

    @pytest.fixture
    def mock_delay(self, mocker):
        return mocker.patch(
            "payments.workers.settlement_executor.begin_single_settlement.delay"
        )

    def test_queues_pending_requests_oldest_first(self, db, mock_delay):
        newer = SettlementRequestFactory(requested_at=at(15))
        older = SettlementRequestFactory(requested_at=at(10))

        result = process_pending_settlements()

        assert result == {"queued_count": 2}
        queued = [call.args[0] for call in mock_delay.call_args_list]
        assert queued == [str(older.id), str(newer.id)]

    def test_skips_requests_already_processing(self, db, mock_delay):
        request = SettlementRequestFactory(requested_at=at(10))
        request.begin_processing(at=at(11))
        request.save()

        result = process_pending_settlements()

        assert result == {"queued_count": 0}
        mock_delay.assert_not_called()

    def test_handles_queueing_error(self, db, mock_delay):
        SettlementRequestFactory()
        mock_delay.side_effect = ConnectionError("broker down")

        result = process_pending_settlements()

        assert result == {"queued_count": 0}


# =============================================================================
# begin_single_settlement Tests
# =============================================================================


class TestBeginSingleSettlement:
    """Tests for moving one request to PROCESSING."""

    @pytest.fixture
    def pending_request(self, vendor_revenue):
        vendor_id, amount = next(iter(vendor_revenue.items()))
        return SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, amount).data

    def test_moves_request_to_processing(self, pending_request, mock_redis):
        result = begin_single_settlement(str(pending_request.id))

        assert result == {"status": "processing", "request_id": str(pending_request.id)}
        request = SettlementRequest.objects.get(pk=pending_request.pk)
        assert request.status == SettlementRequestStatus.PROCESSING
        assert request.processing_started_at is not None

    def test_takes_and_releases_request_lock(self, pending_request, mock_redis):
        begin_single_settlement(str(pending_request.id))

        assert mock_redis.set.call_args[0][0] == f"lock:settlement:{pending_request.id}"
        mock_redis.eval.assert_called_once()

    def test_already_processing_is_idempotent(self, pending_request, mock_redis):
        begin_single_settlement(str(pending_request.id))

        result = begin_single_settlement(str(pending_request.id))

        assert result["status"] == "processing"

    def test_lock_held_by_another_worker(self, pending_request, mock_redis):
        mock_redis.set.return_value = False

        result = begin_single_settlement(str(pending_request.id))

        assert result["status"] == "lock_failed"
        request = SettlementRequest.objects.get(pk=pending_request.pk)
        assert request.status == SettlementRequestStatus.PENDING

    def test_failed_request_cannot_begin(self, pending_request, mock_redis):
        SettlementCoordinator.fail_settlement(pending_request.id, reason="Bank rejected")

        result = begin_single_settlement(str(pending_request.id))

        assert result["status"] == "failed"
        assert result["error_code"] == "INVALID_STATE"

    def test_unknown_request(self, db, mock_redis):
        request_id = uuid4()

        result = begin_single_settlement(str(request_id))

        assert result["status"] == "not_found"
        assert result["error_code"] == "SETTLEMENT_REQUEST_NOT_FOUND"

    def test_malformed_request_id(self, db, mock_redis):
        result = begin_single_settlement("not-a-uuid")

        assert result == {"status": "not_found", "request_id": "not-a-uuid"}
        mock_redis.set.assert_not_called()
