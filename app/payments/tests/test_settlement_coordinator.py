"""
Tests for SettlementCoordinator.

Tests cover:
1. Urgent claims (amount check, tagging, request metadata)
2. Claims against refunds (claimed payments refuse refunds, pending refunds hold payments back)
3. Claim races on the same vendor and date
4. Request lifecycle (processing, settled, failed)
5. Listing and lookups
"""

import uuid
from datetime import timedelta

import pytest

from payments.models import Payment, Refund, SettlementCursor, SettlementRequest
from payments.services import (
    LedgerService,
    SettlementBucketCalculator,
    SettlementCoordinator,
)
from payments.state_machines import (
    PaymentSettlementStatus,
    SettlementRequestStatus,
    SettlementRequestType,
)
from payments.tests.factories import TXN_DATE, at, create_completed_payment


@pytest.fixture
def split_day(db, vendor_id):
    """A 400 payment claimed and a 600 payment still pending on TXN_DATE."""
    first = create_completed_payment(vendor_id=vendor_id, amount_cents=400, completed_at=at(9))
    request = SettlementCoordinator.request_urgent_settlement(
        vendor_id, TXN_DATE, 400, now=at(12)
    ).data
    second = create_completed_payment(vendor_id=vendor_id, amount_cents=600, completed_at=at(14))
    return first, second, request


# =============================================================================
# Urgent Claims
# =============================================================================


class TestRequestUrgentSettlement:
    """Tests for SettlementCoordinator.request_urgent_settlement."""

    def test_claims_all_pending_payments(self, day_payments, vendor_id):
        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, reason="Cash flow", now=at(16)
        )

        assert result.success
        request = result.data
        assert request.status == SettlementRequestStatus.PENDING
        assert request.request_type == SettlementRequestType.URGENT
        assert request.claimed_amount_cents == 600
        assert request.reason == "Cash flow"
        assert request.requested_at == at(16)
        assert set(request.claimed_payment_ids) == {str(p.id) for p in day_payments}

        for payment in Payment.objects.filter(vendor_id=vendor_id):
            assert payment.settlement_request_id == request.id
            assert payment.settlement_status == PaymentSettlementStatus.CLAIMED

    def test_claim_bumps_payment_versions(self, completed_payment, vendor_id):
        version = completed_payment.version

        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, 1000, now=at(12))

        assert Payment.objects.get(pk=completed_payment.pk).version == version + 1

    def test_second_claim_takes_only_new_payments(self, split_day, vendor_id):
        first, second, first_request = split_day

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(15)
        )

        assert result.success
        assert result.data.claimed_payment_ids == [str(second.id)]
        assert Payment.objects.get(pk=first.pk).settlement_request_id == first_request.id

    def test_amount_mismatch_reports_both_figures(self, split_day, vendor_id):
        """The merchant saw 1000 before the first claim; 600 is what is left."""
        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(15)
        )

        assert result.error_code == "AMOUNT_MISMATCH"
        assert result.details == {"calculated": 600, "provided": 1000}
        assert SettlementRequest.objects.filter(vendor_id=vendor_id).count() == 1

    def test_nothing_to_settle_on_empty_day(self, db, vendor_id):
        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 0, now=at(12)
        )

        assert result.error_code == "NOTHING_TO_SETTLE"
        assert not SettlementRequest.objects.exists()

    def test_nothing_to_settle_when_fully_claimed(self, completed_payment, vendor_id):
        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, 1000, now=at(12))

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(13)
        )

        assert result.error_code == "NOTHING_TO_SETTLE"

    def test_negative_amount_rejected(self, completed_payment, vendor_id):
        result = SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, -1)

        assert result.error_code == "INVALID_AMOUNT"

    def test_past_date_flagged_in_metadata(self, completed_payment, vendor_id):
        later = at(10, day=TXN_DATE + timedelta(days=2))

        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=later
        ).data

        assert request.metadata == {"requested_date": "2025-01-12", "is_past_date": True}
        assert request.transaction_date == TXN_DATE

    def test_same_day_request_not_past(self, completed_payment, vendor_id):
        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        ).data

        assert request.metadata["is_past_date"] is False

    def test_claim_bumps_cursor(self, completed_payment, vendor_id):
        SettlementCoordinator.request_urgent_settlement(vendor_id, TXN_DATE, 1000, now=at(12))

        cursor = SettlementCursor.objects.get(vendor_id=vendor_id, transaction_date=TXN_DATE)
        assert cursor.version == 1
        assert cursor.last_claimed_at == at(12)

    def test_claimed_amount_matches_payments_net(self, day_payments, vendor_id):
        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(16)
        ).data

        bucket = SettlementBucketCalculator.build_bucket(vendor_id, TXN_DATE)
        assert request.claimed_amount_cents == bucket.in_settlement_process == 600
        assert request.claimed_amount_cents <= bucket.total_to_be_received


# =============================================================================
# Claims and Refunds
# =============================================================================


class TestClaimsAndRefunds:
    """A request never holds more than its payments are worth."""

    def test_claimed_payment_refuses_refund(self, completed_payment, vendor_id):
        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        ).data

        result = LedgerService.apply_refund(completed_payment.payment_id, 200)

        assert result.error_code == "INVALID_STATE"
        assert result.details["settlement_status"] == PaymentSettlementStatus.CLAIMED
        assert not Refund.objects.filter(payment=completed_payment).exists()
        bucket = SettlementBucketCalculator.build_bucket(vendor_id, TXN_DATE)
        claimed = SettlementRequest.objects.get(pk=request.pk).claimed_amount_cents
        assert claimed == bucket.in_settlement_process == bucket.total_to_be_received

    def test_settled_payment_refuses_refund(self, completed_payment, vendor_id):
        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        ).data
        SettlementCoordinator.begin_processing(request.id, now=at(13))
        SettlementCoordinator.complete_settlement(request.id, payment_reference="UTR1", now=at(14))

        result = LedgerService.apply_refund(completed_payment.payment_id, 200)

        assert result.error_code == "INVALID_STATE"
        assert result.details["settlement_status"] == PaymentSettlementStatus.SETTLED
        bucket = SettlementBucketCalculator.build_bucket(vendor_id, TXN_DATE)
        assert bucket.payment_settled == 1000

    def test_released_payment_accepts_refund(self, completed_payment, vendor_id):
        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        ).data
        SettlementCoordinator.fail_settlement(request.id, reason="Bank rejected", now=at(13))

        result = LedgerService.apply_refund(completed_payment.payment_id, 200)

        assert result.success

    def test_pending_refund_holds_payment_back(self, day_payments, vendor_id):
        refunded = day_payments[2]
        refund = LedgerService.apply_refund(refunded.payment_id, 100).data

        mismatch = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(16)
        )
        assert mismatch.error_code == "AMOUNT_MISMATCH"
        assert mismatch.details["calculated"] == 300
        assert mismatch.details["refund_hold"] == 300

        request = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 300, now=at(16)
        ).data
        assert set(request.claimed_payment_ids) == {str(p.id) for p in day_payments[:2]}
        assert Payment.objects.get(pk=refunded.pk).settlement_status == PaymentSettlementStatus.NONE

        LedgerService.mark_refund_processed(refunded.payment_id, refund.id, at=at(17))

        bucket = SettlementBucketCalculator.build_bucket(vendor_id, TXN_DATE)
        assert bucket.total_to_be_received == 500
        assert bucket.in_settlement_process == request.claimed_amount_cents == 300
        assert bucket.pending_settlement == 200
        assert bucket.refund_hold == 0

    def test_only_held_payments_is_nothing_to_settle(self, completed_payment, vendor_id):
        LedgerService.apply_refund(completed_payment.payment_id, 200)

        result = SettlementCoordinator.request_settlement(vendor_id, TXN_DATE, now=at(12))

        assert result.error_code == "NOTHING_TO_SETTLE"
        assert result.details["refund_hold"] == 1000

    def test_failed_refund_releases_hold(self, completed_payment, vendor_id):
        refund = LedgerService.apply_refund(completed_payment.payment_id, 200).data
        LedgerService.mark_refund_failed(completed_payment.payment_id, refund.id, reason="Declined")

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        )

        assert result.success
        assert result.data.claimed_amount_cents == 1000

    def test_refund_bumps_day_cursor(self, completed_payment, vendor_id):
        refund = LedgerService.apply_refund(completed_payment.payment_id, 200).data
        cursor = SettlementCursor.objects.get(vendor_id=vendor_id, transaction_date=TXN_DATE)
        assert cursor.version == 1

        LedgerService.mark_refund_processed(completed_payment.payment_id, refund.id, at=at(12))
        assert SettlementCursor.objects.get(vendor_id=vendor_id).version == 2

    def test_refund_between_read_and_swap_loses_claim(self, mocker, completed_payment, vendor_id):
        """A refund committing after the bucket read invalidates the claim."""
        original = SettlementBucketCalculator.build_bucket.__func__
        refunds = []

        def bucket_then_refund(cls, vendor, day):
            bucket = original(cls, vendor, day)
            if not refunds:
                refunds.append(LedgerService.apply_refund(completed_payment.payment_id, 200))
            return bucket

        mocker.patch.object(
            SettlementBucketCalculator,
            "build_bucket",
            classmethod(bucket_then_refund),
        )

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        )

        assert refunds[0].success
        assert result.error_code == "CONCURRENT_CLAIM"
        assert not SettlementRequest.objects.exists()
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.settlement_status == PaymentSettlementStatus.NONE


class TestNormalSettlement:
    """Tests for scheduler-driven claims without a requested amount."""

    def test_claims_whatever_is_pending(self, day_payments, vendor_id):
        result = SettlementCoordinator.request_settlement(
            vendor_id,
            TXN_DATE,
            request_type=SettlementRequestType.NORMAL,
            now=at(1, day=TXN_DATE + timedelta(days=1)),
        )

        assert result.success
        assert result.data.request_type == SettlementRequestType.NORMAL
        assert result.data.claimed_amount_cents == 600

    def test_missing_vendor_rejected(self, db):
        result = SettlementCoordinator.request_settlement(None, TXN_DATE)

        assert result.error_code == "PAYMENT_VALIDATION_ERROR"


# =============================================================================
# Claim Races
# =============================================================================


class TestConcurrentClaims:
    """Two claims for the same vendor and date must never both succeed."""

    def test_claim_losing_race_is_rejected(self, mocker, completed_payment, vendor_id):
        """
        A competing claim commits between the bucket read and the swap.

        The outer claim read its cursor version and pending=1000 before the
        competitor ran, so its swap finds a newer version.
        """
        original = SettlementBucketCalculator.build_bucket.__func__
        raced = []
        competitor_results = []

        def bucket_then_race(cls, vendor, day):
            stale = original(cls, vendor, day)
            if not raced:
                raced.append(True)
                competitor_results.append(
                    SettlementCoordinator.request_urgent_settlement(
                        vendor, day, 1000, now=at(12)
                    )
                )
            return stale

        mocker.patch.object(
            SettlementBucketCalculator,
            "build_bucket",
            classmethod(bucket_then_race),
        )

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        )

        assert competitor_results[0].success
        assert result.error_code == "CONCURRENT_CLAIM"
        assert SettlementRequest.objects.filter(vendor_id=vendor_id).count() == 1
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.settlement_request_id == competitor_results[0].data.id

    def test_payments_changed_after_swap_rejected(self, mocker, completed_payment, vendor_id):
        """The candidate re-read inside the transaction must match the bucket."""
        mocker.patch.object(SettlementCoordinator, "_pending_payments", return_value=[])

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        )

        assert result.error_code == "CONCURRENT_CLAIM"
        assert not SettlementRequest.objects.exists()
        cursor = SettlementCursor.objects.get(vendor_id=vendor_id, transaction_date=TXN_DATE)
        assert cursor.version == 0

    def test_stale_cursor_version_rejected(self, mocker, completed_payment, vendor_id):
        """A cursor bump between the read and the swap loses the claim."""
        original = SettlementBucketCalculator.build_bucket.__func__

        def bucket_then_bump(cls, vendor, day):
            bucket = original(cls, vendor, day)
            SettlementCursor.objects.filter(vendor_id=vendor, transaction_date=day).update(
                version=99
            )
            return bucket

        mocker.patch.object(
            SettlementBucketCalculator,
            "build_bucket",
            classmethod(bucket_then_bump),
        )

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 1000, now=at(12)
        )

        assert result.error_code == "CONCURRENT_CLAIM"
        assert not SettlementRequest.objects.exists()
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.settlement_status == PaymentSettlementStatus.NONE


# =============================================================================
# Lifecycle
# =============================================================================


class TestSettlementLifecycle:
    """Tests for begin_processing / complete_settlement / fail_settlement."""

    @pytest.fixture
    def request_obj(self, day_payments, vendor_id):
        return SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(16)
        ).data

    def test_begin_processing(self, request_obj):
        result = SettlementCoordinator.begin_processing(request_obj.id, now=at(17))

        assert result.success
        assert result.data.status == SettlementRequestStatus.PROCESSING
        assert result.data.processing_started_at == at(17)

    def test_begin_processing_is_idempotent(self, request_obj):
        SettlementCoordinator.begin_processing(request_obj.id, now=at(17))

        result = SettlementCoordinator.begin_processing(request_obj.id, now=at(18))

        assert result.success
        assert result.data.processing_started_at == at(17)

    def test_complete_settles_claimed_payments(self, request_obj, vendor_id):
        SettlementCoordinator.begin_processing(request_obj.id, now=at(17))

        result = SettlementCoordinator.complete_settlement(
            request_obj.id,
            payment_reference="UTR42",
            processing_notes="NEFT",
            now=at(18),
        )

        assert result.success
        request = SettlementRequest.objects.get(pk=request_obj.pk)
        assert request.status == SettlementRequestStatus.SETTLED
        assert request.payment_reference == "UTR42"
        assert request.processed_at == at(18)
        statuses = set(
            Payment.objects.filter(vendor_id=vendor_id).values_list("settlement_status", flat=True)
        )
        assert statuses == {PaymentSettlementStatus.SETTLED}

    def test_complete_requires_processing(self, request_obj):
        result = SettlementCoordinator.complete_settlement(request_obj.id, now=at(18))

        assert result.error_code == "INVALID_STATE"
        assert SettlementRequest.objects.get(pk=request_obj.pk).status == (
            SettlementRequestStatus.PENDING
        )

    def test_fail_releases_payments(self, request_obj, vendor_id):
        result = SettlementCoordinator.fail_settlement(
            request_obj.id, reason="Invalid IFSC", now=at(17)
        )

        assert result.success
        assert result.data.status == SettlementRequestStatus.FAILED
        assert result.data.failure_reason == "Invalid IFSC"
        for payment in Payment.objects.filter(vendor_id=vendor_id):
            assert payment.settlement_request_id is None
            assert payment.settlement_status == PaymentSettlementStatus.NONE

    def test_fail_is_idempotent(self, request_obj):
        SettlementCoordinator.fail_settlement(request_obj.id, now=at(17))

        result = SettlementCoordinator.fail_settlement(request_obj.id, now=at(18))

        assert result.success
        assert result.data.failed_at == at(17)

    def test_released_payments_can_be_claimed_again(self, request_obj, vendor_id):
        SettlementCoordinator.begin_processing(request_obj.id, now=at(17))
        SettlementCoordinator.fail_settlement(request_obj.id, now=at(18))

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(19)
        )

        assert result.success
        assert result.data.id != request_obj.id

    def test_settled_request_cannot_fail(self, request_obj):
        SettlementCoordinator.begin_processing(request_obj.id, now=at(17))
        SettlementCoordinator.complete_settlement(request_obj.id, now=at(18))

        result = SettlementCoordinator.fail_settlement(request_obj.id, now=at(19))

        assert result.error_code == "INVALID_STATE"
        assert SettlementRequest.objects.get(pk=request_obj.pk).status == (
            SettlementRequestStatus.SETTLED
        )

    def test_failed_request_cannot_begin_processing(self, request_obj):
        SettlementCoordinator.fail_settlement(request_obj.id, now=at(17))

        result = SettlementCoordinator.begin_processing(request_obj.id, now=at(18))

        assert result.error_code == "INVALID_STATE"

    def test_unknown_request(self, db):
        result = SettlementCoordinator.begin_processing(uuid.uuid4())

        assert result.error_code == "SETTLEMENT_REQUEST_NOT_FOUND"


# =============================================================================
# Queries
# =============================================================================


class TestSettlementQueries:
    """Tests for get_request / list_requests / claimed_payments."""

    def test_list_newest_first(self, split_day, vendor_id):
        _, _, first = split_day
        second = SettlementCoordinator.request_urgent_settlement(
            vendor_id, TXN_DATE, 600, now=at(15)
        ).data

        requests = list(SettlementCoordinator.list_requests(vendor_id).data)

        assert requests == [second, first]

    def test_list_filters_by_status_and_date(self, split_day, vendor_id):
        _, _, first = split_day
        SettlementCoordinator.fail_settlement(first.id, now=at(13))

        failed = SettlementCoordinator.list_requests(
            vendor_id, day=TXN_DATE, status=SettlementRequestStatus.FAILED
        ).data
        other_day = SettlementCoordinator.list_requests(
            vendor_id, day=TXN_DATE + timedelta(days=1)
        ).data

        assert list(failed) == [first]
        assert list(other_day) == []

    def test_list_rejects_unknown_status(self, db, vendor_id):
        result = SettlementCoordinator.list_requests(vendor_id, status="paid")

        assert result.error_code == "VALIDATION_ERROR"
        assert "status" in result.errors

    def test_claimed_payments(self, split_day):
        first, _, request = split_day

        assert list(SettlementCoordinator.claimed_payments(request)) == [first]

    def test_get_request(self, split_day):
        _, _, request = split_day

        assert SettlementCoordinator.get_request(request.id).data == request
        assert (
            SettlementCoordinator.get_request(uuid.uuid4()).error_code
            == "SETTLEMENT_REQUEST_NOT_FOUND"
        )
