"""
Tests for gateway event handlers.

Tests cover:
- Handler registration and the registry
- Dispatch for known and unknown event types
- Payload parsing into ledger parameters
- Status and refund events applied to the ledger
"""

import uuid

import pytest

from core.services import ServiceResult
from payments.models import Payment
from payments.state_machines import GatewayEventType, PaymentStatus, RefundStatus
from payments.tests.factories import RefundFactory, at
from payments.webhooks.handlers import (
    GATEWAY_EVENT_HANDLERS,
    dispatch_gateway_event,
    handle_payment_status_event,
    handle_refund_event,
    params_from_event,
    register_handler,
)
from payments.webhooks.tests.conftest import store_event


# =============================================================================
# Registry Tests
# =============================================================================


class TestRegisterHandler:
    """Tests for handler registration decorator."""

    def test_every_event_type_has_a_handler(self):
        for event_type in GatewayEventType.values:
            assert event_type in GATEWAY_EVENT_HANDLERS

    def test_status_events_share_one_handler(self):
        for event_type in ("authorized", "captured", "failed", "cancelled"):
            assert GATEWAY_EVENT_HANDLERS[event_type] is handle_payment_status_event

    def test_refund_events_share_one_handler(self):
        assert GATEWAY_EVENT_HANDLERS["refund_processed"] is handle_refund_event
        assert GATEWAY_EVENT_HANDLERS["refund_failed"] is handle_refund_event

    def test_register_new_handler(self):
        @register_handler("chargeback_opened")
        def chargeback_handler(gateway_event):
            return ServiceResult.success(None)

        try:
            assert GATEWAY_EVENT_HANDLERS["chargeback_opened"] is chargeback_handler
        finally:
            del GATEWAY_EVENT_HANDLERS["chargeback_opened"]


# =============================================================================
# Dispatch Tests
# =============================================================================


class TestDispatchGatewayEvent:
    """Tests for dispatch_gateway_event."""

    def test_unknown_event_type_fails(self, db):
        event = store_event("evt_unknown_001", "chargeback_opened", "PAYWEBHOOK00001")

        result = dispatch_gateway_event(event)

        assert result.success is False
        assert result.error_code == "INVALID_GATEWAY_EVENT"

    def test_dispatch_calls_registered_handler(self, db, mocker):
        handler = mocker.Mock(return_value=ServiceResult.success("ok"))
        mocker.patch.dict(GATEWAY_EVENT_HANDLERS, {"captured": handler})
        event = store_event("evt_mock_001", "captured", "PAYWEBHOOK00001")

        result = dispatch_gateway_event(event)

        handler.assert_called_once_with(event)
        assert result.data == "ok"

    def test_captured_event_completes_payment(self, captured_event, processing_payment):
        result = dispatch_gateway_event(captured_event)

        assert result.success is True
        payment = Payment.objects.get(pk=processing_payment.pk)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.completed_at == at(9)

    def test_unknown_payment_fails(self, db):
        event = store_event(
            "evt_orphan_001",
            "authorized",
            "PAYDOESNOTEXIST",
            occurred_at="2025-01-10T09:00:00Z",
        )

        result = dispatch_gateway_event(event)

        assert result.error_code == "PAYMENT_NOT_FOUND"

    def test_out_of_order_capture_fails(self, pending_payment):
        """captured before authorized is rejected until authorized lands."""
        event = store_event(
            "evt_early_capture",
            "captured",
            pending_payment.payment_id,
            occurred_at="2025-01-10T09:00:00Z",
        )

        result = dispatch_gateway_event(event)

        assert result.error_code == "INVALID_TRANSITION"
        assert Payment.objects.get(pk=pending_payment.pk).status == PaymentStatus.PENDING

    def test_failed_event_records_reason(self, processing_payment):
        event = store_event(
            "evt_declined_001",
            "failed",
            processing_payment.payment_id,
            occurred_at="2025-01-10T09:00:00Z",
            reason="Insufficient funds",
        )

        dispatch_gateway_event(event)

        payment = Payment.objects.get(pk=processing_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Insufficient funds"


# =============================================================================
# Payload Parsing Tests
# =============================================================================


class TestParamsFromEvent:
    """Tests for params_from_event."""

    def test_parses_full_payload(self, captured_event):
        params = params_from_event(captured_event)

        assert params.payment_id == "PAYWEBHOOK00002"
        assert params.event == "captured"
        assert params.at == at(9)
        assert params.amount_cents == 1000
        assert params.gateway_ids == {"gateway_payment_id": "pay_abc"}
        assert params.refund_id is None

    def test_naive_timestamp_treated_as_utc(self, db):
        event = store_event(
            "evt_naive_001", "authorized", "PAY1", occurred_at="2025-01-10T09:00:00"
        )

        assert params_from_event(event).at == at(9)

    def test_missing_timestamp_falls_back_to_receipt_time(self, db):
        event = store_event("evt_no_time_001", "authorized", "PAY1")

        assert params_from_event(event).at == event.created_at

    def test_invalid_timestamp_raises(self, db):
        event = store_event("evt_bad_time_001", "authorized", "PAY1", occurred_at="yesterday")

        with pytest.raises(ValueError):
            params_from_event(event)

    def test_gateway_ids_must_be_object(self, db):
        event = store_event("evt_bad_ids_001", "authorized", "PAY1", gateway_ids=["pay_abc"])

        with pytest.raises(ValueError):
            params_from_event(event)

    def test_malformed_payload_fails_handler(self, processing_payment):
        event = store_event(
            "evt_bad_amount_001",
            "captured",
            processing_payment.payment_id,
            amount_cents="a lot",
        )

        result = handle_payment_status_event(event)

        assert result.error_code == "INVALID_GATEWAY_EVENT"
        assert Payment.objects.get(pk=processing_payment.pk).status == PaymentStatus.PROCESSING


# =============================================================================
# Refund Handler Tests
# =============================================================================


class TestHandleRefundEvent:
    """Tests for refund_processed and refund_failed."""

    @pytest.fixture
    def pending_refund(self, completed_payment):
        return RefundFactory(payment=completed_payment, amount_cents=400, requested_at=at(11))

    def test_missing_refund_id_fails(self, completed_payment):
        event = store_event("evt_refund_001", "refund_processed", completed_payment.payment_id)

        result = handle_refund_event(event)

        assert result.error_code == "INVALID_GATEWAY_EVENT"

    def test_malformed_refund_id_fails(self, completed_payment):
        event = store_event(
            "evt_refund_002",
            "refund_processed",
            completed_payment.payment_id,
            refund_id="not-a-uuid",
        )

        assert handle_refund_event(event).error_code == "INVALID_GATEWAY_EVENT"

    def test_refund_processed_updates_totals(self, completed_payment, pending_refund):
        event = store_event(
            "evt_refund_003",
            "refund_processed",
            completed_payment.payment_id,
            refund_id=str(pending_refund.id),
            refund_reference="rfnd_abc",
            occurred_at="2025-01-10T12:00:00Z",
        )

        result = handle_refund_event(event)

        assert result.success is True
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.net_amount_cents == 600
        assert payment.total_refunded_cents == 400
        refund = payment.refunds.get()
        assert refund.status == RefundStatus.PROCESSED
        assert refund.refund_reference == "rfnd_abc"

    def test_refund_failed_leaves_payment_untouched(self, completed_payment, pending_refund):
        event = store_event(
            "evt_refund_004",
            "refund_failed",
            completed_payment.payment_id,
            refund_id=str(pending_refund.id),
            reason="Bank rejected",
            occurred_at="2025-01-10T12:00:00Z",
        )

        result = handle_refund_event(event)

        assert result.success is True
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.net_amount_cents == 1000
        assert payment.refunds.get().status == RefundStatus.FAILED

    def test_unknown_refund_fails(self, completed_payment):
        event = store_event(
            "evt_refund_005",
            "refund_processed",
            completed_payment.payment_id,
            refund_id=str(uuid.uuid4()),
        )

        assert handle_refund_event(event).error_code == "REFUND_NOT_FOUND"
