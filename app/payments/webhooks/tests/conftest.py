"""
Pytest fixtures for webhook tests.

Provides fixtures for testing the gateway webhook view, handlers and tasks:
signed request builders, stored GatewayEvent records in each status, and
payments for the events to act on.
"""

import json

import pytest
from django.test import RequestFactory

from payments.models import GatewayEvent
from payments.state_machines import GatewayEventStatus, GatewayEventType
from payments.tests.factories import (
    PaymentFactory,
    at,
    create_completed_payment,
    create_processing_payment,
)
from payments.webhooks.views import compute_signature

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def gateway_settings(settings):
    """Pin the webhook secret and settlement calendar for every test."""
    settings.PAYMENT_GATEWAY_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.SETTLEMENT_TIMEZONE = "UTC"
    settings.PAYMENT_GATEWAY_EVENT_MAX_RETRIES = 5
    return settings


# =============================================================================
# Payment Fixtures
# =============================================================================


@pytest.fixture
def pending_payment(db):
    return PaymentFactory(payment_id="PAYWEBHOOK00001", initiated_at=at(8))


@pytest.fixture
def processing_payment(db):
    return create_processing_payment(payment_id="PAYWEBHOOK00002", processed_at=at(8, 30))


@pytest.fixture
def completed_payment(db):
    return create_completed_payment(
        payment_id="PAYWEBHOOK00003",
        amount_cents=1000,
        completed_at=at(9),
    )


# =============================================================================
# Gateway Event Fixtures
# =============================================================================


def store_event(event_id, event_type, payment_id, status=GatewayEventStatus.PENDING, **payload):
    body = {"id": event_id, "event": event_type, "payment_id": payment_id, **payload}
    return GatewayEvent.objects.create(
        event_id=event_id,
        event_type=event_type,
        payment_id=payment_id,
        payload=body,
        status=status,
    )


@pytest.fixture
def captured_event(processing_payment):
    """A PENDING captured event for processing_payment."""
    return store_event(
        "evt_captured_001",
        GatewayEventType.CAPTURED,
        processing_payment.payment_id,
        occurred_at="2025-01-10T09:00:00Z",
        amount_cents=1000,
        gateway_ids={"gateway_payment_id": "pay_abc"},
    )


@pytest.fixture
def processed_event(db):
    event = store_event("evt_processed_001", GatewayEventType.CAPTURED, "PAYWEBHOOK00009")
    event.mark_processing()
    event.mark_processed()
    event.save()
    return event


@pytest.fixture
def failed_event(processing_payment):
    event = store_event(
        "evt_failed_001",
        GatewayEventType.CAPTURED,
        processing_payment.payment_id,
        occurred_at="2025-01-10T09:00:00Z",
    )
    event.mark_processing()
    event.mark_failed("INVALID_TRANSITION: out of order")
    event.save()
    return event


# =============================================================================
# Request Builders
# =============================================================================


@pytest.fixture
def rf():
    return RequestFactory()


@pytest.fixture
def signed_request(rf):
    """
    Build a POST to the gateway webhook with a valid signature.

    Pass signature= to override (None omits the header).
    """

    def _build(payload, signature="", body=None):
        raw = body if body is not None else json.dumps(payload).encode()
        headers = {}
        if signature is not None:
            headers["HTTP_X_GATEWAY_SIGNATURE"] = signature or compute_signature(
                raw, WEBHOOK_SECRET
            )
        return rf.post(
            "/api/v1/payments/webhooks/gateway/",
            data=raw,
            content_type="application/json",
            **headers,
        )

    return _build


@pytest.fixture
def mock_process_task(mocker):
    """Stop the view from queueing real Celery work."""
    return mocker.patch("payments.tasks.process_gateway_event.delay")
