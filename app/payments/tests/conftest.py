"""
Pytest fixtures for ledger and settlement tests.

Fixtures provide payments in various states, built through real model
transitions, plus a fixed settlement calendar (UTC) and a mocked Redis
connection for lock tests.

Usage:
    def test_refund_completed_payment(completed_payment):
        result = LedgerService.apply_refund(completed_payment.payment_id, 400)
        assert result.success
"""

import uuid

import pytest

from payments.tests.factories import (
    PaymentFactory,
    at,
    create_completed_payment,
    create_processing_payment,
)


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def settlement_settings(settings):
    """Pin the settlement calendar and gateway secret for every test."""
    settings.SETTLEMENT_TIMEZONE = "UTC"
    settings.SETTLEMENT_CURRENCY = "inr"
    settings.PAYMENT_GATEWAY_WEBHOOK_SECRET = "whsec_test"
    settings.NORMAL_SETTLEMENT_ENABLED = True
    return settings


# =============================================================================
# Vendor Fixtures
# =============================================================================


@pytest.fixture
def vendor_id():
    return uuid.uuid4()


@pytest.fixture
def other_vendor_id():
    return uuid.uuid4()


# =============================================================================
# Payment State Fixtures
# =============================================================================


@pytest.fixture
def pending_payment(db, vendor_id):
    """Create a pending payment."""
    return PaymentFactory(vendor_id=vendor_id, initiated_at=at(8))


@pytest.fixture
def processing_payment(db, vendor_id):
    """Create a payment the gateway authorized."""
    return create_processing_payment(vendor_id=vendor_id, processed_at=at(8, 30))


@pytest.fixture
def completed_payment(db, vendor_id):
    """Create a captured payment of 1000 on TXN_DATE."""
    return create_completed_payment(
        vendor_id=vendor_id,
        amount_cents=1000,
        completed_at=at(9),
    )


@pytest.fixture
def day_payments(db, vendor_id):
    """Three captured payments (100, 200, 300) on TXN_DATE."""
    return [
        create_completed_payment(vendor_id=vendor_id, amount_cents=100, completed_at=at(9)),
        create_completed_payment(vendor_id=vendor_id, amount_cents=200, completed_at=at(11)),
        create_completed_payment(vendor_id=vendor_id, amount_cents=300, completed_at=at(15)),
    ]


# =============================================================================
# Mock Redis Fixture (for lock tests)
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.delete.return_value = 1
    mock_client.eval.return_value = 1

    mocker.patch("payments.locks.get_redis_connection", return_value=mock_client)

    return mock_client


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """A merchant-side API user."""
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(
        username="merchant",
        email="merchant@example.com",
        password="testpass123",
    )


@pytest.fixture
def staff_user(db):
    """An operator with staff access."""
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(
        username="operator",
        email="operator@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def user_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def staff_client(api_client, staff_user):
    api_client.force_authenticate(user=staff_user)
    return api_client
