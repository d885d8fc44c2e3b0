"""
Pytest fixtures for settlement worker tests.
"""

import uuid

import pytest

from payments.tests.factories import TXN_DATE, at, create_completed_payment


@pytest.fixture(autouse=True)
def settlement_settings(settings):
    settings.SETTLEMENT_TIMEZONE = "UTC"
    settings.NORMAL_SETTLEMENT_ENABLED = True
    settings.SETTLEMENT_LOCK_TTL_SECONDS = 60
    settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS = 5.0
    return settings


@pytest.fixture
def mock_redis(mocker):
    """Redis client double that grants every lock."""
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch("payments.locks.get_redis_connection", return_value=mock_client)

    return mock_client


@pytest.fixture
def vendor_revenue(db):
    """Two vendors with captured revenue on TXN_DATE (700 and 250)."""
    first, second = uuid.uuid4(), uuid.uuid4()
    create_completed_payment(vendor_id=first, amount_cents=300, completed_at=at(9))
    create_completed_payment(vendor_id=first, amount_cents=400, completed_at=at(16))
    create_completed_payment(vendor_id=second, amount_cents=250, completed_at=at(12))
    return {first: 700, second: 250}


@pytest.fixture
def txn_date_iso():
    return TXN_DATE.isoformat()
