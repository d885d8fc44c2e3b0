"""
Concurrent claim tests on real transactions.

Each thread runs on its own database connection, so these tests need a
PostgreSQL DATABASE_URL; SQLite serializes writers and has no row locks.

Tests cover:
1. Many claims for one vendor and date: exactly one wins
2. Claims racing refunds: no request holds more than its payments' net
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest
from django.db import connection

from payments.models import Payment, SettlementRequest
from payments.services import LedgerService, SettlementBucketCalculator, SettlementCoordinator
from payments.state_machines import SettlementRequestType
from payments.tests.factories import TXN_DATE, at, create_completed_payment

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("DATABASE_URL", "").startswith(("postgres", "pgsql")),
        reason="needs a PostgreSQL database",
    ),
]

CLAIMANTS = 8


def run_concurrently(calls):
    """Run each zero-argument callable on its own thread and connection."""

    def on_own_connection(call):
        try:
            return call()
        finally:
            connection.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        futures = [executor.submit(on_own_connection, call) for call in calls]
        return [future.result() for future in as_completed(futures)]


@pytest.mark.django_db(transaction=True)
class TestConcurrentClaimsOnDatabase:
    """Claims and refunds hitting one vendor's day at the same time."""

    def test_exactly_one_claim_wins(self, vendor_id):
        for hour, amount in ((9, 100), (11, 200), (15, 300)):
            create_completed_payment(vendor_id=vendor_id, amount_cents=amount, completed_at=at(hour))

        def claim():
            return SettlementCoordinator.request_urgent_settlement(
                vendor_id, TXN_DATE, 600, now=at(16)
            )

        results = run_concurrently([claim] * CLAIMANTS)

        winners = [result for result in results if result.success]
        assert len(winners) == 1
        assert {result.error_code for result in results if not result.success} <= {
            "NOTHING_TO_SETTLE",
            "CONCURRENT_CLAIM",
        }
        claimed = SettlementRequest.objects.filter(vendor_id=vendor_id).values_list(
            "claimed_amount_cents", flat=True
        )
        assert sum(claimed) == 600
        holders = set(
            Payment.objects.filter(vendor_id=vendor_id).values_list(
                "settlement_request_id", flat=True
            )
        )
        assert holders == {winners[0].data.id}

    def test_claims_racing_refunds_never_over_claim(self, vendor_id):
        payments = [
            create_completed_payment(vendor_id=vendor_id, amount_cents=250, completed_at=at(9 + i))
            for i in range(4)
        ]

        def claim():
            return SettlementCoordinator.request_settlement(
                vendor_id,
                TXN_DATE,
                request_type=SettlementRequestType.NORMAL,
                now=at(16),
            )

        def refund(payment_id):
            def call():
                created = LedgerService.apply_refund(payment_id, 100)
                if created.success:
                    LedgerService.mark_refund_processed(payment_id, created.data.id, at=at(17))
                return created

            return call

        calls = [claim] * len(payments) + [refund(p.payment_id) for p in payments]
        results = run_concurrently(calls)

        assert {result.error_code for result in results if not result.success} <= {
            "NOTHING_TO_SETTLE",
            "CONCURRENT_CLAIM",
            "INVALID_STATE",
        }
        bucket = SettlementBucketCalculator.build_bucket(vendor_id, TXN_DATE)
        total_claimed = 0
        for request in SettlementRequest.objects.filter(vendor_id=vendor_id):
            held = Payment.objects.filter(settlement_request=request).values_list(
                "net_amount_cents", flat=True
            )
            assert request.claimed_amount_cents == sum(held)
            total_claimed += request.claimed_amount_cents
        assert total_claimed == bucket.in_settlement_process
        assert total_claimed <= bucket.total_to_be_received
