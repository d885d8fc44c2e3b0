"""
Workers for async settlement processing.

This module contains Celery tasks for background settlement operations:
- schedule_daily_settlements: Files NORMAL requests for yesterday's revenue
- process_pending_settlements: Queues pickup of PENDING requests
- begin_single_settlement: Moves one request to PROCESSING under a lock

Usage:
    from payments.workers import process_pending_settlements

    process_pending_settlements.delay()
"""

from payments.workers.settlement_executor import (
    begin_single_settlement,
    process_pending_settlements,
    schedule_daily_settlements,
)

__all__ = [
    "begin_single_settlement",
    "process_pending_settlements",
    "schedule_daily_settlements",
]
