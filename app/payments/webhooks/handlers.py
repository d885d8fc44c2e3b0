"""
Gateway event handlers.

This module provides a handler registry and the handlers that apply stored
GatewayEvent records to the ledger.

Payload shape (JSON body as signed by the gateway adapter):
    {
        "id": "evt_123",                      # unique event id
        "event": "captured",                  # GatewayEventType
        "payment_id": "PAY0A1B2C3D4E5F",
        "occurred_at": "2025-01-10T09:30:00Z",
        "amount_cents": 1000,                 # captured only, optional
        "refund_id": "<uuid>",                # refund events only
        "refund_reference": "rfnd_abc",       # refund events only, optional
        "reason": "Insufficient funds",       # failure events, optional
        "gateway_ids": {"gateway_payment_id": "pay_abc", ...}
    }

Usage:
    from payments.webhooks.handlers import dispatch_gateway_event, register_handler

    @register_handler("chargeback_opened")
    def handle_chargeback(gateway_event: GatewayEvent) -> ServiceResult:
        ...

    result = dispatch_gateway_event(gateway_event)
"""

from __future__ import annotations

import logging
import uuid
from datetime import timezone as dt_timezone
from typing import Callable

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.services import ServiceResult

from payments.models import GatewayEvent
from payments.services import LedgerService
from payments.state_machines import GatewayEventType
from payments.types import GatewayEventParams

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
GATEWAY_EVENT_HANDLERS: dict[str, Callable[[GatewayEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a gateway event handler.

    Stacking the decorator registers one handler for several event types.

    Args:
        event_type: A GatewayEventType value

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[GatewayEvent], ServiceResult]) -> Callable:
        GATEWAY_EVENT_HANDLERS[str(event_type)] = func
        logger.debug(f"Registered gateway event handler for {event_type}")
        return func

    return decorator


def dispatch_gateway_event(gateway_event: GatewayEvent) -> ServiceResult:
    """
    Dispatch a stored event to the handler for its type.

    Unknown event types return a failure so the event is kept as FAILED for
    inspection rather than silently marked processed.
    """
    handler = GATEWAY_EVENT_HANDLERS.get(gateway_event.event_type)

    if not handler:
        logger.warning(
            f"No handler registered for gateway event type: {gateway_event.event_type}",
            extra={"gateway_event_id": gateway_event.event_id},
        )
        return ServiceResult.failure(
            f"Unsupported gateway event type '{gateway_event.event_type}'",
            error_code="INVALID_GATEWAY_EVENT",
        )

    logger.info(
        f"Dispatching {gateway_event.event_type} to handler",
        extra={
            "gateway_event_id": gateway_event.event_id,
            "payment_id": gateway_event.payment_id,
        },
    )
    return handler(gateway_event)


# =============================================================================
# Payload Parsing
# =============================================================================


def params_from_event(gateway_event: GatewayEvent) -> GatewayEventParams:
    """
    Build ledger parameters from a stored event.

    Raises:
        ValueError: Malformed timestamp, amount or refund id in the payload
    """
    payload = gateway_event.payload or {}

    occurred_at = payload.get("occurred_at")
    at = parse_datetime(occurred_at) if occurred_at else gateway_event.created_at
    if at is None:
        raise ValueError(f"Invalid occurred_at '{occurred_at}'")
    if timezone.is_naive(at):
        at = timezone.make_aware(at, dt_timezone.utc)

    amount = payload.get("amount_cents")
    refund_id = payload.get("refund_id")
    gateway_ids = payload.get("gateway_ids") or {}
    if not isinstance(gateway_ids, dict):
        raise ValueError("gateway_ids must be an object")

    return GatewayEventParams(
        payment_id=gateway_event.payment_id,
        event=gateway_event.event_type,
        at=at,
        gateway_ids={key: str(value) for key, value in gateway_ids.items()},
        amount_cents=int(amount) if amount is not None else None,
        refund_id=uuid.UUID(str(refund_id)) if refund_id else None,
        refund_reference=payload.get("refund_reference"),
        reason=payload.get("reason"),
    )


def _apply(gateway_event: GatewayEvent) -> ServiceResult:
    try:
        params = params_from_event(gateway_event)
    except (TypeError, ValueError) as e:
        logger.warning(
            f"Malformed gateway event payload: {e}",
            extra={"gateway_event_id": gateway_event.event_id},
        )
        return ServiceResult.failure(
            f"Malformed gateway event payload: {e}",
            error_code="INVALID_GATEWAY_EVENT",
        )
    return LedgerService.on_gateway_event(params)


# =============================================================================
# Payment Status Handlers
# =============================================================================


@register_handler(GatewayEventType.AUTHORIZED)
@register_handler(GatewayEventType.CAPTURED)
@register_handler(GatewayEventType.FAILED)
@register_handler(GatewayEventType.CANCELLED)
def handle_payment_status_event(gateway_event: GatewayEvent) -> ServiceResult:
    """
    Record a payment status change reported by the gateway.

    Re-delivery of an already applied event is a no-op success in the
    ledger. An out-of-order delivery (e.g. captured before authorized)
    fails with INVALID_TRANSITION and is retried by
    retry_failed_gateway_events once the earlier event has been applied.
    """
    return _apply(gateway_event)


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(GatewayEventType.REFUND_PROCESSED)
@register_handler(GatewayEventType.REFUND_FAILED)
def handle_refund_event(gateway_event: GatewayEvent) -> ServiceResult:
    """Fold a gateway refund outcome into the payment's totals."""
    if not (gateway_event.payload or {}).get("refund_id"):
        logger.error(
            f"{gateway_event.event_type}: missing refund_id",
            extra={"gateway_event_id": gateway_event.event_id},
        )
        return ServiceResult.failure(
            "Refund events must carry a refund_id",
            error_code="INVALID_GATEWAY_EVENT",
        )
    return _apply(gateway_event)
