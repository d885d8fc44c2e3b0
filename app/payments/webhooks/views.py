"""
Webhook endpoint view for the payment gateway adapter.

The view:
1. Verifies the HMAC-SHA256 signature of the raw body
2. Creates/retrieves the GatewayEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.exceptions import InvalidGatewaySignatureError
from payments.models import GatewayEvent
from payments.state_machines import GatewayEventStatus, GatewayEventType

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Gateway-Signature"


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str) -> None:
    """
    Check a delivery's signature against PAYMENT_GATEWAY_WEBHOOK_SECRET.

    Raises:
        InvalidGatewaySignatureError: Secret not configured or mismatch
    """
    secret = settings.PAYMENT_GATEWAY_WEBHOOK_SECRET
    if not secret:
        raise InvalidGatewaySignatureError("Gateway webhook secret is not configured")

    expected = compute_signature(payload, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidGatewaySignatureError("Signature mismatch")


@csrf_exempt
@require_POST
def gateway_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue gateway events.

    Security:
    - HMAC verification prevents spoofed events
    - CSRF exemption required for external callers
    - Only POST requests accepted

    Idempotency:
    - GatewayEvent.event_id is unique
    - A processed duplicate returns 200 without being queued again

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing/invalid signature or malformed payload
    """
    payload = request.body
    signature = request.headers.get(SIGNATURE_HEADER, "")

    if not signature:
        logger.warning("Gateway event received without signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    try:
        verify_signature(payload, signature)
    except InvalidGatewaySignatureError as e:
        logger.warning(
            "Gateway event signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)

    try:
        event_data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Gateway event body is not valid JSON")
        return HttpResponse("Invalid payload", status=400)

    if not isinstance(event_data, dict):
        return HttpResponse("Invalid payload", status=400)

    event_id = event_data.get("id")
    event_type = event_data.get("event")
    payment_id = event_data.get("payment_id")

    if not event_id or not payment_id or event_type not in GatewayEventType.values:
        logger.warning(
            "Gateway event missing required fields",
            extra={"gateway_event_id": event_id, "event_type": event_type},
        )
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received gateway event: {event_type}",
        extra={
            "gateway_event_id": event_id,
            "event_type": event_type,
            "payment_id": payment_id,
        },
    )

    # Step 2: Create/get GatewayEvent (idempotent)
    gateway_event, created = GatewayEvent.objects.get_or_create(
        event_id=event_id,
        defaults={
            "event_type": event_type,
            "payment_id": payment_id,
            "payload": event_data,
            "status": GatewayEventStatus.PENDING,
        },
    )

    # Step 3: If already processed, return success
    if not created:
        if gateway_event.is_processed:
            logger.info(
                "Gateway event already processed, returning success",
                extra={"gateway_event_id": event_id},
            )
            return HttpResponse("Already processed", status=200)

        logger.info(
            f"Gateway event already exists with status: {gateway_event.status}",
            extra={"gateway_event_id": event_id},
        )

    # Step 4: Queue for async processing
    try:
        from payments.tasks import process_gateway_event

        process_gateway_event.delay(str(gateway_event.id))
        logger.info(
            "Gateway event queued for processing",
            extra={"gateway_event_id": event_id, "stored_event_id": str(gateway_event.id)},
        )
    except Exception as e:
        # Stored as pending; retry_failed_gateway_events or a re-delivery picks it up
        logger.error(
            f"Failed to queue gateway event: {type(e).__name__}",
            extra={"gateway_event_id": event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
