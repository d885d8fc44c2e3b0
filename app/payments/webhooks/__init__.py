"""
Webhook handling for payment gateway events.

Events are verified, stored idempotently, and applied to the ledger
asynchronously via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import gateway_webhook

    urlpatterns = [
        path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_gateway_event, register_handler
from payments.webhooks.views import gateway_webhook

__all__ = [
    "dispatch_gateway_event",
    "gateway_webhook",
    "register_handler",
]
