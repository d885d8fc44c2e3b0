"""
Payments app configuration.

This app provides the payment ledger and vendor settlement reconciliation:
- Payment and refund ledger with django-fsm state machines
- Daily settlement buckets and urgent settlement claims
- Gateway event ingestion
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
