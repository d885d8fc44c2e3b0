"""
State enums for payment models.

This module defines all state enums used by payment models with django-fsm,
plus the closed value sets (payment method, gateway, card type) that tag a
payment. These are Django TextChoices for database storage and admin
integration.

State Machines Overview:

Payment States:
    pending → processing → completed
    pending/processing → failed
    pending/processing → cancelled
    completed → partially_refunded → refunded (refund driven)
    completed → refunded (refund driven)

Refund States:
    pending → processed
    pending → failed

SettlementRequest States:
    pending → processing → settled
    pending/processing → failed (claimed payments released)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment model lifecycle.

    Terminal states: FAILED, CANCELLED, REFUNDED

    State Flow:
        PENDING → PROCESSING → COMPLETED

    Failure / Cancellation Flow:
        PENDING → FAILED / CANCELLED
        PROCESSING → FAILED / CANCELLED

    Refund Flow (only via processed refunds, never set directly):
        COMPLETED → PARTIALLY_REFUNDED (0 < net < final)
        COMPLETED → REFUNDED (net == 0)
        PARTIALLY_REFUNDED → PARTIALLY_REFUNDED (another partial refund)
        PARTIALLY_REFUNDED → REFUNDED

    Note:
        A PARTIALLY_REFUNDED payment never returns to COMPLETED.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"

    @classmethod
    def settleable(cls) -> list[str]:
        """Statuses whose net amount counts toward a settlement bucket."""
        return [cls.COMPLETED, cls.PARTIALLY_REFUNDED, cls.REFUNDED]

    @classmethod
    def refund_driven(cls) -> list[str]:
        """Statuses reachable only by processing refunds."""
        return [cls.PARTIALLY_REFUNDED, cls.REFUNDED]


class RefundStatus(models.TextChoices):
    """
    States for the Refund model lifecycle.

    Terminal states: PROCESSED, FAILED

    State Flow:
        PENDING → PROCESSED
        PENDING → FAILED
    """

    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class SettlementRequestStatus(models.TextChoices):
    """
    States for the SettlementRequest lifecycle.

    Forward-only. Terminal states: SETTLED, FAILED

    State Flow:
        PENDING → PROCESSING → SETTLED

    Compensation Flow:
        PENDING → FAILED
        PROCESSING → FAILED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SETTLED = "settled", "Settled"
    FAILED = "failed", "Failed"

    @classmethod
    def open(cls) -> list[str]:
        """Statuses in which a request still holds its claimed payments."""
        return [cls.PENDING, cls.PROCESSING]


class SettlementRequestType(models.TextChoices):
    """
    How a settlement request was filed.

    - NORMAL: Filed by the nightly scheduler for the previous day
    - URGENT: Filed on demand by the merchant for a specific date
    """

    NORMAL = "normal", "Normal"
    URGENT = "urgent", "Urgent"


class PaymentSettlementStatus(models.TextChoices):
    """
    Settlement tag carried by each Payment.

    Rendered as ``none``, ``claimed:<request_id>`` or ``settled:<request_id>``.

    State Flow:
        NONE → CLAIMED → SETTLED
        CLAIMED → NONE (request failed, payment released)
    """

    NONE = "none", "None"
    CLAIMED = "claimed", "Claimed"
    SETTLED = "settled", "Settled"


class PaymentMethodType(models.TextChoices):
    """Payment instrument used by the customer."""

    CARD = "card", "Card"
    UPI = "upi", "UPI"
    NETBANKING = "netbanking", "Net Banking"
    WALLET = "wallet", "Wallet"
    CASH = "cash", "Cash"


class PaymentGateway(models.TextChoices):
    """Gateway that processed the charge."""

    RAZORPAY = "razorpay", "Razorpay"
    PAYU = "payu", "PayU"
    CASHFREE = "cashfree", "Cashfree"
    STRIPE = "stripe", "Stripe"
    MANUAL = "manual", "Manual"


class CardType(models.TextChoices):
    """Card variant details; only meaningful when method_type is CARD."""

    CREDIT = "credit", "Credit"
    DEBIT = "debit", "Debit"


class GatewayEventType(models.TextChoices):
    """
    Event types delivered by the gateway adapter.

    Mapping onto the ledger:
        AUTHORIZED → payment PROCESSING
        CAPTURED → payment COMPLETED
        FAILED → payment FAILED
        CANCELLED → payment CANCELLED
        REFUND_PROCESSED → refund PROCESSED
        REFUND_FAILED → refund FAILED
    """

    AUTHORIZED = "authorized", "Authorized"
    CAPTURED = "captured", "Captured"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUND_PROCESSED = "refund_processed", "Refund Processed"
    REFUND_FAILED = "refund_failed", "Refund Failed"


class GatewayEventStatus(models.TextChoices):
    """
    Processing status for GatewayEvent.

    Tracks the lifecycle of gateway event processing for idempotency.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
