"""
Payment-specific exceptions for ledger and settlement operations.

Services raise these internally and convert them to ServiceResult failures
at their public boundary (BaseService.handle_exception), so callers see a
machine-readable error_code rather than an exception. The API layer maps
the families to HTTP status codes.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Unknown payment id (NotFoundError)
    ├── RefundNotFoundError - Unknown refund id (NotFoundError)
    ├── SettlementRequestNotFoundError - Unknown request id (NotFoundError)
    ├── PaymentValidationError - Malformed input (ValidationError)
    │   ├── InvalidAmountError - Non-positive or inconsistent amounts
    │   └── InvalidGatewayEventError - Unusable gateway event
    ├── InvalidTransitionError - Edge not in the payment state table (ConflictError)
    ├── InvalidStateError - Operation not allowed in current state (ConflictError)
    │   ├── InvalidPaymentStateError
    │   └── InvalidSettlementStateError
    ├── RefundExceedsBalanceError - Refund above refundable amount (ConflictError)
    ├── NothingToSettleError - No pending amount for the day (ConflictError)
    ├── AmountMismatchError - Caller's figure differs from pending (ConflictError)
    ├── ConcurrentClaimError - Lost a claim race, retry (ConflictError)
    └── InvalidGatewaySignatureError - Bad HMAC on inbound event

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import AmountMismatchError

    if requested_amount_cents != bucket.pending_settlement:
        raise AmountMismatchError(
            "Amount mismatch. Please refresh and try again.",
            details={
                "calculated": bucket.pending_settlement,
                "provided": requested_amount_cents,
            },
        )
"""

from __future__ import annotations

import logging

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


# -----------------------------------------------------------------------------
# Not Found (HTTP 404)
# -----------------------------------------------------------------------------


class PaymentNotFoundError(PaymentError, NotFoundError):
    """
    Raised when a payment id is unknown.

    Example:
        raise PaymentNotFoundError(
            f"Payment {payment_id} not found",
            details={"payment_id": payment_id},
        )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class RefundNotFoundError(PaymentError, NotFoundError):
    """Raised when a refund id is unknown or belongs to another payment."""

    default_error_code: str = "REFUND_NOT_FOUND"


class SettlementRequestNotFoundError(PaymentError, NotFoundError):
    """Raised when a settlement request id is unknown."""

    default_error_code: str = "SETTLEMENT_REQUEST_NOT_FOUND"


# -----------------------------------------------------------------------------
# Validation (HTTP 400)
# -----------------------------------------------------------------------------


class PaymentValidationError(PaymentError, ValidationError):
    """
    Raised when payment input is malformed.

    Use for:
    - Card details on a non-card payment
    - Unknown enum values
    - Missing required references
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class InvalidAmountError(PaymentValidationError):
    """
    Raised when an amount is non-positive or breaks amount arithmetic.

    Example:
        if amount_cents <= 0:
            raise InvalidAmountError(
                "Refund amount must be positive",
                details={"amount_cents": amount_cents},
            )
    """

    default_error_code: str = "INVALID_AMOUNT"


class InvalidGatewayEventError(PaymentValidationError):
    """
    Raised when a gateway event cannot be applied.

    Use for unknown event types, missing refund ids, or a captured amount
    that disagrees with the payment's final amount.
    """

    default_error_code: str = "INVALID_GATEWAY_EVENT"


# -----------------------------------------------------------------------------
# State Conflicts (HTTP 409)
# -----------------------------------------------------------------------------


class InvalidTransitionError(PaymentError, ConflictError):
    """
    Raised when a payment status change is not in the transition table.

    Wraps django-fsm's TransitionNotAllowed. Usually an out-of-order
    gateway delivery; logged and surfaced, never silently corrected.

    Example:
        from django_fsm import TransitionNotAllowed

        try:
            payment.complete(at=at)
        except TransitionNotAllowed:
            raise InvalidTransitionError(
                f"Cannot move payment from '{payment.status}' to 'completed'",
                details={"current_status": payment.status, "target_status": "completed"},
            )
    """

    default_error_code: str = "INVALID_TRANSITION"


class InvalidStateError(PaymentError, ConflictError):
    """Raised when an operation is not allowed in the entity's current state."""

    default_error_code: str = "INVALID_STATE"


class InvalidPaymentStateError(InvalidStateError):
    """Raised when e.g. a refund is requested on a payment that is not completed."""


class InvalidSettlementStateError(InvalidStateError):
    """Raised when e.g. completing a settlement request that is not processing."""


class RefundExceedsBalanceError(PaymentError, ConflictError):
    """
    Raised when a refund exceeds the payment's refundable amount.

    The refundable amount is the net amount minus refunds still pending.
    """

    default_error_code: str = "REFUND_EXCEEDS_BALANCE"


class NothingToSettleError(PaymentError, ConflictError):
    """Raised when a vendor's pending settlement for the date is zero."""

    default_error_code: str = "NOTHING_TO_SETTLE"


class AmountMismatchError(PaymentError, ConflictError):
    """
    Raised when the requested settlement amount differs from the pending amount.

    The amount is derived, not user-supplied truth; the caller's figure only
    confirms what they last observed. details carries calculated/provided.
    """

    default_error_code: str = "AMOUNT_MISMATCH"


class ConcurrentClaimError(PaymentError, ConflictError):
    """
    Raised when another claim for the same vendor and date won the race.

    Transient: the caller should refresh the bucket and retry.
    """

    default_error_code: str = "CONCURRENT_CLAIM"


class InvalidGatewaySignatureError(PaymentError):
    """Raised when an inbound gateway event fails HMAC verification."""

    default_error_code: str = "INVALID_SIGNATURE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The record was modified by another process between read and update.
    The caller should either retry the operation with fresh data or abort.

    Attributes:
        details: Contains pk, expected_version, and current_version

    Note:
        This exception inherits from ConflictError (HTTP 409) because
        it represents a state conflict that prevents the operation.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another process holds the lock and it couldn't be acquired within
    the timeout period.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Helpers
# =============================================================================


def log_level_for(exc: Exception) -> int:
    """
    Logging level for a domain error converted at a service boundary.

    Business-rule rejections and lookups are expected traffic (INFO).
    Out-of-order transitions and lost races deserve attention (WARNING).
    Anything else is unexpected (ERROR, logged with traceback).
    """
    if isinstance(
        exc,
        (InvalidTransitionError, InvalidStateError, StaleRecordError, ConcurrentClaimError),
    ):
        return logging.WARNING
    if isinstance(exc, BaseApplicationError):
        return logging.INFO
    return logging.ERROR


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "RefundNotFoundError",
    "SettlementRequestNotFoundError",
    "PaymentValidationError",
    "InvalidAmountError",
    "InvalidGatewayEventError",
    "InvalidTransitionError",
    "InvalidStateError",
    "InvalidPaymentStateError",
    "InvalidSettlementStateError",
    "RefundExceedsBalanceError",
    "NothingToSettleError",
    "AmountMismatchError",
    "ConcurrentClaimError",
    "InvalidGatewaySignatureError",
    # Concurrency control
    "StaleRecordError",
    "LockAcquisitionError",
    # Helpers
    "log_level_for",
]
