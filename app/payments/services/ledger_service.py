"""
Ledger service: the only writer of Payment and Refund records.

This module provides the LedgerService class which records money taken from
customers and money given back. Every public operation returns a
ServiceResult; domain errors are converted at this boundary and never
propagate to callers. Only storage failures raise.

Concurrency:
    Operations on one payment are serialized by locking its row
    (select_for_update) inside a transaction. Callers holding a stale read
    may pass expected_version to have the write rejected instead.

Idempotency:
    Gateways deliver at least once. Re-recording a transition whose
    timestamp is already set, or re-processing a processed refund, is a
    no-op success.

Usage:
    from payments.services import LedgerService
    from payments.state_machines import PaymentStatus

    result = LedgerService.record_transition(
        "PAY0A1B2C3D4E5F", PaymentStatus.COMPLETED, at=captured_at
    )
    if not result.success:
        logger.warning(result.error_code)

    result = LedgerService.apply_refund("PAY0A1B2C3D4E5F", 400, "Late arrival")
    refund = result.data
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from django.db.models import F, Sum
from django.utils import timezone

from django_fsm import can_proceed

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from payments.exceptions import (
    InvalidAmountError,
    InvalidGatewayEventError,
    InvalidPaymentStateError,
    InvalidStateError,
    InvalidTransitionError,
    PaymentNotFoundError,
    RefundExceedsBalanceError,
    RefundNotFoundError,
    log_level_for,
)
from payments.locks import check_version
from payments.models import Payment, Refund, SettlementCursor
from payments.services.bucket_calculator import SettlementBucketCalculator
from payments.state_machines import (
    GatewayEventType,
    PaymentSettlementStatus,
    PaymentStatus,
    RefundStatus,
)

if TYPE_CHECKING:
    import uuid

    from payments.types import CreatePaymentParams, GatewayEventParams


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Target status -> (FSM transition method, timestamp field it sets).
# Refund-driven statuses are absent: they are reached only by processing
# refunds, never recorded directly.
TRANSITIONS: dict[str, tuple[str, str]] = {
    PaymentStatus.PROCESSING: ("start_processing", "processed_at"),
    PaymentStatus.COMPLETED: ("complete", "completed_at"),
    PaymentStatus.FAILED: ("fail", "failed_at"),
    PaymentStatus.CANCELLED: ("cancel", "cancelled_at"),
}

# Gateway event -> payment status it records
EVENT_TRANSITIONS: dict[str, str] = {
    GatewayEventType.AUTHORIZED: PaymentStatus.PROCESSING,
    GatewayEventType.CAPTURED: PaymentStatus.COMPLETED,
    GatewayEventType.FAILED: PaymentStatus.FAILED,
    GatewayEventType.CANCELLED: PaymentStatus.CANCELLED,
}

# Statuses that accept new refunds
REFUNDABLE_STATUSES = frozenset(
    [PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED]
)

# Gateway id keys merged into Payment.transaction_details
GATEWAY_ID_KEYS = (
    "gateway_payment_id",
    "gateway_order_id",
    "gateway_signature",
    "ref_number",
)


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundOutcome:
    """
    Result of a refund status change.

    Attributes:
        payment: The payment after totals were recomputed
        refund: The refund record
    """

    payment: Payment
    refund: Refund


# =============================================================================
# Ledger Service
# =============================================================================


class LedgerService(BaseService):
    """
    Records charges, status transitions and refunds.

    State Machine (enforced by django-fsm on Payment):
        PENDING -> PROCESSING -> COMPLETED
        PENDING/PROCESSING -> FAILED/CANCELLED
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED/REFUNDED (refunds)

    Invariants maintained:
        - final = base + tax - discount (validated on create, DB check)
        - net = final - total_refunded >= 0 (updated with each refund)
        - each lifecycle timestamp set at most once, never earlier than
          the ones before it
    """

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_payment(cls, payment_id: str) -> ServiceResult[Payment]:
        """Look up a payment by its external id."""
        payment = Payment.objects.filter(payment_id=payment_id).first()
        if payment is None:
            return cls.handle_exception(
                cls._not_found(payment_id),
                "get_payment",
                log_level=logging.INFO,
            )
        return ServiceResult.success(payment)

    @classmethod
    def can_be_refunded(cls, payment_id: str) -> ServiceResult[bool]:
        """
        Whether the payment accepts another refund.

        True for completed or partially refunded payments with a positive
        net amount.
        """
        payment = Payment.objects.filter(payment_id=payment_id).first()
        if payment is None:
            return cls.handle_exception(
                cls._not_found(payment_id),
                "can_be_refunded",
                log_level=logging.INFO,
            )
        return ServiceResult.success(payment.can_be_refunded)

    @classmethod
    def refundable_amount(cls, payment: Payment) -> int:
        """Net amount minus refunds that are still pending."""
        pending = (
            payment.refunds.filter(status=RefundStatus.PENDING).aggregate(
                total=Sum("amount_cents")
            )["total"]
            or 0
        )
        return max(payment.net_amount_cents - pending, 0)

    # =========================================================================
    # Creation (booking/order boundary)
    # =========================================================================

    @classmethod
    def create_payment(
        cls,
        params: CreatePaymentParams,
        now: datetime | None = None,
    ) -> ServiceResult[Payment]:
        """
        Record a new charge attempt in PENDING.

        Args:
            params: References, amounts and payment method
            now: Clock value for initiated_at (defaults to timezone.now())

        Returns:
            ServiceResult with the created Payment, or a failure with
            INVALID_AMOUNT / PAYMENT_VALIDATION_ERROR / DUPLICATE_PAYMENT
        """
        try:
            params.validate()
        except BaseApplicationError as e:
            return cls.handle_exception(e, "create_payment", log_level=logging.INFO)

        if params.payment_id and Payment.objects.filter(payment_id=params.payment_id).exists():
            cls.get_logger().info(
                "Duplicate payment id rejected",
                extra={"payment_id": params.payment_id},
            )
            return ServiceResult.failure(
                f"Payment {params.payment_id} already exists",
                error_code="DUPLICATE_PAYMENT",
                details={"payment_id": params.payment_id},
            )

        fields = {
            "booking_id": params.booking_id,
            "user_id": params.user_id,
            "vendor_id": params.vendor_id,
            "station_id": params.station_id,
            "base_amount_cents": params.base_amount_cents,
            "tax_amount_cents": params.tax_amount_cents,
            "discount_amount_cents": params.discount_amount_cents,
            "final_amount_cents": params.final_amount_cents,
            "net_amount_cents": params.final_amount_cents,
            "method_type": params.method_type,
            "gateway": params.gateway,
            "card_type": params.card_type,
            "bank_name": params.bank_name,
            "card_last4": params.card_last4,
            "metadata": params.metadata or {},
            "initiated_at": now or timezone.now(),
        }
        if params.currency:
            fields["currency"] = params.currency.lower()
        if params.payment_id:
            fields["payment_id"] = params.payment_id

        payment = Payment.objects.create(**fields)

        cls.get_logger().info(
            "Payment created",
            extra={
                "payment_id": payment.payment_id,
                "vendor_id": str(payment.vendor_id),
                "final_amount_cents": payment.final_amount_cents,
            },
        )
        return ServiceResult.success(payment)

    # =========================================================================
    # Status Transitions
    # =========================================================================

    @classmethod
    def record_transition(
        cls,
        payment_id: str,
        new_status: str,
        at: datetime | None = None,
        gateway_ids: dict[str, str] | None = None,
        expected_version: int | None = None,
        reason: str | None = None,
    ) -> ServiceResult[Payment]:
        """
        Move a payment along its state machine.

        Re-recording a transition whose timestamp is already set is a no-op
        success, which makes gateway re-delivery safe.

        Args:
            payment_id: External payment id
            new_status: Target PaymentStatus (processing, completed, failed,
                cancelled)
            at: When it happened (defaults to timezone.now())
            gateway_ids: Opaque gateway ids merged into transaction_details
            expected_version: Reject the write if the payment has moved on
            reason: Failure/cancellation reason

        Returns:
            ServiceResult with the Payment, or a failure with
            PAYMENT_NOT_FOUND / INVALID_TRANSITION / STALE_RECORD
        """
        at = at or timezone.now()
        try:
            with cls.atomic():
                payment = cls._record_transition(
                    payment_id,
                    new_status,
                    at,
                    gateway_ids=gateway_ids,
                    expected_version=expected_version,
                    reason=reason,
                )
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "record_transition",
                log_level=log_level_for(e),
                extra={"payment_id": payment_id, "target_status": str(new_status)},
            )
        return ServiceResult.success(payment)

    @classmethod
    def _record_transition(
        cls,
        payment_id: str,
        new_status: str,
        at: datetime,
        gateway_ids: dict[str, str] | None = None,
        expected_version: int | None = None,
        reason: str | None = None,
        expected_amount_cents: int | None = None,
    ) -> Payment:
        """Apply one transition inside the caller's transaction."""
        payment = cls._lock_payment(payment_id, expected_version)

        if new_status not in TRANSITIONS:
            raise InvalidTransitionError(
                f"Status '{new_status}' cannot be recorded directly",
                details={
                    "payment_id": payment_id,
                    "current_status": payment.status,
                    "target_status": str(new_status),
                },
            )

        method_name, timestamp_field = TRANSITIONS[new_status]

        if getattr(payment, timestamp_field) is not None:
            # Already recorded (re-delivery); nothing to do
            cls.get_logger().debug(
                "Transition already recorded",
                extra={"payment_id": payment_id, "target_status": str(new_status)},
            )
            return payment

        transition_method = getattr(payment, method_name)
        if not can_proceed(transition_method):
            raise InvalidTransitionError(
                f"Cannot move payment from '{payment.status}' to '{new_status}'",
                details={
                    "payment_id": payment_id,
                    "current_status": payment.status,
                    "target_status": str(new_status),
                },
            )

        recorded = payment.lifecycle_timestamps()
        if recorded and at < max(recorded):
            raise InvalidTransitionError(
                "Transition timestamp is earlier than the payment's recorded history",
                details={
                    "payment_id": payment_id,
                    "at": at.isoformat(),
                    "latest_recorded": max(recorded).isoformat(),
                },
            )

        if (
            expected_amount_cents is not None
            and expected_amount_cents != payment.final_amount_cents
        ):
            raise InvalidGatewayEventError(
                "Captured amount does not match the payment's final amount",
                details={
                    "payment_id": payment_id,
                    "final_amount_cents": payment.final_amount_cents,
                    "captured_amount_cents": expected_amount_cents,
                },
            )

        if new_status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            transition_method(at=at, reason=reason)
        else:
            transition_method(at=at)

        cls._merge_gateway_ids(payment, gateway_ids)
        payment.save()

        cls.get_logger().info(
            f"Payment {payment_id} -> {new_status}",
            extra={
                "payment_id": payment_id,
                "status": payment.status,
                "version": payment.version,
            },
        )
        return payment

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def apply_refund(
        cls,
        payment_id: str,
        amount_cents: int,
        reason: str = "",
        refund_reference: str | None = None,
        at: datetime | None = None,
    ) -> ServiceResult[Refund]:
        """
        Append a PENDING refund to a payment.

        The payment's status and totals do not change until the refund is
        processed (mark_refund_processed). Payments claimed for settlement
        do not accept refunds.

        Args:
            payment_id: External payment id
            amount_cents: Amount to return, must be positive
            reason: Why the refund was issued
            refund_reference: Gateway refund reference, if already known
            at: Request time (defaults to timezone.now())

        Returns:
            ServiceResult with the Refund, or a failure with
            INVALID_AMOUNT / PAYMENT_NOT_FOUND / INVALID_STATE /
            REFUND_EXCEEDS_BALANCE
        """
        try:
            if amount_cents is None or amount_cents <= 0:
                raise InvalidAmountError(
                    "Refund amount must be positive",
                    details={"amount_cents": amount_cents},
                )
            with cls.atomic():
                cls._touch_settlement_cursor(payment_id)
                payment = cls._lock_payment(payment_id)

                if payment.status not in REFUNDABLE_STATUSES:
                    raise InvalidPaymentStateError(
                        f"Cannot refund a payment in '{payment.status}' status",
                        details={"payment_id": payment_id, "status": payment.status},
                    )
                if payment.settlement_status != PaymentSettlementStatus.NONE:
                    raise InvalidPaymentStateError(
                        "Cannot refund a payment claimed for settlement",
                        details={
                            "payment_id": payment_id,
                            "status": payment.status,
                            "settlement_status": payment.settlement_status,
                        },
                    )

                refundable = cls.refundable_amount(payment)
                if amount_cents > refundable:
                    raise RefundExceedsBalanceError(
                        "Refund amount exceeds the refundable balance",
                        details={
                            "payment_id": payment_id,
                            "requested_cents": amount_cents,
                            "refundable_cents": refundable,
                            "net_amount_cents": payment.net_amount_cents,
                        },
                    )

                refund = Refund.objects.create(
                    payment=payment,
                    amount_cents=amount_cents,
                    reason=reason or "",
                    refund_reference=refund_reference,
                    requested_at=at or timezone.now(),
                )
                # Bump the payment version so optimistic readers see the change
                payment.save(update_fields=["updated_at"])
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "apply_refund",
                log_level=log_level_for(e),
                extra={"payment_id": payment_id, "amount_cents": amount_cents},
            )

        cls.get_logger().info(
            "Refund requested",
            extra={
                "payment_id": payment_id,
                "refund_id": str(refund.id),
                "amount_cents": amount_cents,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def mark_refund_processed(
        cls,
        payment_id: str,
        refund_id: uuid.UUID,
        at: datetime | None = None,
        refund_reference: str | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Gateway confirmed a refund: fold it into the payment's totals.

        Idempotent: a refund that is already processed is returned as is.
        The payment becomes REFUNDED when its net amount reaches zero,
        otherwise PARTIALLY_REFUNDED.

        Returns:
            ServiceResult with RefundOutcome, or a failure with
            PAYMENT_NOT_FOUND / REFUND_NOT_FOUND / INVALID_STATE /
            REFUND_EXCEEDS_BALANCE
        """
        at = at or timezone.now()
        try:
            with cls.atomic():
                outcome = cls._mark_refund_processed(payment_id, refund_id, at, refund_reference)
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "mark_refund_processed",
                log_level=log_level_for(e),
                extra={"payment_id": payment_id, "refund_id": str(refund_id)},
            )
        return ServiceResult.success(outcome)

    @classmethod
    def _mark_refund_processed(
        cls,
        payment_id: str,
        refund_id: uuid.UUID,
        at: datetime,
        refund_reference: str | None = None,
    ) -> RefundOutcome:
        cls._touch_settlement_cursor(payment_id)
        payment = cls._lock_payment(payment_id)
        refund = cls._lock_refund(payment, refund_id)

        if refund.status == RefundStatus.PROCESSED:
            return RefundOutcome(payment=payment, refund=refund)

        if refund.status != RefundStatus.PENDING:
            raise InvalidStateError(
                f"Refund {refund_id} is '{refund.status}' and cannot be processed",
                details={"refund_id": str(refund_id), "status": refund.status},
            )

        if refund.amount_cents > payment.net_amount_cents:
            raise RefundExceedsBalanceError(
                "Refund amount exceeds the payment's net amount",
                details={
                    "refund_id": str(refund_id),
                    "amount_cents": refund.amount_cents,
                    "net_amount_cents": payment.net_amount_cents,
                },
            )

        refund.mark_processed(at=at, refund_reference=refund_reference)
        refund.save()

        payment.record_processed_refund(refund.amount_cents, at=at)
        payment.save()

        cls.get_logger().info(
            "Refund processed",
            extra={
                "payment_id": payment_id,
                "refund_id": str(refund_id),
                "status": payment.status,
                "net_amount_cents": payment.net_amount_cents,
            },
        )
        return RefundOutcome(payment=payment, refund=refund)

    @classmethod
    def mark_refund_failed(
        cls,
        payment_id: str,
        refund_id: uuid.UUID,
        reason: str | None = None,
        at: datetime | None = None,
    ) -> ServiceResult[RefundOutcome]:
        """
        Gateway reported a refund failed.

        The payment is untouched and the amount becomes refundable again.
        Idempotent on an already failed refund.
        """
        at = at or timezone.now()
        try:
            with cls.atomic():
                cls._touch_settlement_cursor(payment_id)
                payment = cls._lock_payment(payment_id)
                refund = cls._lock_refund(payment, refund_id)

                if refund.status == RefundStatus.PENDING:
                    refund.mark_failed(at=at, reason=reason)
                    refund.save()
                    cls.get_logger().warning(
                        "Refund failed at gateway",
                        extra={
                            "payment_id": payment_id,
                            "refund_id": str(refund_id),
                            "reason": reason,
                        },
                    )
                elif refund.status == RefundStatus.PROCESSED:
                    raise InvalidStateError(
                        f"Refund {refund_id} is already processed",
                        details={"refund_id": str(refund_id), "status": refund.status},
                    )
        except BaseApplicationError as e:
            return cls.handle_exception(
                e,
                "mark_refund_failed",
                log_level=log_level_for(e),
                extra={"payment_id": payment_id, "refund_id": str(refund_id)},
            )
        return ServiceResult.success(RefundOutcome(payment=payment, refund=refund))

    # =========================================================================
    # Gateway Adapter boundary
    # =========================================================================

    @classmethod
    def on_gateway_event(cls, params: GatewayEventParams) -> ServiceResult[Payment]:
        """
        Apply one gateway delivery to the ledger.

        Safe to deliver more than once: each mapped operation is idempotent.

        Mapping:
            authorized -> PROCESSING
            captured -> COMPLETED (amount, when given, must equal final)
            failed -> FAILED
            cancelled -> CANCELLED
            refund_processed -> mark_refund_processed
            refund_failed -> mark_refund_failed

        Returns:
            ServiceResult with the Payment, or the failure of the mapped
            operation (INVALID_GATEWAY_EVENT for unusable events)
        """
        event = params.event
        extra = {"payment_id": params.payment_id, "gateway_event": str(event)}

        if event in EVENT_TRANSITIONS:
            new_status = EVENT_TRANSITIONS[event]
            try:
                with cls.atomic():
                    payment = cls._record_transition(
                        params.payment_id,
                        new_status,
                        params.at,
                        gateway_ids=params.gateway_ids,
                        reason=params.reason,
                        expected_amount_cents=(
                            params.amount_cents
                            if event == GatewayEventType.CAPTURED
                            else None
                        ),
                    )
            except BaseApplicationError as e:
                return cls.handle_exception(
                    e, "on_gateway_event", log_level=log_level_for(e), extra=extra
                )
            return ServiceResult.success(payment)

        if event in (GatewayEventType.REFUND_PROCESSED, GatewayEventType.REFUND_FAILED):
            if params.refund_id is None:
                return cls.handle_exception(
                    InvalidGatewayEventError(
                        "Refund events must carry a refund_id",
                        details={"event": str(event)},
                    ),
                    "on_gateway_event",
                    log_level=logging.WARNING,
                    extra=extra,
                )
            if event == GatewayEventType.REFUND_PROCESSED:
                result = cls.mark_refund_processed(
                    params.payment_id,
                    params.refund_id,
                    at=params.at,
                    refund_reference=params.refund_reference,
                )
            else:
                result = cls.mark_refund_failed(
                    params.payment_id,
                    params.refund_id,
                    reason=params.reason,
                    at=params.at,
                )
            return result.map(lambda outcome: outcome.payment)

        return cls.handle_exception(
            InvalidGatewayEventError(
                f"Unknown gateway event '{event}'",
                details={"event": str(event)},
            ),
            "on_gateway_event",
            log_level=logging.WARNING,
            extra=extra,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _not_found(cls, payment_id: str) -> PaymentNotFoundError:
        return PaymentNotFoundError(
            f"Payment {payment_id} not found",
            details={"payment_id": payment_id},
        )

    @classmethod
    def _lock_payment(cls, payment_id: str, expected_version: int | None = None) -> Payment:
        """
        Lock a payment row for the rest of the transaction.

        Raises:
            PaymentNotFoundError: Unknown payment id
            StaleRecordError: expected_version given and no longer current
        """
        if expected_version is not None:
            pk = Payment.objects.filter(payment_id=payment_id).values_list("pk", flat=True).first()
            if pk is None:
                raise cls._not_found(payment_id)
            return check_version(Payment, pk, expected_version)

        payment = Payment.objects.select_for_update().filter(payment_id=payment_id).first()
        if payment is None:
            raise cls._not_found(payment_id)
        return payment

    @classmethod
    def _touch_settlement_cursor(cls, payment_id: str) -> None:
        """
        Bump the claim cursor of the day the payment settles under.

        Must run before the payment row is locked: claims take the cursor
        first and the payments second, and refunds follow the same order.
        """
        row = (
            Payment.objects.filter(payment_id=payment_id)
            .values("vendor_id", "completed_at")
            .first()
        )
        if row is None or row["completed_at"] is None:
            return
        cursor, _ = SettlementCursor.objects.get_or_create(
            vendor_id=row["vendor_id"],
            transaction_date=SettlementBucketCalculator.transaction_date(row["completed_at"]),
        )
        SettlementCursor.objects.filter(pk=cursor.pk).update(version=F("version") + 1)

    @classmethod
    def _lock_refund(cls, payment: Payment, refund_id: uuid.UUID) -> Refund:
        refund = Refund.objects.select_for_update().filter(pk=refund_id, payment=payment).first()
        if refund is None:
            raise RefundNotFoundError(
                f"Refund {refund_id} not found for payment {payment.payment_id}",
                details={"refund_id": str(refund_id), "payment_id": payment.payment_id},
            )
        return refund

    @classmethod
    def _merge_gateway_ids(cls, payment: Payment, gateway_ids: dict[str, str] | None) -> None:
        """Copy known gateway ids onto the payment without overwriting."""
        if not gateway_ids:
            return
        details = dict(payment.transaction_details or {})
        for key in GATEWAY_ID_KEYS:
            value = gateway_ids.get(key)
            if value and key not in details:
                details[key] = value
        payment.transaction_details = details
        if not payment.transaction_id and gateway_ids.get("transaction_id"):
            payment.transaction_id = gateway_ids["transaction_id"]
