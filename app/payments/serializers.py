"""
DRF serializers for payments app.

This module provides serializers for:
- Payment creation (booking/order service) and display
- Refund requests and display
- Settlement requests, operator actions and daily buckets
- Aggregated statistics

Related files:
    - models/: Payment, Refund, SettlementRequest
    - types.py: DailySettlementBucket, PaymentStats, DailyTotal
    - views.py: Payment API views

Usage:
    serializer = PaymentCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    result = LedgerService.create_payment(serializer.to_params())
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Payment, Refund, SettlementRequest
from payments.state_machines import (
    CardType,
    PaymentGateway,
    PaymentMethodType,
    PaymentStatus,
    SettlementRequestStatus,
)
from payments.types import CreatePaymentParams


# =============================================================================
# Payments
# =============================================================================


class PaymentCreateSerializer(serializers.Serializer):
    """
    Input for payment creation from the booking/order service.

    Amount arithmetic and the card-only fields are checked by
    CreatePaymentParams.validate() in the ledger, not here.
    """

    payment_id = serializers.CharField(max_length=32, required=False)
    booking_id = serializers.UUIDField(required=False, allow_null=True)
    user_id = serializers.UUIDField()
    vendor_id = serializers.UUIDField()
    station_id = serializers.UUIDField(required=False, allow_null=True)

    base_amount_cents = serializers.IntegerField()
    tax_amount_cents = serializers.IntegerField(default=0)
    discount_amount_cents = serializers.IntegerField(default=0)
    final_amount_cents = serializers.IntegerField()
    currency = serializers.CharField(max_length=3, required=False)

    method_type = serializers.ChoiceField(
        choices=PaymentMethodType.choices,
        default=PaymentMethodType.UPI,
    )
    gateway = serializers.ChoiceField(
        choices=PaymentGateway.choices,
        default=PaymentGateway.RAZORPAY,
    )
    card_type = serializers.ChoiceField(
        choices=CardType.choices,
        required=False,
        allow_null=True,
    )
    bank_name = serializers.CharField(max_length=100, required=False, allow_null=True)
    card_last4 = serializers.CharField(max_length=4, required=False, allow_null=True)
    metadata = serializers.JSONField(required=False, default=dict)

    def to_params(self) -> CreatePaymentParams:
        return CreatePaymentParams(**self.validated_data)


class RefundSerializer(serializers.ModelSerializer):
    """Refund display."""

    class Meta:
        model = Refund
        fields = [
            "id",
            "amount_cents",
            "reason",
            "status",
            "requested_at",
            "processed_at",
            "failed_at",
            "refund_reference",
            "failure_reason",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    """
    Payment display for merchants and operators.

    Fields:
        settlement: Claim tag (none, claimed:<id>, settled:<id>)
        can_be_refunded: Whether another refund may be requested
        refunds: All refunds, oldest first
    """

    settlement = serializers.CharField(source="settlement_tag", read_only=True)
    can_be_refunded = serializers.BooleanField(read_only=True)
    refunds = RefundSerializer(many=True, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "payment_id",
            "booking_id",
            "user_id",
            "vendor_id",
            "station_id",
            "base_amount_cents",
            "tax_amount_cents",
            "discount_amount_cents",
            "final_amount_cents",
            "currency",
            "method_type",
            "gateway",
            "card_type",
            "bank_name",
            "card_last4",
            "transaction_id",
            "status",
            "initiated_at",
            "processed_at",
            "completed_at",
            "failed_at",
            "cancelled_at",
            "refunded_at",
            "total_refunded_cents",
            "net_amount_cents",
            "settlement",
            "can_be_refunded",
            "refunds",
            "version",
        ]
        read_only_fields = fields


class RefundCreateSerializer(serializers.Serializer):
    """Input for a staff-issued refund."""

    amount_cents = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    refund_reference = serializers.CharField(max_length=255, required=False, allow_null=True)


# =============================================================================
# Settlements
# =============================================================================


class SettlementRequestSerializer(serializers.ModelSerializer):
    """Settlement request display (audit trail)."""

    request_id = serializers.UUIDField(source="id", read_only=True)

    class Meta:
        model = SettlementRequest
        fields = [
            "request_id",
            "settlement_id",
            "vendor_id",
            "transaction_date",
            "requested_at",
            "request_type",
            "claimed_payment_ids",
            "claimed_amount_cents",
            "status",
            "processing_started_at",
            "processed_at",
            "failed_at",
            "reason",
            "payment_reference",
            "processing_notes",
            "failure_reason",
            "metadata",
        ]
        read_only_fields = fields


class SettlementRequestCreateSerializer(serializers.Serializer):
    """
    Input for an urgent settlement request.

    amount_cents confirms the claimable amount the merchant was shown.
    """

    date = serializers.DateField()
    amount_cents = serializers.IntegerField(min_value=0)
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class SettlementRequestListQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    status = serializers.ChoiceField(choices=SettlementRequestStatus.choices, required=False)


class SettlementCompleteSerializer(serializers.Serializer):
    payment_reference = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=""
    )
    processing_notes = serializers.CharField(required=False, allow_blank=True, default="")


class SettlementFailSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000)


class DailySettlementBucketSerializer(serializers.Serializer):
    """Serializes a DailySettlementBucket dataclass."""

    vendor_id = serializers.UUIDField()
    date = serializers.DateField()
    total_to_be_received = serializers.IntegerField()
    payment_settled = serializers.IntegerField()
    in_settlement_process = serializers.IntegerField()
    pending_settlement = serializers.IntegerField()
    refund_hold = serializers.IntegerField()
    claimable_settlement = serializers.IntegerField()
    payment_count = serializers.IntegerField()
    pending_payment_ids = serializers.ListField(child=serializers.UUIDField())
    needs_settlement = serializers.BooleanField()


class VendorPendingSettlementSerializer(serializers.Serializer):
    vendor_id = serializers.UUIDField()
    date = serializers.DateField()
    pending_settlement = serializers.IntegerField()
    payment_count = serializers.IntegerField()


# =============================================================================
# Reporting
# =============================================================================


class PaymentStatsQuerySerializer(serializers.Serializer):
    """
    Query parameters for the stats endpoint.

    status may be given several times (?status=completed&status=refunded).
    """

    start = serializers.DateField()
    end = serializers.DateField()
    status = serializers.ListField(
        child=serializers.ChoiceField(choices=PaymentStatus.choices),
        required=False,
    )
    vendor_id = serializers.UUIDField(required=False)

    def validate(self, attrs):
        if attrs["start"] > attrs["end"]:
            raise serializers.ValidationError({"end": ["end must not be before start."]})
        return attrs


class PaymentStatsSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    total_amount = serializers.IntegerField()
    total_refunded = serializers.IntegerField()
    avg_amount = serializers.IntegerField()


class DateRangeQuerySerializer(serializers.Serializer):
    start = serializers.DateField()
    end = serializers.DateField()


class DailyTotalSerializer(serializers.Serializer):
    date = serializers.DateField()
    count = serializers.IntegerField()
    total_amount = serializers.IntegerField()
    total_refunded = serializers.IntegerField()
    net_amount = serializers.IntegerField()


class PendingVendorsQuerySerializer(serializers.Serializer):
    date = serializers.DateField()
