"""
DRF views for payments app.

This module provides API views for:
- Payment creation (booking/order service) and lookup
- Staff-issued refunds
- Vendor settlement buckets and urgent settlement requests
- Operator settlement lifecycle actions
- Aggregated statistics and admin listings

Related files:
    - services/: LedgerService, SettlementCoordinator, AggregationReporter
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/ - Create payment
    GET  /api/v1/payments/{payment_id}/ - Payment details
    POST /api/v1/payments/{payment_id}/refunds/ - Apply refund (staff)
    GET  /api/v1/payments/vendors/{vendor_id}/buckets/{date}/ - Daily bucket
    GET  /api/v1/payments/vendors/{vendor_id}/daily-totals/ - Per-day totals
    GET  /api/v1/payments/vendors/{vendor_id}/settlement-requests/ - Audit list
    POST /api/v1/payments/vendors/{vendor_id}/settlement-requests/ - Urgent settlement
    POST /api/v1/payments/settlement-requests/{id}/process/ - Operator (staff)
    POST /api/v1/payments/settlement-requests/{id}/complete/ - Operator (staff)
    POST /api/v1/payments/settlement-requests/{id}/fail/ - Operator (staff)
    GET  /api/v1/payments/stats/ - Aggregated totals (staff)
    GET  /api/v1/payments/settlements/pending-vendors/ - Admin listing (staff)

Error mapping:
    Service failures are returned as ServiceResult.to_response() bodies.
    Not-found codes map to 404, state conflicts and business rejections
    to 409, everything else to 400.

Security:
    - All endpoints require authentication
    - Operator, refund and reporting endpoints require staff
"""

from __future__ import annotations

import logging
from datetime import date

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import serializers, status
from rest_framework.generics import GenericAPIView
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from payments.serializers import (
    DailySettlementBucketSerializer,
    DailyTotalSerializer,
    DateRangeQuerySerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PaymentStatsQuerySerializer,
    PaymentStatsSerializer,
    PendingVendorsQuerySerializer,
    RefundCreateSerializer,
    RefundSerializer,
    SettlementCompleteSerializer,
    SettlementFailSerializer,
    SettlementRequestCreateSerializer,
    SettlementRequestListQuerySerializer,
    SettlementRequestSerializer,
    VendorPendingSettlementSerializer,
)
from payments.services import (
    AggregationReporter,
    LedgerService,
    SettlementBucketCalculator,
    SettlementCoordinator,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Error Mapping
# =============================================================================

NOT_FOUND_CODES = frozenset(
    [
        "NOT_FOUND",
        "PAYMENT_NOT_FOUND",
        "REFUND_NOT_FOUND",
        "SETTLEMENT_REQUEST_NOT_FOUND",
    ]
)

CONFLICT_CODES = frozenset(
    [
        "CONFLICT",
        "AMOUNT_MISMATCH",
        "NOTHING_TO_SETTLE",
        "CONCURRENT_CLAIM",
        "INVALID_TRANSITION",
        "INVALID_STATE",
        "REFUND_EXCEEDS_BALANCE",
        "STALE_RECORD",
        "DUPLICATE_PAYMENT",
    ]
)


def error_status(error_code: str | None) -> int:
    """HTTP status for a failed ServiceResult."""
    if error_code in NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if error_code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def error_response(result: ServiceResult) -> Response:
    return Response(result.to_response(), status=error_status(result.error_code))


def parse_path_date(value: str) -> date:
    """
    Parse a YYYY-MM-DD path segment.

    Raises:
        serializers.ValidationError: Rendered by DRF as 400
    """
    field = serializers.DateField()
    return field.to_internal_value(value)


# =============================================================================
# Payments
# =============================================================================


class PaymentCreateView(APIView):
    """
    Record a new charge attempt.

    POST /api/v1/payments/

    Called by the booking/order service when checkout starts.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment",
        summary="Create payment",
        tags=["Payments - Ledger"],
        request=PaymentCreateSerializer,
        responses={
            201: PaymentSerializer,
            400: OpenApiResponse(description="Invalid amounts or payment method"),
            409: OpenApiResponse(description="Duplicate payment id"),
        },
    )
    def post(self, request):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LedgerService.create_payment(serializer.to_params())
        if not result.success:
            return error_response(result)

        return Response(PaymentSerializer(result.data).data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """
    Payment details with refunds and settlement tag.

    GET /api/v1/payments/{payment_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment",
        summary="Get payment",
        tags=["Payments - Ledger"],
        responses={200: PaymentSerializer, 404: OpenApiResponse(description="Unknown payment")},
    )
    def get(self, request, payment_id: str):
        result = LedgerService.get_payment(payment_id)
        if not result.success:
            return error_response(result)
        return Response(PaymentSerializer(result.data).data)


class PaymentRefundView(APIView):
    """
    Issue a refund against a payment.

    POST /api/v1/payments/{payment_id}/refunds/

    The refund is created PENDING; the payment's totals change when the
    gateway confirms it.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="create_refund",
        summary="Apply refund",
        tags=["Payments - Ledger"],
        request=RefundCreateSerializer,
        responses={
            201: RefundSerializer,
            404: OpenApiResponse(description="Unknown payment"),
            409: OpenApiResponse(description="Not refundable or exceeds balance"),
        },
    )
    def post(self, request, payment_id: str):
        serializer = RefundCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LedgerService.apply_refund(
            payment_id,
            serializer.validated_data["amount_cents"],
            reason=serializer.validated_data["reason"],
            refund_reference=serializer.validated_data.get("refund_reference"),
        )
        if not result.success:
            return error_response(result)

        logger.info(
            "Refund issued by staff",
            extra={"payment_id": payment_id, "user_id": request.user.pk},
        )
        return Response(RefundSerializer(result.data).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Vendor Settlements
# =============================================================================


class VendorBucketView(APIView):
    """
    Settlement bucket for one vendor and transaction date.

    GET /api/v1/payments/vendors/{vendor_id}/buckets/{date}/

    Returns:
        {
            "bucket": {...},
            "settlement_requests": [...],
            "total_withdrawn": 15000,
            "needs_settlement": true
        }
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_settlement_bucket",
        summary="Get daily settlement bucket",
        tags=["Payments - Settlements"],
        responses={200: OpenApiResponse(description="Bucket with the day's requests")},
    )
    def get(self, request, vendor_id, transaction_date: str):
        day = parse_path_date(transaction_date)

        result = SettlementBucketCalculator.compute_bucket(vendor_id, day)
        if not result.success:
            return error_response(result)
        bucket = result.data

        requests = SettlementCoordinator.list_requests(vendor_id, day=day).data
        total_withdrawn = AggregationReporter.total_withdrawn(vendor_id).data

        return Response(
            {
                "bucket": DailySettlementBucketSerializer(bucket).data,
                "settlement_requests": SettlementRequestSerializer(requests, many=True).data,
                "total_withdrawn": total_withdrawn,
                "needs_settlement": bucket.needs_settlement,
            }
        )


class VendorDailyTotalsView(APIView):
    """
    Per-day completed totals for a vendor dashboard.

    GET /api/v1/payments/vendors/{vendor_id}/daily-totals/?start=&end=
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_vendor_daily_totals",
        summary="Get per-day totals",
        tags=["Payments - Reporting"],
        parameters=[
            OpenApiParameter("start", str, description="First day (YYYY-MM-DD)"),
            OpenApiParameter("end", str, description="Last day (YYYY-MM-DD)"),
        ],
        responses={200: DailyTotalSerializer(many=True)},
    )
    def get(self, request, vendor_id):
        query = DateRangeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = AggregationReporter.daily_breakdown(
            vendor_id,
            query.validated_data["start"],
            query.validated_data["end"],
        )
        if not result.success:
            return error_response(result)
        return Response(DailyTotalSerializer(result.data, many=True).data)


class VendorSettlementRequestsView(GenericAPIView):
    """
    List or create a vendor's settlement requests.

    GET  /api/v1/payments/vendors/{vendor_id}/settlement-requests/?date=&status=
    POST /api/v1/payments/vendors/{vendor_id}/settlement-requests/

    POST body:
        {"date": "2025-01-10", "amount_cents": 600, "reason": "..."}

    POST returns 201 with the created request, or 409 with error_code
    NOTHING_TO_SETTLE / AMOUNT_MISMATCH (details: calculated, provided) /
    CONCURRENT_CLAIM.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = SettlementRequestSerializer

    @extend_schema(
        operation_id="list_settlement_requests",
        summary="List settlement requests",
        tags=["Payments - Settlements"],
        parameters=[
            OpenApiParameter("date", str, description="Transaction date (YYYY-MM-DD)"),
            OpenApiParameter("status", str, description="Request status"),
        ],
        responses={200: SettlementRequestSerializer(many=True)},
    )
    def get(self, request, vendor_id):
        query = SettlementRequestListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = SettlementCoordinator.list_requests(
            vendor_id,
            day=query.validated_data.get("date"),
            status=query.validated_data.get("status"),
        )
        if not result.success:
            return error_response(result)

        page = self.paginate_queryset(result.data)
        if page is not None:
            return self.get_paginated_response(self.get_serializer(page, many=True).data)
        return Response(self.get_serializer(result.data, many=True).data)

    @extend_schema(
        operation_id="create_urgent_settlement",
        summary="Request urgent settlement",
        tags=["Payments - Settlements"],
        request=SettlementRequestCreateSerializer,
        responses={
            201: SettlementRequestSerializer,
            409: OpenApiResponse(description="Nothing to settle, amount mismatch or concurrent claim"),
        },
    )
    def post(self, request, vendor_id):
        serializer = SettlementRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = SettlementCoordinator.request_urgent_settlement(
            vendor_id=vendor_id,
            day=serializer.validated_data["date"],
            requested_amount_cents=serializer.validated_data["amount_cents"],
            reason=serializer.validated_data["reason"],
        )
        if not result.success:
            return error_response(result)

        return Response(
            SettlementRequestSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )


# =============================================================================
# Operator Actions
# =============================================================================


class SettlementProcessView(APIView):
    """
    Pick up a pending request.

    POST /api/v1/payments/settlement-requests/{id}/process/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="process_settlement_request",
        summary="Start processing settlement",
        tags=["Payments - Settlement Operations"],
        request=None,
        responses={200: SettlementRequestSerializer},
    )
    def post(self, request, request_id):
        result = SettlementCoordinator.begin_processing(request_id)
        if not result.success:
            return error_response(result)
        return Response(SettlementRequestSerializer(result.data).data)


class SettlementCompleteView(APIView):
    """
    Record a confirmed payout.

    POST /api/v1/payments/settlement-requests/{id}/complete/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="complete_settlement_request",
        summary="Complete settlement",
        tags=["Payments - Settlement Operations"],
        request=SettlementCompleteSerializer,
        responses={200: SettlementRequestSerializer},
    )
    def post(self, request, request_id):
        serializer = SettlementCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = SettlementCoordinator.complete_settlement(
            request_id,
            payment_reference=serializer.validated_data["payment_reference"],
            processing_notes=serializer.validated_data["processing_notes"],
        )
        if not result.success:
            return error_response(result)
        return Response(SettlementRequestSerializer(result.data).data)


class SettlementFailView(APIView):
    """
    Fail a request and release its payments.

    POST /api/v1/payments/settlement-requests/{id}/fail/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="fail_settlement_request",
        summary="Fail settlement",
        tags=["Payments - Settlement Operations"],
        request=SettlementFailSerializer,
        responses={200: SettlementRequestSerializer},
    )
    def post(self, request, request_id):
        serializer = SettlementFailSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = SettlementCoordinator.fail_settlement(
            request_id,
            reason=serializer.validated_data["reason"],
        )
        if not result.success:
            return error_response(result)
        return Response(SettlementRequestSerializer(result.data).data)


# =============================================================================
# Reporting
# =============================================================================


class PaymentStatsView(APIView):
    """
    Aggregated payment totals.

    GET /api/v1/payments/stats/?start=&end=&status=&vendor_id=
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_payment_stats",
        summary="Get payment statistics",
        tags=["Payments - Reporting"],
        parameters=[
            OpenApiParameter("start", str, description="First day (YYYY-MM-DD)"),
            OpenApiParameter("end", str, description="Last day (YYYY-MM-DD)"),
            OpenApiParameter("status", str, many=True, description="Statuses to include"),
            OpenApiParameter("vendor_id", str, description="Restrict to one vendor"),
        ],
        responses={200: PaymentStatsSerializer},
    )
    def get(self, request):
        query = PaymentStatsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = AggregationReporter.get_stats(
            query.validated_data["start"],
            query.validated_data["end"],
            statuses=query.validated_data.get("status"),
            vendor_id=query.validated_data.get("vendor_id"),
        )
        if not result.success:
            return error_response(result)
        return Response(PaymentStatsSerializer(result.data).data)


class PendingVendorsView(APIView):
    """
    Vendors with unclaimed revenue for a date.

    GET /api/v1/payments/settlements/pending-vendors/?date=
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="list_pending_settlement_vendors",
        summary="List vendors pending settlement",
        tags=["Payments - Reporting"],
        parameters=[OpenApiParameter("date", str, description="Transaction date (YYYY-MM-DD)")],
        responses={200: VendorPendingSettlementSerializer(many=True)},
    )
    def get(self, request):
        query = PendingVendorsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = AggregationReporter.vendors_with_pending_settlements(
            query.validated_data["date"]
        )
        if not result.success:
            return error_response(result)
        return Response(VendorPendingSettlementSerializer(result.data, many=True).data)


__all__ = [
    "PaymentCreateView",
    "PaymentDetailView",
    "PaymentRefundView",
    "PaymentStatsView",
    "PendingVendorsView",
    "SettlementCompleteView",
    "SettlementFailView",
    "SettlementProcessView",
    "VendorBucketView",
    "VendorDailyTotalsView",
    "VendorSettlementRequestsView",
]
