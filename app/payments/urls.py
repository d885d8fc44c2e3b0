"""
URL configuration for the payments app.

Routes:
    - POST /webhooks/gateway/ - Signed gateway events
    - Vendor settlement, operator and reporting endpoints (see views.py)
    - POST / and GET /<payment_id>/ - Payment ledger

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import gateway_webhook

app_name = "payments"

urlpatterns = [
    # Webhook endpoints
    path("webhooks/gateway/", gateway_webhook, name="gateway_webhook"),
    # Reporting
    path("stats/", views.PaymentStatsView.as_view(), name="payment_stats"),
    path(
        "settlements/pending-vendors/",
        views.PendingVendorsView.as_view(),
        name="pending_vendors",
    ),
    # Vendor settlements
    path(
        "vendors/<uuid:vendor_id>/buckets/<str:transaction_date>/",
        views.VendorBucketView.as_view(),
        name="vendor_bucket",
    ),
    path(
        "vendors/<uuid:vendor_id>/daily-totals/",
        views.VendorDailyTotalsView.as_view(),
        name="vendor_daily_totals",
    ),
    path(
        "vendors/<uuid:vendor_id>/settlement-requests/",
        views.VendorSettlementRequestsView.as_view(),
        name="vendor_settlement_requests",
    ),
    # Operator actions
    path(
        "settlement-requests/<uuid:request_id>/process/",
        views.SettlementProcessView.as_view(),
        name="settlement_process",
    ),
    path(
        "settlement-requests/<uuid:request_id>/complete/",
        views.SettlementCompleteView.as_view(),
        name="settlement_complete",
    ),
    path(
        "settlement-requests/<uuid:request_id>/fail/",
        views.SettlementFailView.as_view(),
        name="settlement_fail",
    ),
    # Payment ledger (keep last: payment_id is a catch-all segment)
    path("", views.PaymentCreateView.as_view(), name="payment_create"),
    path("<str:payment_id>/", views.PaymentDetailView.as_view(), name="payment_detail"),
    path(
        "<str:payment_id>/refunds/",
        views.PaymentRefundView.as_view(),
        name="payment_refunds",
    ),
]
