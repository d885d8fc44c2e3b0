"""
URL configuration for the payments reconciliation service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain JWT pair
    /api/v1/auth/token/refresh/    - Refresh access token
    /api/v1/payments/              - Payment ledger and settlement endpoints
        <payment_id>/              - Payment summary
        <payment_id>/refunds/      - Apply refund (staff)
        webhooks/gateway/          - Signed gateway events (POST)
        vendors/<id>/buckets/<date>/             - Daily settlement bucket
        vendors/<id>/daily-totals/               - Per-day completed totals
        vendors/<id>/settlement-requests/        - Request / list settlements
        settlement-requests/<id>/process|complete|fail/ - Operator actions
        stats/                     - Aggregated payment stats (staff)
        settlements/pending-vendors/ - Vendors with pending amounts (staff)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    # Authentication (SimpleJWT)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Payments
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin Portal"
admin.site.index_title = "Ledger & Settlements"
