"""
URL configuration for the Django application.

URL Structure:
    /admin/                        - Django admin interface
    /schema/                       - OpenAPI schema (YAML)
    /docs/                         - ReDoc API documentation
    /api/v1/group-payments/        - Group payment endpoints
        split-payments/            - Create split payment
        split-payments/upcoming/   - Deadlines at risk
        split-payments/{id}/       - Split payment with stats
        split-payments/{id}/cancel/ - Cancel and refund
        payments/{id}/pay/         - Start paying a share
        payments/{id}/confirm/     - Confirm a share with the gateway
        payments/{id}/retry/       - Retry a failed share
        pay/{token}/               - Pay through a payment link
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Group payments
    path("group-payments/", include("group_payments.urls")),
]

urlpatterns = [
    # Documentation
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("docs/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    # Admin
    path("admin/", admin.site.urls),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]
