"""
URL configuration for the payment and refund engine.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/payments/              - Payment endpoints
        bookings/{id}/payments/                - Create payment (POST)
        bookings/{id}/payment-status/          - Payment status (GET)
        bookings/{id}/cash-confirmation/       - Confirm cash payment (POST, staff)
        bookings/{id}/refund-eligibility/      - Refund eligibility (GET)
        bookings/{id}/refund-request/          - Customer refund request (POST)
        bookings/{id}/refunds/                 - Process refund (POST, staff)
        bookings/{id}/refunds/{rid}/complete/  - Complete manual refund (POST, staff)
        refunds/{rid}/approve/                 - Approve pending refund (POST, staff)
        refunds/{rid}/deny/                    - Deny pending refund (POST, staff)
        refunds/{rid}/retry/                   - Retry one failed refund (POST, staff)
        refunds/retry-failed/                  - Retry failed refunds (POST, staff)
        webhooks/paymongo/                     - PayMongo webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin Portal"
admin.site.index_title = "Bookings, payments and refunds"
