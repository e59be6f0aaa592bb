"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import paymongo_webhook

app_name = "payments"

urlpatterns = [
    # Payments
    path(
        "bookings/<int:booking_id>/payments/",
        views.CreatePaymentView.as_view(),
        name="create_payment",
    ),
    path(
        "bookings/<int:booking_id>/payment-status/",
        views.PaymentStatusView.as_view(),
        name="payment_status",
    ),
    path(
        "bookings/<int:booking_id>/cash-confirmation/",
        views.CashConfirmationView.as_view(),
        name="cash_confirmation",
    ),
    # Refunds
    path(
        "bookings/<int:booking_id>/refund-eligibility/",
        views.RefundEligibilityView.as_view(),
        name="refund_eligibility",
    ),
    path(
        "bookings/<int:booking_id>/refund-request/",
        views.RefundRequestView.as_view(),
        name="refund_request",
    ),
    path(
        "bookings/<int:booking_id>/refunds/",
        views.ProcessRefundView.as_view(),
        name="process_refund",
    ),
    path(
        "bookings/<int:booking_id>/refunds/<int:refund_id>/complete/",
        views.CompleteRefundView.as_view(),
        name="complete_refund",
    ),
    path(
        "refunds/retry-failed/",
        views.RetryFailedRefundsView.as_view(),
        name="retry_failed_refunds",
    ),
    path(
        "refunds/<int:refund_id>/approve/",
        views.ApproveRefundView.as_view(),
        name="approve_refund",
    ),
    path(
        "refunds/<int:refund_id>/deny/",
        views.DenyRefundView.as_view(),
        name="deny_refund",
    ),
    path(
        "refunds/<int:refund_id>/retry/",
        views.RetryRefundView.as_view(),
        name="retry_refund",
    ),
    # Webhook endpoints
    path("webhooks/paymongo/", paymongo_webhook, name="paymongo_webhook"),
]
