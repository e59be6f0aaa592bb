"""
DRF serializers for payments app.

This module provides serializers for:
- Payment creation and status requests/responses
- Refund processing, requests, approval and denial
- Refund eligibility checks

Related files:
    - models/: PaymentTransaction, RefundTransaction
    - views.py: Payment API views

Usage:
    serializer = ProcessRefundSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import PaymentTransaction, RefundTransaction
from payments.state_machines import RefundReason


# =============================================================================
# Model Serializers
# =============================================================================


class PaymentTransactionSerializer(serializers.ModelSerializer):
    """Read-only view of a payment attempt."""

    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "booking",
            "amount",
            "currency",
            "payment_method",
            "status",
            "provider",
            "gateway_source_id",
            "gateway_intent_id",
            "provider_transaction_id",
            "checkout_url",
            "failure_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class RefundTransactionSerializer(serializers.ModelSerializer):
    """Read-only view of a refund, including its retry state."""

    class Meta:
        model = RefundTransaction
        fields = [
            "id",
            "booking",
            "payment_transaction",
            "amount",
            "currency",
            "reason",
            "status",
            "payment_method",
            "provider",
            "refund_type",
            "gateway_refund_id",
            "notes",
            "failure_reason",
            "initiated_by",
            "initiated_by_type",
            "processed_at",
            "retryable",
            "retry_count",
            "last_retry_at",
            "outcome_unknown",
            "requires_manual_processing",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


# =============================================================================
# Request Serializers
# =============================================================================


class CreatePaymentSerializer(serializers.Serializer):
    """
    Request body for POST bookings/<id>/payments/.

    Method and amount limits are enforced by PaymentOrchestrator so the
    response carries its error codes.
    """

    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_method = serializers.CharField(max_length=20)
    description = serializers.CharField(max_length=255, required=False)
    success_url = serializers.URLField(required=False)
    failed_url = serializers.URLField(required=False)


class ProcessRefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reason = serializers.CharField(max_length=40)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class RefundRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(
        max_length=40, default=RefundReason.CUSTOMER_REQUESTED
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class DenyRefundSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class RetryFailedRefundsSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField(required=False, min_value=1)
    limit = serializers.IntegerField(
        required=False, min_value=1, max_value=500, default=100
    )


# =============================================================================
# Response Serializers
# =============================================================================


class PaymentResultSerializer(serializers.Serializer):
    payment_transaction = PaymentTransactionSerializer()
    status = serializers.CharField()
    checkout_url = serializers.URLField(allow_null=True)
    requires_redirect = serializers.BooleanField()


class PaymentStatusSerializer(serializers.Serializer):
    """
    Payment status of a booking.

    ``payment_status`` is the booking-level status; ``transaction_status``
    is that of the latest payment attempt (null when there is none).
    """

    booking_id = serializers.IntegerField()
    payment_status = serializers.CharField()
    transaction_status = serializers.CharField(allow_null=True)
    payment_transaction = PaymentTransactionSerializer(allow_null=True)
    checkout_url = serializers.URLField(allow_null=True)
    synthesized = serializers.BooleanField()


class RefundResultSerializer(serializers.Serializer):
    refund = RefundTransactionSerializer()
    refund_type = serializers.CharField()
    status = serializers.CharField()
    requires_manual_processing = serializers.BooleanField()
    instructions = serializers.ListField(child=serializers.CharField())
    message = serializers.CharField(allow_blank=True)


class RefundEligibilitySerializer(serializers.Serializer):
    eligible = serializers.BooleanField()
    reason = serializers.CharField(allow_null=True)
    refund_percentage = serializers.IntegerField(allow_null=True)
    policy_description = serializers.CharField(allow_null=True)
    refundable_amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, allow_null=True
    )
    estimated_refund = serializers.DecimalField(
        max_digits=12, decimal_places=2, allow_null=True
    )
    cancellation_policy = serializers.ListField(child=serializers.CharField())


class RetrySummarySerializer(serializers.Serializer):
    attempted = serializers.IntegerField()
    succeeded = serializers.IntegerField()
    still_failed = serializers.IntegerField()
    permanently_failed = serializers.IntegerField()
    skipped = serializers.IntegerField()
