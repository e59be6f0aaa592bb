"""
DRF views for payments app.

This module provides API views for:
- Payment creation and status (with lazy PayMongo pull)
- Cash payment confirmation (staff)
- Refund eligibility and customer refund requests
- Staff refund processing, approval, denial, completion and retries

Related files:
    - services/: PaymentOrchestrator, RefundOrchestrator, RetryCoordinator
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints (prefix /api/v1/payments/):
    POST bookings/<id>/payments/ - Create payment
    GET  bookings/<id>/payment-status/ - Payment status
    POST bookings/<id>/cash-confirmation/ - Confirm cash received (staff)
    GET  bookings/<id>/refund-eligibility/ - Refund eligibility
    POST bookings/<id>/refund-request/ - Customer refund request
    POST bookings/<id>/refunds/ - Process refund (staff)
    POST bookings/<booking_id>/refunds/<id>/complete/ - Complete refund (staff)
    POST refunds/<id>/approve/ - Approve refund request (staff)
    POST refunds/<id>/deny/ - Deny refund request (staff)
    POST refunds/<id>/retry/ - Retry one failed refund (staff)
    POST refunds/retry-failed/ - Retry all failed refunds (staff)

Error responses use ServiceResult.to_response():
    {"success": false, "error": "...", "error_code": "...", "errors": {...}}
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking
from core.exceptions import BaseApplicationError
from core.helpers import get_client_ip
from core.services import ServiceResult
from payments.ledger import RefundLedger
from payments.services import (
    CreatePaymentRequest,
    PaymentOrchestrator,
    ProcessRefundRequest,
    RefundOrchestrator,
    RefundResult,
    RetryCoordinator,
    cancellation_policy,
    check_refund_eligibility,
)
from payments.state_machines import InitiatorType

from .serializers import (
    CreatePaymentSerializer,
    DenyRefundSerializer,
    PaymentResultSerializer,
    PaymentStatusSerializer,
    ProcessRefundSerializer,
    RefundEligibilitySerializer,
    RefundRequestSerializer,
    RefundResultSerializer,
    RefundTransactionSerializer,
    RetryFailedRefundsSerializer,
    RetrySummarySerializer,
)

logger = logging.getLogger(__name__)


# Failure codes that do not map to 400
ERROR_STATUS_CODES = {
    "BOOKING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "REFUND_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_TRANSACTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_ALREADY_PROCESSED": status.HTTP_409_CONFLICT,
    "INVALID_REFUND_STATE": status.HTTP_409_CONFLICT,
    "PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
}


def service_response(
    result: ServiceResult,
    serializer_class=None,
    success_status: int = status.HTTP_200_OK,
) -> Response:
    """
    Render a ServiceResult.

    A failed refund dispatch carries a RefundResult (with manual
    instructions) and is answered with 502 and that payload.
    """
    if result.success:
        data = serializer_class(result.data).data if serializer_class else result.data
        return Response({"success": True, "data": data}, status=success_status)

    body = result.to_response()
    if isinstance(result.data, RefundResult):
        body["data"] = RefundResultSerializer(result.data).data
        return Response(body, status=status.HTTP_502_BAD_GATEWAY)

    http_status = ERROR_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    return Response(body, status=http_status)


def error_response(exc: BaseApplicationError) -> Response:
    return Response(
        {"success": False, **exc.to_dict()},
        status=exc.http_status,
    )


def get_booking_for_user(request, booking_id: int) -> Booking | None:
    """The booking if the user owns it or is staff, otherwise None."""
    queryset = Booking.objects.filter(pk=booking_id)
    if not request.user.is_staff:
        queryset = queryset.filter(customer=request.user)
    return queryset.first()


def booking_not_found(booking_id: int) -> Response:
    return service_response(
        ServiceResult.failure(
            f"Booking {booking_id} not found", error_code="BOOKING_NOT_FOUND"
        )
    )


def actor_type(user) -> str:
    return InitiatorType.ADMIN if user.is_superuser else InitiatorType.STAFF


# =============================================================================
# Payments
# =============================================================================


class CreatePaymentView(APIView):
    """
    Create a payment for a booking.

    POST /api/v1/payments/bookings/<id>/payments/

    Request body:
        {"amount": "1500.00", "payment_method": "gcash"}

    Returns:
        201 with the pending transaction and, for GCash, the checkout URL
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=CreatePaymentSerializer,
        responses={
            201: PaymentResultSerializer,
            400: OpenApiResponse(description="Invalid amount or payment method"),
            409: OpenApiResponse(description="Booking already paid"),
            502: OpenApiResponse(description="PayMongo error"),
        },
        tags=["Payments"],
    )
    def post(self, request, booking_id: int):
        if get_booking_for_user(request, booking_id) is None:
            return booking_not_found(booking_id)

        serializer = CreatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PaymentOrchestrator.create_payment(
            CreatePaymentRequest(booking_id=booking_id, **serializer.validated_data)
        )
        return service_response(
            result, PaymentResultSerializer, success_status=status.HTTP_201_CREATED
        )


class PaymentStatusView(APIView):
    """
    Payment status of a booking.

    GET /api/v1/payments/bookings/<id>/payment-status/

    Refreshes an open GCash payment from PayMongo before answering.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: PaymentStatusSerializer}, tags=["Payments"])
    def get(self, request, booking_id: int):
        if get_booking_for_user(request, booking_id) is None:
            return booking_not_found(booking_id)

        result = PaymentOrchestrator.get_payment_status(booking_id)
        return service_response(result, PaymentStatusSerializer)


class CashConfirmationView(APIView):
    """
    Staff confirmation that a cash payment was received.

    POST /api/v1/payments/bookings/<id>/cash-confirmation/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(request=None, responses={200: PaymentStatusSerializer}, tags=["Payments"])
    def post(self, request, booking_id: int):
        result = PaymentOrchestrator.confirm_cash_payment(
            booking_id, confirmed_by=str(request.user.pk)
        )
        if not result.success:
            return service_response(result)
        return service_response(
            PaymentOrchestrator.get_payment_status(booking_id), PaymentStatusSerializer
        )


# =============================================================================
# Refunds - customer
# =============================================================================


class RefundEligibilityView(APIView):
    """
    Whether a booking can currently be refunded, and for how much.

    GET /api/v1/payments/bookings/<id>/refund-eligibility/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: RefundEligibilitySerializer}, tags=["Refunds"])
    def get(self, request, booking_id: int):
        booking = get_booking_for_user(request, booking_id)
        if booking is None:
            return booking_not_found(booking_id)

        initiator = (
            actor_type(request.user) if request.user.is_staff else InitiatorType.CUSTOMER
        )
        eligibility = check_refund_eligibility(booking, initiator)
        payload = {
            "eligible": eligibility.eligible,
            "reason": eligibility.reason,
            "refund_percentage": eligibility.policy.percentage if eligibility.policy else None,
            "policy_description": (
                eligibility.policy.description if eligibility.policy else None
            ),
            "refundable_amount": eligibility.refundable_amount,
            "estimated_refund": (
                eligibility.policy.apply(eligibility.refundable_amount)
                if eligibility.eligible
                else None
            ),
            "cancellation_policy": cancellation_policy(),
        }
        return Response(
            {"success": True, "data": RefundEligibilitySerializer(payload).data}
        )


class RefundRequestView(APIView):
    """
    Customer refund request, reviewed by staff.

    POST /api/v1/payments/bookings/<id>/refund-request/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=RefundRequestSerializer,
        responses={201: RefundResultSerializer},
        tags=["Refunds"],
    )
    def post(self, request, booking_id: int):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = RefundOrchestrator.request_refund(
                booking_id,
                customer_id=request.user.pk,
                ip_address=get_client_ip(request),
                **serializer.validated_data,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return service_response(
            result, RefundResultSerializer, success_status=status.HTTP_201_CREATED
        )


# =============================================================================
# Refunds - staff
# =============================================================================


class ProcessRefundView(APIView):
    """
    Create and dispatch a refund.

    POST /api/v1/payments/bookings/<id>/refunds/

    Request body:
        {"amount": "750.00", "reason": "service_not_provided", "notes": "..."}

    Returns:
        201 with the refund; 502 with manual instructions when PayMongo
        could not process it
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        request=ProcessRefundSerializer,
        responses={
            201: RefundResultSerializer,
            400: OpenApiResponse(description="Invalid request or not eligible"),
            409: OpenApiResponse(description="Another refund is being created"),
            502: RefundResultSerializer,
        },
        tags=["Refunds"],
    )
    def post(self, request, booking_id: int):
        serializer = ProcessRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = RefundOrchestrator.process_refund(
                ProcessRefundRequest(
                    booking_id=booking_id,
                    initiated_by=str(request.user.pk),
                    initiated_by_type=actor_type(request.user),
                    ip_address=get_client_ip(request),
                    **serializer.validated_data,
                )
            )
        except BaseApplicationError as e:
            return error_response(e)
        return service_response(
            result, RefundResultSerializer, success_status=status.HTTP_201_CREATED
        )


class ApproveRefundView(APIView):
    """POST /api/v1/payments/refunds/<id>/approve/"""

    permission_classes = [IsAdminUser]

    @extend_schema(request=None, responses={200: RefundResultSerializer}, tags=["Refunds"])
    def post(self, request, refund_id: int):
        try:
            result = RefundOrchestrator.approve_refund(
                refund_id,
                approved_by=str(request.user.pk),
                approved_by_type=actor_type(request.user),
                ip_address=get_client_ip(request),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return service_response(result, RefundResultSerializer)


class DenyRefundView(APIView):
    """POST /api/v1/payments/refunds/<id>/deny/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        request=DenyRefundSerializer,
        responses={200: RefundTransactionSerializer},
        tags=["Refunds"],
    )
    def post(self, request, refund_id: int):
        serializer = DenyRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundOrchestrator.deny_refund(
            refund_id,
            denied_by=str(request.user.pk),
            reason=serializer.validated_data["reason"] or None,
            denied_by_type=actor_type(request.user),
        )
        return service_response(result, RefundTransactionSerializer)


class CompleteRefundView(APIView):
    """
    Staff confirmation that a refund reached the customer.

    POST /api/v1/payments/bookings/<booking_id>/refunds/<id>/complete/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(request=None, responses={200: RefundTransactionSerializer}, tags=["Refunds"])
    def post(self, request, booking_id: int, refund_id: int):
        result = RefundOrchestrator.complete_refund(
            booking_id,
            refund_id,
            completed_by=str(request.user.pk),
            completed_by_type=actor_type(request.user),
        )
        return service_response(result, RefundTransactionSerializer)


class RetryRefundView(APIView):
    """POST /api/v1/payments/refunds/<id>/retry/"""

    permission_classes = [IsAdminUser]

    @extend_schema(request=None, responses={200: RefundTransactionSerializer}, tags=["Refunds"])
    def post(self, request, refund_id: int):
        result = RetryCoordinator.retry_refund(refund_id)
        if not result.success:
            return service_response(result)

        refund = RefundLedger.get(refund_id)
        return Response(
            {
                "success": True,
                "data": {
                    "outcome": result.data.value,
                    "refund": RefundTransactionSerializer(refund).data,
                },
            }
        )


class RetryFailedRefundsView(APIView):
    """POST /api/v1/payments/refunds/retry-failed/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        request=RetryFailedRefundsSerializer,
        responses={200: RetrySummarySerializer},
        tags=["Refunds"],
    )
    def post(self, request):
        serializer = RetryFailedRefundsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        summary = RetryCoordinator.retry_failed_refunds(**serializer.validated_data)
        logger.info(
            "Refund retry triggered by staff",
            extra={"user_id": request.user.pk, **summary.to_dict()},
        )
        return Response(
            {"success": True, "data": RetrySummarySerializer(summary).data}
        )
