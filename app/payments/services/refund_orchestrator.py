"""
Refund orchestrator for returning money to customers.

Handles the full refund lifecycle:
- Staff-initiated refunds (process_refund), dispatched immediately
- Customer refund requests (request_refund) awaiting staff review
- Approval, denial and manual completion by staff
- Gateway-side settlement reported by PayMongo webhooks

Refunds for GCash payments are automatic: they are submitted to PayMongo
and settle asynchronously. Cash and QR payments are refunded by staff
outside the system, so their refunds are recorded as processed straight
away and come with step-by-step instructions.

Concurrency:
    Refund creation for a booking is serialized twice: a Redis lock
    (refund:booking:{id}) across processes, then the booking row lock
    inside the transaction that re-checks eligibility and inserts the row.
    A conditional unique constraint on active refunds backs both up.
    The booking lock is released once the row is committed, so a slow
    PayMongo call never holds it; the new active row turns later
    requests away as ineligible. Approval takes a per-refund dispatch
    lock sized to the gateway timeout.

Usage:
    from payments.services import ProcessRefundRequest, RefundOrchestrator

    result = RefundOrchestrator.process_refund(
        ProcessRefundRequest(
            booking_id=booking.pk,
            amount=Decimal("750.00"),
            reason="customer_requested",
            initiated_by=str(request.user.pk),
            initiated_by_type="admin",
        )
    )
    if not result.success and result.data:
        show(result.data.instructions)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from bookings.models import Booking, BookingPaymentStatus
from core.services import BaseService, ServiceResult
from notifications.hooks import PaymentNotifier
from payments.adapters import (
    CENTAVO,
    CreateRefundParams,
    IdempotencyKeyGenerator,
    PayMongoAdapter,
    to_amount,
    to_centavos,
)
from payments.exceptions import GatewayError
from payments.ledger import PaymentLedger, RecordTransitionParams, RefundLedger
from payments.locks import (
    DistributedLock,
    lock_booking,
    refund_dispatch_lock_key,
    refund_lock_key,
)
from payments.models import PaymentTransaction, RefundTransaction
from payments.state_machines import (
    ACTIVE_REFUND_STATUSES,
    InitiatorType,
    PaymentMethod,
    PaymentProvider,
    RefundAuditAction,
    RefundReason,
    RefundStatus,
    RefundType,
    is_gateway_method,
)

from .eligibility import REASON_ACTIVE_REFUND, REASON_NO_BALANCE, check_refund_eligibility
from .status_mapping import normalize_gateway_status

logger = logging.getLogger(__name__)

REFUND_LOCK_TTL_SECONDS = 60

HINT_PAYMENT_ID_MISSING = "Gateway payment id not yet available"

# A PayMongo refund may exist for these without its id recorded locally
UNRECORDED_DISPATCH_STATUSES = frozenset(
    [RefundStatus.PENDING.value, RefundStatus.PROCESSING.value, RefundStatus.FAILED.value]
)


# =============================================================================
# Parameter / Result Types
# =============================================================================


@dataclass
class ProcessRefundRequest:
    """
    Parameters for a staff-initiated refund.

    Attributes:
        booking_id: Booking to refund
        amount: Amount in PHP, at most the refundable balance
        reason: RefundReason value
        initiated_by: Id of the acting user
        initiated_by_type: InitiatorType value
        notes: Free-text notes stored on the refund
        ip_address: Client address for the audit trail
    """

    booking_id: int
    amount: Any
    reason: str
    initiated_by: str | None = None
    initiated_by_type: str = InitiatorType.ADMIN
    notes: str = ""
    ip_address: str | None = None


@dataclass
class RefundResult:
    """
    Outcome of a refund operation.

    Returned as ``data`` on both success and failure, so callers always
    know whether staff need to act and how.
    """

    refund: RefundTransaction
    refund_type: str
    status: str
    requires_manual_processing: bool = False
    instructions: list[str] = field(default_factory=list)
    message: str = ""


def manual_refund_instructions(payment_method: str | None) -> list[str]:
    """Step-by-step instructions for staff settling a refund by hand."""
    method = (payment_method or "").lower()

    if method == PaymentMethod.CASH:
        return [
            "Prepare the refund amount in cash.",
            "Hand the cash to the customer and have them sign the refund receipt.",
            "Mark the refund as completed in the admin dashboard.",
        ]
    if method == PaymentMethod.QR_CODE:
        return [
            "Ask the customer for the account that made the QR payment.",
            "Send the refund amount to that account through the bank or e-wallet app.",
            "Keep the transfer reference number.",
            "Mark the refund as completed and add the reference to the notes.",
        ]
    if is_gateway_method(method):
        return [
            "Open the PayMongo dashboard and locate the original payment.",
            "Issue the refund from the dashboard, or transfer the amount to the customer's e-wallet.",
            "Mark the refund as completed once the transfer is confirmed.",
        ]
    return [
        "Confirm how the customer originally paid.",
        "Return the refund amount through the same channel.",
        "Mark the refund as completed once the customer has received it.",
    ]


# =============================================================================
# Refund Orchestrator
# =============================================================================


class RefundOrchestrator(BaseService):
    """
    Creates, dispatches and settles refunds.

    Every state change goes through RefundLedger.record_transition so the
    audit trail is written in the same transaction as the change.
    Notifications are sent after the transaction has committed.
    """

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    @classmethod
    def process_refund(cls, request: ProcessRefundRequest) -> ServiceResult[RefundResult]:
        """
        Create and immediately dispatch a refund.

        Returns:
            ServiceResult[RefundResult]. Failure codes: INVALID_AMOUNT,
            INVALID_REFUND_REASON, INVALID_INITIATOR, BOOKING_NOT_FOUND,
            REFUND_NOT_ELIGIBLE, AMOUNT_EXCEEDS_REFUNDABLE and the gateway
            error code when an automatic dispatch fails.

        Raises:
            LockAcquisitionError: Another refund for the booking is being created
        """
        amount = to_amount(request.amount)
        if amount is None or amount < CENTAVO:
            return ServiceResult.failure(
                "Refund amount must be at least PHP 0.01",
                error_code="INVALID_AMOUNT",
                errors={"amount": ["Refund amount must be at least PHP 0.01."]},
            )

        validation = cls._validate_request(
            request.booking_id, request.reason, request.initiated_by_type
        )
        if validation is not None:
            return validation

        actor = RecordTransitionParams(
            performed_by=request.initiated_by,
            performed_by_type=request.initiated_by_type,
            ip_address=request.ip_address,
        )

        with DistributedLock(
            refund_lock_key(request.booking_id), ttl=REFUND_LOCK_TTL_SECONDS
        ):
            creation = cls._create_refund_row(
                booking_id=request.booking_id,
                amount=amount,
                reason=request.reason,
                initiated_by=request.initiated_by,
                initiated_by_type=request.initiated_by_type,
                notes=request.notes,
                ip_address=request.ip_address,
            )
        if not creation.success:
            return creation
        return cls.execute(creation.data, actor)

    @classmethod
    def request_refund(
        cls,
        booking_id: int,
        customer_id: int | str,
        reason: str = RefundReason.CUSTOMER_REQUESTED,
        notes: str = "",
        ip_address: str | None = None,
    ) -> ServiceResult[RefundResult]:
        """
        Record a customer's refund request for staff review.

        The amount is the customer policy share of the refundable balance.
        Nothing is dispatched until staff approve the request.
        """
        validation = cls._validate_request(booking_id, reason, InitiatorType.CUSTOMER)
        if validation is not None:
            return validation

        booking = Booking.objects.get(pk=booking_id)
        if booking.customer_id is None or str(booking.customer_id) != str(customer_id):
            # Do not reveal other customers' bookings
            return ServiceResult.failure(
                f"Booking {booking_id} not found", error_code="BOOKING_NOT_FOUND"
            )

        with DistributedLock(refund_lock_key(booking_id), ttl=REFUND_LOCK_TTL_SECONDS):
            creation = cls._create_refund_row(
                booking_id=booking_id,
                amount=None,
                reason=reason,
                initiated_by=str(customer_id),
                initiated_by_type=InitiatorType.CUSTOMER,
                notes=notes,
                ip_address=ip_address,
            )
        if not creation.success:
            return creation

        refund = creation.data
        PaymentNotifier.refund_requested(refund)
        return ServiceResult.success(
            RefundResult(
                refund=refund,
                refund_type=refund.refund_type,
                status=refund.status,
                message="Refund request submitted for review",
            )
        )

    @classmethod
    def _validate_request(
        cls, booking_id: int, reason: str, initiated_by_type: str
    ) -> ServiceResult | None:
        if reason not in RefundReason.values:
            return ServiceResult.failure(
                f"Unknown refund reason: {reason}",
                error_code="INVALID_REFUND_REASON",
                errors={"reason": [f"Choose one of: {', '.join(RefundReason.values)}."]},
            )
        if initiated_by_type not in InitiatorType.values:
            return ServiceResult.failure(
                f"Unknown initiator type: {initiated_by_type}",
                error_code="INVALID_INITIATOR",
            )
        if not Booking.objects.filter(pk=booking_id).exists():
            return ServiceResult.failure(
                f"Booking {booking_id} not found", error_code="BOOKING_NOT_FOUND"
            )
        return None

    @classmethod
    def _create_refund_row(
        cls,
        booking_id: int,
        amount: Decimal | None,
        reason: str,
        initiated_by: str | None,
        initiated_by_type: str,
        notes: str,
        ip_address: str | None,
    ) -> ServiceResult[RefundTransaction]:
        """
        Re-check eligibility under the booking lock and insert a pending refund.

        ``amount=None`` refunds the initiator's policy share of the balance.
        """
        log = cls.get_logger()
        log_context = {
            "booking_id": booking_id,
            "initiated_by": initiated_by,
            "initiated_by_type": initiated_by_type,
        }

        with cls.atomic():
            booking = lock_booking(booking_id)
            eligibility = check_refund_eligibility(booking, initiated_by_type)
            if not eligibility.eligible:
                log.warning(
                    "Refund rejected: booking not eligible",
                    extra={**log_context, "reason": eligibility.reason},
                )
                return ServiceResult.failure(
                    eligibility.reason, error_code="REFUND_NOT_ELIGIBLE"
                )

            if amount is None:
                amount = eligibility.policy.apply(eligibility.refundable_amount)
                if amount <= 0:
                    return ServiceResult.failure(
                        REASON_NO_BALANCE, error_code="REFUND_NOT_ELIGIBLE"
                    )

            if amount > eligibility.refundable_amount:
                log.warning(
                    "Refund rejected: amount exceeds refundable balance",
                    extra={
                        **log_context,
                        "amount": str(amount),
                        "refundable": str(eligibility.refundable_amount),
                    },
                )
                return ServiceResult.failure(
                    f"Refund amount PHP {amount} exceeds the refundable balance "
                    f"of PHP {eligibility.refundable_amount}",
                    error_code="AMOUNT_EXCEEDS_REFUNDABLE",
                    errors={"amount": ["Amount exceeds the refundable balance."]},
                )

            payment = PaymentLedger.succeeded_for_booking(booking.pk)
            payment_method = payment.payment_method if payment else booking.payment_method
            automatic = is_gateway_method(payment_method)

            try:
                refund = RefundLedger.create(
                    booking,
                    amount,
                    reason=reason,
                    refund_type=RefundType.AUTOMATIC if automatic else RefundType.MANUAL,
                    provider=(
                        PaymentProvider.PAYMONGO if automatic else PaymentProvider.MANUAL
                    ),
                    payment_transaction=payment,
                    payment_method=payment_method,
                    initiated_by=initiated_by,
                    initiated_by_type=initiated_by_type,
                    notes=notes,
                    ip_address=ip_address,
                )
            except IntegrityError:
                log.warning(
                    "Refund rejected by active refund constraint", extra=log_context
                )
                return ServiceResult.failure(
                    REASON_ACTIVE_REFUND, error_code="REFUND_NOT_ELIGIBLE"
                )

        return ServiceResult.success(refund)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    @classmethod
    def execute(
        cls, refund: RefundTransaction, actor: RecordTransitionParams
    ) -> ServiceResult[RefundResult]:
        """Send a refund down the automatic or manual path by its type."""
        if refund.is_automatic:
            return cls.dispatch(refund, actor)
        return cls._complete_manually(refund, actor)

    @classmethod
    def dispatch(
        cls, refund: RefundTransaction, actor: RecordTransitionParams
    ) -> ServiceResult[RefundResult]:
        """
        Submit an automatic refund to PayMongo.

        Shared by process_refund, approve_refund and the retry coordinator.
        The refund must be pending, or processing after a retry claim.
        """
        payment_id = cls.resolve_gateway_payment_id(refund)
        if not payment_id:
            return cls.record_failure(
                refund,
                actor,
                HINT_PAYMENT_ID_MISSING,
                retryable=True,
                error_code="PAYMENT_ID_MISSING",
            )

        # Reuse the last key when the previous attempt may have gone through
        attempt = refund.retry_count if refund.outcome_unknown else refund.retry_count + 1
        try:
            params = CreateRefundParams(
                payment_id=payment_id,
                amount_centavos=to_centavos(refund.amount),
                reason=refund.reason,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_refund", refund.pk, max(attempt, 1)
                ),
                notes=f"Booking #{refund.booking_id}",
                metadata={
                    "refund_transaction_id": str(refund.pk),
                    "booking_id": str(refund.booking_id),
                },
            )
        except ValueError as e:
            return cls.record_failure(
                refund,
                actor,
                f"Invalid refund request: {e}",
                retryable=False,
                error_code="INVALID_REFUND_REQUEST",
            )

        try:
            gateway_refund = PayMongoAdapter.create_refund(params)
        except GatewayError as e:
            return cls.record_failure(
                refund,
                actor,
                e.message,
                retryable=e.is_retryable,
                outcome_unknown=e.outcome_unknown,
                error_code=e.error_code,
            )
        except Exception as e:
            # The request may have reached PayMongo; resolve on the next retry
            cls.get_logger().exception(
                "Unexpected error submitting refund to PayMongo",
                extra={"refund_id": refund.pk, "booking_id": refund.booking_id},
            )
            return cls.record_failure(
                refund,
                actor,
                f"Unexpected error: {type(e).__name__}",
                retryable=True,
                outcome_unknown=True,
                error_code="REFUND_DISPATCH_ERROR",
            )

        return cls.record_dispatched(refund, gateway_refund.id, actor)

    @classmethod
    def resolve_gateway_payment_id(cls, refund: RefundTransaction) -> str | None:
        """
        PayMongo payment id (pay_xxx) the refund draws on.

        Backfills PaymentTransaction.provider_transaction_id from the
        intent or source when the payment webhook has not supplied it.
        """
        payment = refund.payment_transaction
        if payment is None:
            return None
        if payment.provider_transaction_id:
            return payment.provider_transaction_id

        log_context = {
            "refund_id": refund.pk,
            "payment_transaction_id": payment.pk,
            "gateway_reference": payment.gateway_reference,
        }
        try:
            if payment.gateway_intent_id:
                payment_id = PayMongoAdapter.retrieve_payment_intent(
                    payment.gateway_intent_id
                ).payment_id
            elif payment.gateway_source_id:
                payment_id = PayMongoAdapter.find_payment_for_source(
                    payment.gateway_source_id
                )
            else:
                payment_id = None
        except GatewayError as e:
            cls.get_logger().warning(
                "Could not look up gateway payment id",
                extra={**log_context, "error_code": e.error_code},
            )
            return None

        if payment_id:
            PaymentTransaction.objects.filter(
                pk=payment.pk, provider_transaction_id__isnull=True
            ).update(provider_transaction_id=payment_id)
            payment.provider_transaction_id = payment_id
            cls.get_logger().info(
                "Backfilled gateway payment id",
                extra={**log_context, "provider_transaction_id": payment_id},
            )
        return payment_id

    @classmethod
    def record_dispatched(
        cls,
        refund: RefundTransaction,
        gateway_refund_id: str,
        actor: RecordTransitionParams,
        reconciled: bool = False,
    ) -> ServiceResult[RefundResult]:
        """Persist a gateway-accepted refund as processing."""
        log_context = {
            "refund_id": refund.pk,
            "booking_id": refund.booking_id,
            "gateway_refund_id": gateway_refund_id,
            "amount": str(refund.amount),
        }
        try:
            with cls.atomic():
                refund = RefundLedger.get_for_update(refund.pk)
                if refund.gateway_refund_id == gateway_refund_id and refund.status in (
                    RefundStatus.PROCESSING,
                    RefundStatus.PROCESSED,
                ):
                    # Already recorded from the refund webhook
                    return ServiceResult.success(
                        RefundResult(
                            refund=refund,
                            refund_type=RefundType.AUTOMATIC,
                            status=refund.status,
                            message="Refund already recorded",
                        )
                    )
                previous = refund.status
                refund.mark_dispatched(gateway_refund_id=gateway_refund_id)
                if reconciled:
                    refund.append_note(
                        f"Adopted existing PayMongo refund {gateway_refund_id}"
                    )
                RefundLedger.record_transition(
                    refund,
                    RefundAuditAction.RECONCILED if reconciled else RefundAuditAction.DISPATCHED,
                    previous,
                    cls._with_details(actor, gateway_refund_id=gateway_refund_id),
                )
        except Exception:
            cls.get_logger().critical(
                "Gateway refund created but not recorded - reconciliation needed",
                extra=log_context,
                exc_info=True,
            )
            raise

        cls.get_logger().info("Refund submitted to PayMongo", extra=log_context)
        PaymentNotifier.refund_processed(refund)
        return ServiceResult.success(
            RefundResult(
                refund=refund,
                refund_type=RefundType.AUTOMATIC,
                status=refund.status,
                message="Refund submitted to PayMongo",
            )
        )

    @classmethod
    def record_failure(
        cls,
        refund: RefundTransaction,
        actor: RecordTransitionParams,
        reason: str,
        retryable: bool,
        outcome_unknown: bool = False,
        error_code: str | None = None,
    ) -> ServiceResult[RefundResult]:
        """
        Persist a failed dispatch.

        A retryable failure stays in the retry set until retry_count reaches
        REFUND_MAX_RETRIES, after which it needs manual processing.
        """
        max_retries = cls.max_retries()

        with cls.atomic():
            refund = RefundLedger.get_for_update(refund.pk)
            previous = refund.status
            retry_count = refund.retry_count + 1
            at_ceiling = retryable and retry_count >= max_retries

            refund.retry_count = retry_count
            refund.last_retry_at = timezone.now()
            refund.fail(
                reason,
                retryable=retryable and not at_ceiling,
                outcome_unknown=outcome_unknown,
            )
            if refund.retryable:
                refund.append_note(
                    f"Attempt {retry_count}/{max_retries} failed, will retry: {reason}"
                )
            elif at_ceiling:
                refund.append_note(f"Retry limit reached after {retry_count} attempts")
            else:
                refund.append_note(f"Refund failed: {reason}")

            RefundLedger.record_transition(
                refund,
                RefundAuditAction.FAILED,
                previous,
                cls._with_details(
                    actor,
                    error_code=error_code,
                    retryable=refund.retryable,
                    outcome_unknown=outcome_unknown,
                ),
            )

        log_context = {
            "refund_id": refund.pk,
            "booking_id": refund.booking_id,
            "error_code": error_code,
            "retry_count": retry_count,
            "reason": reason,
        }
        if refund.retryable:
            cls.get_logger().warning("Refund dispatch failed, will retry", extra=log_context)
        else:
            cls.get_logger().error("Refund dispatch failed permanently", extra=log_context)

        PaymentNotifier.refund_failed(refund)
        return ServiceResult.failure(
            f"Refund could not be processed automatically: {reason}",
            error_code=error_code or "REFUND_FAILED",
            data=RefundResult(
                refund=refund,
                refund_type=RefundType.AUTOMATIC,
                status=refund.status,
                requires_manual_processing=True,
                instructions=manual_refund_instructions(refund.payment_method),
                message=reason,
            ),
        )

    @classmethod
    def _complete_manually(
        cls, refund: RefundTransaction, actor: RecordTransitionParams
    ) -> ServiceResult[RefundResult]:
        with cls.atomic():
            booking = lock_booking(refund.booking_id)
            refund = RefundLedger.get_for_update(refund.pk)
            previous = refund.status
            refund.complete()
            RefundLedger.record_transition(
                refund, RefundAuditAction.PROCESSED, previous, actor
            )
            cls._mark_booking_refunded_if_full(booking)

        PaymentNotifier.refund_processed(refund)
        return ServiceResult.success(
            RefundResult(
                refund=refund,
                refund_type=RefundType.MANUAL,
                status=refund.status,
                instructions=manual_refund_instructions(refund.payment_method),
                message="Refund recorded; return the money to the customer manually",
            )
        )

    # -------------------------------------------------------------------------
    # Staff actions
    # -------------------------------------------------------------------------

    @classmethod
    def approve_refund(
        cls,
        refund_id: int,
        approved_by: str | None,
        approved_by_type: str = InitiatorType.STAFF,
        ip_address: str | None = None,
    ) -> ServiceResult[RefundResult]:
        """Dispatch a pending (customer-requested) refund."""
        refund = RefundLedger.get(refund_id)
        if refund is None:
            return ServiceResult.failure(
                f"Refund {refund_id} not found", error_code="REFUND_NOT_FOUND"
            )

        with DistributedLock(
            refund_dispatch_lock_key(refund_id),
            ttl=cls.dispatch_lock_ttl(),
            blocking=False,
        ):
            refund = RefundLedger.get(refund_id)
            if refund.status != RefundStatus.PENDING:
                return ServiceResult.failure(
                    f"Only pending refunds can be approved (current status: {refund.status})",
                    error_code="INVALID_REFUND_STATE",
                )

            cls.get_logger().info(
                "Refund approved",
                extra={
                    "refund_id": refund.pk,
                    "booking_id": refund.booking_id,
                    "approved_by": approved_by,
                },
            )
            actor = RecordTransitionParams(
                performed_by=approved_by,
                performed_by_type=approved_by_type,
                details={"approved": True},
                ip_address=ip_address,
            )
            return cls.execute(refund, actor)

    @classmethod
    def deny_refund(
        cls,
        refund_id: int,
        denied_by: str | None,
        reason: str | None = None,
        denied_by_type: str = InitiatorType.STAFF,
    ) -> ServiceResult[RefundTransaction]:
        """Deny a pending refund. Any other state is INVALID_REFUND_STATE."""
        with cls.atomic():
            refund = RefundLedger.get_for_update(refund_id)
            if refund is None:
                return ServiceResult.failure(
                    f"Refund {refund_id} not found", error_code="REFUND_NOT_FOUND"
                )
            if refund.status != RefundStatus.PENDING:
                return ServiceResult.failure(
                    f"Only pending refunds can be denied (current status: {refund.status})",
                    error_code="INVALID_REFUND_STATE",
                )

            previous = refund.status
            refund.cancel(reason=reason)
            refund.append_note(f"Denied by {denied_by}: {reason or 'no reason given'}")
            RefundLedger.record_transition(
                refund,
                RefundAuditAction.DENIED,
                previous,
                RecordTransitionParams(
                    performed_by=denied_by,
                    performed_by_type=denied_by_type,
                    details={"reason": reason},
                ),
            )

        PaymentNotifier.refund_denied(refund, reason)
        return ServiceResult.success(refund)

    @classmethod
    def complete_refund(
        cls,
        booking_id: int,
        refund_id: int,
        completed_by: str | None,
        completed_by_type: str = InitiatorType.STAFF,
    ) -> ServiceResult[RefundTransaction]:
        """
        Staff confirmation that a refund reached the customer.

        Used for manual refunds settled outside the system and for automatic
        refunds whose settlement was confirmed on the PayMongo dashboard.
        """
        if not Booking.objects.filter(pk=booking_id).exists():
            return ServiceResult.failure(
                f"Booking {booking_id} not found", error_code="BOOKING_NOT_FOUND"
            )

        with cls.atomic():
            booking = lock_booking(booking_id)
            refund = RefundLedger.get_for_update(refund_id)
            if refund is None or refund.booking_id != booking.pk:
                return ServiceResult.failure(
                    f"Refund {refund_id} not found for booking {booking_id}",
                    error_code="REFUND_NOT_FOUND",
                )
            if refund.status not in ACTIVE_REFUND_STATUSES:
                return ServiceResult.failure(
                    f"Refund cannot be completed from status {refund.status}",
                    error_code="INVALID_REFUND_STATE",
                )

            previous = refund.status
            refund.complete()
            refund.append_note(f"Completed by {completed_by}")
            RefundLedger.record_transition(
                refund,
                RefundAuditAction.COMPLETED,
                previous,
                RecordTransitionParams(
                    performed_by=completed_by, performed_by_type=completed_by_type
                ),
            )
            cls._mark_booking_refunded_if_full(booking)

        PaymentNotifier.refund_processed(refund)
        return ServiceResult.success(refund)

    # -------------------------------------------------------------------------
    # Gateway reconciliation
    # -------------------------------------------------------------------------

    @classmethod
    def reconcile_refund(
        cls,
        gateway_refund_id: str,
        gateway_status: str,
        failure_reason: str | None = None,
        refund_transaction_id: str | int | None = None,
    ) -> ServiceResult[RefundTransaction]:
        """
        Apply a PayMongo refund status reported by webhook.

        succeeded moves the refund to processed (and the booking to
        refunded when nothing is left to refund); failed is permanent.
        Re-applying the status the refund already has is a no-op.

        A gateway refund id we have not recorded yet (the dispatch timed
        out) is matched through the refund_transaction_id metadata that
        dispatch attaches, and adopted before its status is applied.
        """
        existing = RefundLedger.find_by_gateway_refund_id(gateway_refund_id)
        if existing is None and refund_transaction_id:
            existing = cls._find_unrecorded_refund(refund_transaction_id)
        if existing is None:
            return ServiceResult.failure(
                f"No refund matches gateway refund {gateway_refund_id}",
                error_code="REFUND_NOT_FOUND",
            )

        status = normalize_gateway_status(gateway_status)
        log = cls.get_logger()
        log_context = {
            "refund_id": existing.pk,
            "booking_id": existing.booking_id,
            "gateway_refund_id": gateway_refund_id,
            "gateway_status": status,
        }
        actor = RecordTransitionParams(
            performed_by_type=InitiatorType.SYSTEM,
            details={"gateway_status": status, "gateway_refund_id": gateway_refund_id},
        )
        notify = None
        adopted = False

        with cls.atomic():
            booking = lock_booking(existing.booking_id)
            refund = RefundLedger.get_for_update(existing.pk)
            initial_status = refund.status

            if refund.gateway_refund_id != gateway_refund_id:
                if refund.gateway_refund_id or refund.status not in UNRECORDED_DISPATCH_STATUSES:
                    log.critical(
                        "PayMongo refund does not match the local refund - "
                        "reconciliation needed",
                        extra={
                            **log_context,
                            "local_status": refund.status,
                            "local_gateway_refund_id": refund.gateway_refund_id,
                        },
                    )
                    return ServiceResult.failure(
                        f"Refund {refund.pk} cannot take gateway refund {gateway_refund_id}",
                        error_code="INVALID_REFUND_STATE",
                    )
                refund.mark_dispatched(gateway_refund_id=gateway_refund_id)
                refund.append_note(f"Matched PayMongo refund {gateway_refund_id} from webhook")
                RefundLedger.record_transition(
                    refund, RefundAuditAction.RECONCILED, initial_status, actor
                )
                adopted = True

            previous = refund.status

            if status in ("succeeded", "processed"):
                if refund.status == RefundStatus.PROCESSED:
                    return ServiceResult.success(refund)
                if refund.status not in ACTIVE_REFUND_STATUSES:
                    log.critical(
                        "PayMongo reports refund succeeded but local refund is "
                        "not active - reconciliation needed",
                        extra={**log_context, "local_status": refund.status},
                    )
                    return ServiceResult.failure(
                        f"Refund is {refund.status} locally",
                        error_code="INVALID_REFUND_STATE",
                    )
                refund.complete()
                RefundLedger.record_transition(
                    refund, RefundAuditAction.RECONCILED, previous, actor
                )
                cls._mark_booking_refunded_if_full(booking)
                notify = PaymentNotifier.refund_processed

            elif status == "failed":
                if refund.status == RefundStatus.FAILED:
                    return ServiceResult.success(refund)
                if refund.status not in ACTIVE_REFUND_STATUSES:
                    log.warning(
                        "Ignoring refund failure for inactive refund",
                        extra={**log_context, "local_status": refund.status},
                    )
                    return ServiceResult.success(refund)
                refund.fail(failure_reason or "Refund failed at PayMongo", retryable=False)
                refund.append_note(
                    f"PayMongo reported failure: {failure_reason or 'no reason given'}"
                )
                RefundLedger.record_transition(
                    refund, RefundAuditAction.RECONCILED, previous, actor
                )
                notify = PaymentNotifier.refund_failed

        if notify is None:
            if adopted:
                log.info("Matched PayMongo refund to unrecorded dispatch", extra=log_context)
            else:
                log.debug("Refund status unchanged", extra=log_context)
            return ServiceResult.success(refund)

        log.info(
            "Refund reconciled from PayMongo",
            extra={
                **log_context,
                "previous_status": initial_status,
                "new_status": refund.status,
            },
        )
        notify(refund)
        return ServiceResult.success(refund)

    @classmethod
    def _find_unrecorded_refund(
        cls, refund_transaction_id: str | int
    ) -> RefundTransaction | None:
        """Automatic refund named by gateway metadata that has no gateway id yet."""
        try:
            refund_id = int(refund_transaction_id)
        except (TypeError, ValueError):
            return None
        refund = RefundLedger.get(refund_id)
        if refund is None or refund.gateway_refund_id or not refund.is_automatic:
            return None
        return refund

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _mark_booking_refunded_if_full(cls, booking: Booking) -> bool:
        """Mark the locked booking refunded when nothing is left to refund."""
        balance = RefundLedger.balance(booking.pk)
        if not balance.is_fully_refunded:
            return False
        if booking.payment_status == BookingPaymentStatus.REFUNDED:
            return False

        booking.payment_status = BookingPaymentStatus.REFUNDED
        booking.save(update_fields=["payment_status", "updated_at"])
        cls.get_logger().info(
            "Booking fully refunded",
            extra={"booking_id": booking.pk, "refunded": str(balance.refunded_amount)},
        )
        return True

    @staticmethod
    def _with_details(
        actor: RecordTransitionParams, **details: Any
    ) -> RecordTransitionParams:
        return RecordTransitionParams(
            performed_by=actor.performed_by,
            performed_by_type=actor.performed_by_type,
            details={**actor.details, **details},
            ip_address=actor.ip_address,
        )

    @staticmethod
    def max_retries() -> int:
        return getattr(settings, "REFUND_MAX_RETRIES", 5)

    @staticmethod
    def dispatch_lock_ttl() -> int:
        """Covers a payment id lookup plus the refund call, each up to the API timeout."""
        timeout = int(getattr(settings, "PAYMONGO_API_TIMEOUT_SECONDS", 30))
        return 2 * timeout + REFUND_LOCK_TTL_SECONDS
