"""
Payment orchestrator service for coordinating payment operations.

This module provides the PaymentOrchestrator class which is the entry
point for taking payments against a booking and for keeping local
payment state in step with PayMongo.

The orchestrator:
- Validates payment requests before any gateway call or write
- Creates GCash sources (redirect checkout) and manual cash payments
- Pulls gateway status lazily when a client asks for it
- Reconciles pulled and pushed (webhook) statuses through one
  idempotent compare-and-set entry point

Usage:
    from payments.services import CreatePaymentRequest, PaymentOrchestrator

    result = PaymentOrchestrator.create_payment(
        CreatePaymentRequest(
            booking_id=booking.pk,
            amount=Decimal("1500.00"),
            payment_method="gcash",
        )
    )

    if result.success:
        redirect_to = result.data.checkout_url
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction

from django_fsm import can_proceed

from bookings.models import Booking, BookingPaymentStatus
from core.services import BaseService, ServiceResult
from notifications.hooks import PaymentNotifier
from payments.adapters import (
    CENTAVO,
    CreateSourceParams,
    IdempotencyKeyGenerator,
    PayMongoAdapter,
    to_amount,
    to_centavos,
)
from payments.exceptions import GatewayError
from payments.ledger import PaymentLedger
from payments.locks import lock_booking
from payments.models import PaymentTransaction
from payments.state_machines import (
    MANUAL_PAYMENT_METHODS,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
)
from payments.webhooks.events import GatewayEventKind

from .status_mapping import map_gateway_status

if TYPE_CHECKING:
    from payments.webhooks.events import GatewayEvent


logger = logging.getLogger(__name__)


# (minimum, maximum) in PHP; None means no upper limit
PAYMENT_METHOD_LIMITS: dict[str, tuple[Decimal, Decimal | None]] = {
    PaymentMethod.GCASH.value: (Decimal("1"), Decimal("50000")),
    PaymentMethod.CASH.value: (Decimal("1"), None),
}

# Local status reported by each payment webhook
EVENT_GATEWAY_STATUS = {
    GatewayEventKind.SOURCE_CHARGEABLE: "chargeable",
    GatewayEventKind.PAYMENT_PAID: "paid",
    GatewayEventKind.PAYMENT_FAILED: "failed",
}


# =============================================================================
# Parameter / Result Types
# =============================================================================


@dataclass
class CreatePaymentRequest:
    """
    Parameters for creating a payment for a booking.

    Attributes:
        booking_id: Booking being paid for
        amount: Amount in PHP
        payment_method: 'gcash' or 'cash'
        description: Shown on the PayMongo checkout page
        success_url: Redirect after authorization (default: PAYMENT_SUCCESS_URL)
        failed_url: Redirect after failure (default: PAYMENT_FAILED_URL)
        billing: Optional {name, email, phone} passed to PayMongo
    """

    booking_id: int
    amount: Any
    payment_method: str
    description: str | None = None
    success_url: str | None = None
    failed_url: str | None = None
    billing: dict[str, str] | None = None


@dataclass
class PaymentResult:
    """
    Result of create_payment.

    Attributes:
        payment_transaction: The pending transaction that was recorded
        checkout_url: Where to send the customer (GCash only)
        requires_redirect: Whether the client must redirect to checkout_url
    """

    payment_transaction: PaymentTransaction
    checkout_url: str | None = None
    requires_redirect: bool = False

    @property
    def status(self) -> str:
        return self.payment_transaction.status


@dataclass
class PaymentStatusResult:
    """
    Current payment state of a booking.

    ``synthesized`` is True when the booking has no payment transactions
    and the answer comes from the booking alone.
    """

    booking_id: int
    payment_status: str
    transaction_status: str | None = None
    payment_transaction: PaymentTransaction | None = None
    checkout_url: str | None = None
    synthesized: bool = False


@dataclass
class ReconciliationOutcome:
    """
    Result of reconcile_payment.

    Attributes:
        payment_transaction: Transaction after reconciliation
        previous_status: Status before reconciliation
        new_status: Status after reconciliation
        changed: Whether a transition was applied
        booking_marked_paid: Whether the booking moved to 'paid'
    """

    payment_transaction: PaymentTransaction
    previous_status: str
    new_status: str
    changed: bool = False
    booking_marked_paid: bool = False
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Entry point for payment creation, status and reconciliation.

    All methods are classmethods and return ServiceResult. Gateway calls
    never run inside transaction.atomic(); state is persisted before and
    after each call instead.
    """

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    @classmethod
    def create_payment(
        cls, request: CreatePaymentRequest
    ) -> ServiceResult[PaymentResult]:
        """
        Create a payment for a booking.

        GCash creates a PayMongo source and returns its checkout URL.
        Cash records a pending manual payment to be confirmed by staff.

        Returns:
            ServiceResult with PaymentResult, or a failure with one of
            INVALID_AMOUNT, INVALID_PAYMENT_METHOD, BOOKING_NOT_FOUND,
            PAYMENT_ALREADY_PROCESSED, PROVIDER_ERROR
        """
        log = cls.get_logger()
        method = (request.payment_method or "").strip().lower()

        amount = to_amount(request.amount)
        if amount is None:
            return ServiceResult.failure(
                "Amount must be a number",
                error_code="INVALID_AMOUNT",
                errors={"amount": ["Enter a valid amount."]},
            )

        if amount < CENTAVO:
            return ServiceResult.failure(
                "Amount must be greater than zero",
                error_code="INVALID_AMOUNT",
                errors={"amount": ["Amount must be greater than zero."]},
            )

        if method not in PAYMENT_METHOD_LIMITS:
            return ServiceResult.failure(
                f"Unsupported payment method: {request.payment_method}",
                error_code="INVALID_PAYMENT_METHOD",
                errors={"payment_method": ["Choose gcash or cash."]},
            )

        minimum, maximum = PAYMENT_METHOD_LIMITS[method]
        if amount < minimum or (maximum is not None and amount > maximum):
            limit = f"at least PHP {minimum}"
            if maximum is not None:
                limit = f"between PHP {minimum} and PHP {maximum}"
            return ServiceResult.failure(
                f"{method} payments must be {limit}",
                error_code="INVALID_AMOUNT",
                errors={"amount": [f"Amount must be {limit}."]},
            )

        if not Booking.objects.filter(pk=request.booking_id).exists():
            return ServiceResult.failure(
                f"Booking {request.booking_id} not found",
                error_code="BOOKING_NOT_FOUND",
            )

        log_context = {
            "booking_id": request.booking_id,
            "payment_method": method,
            "amount": str(amount),
        }

        with cls.atomic():
            booking = lock_booking(request.booking_id)
            rejection = cls._check_payable(booking, log_context)
            if rejection is not None:
                return rejection

            if method in MANUAL_PAYMENT_METHODS:
                txn = PaymentLedger.create(
                    booking,
                    amount,
                    payment_method=method,
                    provider=PaymentProvider.MANUAL,
                    currency=cls._currency(),
                )
                booking.payment_method = method
                booking.save(update_fields=["payment_method", "updated_at"])
                log.info("Cash payment recorded, awaiting confirmation", extra=log_context)
                return ServiceResult.success(PaymentResult(payment_transaction=txn))

            attempt = PaymentTransaction.objects.for_booking(booking.pk).count() + 1

        return cls._create_gateway_payment(request, method, amount, attempt, log_context)

    @classmethod
    def _check_payable(
        cls, booking: Booking, log_context: dict[str, Any]
    ) -> ServiceResult | None:
        """Reject bookings that are already paid. Must hold the booking lock."""
        log = cls.get_logger()

        if booking.payment_status == BookingPaymentStatus.PAID:
            if PaymentLedger.succeeded_for_booking(booking.pk) is not None:
                log.warning("Payment rejected: booking already paid", extra=log_context)
                return ServiceResult.failure(
                    "This booking has already been paid",
                    error_code="PAYMENT_ALREADY_PROCESSED",
                )
            # Paid flag with no succeeded charge behind it
            log.warning(
                "Booking marked paid without a succeeded transaction; resetting",
                extra=log_context,
            )
            booking.payment_status = BookingPaymentStatus.NOT_PAID
            booking.save(update_fields=["payment_status", "updated_at"])

        if PaymentLedger.has_in_flight_or_settled(booking.pk):
            log.warning(
                "Payment rejected: a payment is already processing or succeeded",
                extra=log_context,
            )
            return ServiceResult.failure(
                "A payment for this booking is already processing or complete",
                error_code="PAYMENT_ALREADY_PROCESSED",
            )
        return None

    @classmethod
    def _create_gateway_payment(
        cls,
        request: CreatePaymentRequest,
        method: str,
        amount: Decimal,
        attempt: int,
        log_context: dict[str, Any],
    ) -> ServiceResult[PaymentResult]:
        log = cls.get_logger()

        try:
            source = PayMongoAdapter.create_source(
                CreateSourceParams(
                    amount_centavos=to_centavos(amount),
                    source_type=method,
                    success_url=request.success_url or settings.PAYMENT_SUCCESS_URL,
                    failed_url=request.failed_url or settings.PAYMENT_FAILED_URL,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "create_source", request.booking_id, attempt
                    ),
                    currency=cls._currency(),
                    description=request.description
                    or f"Booking #{request.booking_id}",
                    billing=request.billing,
                    metadata={"booking_id": str(request.booking_id)},
                )
            )
        except GatewayError as e:
            log.warning(
                "PayMongo source creation failed",
                extra={**log_context, "error_code": e.error_code, "error": e.message},
            )
            return ServiceResult.failure(
                f"Payment provider error: {e.message}",
                error_code="PROVIDER_ERROR",
            )

        try:
            with cls.atomic():
                booking = lock_booking(request.booking_id)
                txn = PaymentLedger.create(
                    booking,
                    amount,
                    payment_method=method,
                    provider=PaymentProvider.PAYMONGO,
                    currency=cls._currency(),
                    gateway_source_id=source.id,
                    checkout_url=source.checkout_url,
                    metadata={"gateway_status": source.status},
                )
                booking.payment_method = method
                booking.payment_status = BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION
                booking.save(
                    update_fields=["payment_method", "payment_status", "updated_at"]
                )
        except Exception:
            log.critical(
                "Gateway source created but not recorded - reconciliation needed",
                extra={**log_context, "gateway_source_id": source.id},
                exc_info=True,
            )
            raise

        log.info(
            "GCash source created",
            extra={
                **log_context,
                "payment_transaction_id": txn.pk,
                "gateway_source_id": source.id,
            },
        )
        return ServiceResult.success(
            PaymentResult(
                payment_transaction=txn,
                checkout_url=source.checkout_url,
                requires_redirect=bool(source.checkout_url),
            )
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @classmethod
    def get_payment_status(cls, booking_id: int) -> ServiceResult[PaymentStatusResult]:
        """
        Current payment status of a booking, refreshed from PayMongo when
        the latest transaction is gateway-mediated and still open.
        """
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            return ServiceResult.failure(
                f"Booking {booking_id} not found", error_code="BOOKING_NOT_FOUND"
            )

        txn = PaymentLedger.latest_for_booking(booking_id)
        if txn is None:
            return ServiceResult.success(
                PaymentStatusResult(
                    booking_id=booking_id,
                    payment_status=booking.payment_status,
                    synthesized=True,
                )
            )

        if txn.is_gateway_mediated and not txn.is_terminal and txn.gateway_reference:
            pulled = cls._pull_gateway_status(txn)
            if pulled is not None:
                gateway_status, payment_id = pulled
                cls.reconcile_payment(
                    txn.pk,
                    gateway_status,
                    provider_transaction_id=payment_id,
                    origin="pull",
                )
                txn = PaymentTransaction.objects.get(pk=txn.pk)
                booking = Booking.objects.get(pk=booking_id)

        return ServiceResult.success(
            PaymentStatusResult(
                booking_id=booking_id,
                payment_status=booking.payment_status,
                transaction_status=txn.status,
                payment_transaction=txn,
                checkout_url=txn.checkout_url or None,
            )
        )

    @classmethod
    def _pull_gateway_status(
        cls, txn: PaymentTransaction
    ) -> tuple[str, str | None] | None:
        """(gateway status, payment id) from PayMongo, or None on error."""
        log_context = {
            "payment_transaction_id": txn.pk,
            "booking_id": txn.booking_id,
            "gateway_reference": txn.gateway_reference,
        }
        cls.get_logger().debug("Pulling payment status from PayMongo", extra=log_context)

        try:
            if txn.gateway_intent_id:
                intent = PayMongoAdapter.retrieve_payment_intent(txn.gateway_intent_id)
                return intent.status, intent.payment_id
            source = PayMongoAdapter.retrieve_source(txn.gateway_source_id)
            return source.status, None
        except GatewayError as e:
            cls.get_logger().warning(
                "Payment status pull failed; returning stored status",
                extra={**log_context, "error_code": e.error_code, "error": e.message},
            )
            return None

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    @classmethod
    def reconcile_payment(
        cls,
        transaction_id: int,
        gateway_status: str,
        *,
        provider_transaction_id: str | None = None,
        failure_reason: str | None = None,
        origin: str = "pull",
    ) -> ServiceResult[ReconciliationOutcome]:
        """
        Apply a gateway-reported status to a payment transaction.

        Compare-and-set under the booking and transaction row locks: a
        status equal to the stored one, or a transition the state machine
        does not allow (backwards or out of a terminal state), is a no-op.
        The booking-paid side effect only happens on an actual transition
        to SUCCEEDED, so a webhook racing a status pull is harmless.

        Args:
            transaction_id: PaymentTransaction to reconcile
            gateway_status: Raw PayMongo status (mapped via map_gateway_status)
            provider_transaction_id: PayMongo payment id (pay_xxx), if known
            failure_reason: Failure detail for failed/cancelled
            origin: 'pull', 'webhook' or 'cash_confirmation' (for logs)
        """
        log = cls.get_logger()
        target = map_gateway_status(gateway_status)

        existing = PaymentLedger.get(transaction_id)
        if existing is None:
            return ServiceResult.failure(
                f"Payment transaction {transaction_id} not found",
                error_code="PAYMENT_TRANSACTION_NOT_FOUND",
            )

        log_context = {
            "payment_transaction_id": transaction_id,
            "gateway_status": gateway_status,
            "origin": origin,
        }

        with cls.atomic():
            booking = lock_booking(existing.booking_id)
            txn = PaymentLedger.get_for_update(transaction_id)
            previous = txn.status
            changed = False
            booking_marked_paid = False
            backfilled = False

            if target != previous:
                transition_method = cls._transition_for(txn, target)
                if transition_method is not None and can_proceed(transition_method):
                    if target == PaymentStatus.SUCCEEDED:
                        transition_method(provider_transaction_id=provider_transaction_id)
                    elif target in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                        transition_method(reason=failure_reason)
                    else:
                        transition_method()
                    txn.save()
                    changed = True
                else:
                    log.info(
                        "Ignoring gateway status that is not a forward transition",
                        extra={**log_context, "current_status": previous},
                    )

            if (
                provider_transaction_id
                and not txn.provider_transaction_id
                and txn.status == PaymentStatus.SUCCEEDED
            ):
                txn.provider_transaction_id = provider_transaction_id
                txn.save(update_fields=["provider_transaction_id", "updated_at"])
                backfilled = True

            if changed:
                booking_marked_paid = cls._apply_booking_side_effects(booking, txn)

            if booking_marked_paid or backfilled:
                # Refunds queued while the payment id was unknown
                booking_id = booking.pk
                transaction.on_commit(lambda: cls._schedule_refund_retry(booking_id))

        if changed:
            log.info(
                "Payment status reconciled",
                extra={
                    **log_context,
                    "booking_id": txn.booking_id,
                    "previous_status": previous,
                    "new_status": txn.status,
                },
            )
            PaymentNotifier.payment_status_changed(txn, previous)

        return ServiceResult.success(
            ReconciliationOutcome(
                payment_transaction=txn,
                previous_status=previous,
                new_status=txn.status,
                changed=changed,
                booking_marked_paid=booking_marked_paid,
                details={"origin": origin, "provider_transaction_id_backfilled": backfilled},
            )
        )

    @staticmethod
    def _transition_for(txn: PaymentTransaction, target: str):
        return {
            PaymentStatus.PROCESSING: txn.start_processing,
            PaymentStatus.SUCCEEDED: txn.succeed,
            PaymentStatus.FAILED: txn.fail,
            PaymentStatus.CANCELLED: txn.cancel,
        }.get(target)

    @staticmethod
    def _apply_booking_side_effects(booking: Booking, txn: PaymentTransaction) -> bool:
        """Update the locked booking after a transition. Returns True if marked paid."""
        if txn.status == PaymentStatus.SUCCEEDED:
            if booking.payment_status != BookingPaymentStatus.PAID:
                booking.payment_status = BookingPaymentStatus.PAID
                booking.payment_method = txn.payment_method
                booking.save(
                    update_fields=["payment_status", "payment_method", "updated_at"]
                )
                return True
            return False

        if (
            txn.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED)
            and booking.payment_status
            == BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION
        ):
            booking.payment_status = BookingPaymentStatus.FAILED
            booking.save(update_fields=["payment_status", "updated_at"])
        return False

    @staticmethod
    def _schedule_refund_retry(booking_id: int) -> None:
        from payments.tasks import retry_refunds_for_booking

        retry_refunds_for_booking.delay(booking_id)

    @classmethod
    def confirm_cash_payment(
        cls, booking_id: int, confirmed_by: str | None = None
    ) -> ServiceResult[ReconciliationOutcome]:
        """Staff confirmation that a pending cash payment was received."""
        txn = (
            PaymentTransaction.objects.for_booking(booking_id)
            .filter(
                payment_method__in=MANUAL_PAYMENT_METHODS,
                status=PaymentStatus.PENDING,
            )
            .order_by("-created_at", "-pk")
            .first()
        )
        if txn is None:
            return ServiceResult.failure(
                "No pending cash payment for this booking",
                error_code="PAYMENT_TRANSACTION_NOT_FOUND",
            )

        cls.get_logger().info(
            "Cash payment confirmed by staff",
            extra={
                "booking_id": booking_id,
                "payment_transaction_id": txn.pk,
                "confirmed_by": confirmed_by,
            },
        )
        return cls.reconcile_payment(
            txn.pk, PaymentStatus.SUCCEEDED, origin="cash_confirmation"
        )

    @classmethod
    def apply_gateway_event(cls, event: GatewayEvent) -> ServiceResult[ReconciliationOutcome]:
        """
        Reconcile a payment from a source.* or payment.* webhook.

        source.* events are matched by source id; payment.* events by the
        payment id, then the intent id, then the originating source id.
        """
        gateway_status = EVENT_GATEWAY_STATUS.get(event.kind)
        if gateway_status is None:
            return ServiceResult.failure(
                f"Unsupported payment event: {event.event_type}",
                error_code="UNSUPPORTED_EVENT",
            )

        if event.kind == GatewayEventKind.SOURCE_CHARGEABLE:
            references = [event.resource_id]
            payment_id = None
        else:
            references = [event.resource_id, event.payment_intent_id, event.source_id]
            payment_id = event.resource_id

        txn = None
        for reference in references:
            txn = PaymentLedger.find_by_gateway_reference(reference)
            if txn is not None:
                break

        if txn is None:
            cls.get_logger().warning(
                "Webhook references an unknown payment transaction",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return ServiceResult.failure(
                "No payment transaction matches this event",
                error_code="PAYMENT_TRANSACTION_NOT_FOUND",
            )

        return cls.reconcile_payment(
            txn.pk,
            gateway_status,
            provider_transaction_id=payment_id,
            failure_reason=event.failure_reason,
            origin="webhook",
        )

    @staticmethod
    def _currency() -> str:
        return getattr(settings, "PAYMENT_CURRENCY", "PHP")
