"""
Notification hooks invoked by the payment and refund orchestrators.

Every hook builds a customer-facing message and queues it for delivery.
A hook never raises: failures are logged and swallowed so that a
notification problem can never undo a payment or refund state change
that has already been committed.

Related files:
    - tasks.py: send_payment_email Celery task
    - payments/services/*: callers

Usage:
    from notifications.hooks import PaymentNotifier

    PaymentNotifier.refund_processed(refund)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notifications.tasks import send_payment_email

if TYPE_CHECKING:
    from bookings.models import Booking
    from payments.models import PaymentTransaction, RefundTransaction

logger = logging.getLogger(__name__)


PAYMENT_STATUS_MESSAGES = {
    "succeeded": "We have received your payment of PHP {amount}. Thank you!",
    "processing": "Your payment of PHP {amount} is being processed.",
    "failed": (
        "Your payment of PHP {amount} did not go through. "
        "Please try again or choose another payment method."
    ),
    "cancelled": "Your payment of PHP {amount} was cancelled.",
}


class PaymentNotifier:
    """
    Customer notifications for payment and refund outcomes.

    All methods are classmethods and return True when a message was
    queued, False when nothing was sent (no email on file, or an error
    that has been logged).
    """

    @classmethod
    def payment_status_changed(
        cls, transaction: PaymentTransaction, previous_status: str
    ) -> bool:
        template = PAYMENT_STATUS_MESSAGES.get(transaction.status)
        if template is None:
            return False
        return cls._queue(
            transaction.booking,
            subject=f"Payment {transaction.status} for booking #{transaction.booking_id}",
            body=template.format(amount=transaction.amount),
            event="payment_status_changed",
            context={
                "payment_transaction_id": transaction.pk,
                "previous_status": previous_status,
                "new_status": transaction.status,
            },
        )

    @classmethod
    def refund_processed(cls, refund: RefundTransaction) -> bool:
        """Refund completed, or submitted to the gateway for settlement."""
        if refund.status == "processed":
            body = f"Your refund of PHP {refund.amount} has been processed."
        else:
            body = (
                f"Your refund of PHP {refund.amount} has been submitted and "
                "should reach your account within 5-10 business days."
            )
        return cls._queue(
            refund.booking,
            subject=f"Refund update for booking #{refund.booking_id}",
            body=body,
            event="refund_processed",
            context={"refund_id": refund.pk, "status": refund.status},
        )

    @classmethod
    def refund_failed(cls, refund: RefundTransaction) -> bool:
        body = (
            f"We could not complete your refund of PHP {refund.amount} automatically. "
            "Our team has been notified and will process it manually."
            if refund.requires_manual_processing
            else f"Your refund of PHP {refund.amount} was delayed. We will retry shortly."
        )
        return cls._queue(
            refund.booking,
            subject=f"Refund delayed for booking #{refund.booking_id}",
            body=body,
            event="refund_failed",
            context={"refund_id": refund.pk, "retryable": refund.retryable},
        )

    @classmethod
    def refund_denied(cls, refund: RefundTransaction, reason: str | None = None) -> bool:
        body = f"Your refund request of PHP {refund.amount} was not approved."
        if reason:
            body = f"{body}\n\nReason: {reason}"
        return cls._queue(
            refund.booking,
            subject=f"Refund request for booking #{refund.booking_id}",
            body=body,
            event="refund_denied",
            context={"refund_id": refund.pk},
        )

    @classmethod
    def refund_requested(cls, refund: RefundTransaction) -> bool:
        return cls._queue(
            refund.booking,
            subject=f"Refund request received for booking #{refund.booking_id}",
            body=(
                f"We received your refund request of PHP {refund.amount}. "
                "Our team will review it shortly."
            ),
            event="refund_requested",
            context={"refund_id": refund.pk},
        )

    @staticmethod
    def _queue(
        booking: Booking,
        subject: str,
        body: str,
        event: str,
        context: dict,
    ) -> bool:
        log_context = {"event": event, "booking_id": booking.pk, **context}
        try:
            recipient = booking.customer_email
            if not recipient:
                logger.debug("No customer email; notification skipped", extra=log_context)
                return False
            send_payment_email.delay(recipient=recipient, subject=subject, body=body)
        except Exception:
            logger.exception("Failed to queue payment notification", extra=log_context)
            return False

        logger.info("Payment notification queued", extra=log_context)
        return True
