"""
Ledger services: persistence of payment and refund transactions.

PaymentLedger and RefundLedger are the only code that writes the
PaymentTransaction, RefundTransaction and RefundAuditLog tables. The
orchestrators in payments.services decide *what* happens; the ledgers
record it.

Usage:
    from payments.ledger import PaymentLedger, RefundLedger

    txn = PaymentLedger.latest_for_booking(booking.pk)
    balance = RefundLedger.balance(booking.pk)

    with transaction.atomic():
        refund = RefundLedger.get_for_update(refund_id)
        previous = refund.status
        refund.cancel(reason="Duplicate request")
        RefundLedger.record_transition(
            refund,
            RefundAuditAction.DENIED,
            previous,
            RecordTransitionParams(performed_by="7", performed_by_type="staff"),
        )
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import DecimalField, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.services import BaseService
from payments.models import PaymentTransaction, RefundAuditLog, RefundTransaction
from payments.state_machines import RefundAuditAction, RefundStatus, RefundType

from .types import RecordTransitionParams, RefundableBalance

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from bookings.models import Booking

ZERO = Decimal("0.00")

logger = logging.getLogger(__name__)


def _sum_amount(queryset: QuerySet) -> Decimal:
    return queryset.aggregate(
        total=Coalesce(
            Sum("amount"),
            Value(ZERO),
            output_field=DecimalField(max_digits=12, decimal_places=2),
        )
    )["total"]


class PaymentLedger(BaseService):
    """Reads and writes PaymentTransaction rows."""

    @classmethod
    def create(
        cls,
        booking: Booking,
        amount: Decimal,
        payment_method: str,
        provider: str,
        currency: str = "PHP",
        **gateway_fields,
    ) -> PaymentTransaction:
        """
        Persist a new pending payment attempt.

        Args:
            gateway_fields: gateway_source_id, gateway_intent_id,
                checkout_url, metadata
        """
        txn = PaymentTransaction.objects.create(
            booking=booking,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            provider=provider,
            **gateway_fields,
        )
        cls.get_logger().info(
            "Payment transaction recorded",
            extra={
                "payment_transaction_id": txn.pk,
                "booking_id": booking.pk,
                "payment_method": payment_method,
                "amount": str(amount),
            },
        )
        return txn

    @staticmethod
    def get(transaction_id: int) -> PaymentTransaction | None:
        return PaymentTransaction.objects.filter(pk=transaction_id).first()

    @staticmethod
    def get_for_update(transaction_id: int) -> PaymentTransaction | None:
        """Lock a transaction row. Must be called inside transaction.atomic()."""
        return (
            PaymentTransaction.objects.select_for_update()
            .filter(pk=transaction_id)
            .first()
        )

    @staticmethod
    def latest_for_booking(booking_id: int) -> PaymentTransaction | None:
        return (
            PaymentTransaction.objects.for_booking(booking_id)
            .order_by("-created_at", "-pk")
            .first()
        )

    @staticmethod
    def succeeded_for_booking(booking_id: int) -> PaymentTransaction | None:
        """The most recent succeeded payment, i.e. the charge refunds draw on."""
        return (
            PaymentTransaction.objects.for_booking(booking_id)
            .succeeded()
            .order_by("-created_at", "-pk")
            .first()
        )

    @staticmethod
    def has_in_flight_or_settled(booking_id: int) -> bool:
        return (
            PaymentTransaction.objects.for_booking(booking_id)
            .in_flight_or_settled()
            .exists()
        )

    @staticmethod
    def find_by_gateway_reference(reference: str) -> PaymentTransaction | None:
        if not reference:
            return None
        return (
            PaymentTransaction.objects.by_gateway_reference(reference)
            .order_by("-created_at", "-pk")
            .first()
        )

    @staticmethod
    def paid_total(booking_id: int) -> Decimal:
        return _sum_amount(PaymentTransaction.objects.for_booking(booking_id).succeeded())


class RefundLedger(BaseService):
    """Reads and writes RefundTransaction rows and their audit trail."""

    @classmethod
    def create(
        cls,
        booking: Booking,
        amount: Decimal,
        reason: str,
        refund_type: str,
        provider: str,
        payment_transaction: PaymentTransaction | None,
        payment_method: str | None,
        initiated_by: str | None,
        initiated_by_type: str,
        notes: str = "",
        ip_address: str | None = None,
    ) -> RefundTransaction:
        """
        Insert a pending refund and its 'created' audit entry.

        Must run inside the transaction that holds the booking row lock;
        the conditional unique constraint raises IntegrityError if another
        active refund slipped in.
        """
        with transaction.atomic():
            refund = RefundTransaction.objects.create(
                booking=booking,
                payment_transaction=payment_transaction,
                amount=amount,
                currency=(
                    payment_transaction.currency if payment_transaction else "PHP"
                ),
                reason=reason,
                payment_method=payment_method,
                provider=provider,
                refund_type=refund_type,
                initiated_by=initiated_by,
                initiated_by_type=initiated_by_type,
                notes=notes or "",
            )
            RefundAuditLog.objects.create(
                refund=refund,
                action=RefundAuditAction.CREATED,
                previous_status="",
                new_status=refund.status,
                performed_by=initiated_by,
                performed_by_type=initiated_by_type,
                details={"amount": str(amount), "reason": reason},
                ip_address=ip_address,
            )

        cls.get_logger().info(
            "Refund transaction recorded",
            extra={
                "refund_id": refund.pk,
                "booking_id": booking.pk,
                "amount": str(amount),
                "refund_type": refund_type,
            },
        )
        return refund

    @staticmethod
    def get(refund_id: int) -> RefundTransaction | None:
        return RefundTransaction.objects.filter(pk=refund_id).first()

    @staticmethod
    def get_for_update(refund_id: int) -> RefundTransaction | None:
        """Lock a refund row. Must be called inside transaction.atomic()."""
        return (
            RefundTransaction.objects.select_for_update().filter(pk=refund_id).first()
        )

    @staticmethod
    def find_by_gateway_refund_id(gateway_refund_id: str) -> RefundTransaction | None:
        if not gateway_refund_id:
            return None
        return RefundTransaction.objects.filter(
            gateway_refund_id=gateway_refund_id
        ).first()

    @staticmethod
    def has_active_refund(booking_id: int) -> bool:
        """True while a refund is pending, processing or queued for retry."""
        return RefundTransaction.objects.for_booking(booking_id).in_progress().exists()

    @staticmethod
    def balance(booking_id: int) -> RefundableBalance:
        """Paid total against processed and in-flight refund totals."""
        refunds = RefundTransaction.objects.for_booking(booking_id)
        return RefundableBalance(
            paid_amount=PaymentLedger.paid_total(booking_id),
            refunded_amount=_sum_amount(refunds.filter(status=RefundStatus.PROCESSED)),
            reserved_amount=_sum_amount(refunds.in_progress()),
        )

    @staticmethod
    def retry_candidates(
        booking_id: int | None = None, limit: int | None = None
    ) -> list[RefundTransaction]:
        queryset = RefundTransaction.objects.retry_candidates()
        if booking_id is not None:
            queryset = queryset.filter(booking_id=booking_id)
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    @staticmethod
    def stale_claims(claimed_before) -> list[RefundTransaction]:
        """Refunds claimed for a retry that never reached PayMongo."""
        return list(
            RefundTransaction.objects.filter(
                status=RefundStatus.PROCESSING,
                gateway_refund_id__isnull=True,
                refund_type=RefundType.AUTOMATIC,
                updated_at__lt=claimed_before,
            ).order_by("updated_at")
        )

    @staticmethod
    def claim_for_retry(refund_id: int, seen_status: str) -> bool:
        """
        Optimistically claim a refund for re-dispatch.

        Conditional UPDATE from the status the caller observed to
        PROCESSING. Returns False when another runner got there first.
        """
        try:
            with transaction.atomic():
                updated = RefundTransaction.objects.filter(
                    pk=refund_id,
                    status=seen_status,
                    retryable=True,
                ).update(status=RefundStatus.PROCESSING, updated_at=timezone.now())
        except IntegrityError:
            # Another refund for the booking is already active
            logger.warning(
                "Retry claim rejected by active refund constraint",
                extra={"refund_id": refund_id},
            )
            return False
        return updated == 1

    @classmethod
    def record_transition(
        cls,
        refund: RefundTransaction,
        action: str,
        previous_status: str,
        params: RecordTransitionParams | None = None,
    ) -> RefundAuditLog:
        """
        Save a refund after an FSM transition and write its audit entry.

        Both writes share one database transaction.
        """
        params = params or RecordTransitionParams()
        with transaction.atomic():
            refund.save()
            entry = RefundAuditLog.objects.create(
                refund=refund,
                action=action,
                previous_status=previous_status or "",
                new_status=refund.status,
                performed_by=params.performed_by,
                performed_by_type=params.performed_by_type,
                details=params.details,
                ip_address=params.ip_address,
            )

        cls.get_logger().info(
            "Refund status changed",
            extra={
                "refund_id": refund.pk,
                "booking_id": refund.booking_id,
                "action": action,
                "previous_status": previous_status,
                "new_status": refund.status,
            },
        )
        return entry
