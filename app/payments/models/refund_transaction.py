"""
RefundTransaction model for tracking money returned to customers.

One row per refund request for a booking. The row is the audit record
regardless of outcome: failed gateway dispatches are retried by
re-dispatching the same row, never by creating a new one.

Usage:
    from payments.models import RefundTransaction

    refund = RefundTransaction.objects.create(
        booking=booking,
        payment_transaction=payment,
        amount=Decimal("1500.00"),
        reason="customer_requested",
        payment_method="gcash",
        refund_type="automatic",
        initiated_by="42",
        initiated_by_type="admin",
    )

    # After PayMongo accepts the refund
    refund.mark_dispatched(gateway_refund_id="ref_abc123")
    refund.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel

from payments.state_machines import (
    ACTIVE_REFUND_STATUSES,
    GATEWAY_PAYMENT_METHODS,
    InitiatorType,
    PaymentProvider,
    RefundReason,
    RefundStatus,
    RefundType,
)


class RefundTransactionQuerySet(models.QuerySet):
    """Lookups used by the refund orchestrator and the retry coordinator."""

    def for_booking(self, booking_id: int) -> RefundTransactionQuerySet:
        return self.filter(booking_id=booking_id)

    def active(self) -> RefundTransactionQuerySet:
        return self.filter(status__in=ACTIVE_REFUND_STATUSES)

    def in_progress(self) -> RefundTransactionQuerySet:
        """Active refunds plus failed ones still waiting on an automatic retry."""
        return self.filter(
            models.Q(status__in=ACTIVE_REFUND_STATUSES)
            | models.Q(status=RefundStatus.FAILED, retryable=True)
        )

    def retry_candidates(self) -> RefundTransactionQuerySet:
        """
        Gateway-method refunds carrying the retry flag.

        Covers failed dispatches and pending refunds that were queued
        because the payment id was not yet known.
        """
        return self.filter(
            retryable=True,
            status__in=[RefundStatus.FAILED, RefundStatus.PENDING],
            payment_method__in=GATEWAY_PAYMENT_METHODS,
        ).order_by("last_retry_at", "created_at")


class RefundTransaction(BaseModel):
    """
    Represents money returned (or to be returned) to a customer.

    State Flow:
        PENDING -> PROCESSING -> PROCESSED   (automatic, gateway-mediated)
        PENDING -> PROCESSED                 (manual: cash / QR)
        PENDING/PROCESSING -> FAILED
        FAILED -> PROCESSING                 (retry claim, conditional UPDATE)
        PENDING -> CANCELLED                 (denied)

    Fields:
        booking: Booking being refunded
        payment_transaction: The succeeded charge this refund returns money from
        amount: Refund amount in PHP
        reason: Why the refund was issued
        status: Current FSM status
        payment_method: Method of the original payment
        refund_type: automatic (PayMongo) or manual (staff)
        gateway_refund_id: PayMongo Refund ID (ref_xxx)
        notes: Human-readable audit lines, one per failure/retry
        retryable: The last failure is believed transient
        retry_count: Number of failed dispatch attempts
        outcome_unknown: The last dispatch timed out; the gateway may have
            accepted it
        requires_manual_processing: Staff must settle this refund by hand
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="refund_transactions",
        help_text="Booking being refunded",
    )

    payment_transaction = models.ForeignKey(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
        help_text="Succeeded payment this refund is drawn against",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Refund amount in PHP",
    )

    currency = models.CharField(max_length=3, default="PHP")

    reason = models.CharField(
        max_length=40,
        choices=RefundReason.choices,
        default=RefundReason.OTHER,
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the refund (managed by FSM)",
    )

    payment_method = models.CharField(
        max_length=20,
        null=True,
        blank=True,
        help_text="Method of the original payment",
    )

    provider = models.CharField(
        max_length=20,
        choices=PaymentProvider.choices,
        default=PaymentProvider.MANUAL,
    )

    refund_type = models.CharField(
        max_length=20,
        choices=RefundType.choices,
        default=RefundType.MANUAL,
    )

    gateway_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="PayMongo Refund ID (ref_xxx)",
    )

    notes = models.TextField(blank=True, default="")

    failure_reason = models.TextField(null=True, blank=True)

    # ==========================================================================
    # Initiator
    # ==========================================================================

    initiated_by = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Id of the actor who initiated the refund",
    )

    initiated_by_type = models.CharField(
        max_length=20,
        choices=InitiatorType.choices,
        default=InitiatorType.ADMIN,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Retry State
    # ==========================================================================

    retryable = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Picked up by the retry coordinator",
    )

    retry_count = models.PositiveSmallIntegerField(default=0)

    last_retry_at = models.DateTimeField(null=True, blank=True)

    outcome_unknown = models.BooleanField(
        default=False,
        help_text="Last dispatch timed out; reconcile before re-dispatching",
    )

    requires_manual_processing = models.BooleanField(default=False)

    objects = RefundTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Transaction"
        verbose_name_plural = "Refund Transactions"
        indexes = [
            models.Index(
                fields=["booking", "status"], name="payments_rt_booking_status_idx"
            ),
            models.Index(
                fields=["status", "retryable"], name="payments_rt_status_retry_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=Decimal("0")),
                name="refund_transaction_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(
                    status__in=[RefundStatus.PENDING, RefundStatus.PROCESSING]
                ),
                name="unique_active_refund_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"RefundTransaction({self.pk}, {self.status}, "
            f"{self.amount} {self.currency})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.FAILED],
        target=RefundStatus.PROCESSING,
    )
    def mark_dispatched(self, gateway_refund_id: str | None = None):
        """
        PayMongo accepted the refund; settlement is asynchronous.

        From failed when a timed-out attempt turns out to have gone through.

        Clears every retry flag. The retry count is kept as history.
        """
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        self.retryable = False
        self.outcome_unknown = False
        self.requires_manual_processing = False
        self.failure_reason = None

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.PROCESSING],
        target=RefundStatus.PROCESSED,
    )
    def complete(self):
        """
        Mark refund as settled.

        Called for manual refunds, staff confirmation and the gateway's
        refund.succeeded webhook.
        """
        self.processed_at = timezone.now()
        self.retryable = False
        self.outcome_unknown = False

    @transition(
        field=status,
        source=[RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.FAILED],
        target=RefundStatus.FAILED,
    )
    def fail(
        self,
        reason: str,
        retryable: bool = False,
        outcome_unknown: bool = False,
    ):
        """
        Record a failed dispatch.

        Args:
            reason: Failure detail from the gateway or the orchestrator
            retryable: Leave the refund in the retry set
            outcome_unknown: The gateway may have accepted the request
        """
        self.failure_reason = reason
        self.retryable = retryable
        self.outcome_unknown = outcome_unknown
        self.requires_manual_processing = not retryable

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.CANCELLED,
    )
    def cancel(self, reason: str | None = None):
        """Deny a pending refund."""
        if reason:
            self.failure_reason = reason
        self.retryable = False

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def append_note(self, line: str) -> None:
        """
        Append a timestamped line to the human-readable notes trail.

        Note: Does not save - caller must save after calling.
        """
        stamp = timezone.now().strftime("%Y-%m-%d %H:%M:%S")
        entry = f"[{stamp}] {line}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REFUND_STATUSES

    @property
    def is_automatic(self) -> bool:
        return self.refund_type == RefundType.AUTOMATIC
