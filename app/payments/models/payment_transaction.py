"""
PaymentTransaction model: one row per payment attempt for a booking.

Rows are append-mostly. ``amount`` and ``booking`` never change after
creation; status, gateway identifiers and failure details are updated by
the payment orchestrator's reconciliation entry point only.

Usage:
    from payments.models import PaymentTransaction
    from payments.state_machines import PaymentStatus

    txn = PaymentTransaction.objects.create(
        booking=booking,
        amount=Decimal("1500.00"),
        payment_method="gcash",
        provider="paymongo",
        gateway_source_id="src_abc123",
    )

    # State transitions using django-fsm
    txn.succeed(provider_transaction_id="pay_xyz")
    txn.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from django_fsm import FSMField, transition

from core.models import BaseModel

from payments.state_machines import (
    TERMINAL_PAYMENT_STATUSES,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    is_gateway_method,
)


class PaymentTransactionQuerySet(models.QuerySet):
    """Lookups used by the payment orchestrator and the ledgers."""

    def for_booking(self, booking_id: int) -> PaymentTransactionQuerySet:
        return self.filter(booking_id=booking_id)

    def succeeded(self) -> PaymentTransactionQuerySet:
        return self.filter(status=PaymentStatus.SUCCEEDED)

    def in_flight_or_settled(self) -> PaymentTransactionQuerySet:
        """Transactions that block creating another payment for the booking."""
        return self.filter(
            status__in=[PaymentStatus.PROCESSING, PaymentStatus.SUCCEEDED]
        )

    def by_gateway_reference(self, reference: str) -> PaymentTransactionQuerySet:
        """Match a PayMongo id against every identifier we store."""
        return self.filter(
            models.Q(gateway_source_id=reference)
            | models.Q(gateway_intent_id=reference)
            | models.Q(provider_transaction_id=reference)
        )


class PaymentTransaction(BaseModel):
    """
    A single attempt to collect payment for a booking.

    State Flow (forward-only):
        PENDING -> PROCESSING -> SUCCEEDED
        PENDING/PROCESSING -> FAILED
        PENDING/PROCESSING -> CANCELLED
        PENDING -> SUCCEEDED

    Fields:
        booking: Booking this payment is for
        amount: Amount in PHP
        currency: ISO 4217 currency code
        payment_method: gcash, card, paymaya, cash or qr_code
        status: Current FSM status
        provider: paymongo or manual
        gateway_source_id: PayMongo source id (src_xxx)
        gateway_intent_id: PayMongo payment intent id (pi_xxx)
        provider_transaction_id: PayMongo payment id (pay_xxx), set on settlement
        checkout_url: Where the customer completes a gateway payment
        failure_reason: Details when the gateway reports failure
        metadata: Flexible JSON storage

    Note:
        Failed and cancelled attempts may coexist; customers retry by
        creating a new transaction.
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payment_transactions",
        help_text="Booking this payment is for",
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Payment amount in PHP",
    )

    currency = models.CharField(
        max_length=3,
        default="PHP",
        help_text="ISO 4217 currency code",
    )

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        help_text="Method used for this attempt",
    )

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the payment (managed by FSM)",
    )

    provider = models.CharField(
        max_length=20,
        choices=PaymentProvider.choices,
        default=PaymentProvider.PAYMONGO,
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_source_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="PayMongo Source ID (src_xxx)",
    )

    gateway_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="PayMongo Payment Intent ID (pi_xxx)",
    )

    provider_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="PayMongo Payment ID (pay_xxx), needed for refunds",
    )

    checkout_url = models.URLField(
        max_length=1024,
        null=True,
        blank=True,
    )

    failure_reason = models.TextField(null=True, blank=True)

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    objects = PaymentTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(
                fields=["booking", "status"], name="payments_pt_booking_status_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=Decimal("0")),
                name="payment_transaction_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"PaymentTransaction({self.pk}, {self.status}, "
            f"{self.amount} {self.currency})"
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.PROCESSING,
    )
    def start_processing(self):
        """Gateway reports the customer is completing the payment."""

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.SUCCEEDED,
    )
    def succeed(self, provider_transaction_id: str | None = None):
        """
        Mark the payment as settled.

        Args:
            provider_transaction_id: PayMongo payment id, when known
        """
        if provider_transaction_id:
            self.provider_transaction_id = provider_transaction_id

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.PROCESSING],
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self, reason: str | None = None):
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    @property
    def is_gateway_mediated(self) -> bool:
        """Whether this attempt settles through PayMongo (and can be pulled)."""
        return is_gateway_method(self.payment_method)

    @property
    def gateway_reference(self) -> str | None:
        """The PayMongo object to poll for status: the intent or the source."""
        return self.gateway_intent_id or self.gateway_source_id
