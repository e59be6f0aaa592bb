"""
Booking model: the payment-relevant subset of a cremation service booking.

Only ``status`` and ``payment_status`` are read and written by the payment
engine. ``payment_status`` is owned by the payment and refund orchestrators
in ``payments.services``; nothing else should assign it.

Usage:
    from bookings.models import Booking, BookingPaymentStatus

    booking = Booking.objects.create(
        customer=user,
        total_amount=Decimal("1500.00"),
        payment_method="gcash",
    )
    booking.payment_status == BookingPaymentStatus.NOT_PAID  # True
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models

from core.models import BaseModel


class BookingStatus(models.TextChoices):
    """Lifecycle status of a booking."""

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class BookingPaymentStatus(models.TextChoices):
    """
    Booking-level view of payment state.

    PAID is set when a payment transaction succeeds; REFUNDED only when
    the whole paid amount has been returned. Partial refunds leave the
    payment status untouched.
    """

    NOT_PAID = "not_paid", "Not Paid"
    PARTIALLY_PAID = "partially_paid", "Partially Paid"
    PAID = "paid", "Paid"
    REFUNDED = "refunded", "Refunded"
    AWAITING_PAYMENT_CONFIRMATION = (
        "awaiting_payment_confirmation",
        "Awaiting Payment Confirmation",
    )
    FAILED = "failed", "Failed"


class Booking(BaseModel):
    """
    A scheduled cremation service engagement between a customer and a provider.

    Fields:
        customer: Pet owner who booked the service (receives notifications)
        status: Booking lifecycle status
        payment_status: Booking-level payment status
        payment_method: Method chosen at checkout (gcash, cash, ...)
        total_amount: Price of the booked service in PHP
        scheduled_at: When the service is scheduled
        completed_at: When the service was rendered (drives the refund window)
    """

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
        help_text="Customer who made the booking",
    )

    status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
        db_index=True,
    )

    payment_status = models.CharField(
        max_length=40,
        choices=BookingPaymentStatus.choices,
        default=BookingPaymentStatus.NOT_PAID,
        db_index=True,
        help_text="Managed by the payment and refund orchestrators",
    )

    payment_method = models.CharField(
        max_length=20,
        null=True,
        blank=True,
        help_text="Payment method selected at checkout",
    )

    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Booked service price in PHP",
    )

    scheduled_at = models.DateTimeField(null=True, blank=True)

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the service was completed; starts the refund window",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(
                fields=["status", "payment_status"],
                name="bookings_bo_status_4d1c2a_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking({self.pk}, {self.status}, {self.payment_status})"

    @property
    def customer_email(self) -> str | None:
        """Email address for payment notifications, if the customer has one."""
        if self.customer_id is None:
            return None
        return getattr(self.customer, "email", None) or None
