"""
Refund eligibility policy.

Decides whether a booking's payment may currently be refunded and, when
it may, which refund policy applies. The decision is side-effect free:
it reads the booking, its payments and its refunds and writes nothing,
so it is safe to call repeatedly (the refund orchestrator calls it again
under the booking row lock).

Usage:
    from payments.services.eligibility import check_refund_eligibility

    result = check_refund_eligibility(booking, initiated_by_type="customer")
    if not result.eligible:
        return Response({"error": result.reason}, status=400)
    result.policy.percentage  # 100, 50 or 25
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from bookings.models import BookingPaymentStatus, BookingStatus
from payments.ledger import RefundLedger
from payments.state_machines import InitiatorType

if TYPE_CHECKING:
    from datetime import datetime

    from bookings.models import Booking


REFUNDABLE_BOOKING_STATUSES = frozenset(
    [
        BookingStatus.PENDING.value,
        BookingStatus.CONFIRMED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.COMPLETED.value,
    ]
)

# Initiators who are not subject to the customer cancellation schedule
FULL_REFUND_INITIATORS = frozenset(
    [
        InitiatorType.ADMIN.value,
        InitiatorType.STAFF.value,
        InitiatorType.PROVIDER.value,
        InitiatorType.SYSTEM.value,
    ]
)

# Reason strings are shown to API clients verbatim
REASON_NOT_PAID = "Booking has not been paid"
REASON_ALREADY_REFUNDED = "Booking has already been refunded"
REASON_PAYMENT_INCOMPLETE = "Payment for this booking has not been completed"
REASON_ACTIVE_REFUND = "A refund is already in progress for this booking"
REASON_STATUS_NOT_REFUNDABLE = "Bookings with status '{status}' cannot be refunded"
REASON_WINDOW_EXPIRED = "Refund window has expired"
REASON_NO_BALANCE = "No refundable balance remains for this booking"


@dataclass(frozen=True)
class RefundPolicy:
    """
    Share of the refundable balance that will be returned.

    Attributes:
        percentage: 0-100
        description: Human-readable explanation for the customer
    """

    percentage: int
    description: str

    def apply(self, amount: Decimal) -> Decimal:
        """Policy share of ``amount``, rounded half up to centavos."""
        share = Decimal(amount) * Decimal(self.percentage) / Decimal(100)
        return share.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RefundEligibility:
    """
    Outcome of an eligibility check.

    Attributes:
        eligible: Whether a refund may be created now
        reason: Why not (None when eligible)
        policy: Applicable policy (None when ineligible)
        refundable_amount: Net refundable balance (None when ineligible)
    """

    eligible: bool
    reason: str | None = None
    policy: RefundPolicy | None = None
    refundable_amount: Decimal | None = None

    @classmethod
    def ineligible(cls, reason: str) -> RefundEligibility:
        return cls(eligible=False, reason=reason)


def cancellation_policy() -> list[str]:
    """Customer-facing cancellation policy lines."""
    return [
        "Cancellations within 24 hours of booking receive a 100% refund.",
        "Cancellations between 24 and 48 hours after booking receive a 50% refund.",
        "Cancellations more than 48 hours after booking receive a 25% refund.",
        (
            f"Completed services can be refunded within "
            f"{_refund_window_days()} days of completion."
        ),
        "Refunds issued by our staff or your provider are not reduced.",
    ]


def refund_policy_for(
    booking: Booking,
    initiated_by_type: str,
    now: datetime | None = None,
) -> RefundPolicy:
    """
    Pick the refund percentage for an initiator.

    Staff, providers and the system always refund in full. Customers are
    refunded on a sliding scale by hours elapsed since the booking was made.
    """
    if initiated_by_type in FULL_REFUND_INITIATORS:
        return RefundPolicy(100, "Full refund")

    now = now or timezone.now()
    hours_since_booking = (now - booking.created_at).total_seconds() / 3600

    if hours_since_booking < 24:
        return RefundPolicy(100, "Full refund (cancelled within 24 hours)")
    if hours_since_booking < 48:
        return RefundPolicy(50, "50% refund (cancelled within 24-48 hours)")
    return RefundPolicy(25, "25% refund (cancelled after 48 hours)")


def check_refund_eligibility(
    booking: Booking,
    initiated_by_type: str = InitiatorType.ADMIN,
    now: datetime | None = None,
) -> RefundEligibility:
    """
    Decide whether ``booking`` may be refunded.

    Rules are applied in order and the first failing rule's reason is
    returned.

    Args:
        booking: Booking to check (read as-is; callers that need a
            consistent view pass the row they locked)
        initiated_by_type: Who is asking; selects the refund policy
        now: Reference time for the window and policy rules

    Returns:
        RefundEligibility
    """
    now = now or timezone.now()
    payment_status = booking.payment_status

    if payment_status == BookingPaymentStatus.NOT_PAID:
        return RefundEligibility.ineligible(REASON_NOT_PAID)

    if payment_status == BookingPaymentStatus.REFUNDED:
        return RefundEligibility.ineligible(REASON_ALREADY_REFUNDED)

    if payment_status in (
        BookingPaymentStatus.AWAITING_PAYMENT_CONFIRMATION,
        BookingPaymentStatus.FAILED,
    ):
        return RefundEligibility.ineligible(REASON_PAYMENT_INCOMPLETE)

    if RefundLedger.has_active_refund(booking.pk):
        return RefundEligibility.ineligible(REASON_ACTIVE_REFUND)

    if booking.status not in REFUNDABLE_BOOKING_STATUSES:
        return RefundEligibility.ineligible(
            REASON_STATUS_NOT_REFUNDABLE.format(status=booking.status)
        )

    if booking.status == BookingStatus.COMPLETED and booking.completed_at:
        window = timedelta(days=_refund_window_days())
        if now - booking.completed_at > window:
            return RefundEligibility.ineligible(REASON_WINDOW_EXPIRED)

    balance = RefundLedger.balance(booking.pk)
    if balance.net_refundable <= 0:
        return RefundEligibility.ineligible(REASON_NO_BALANCE)

    return RefundEligibility(
        eligible=True,
        policy=refund_policy_for(booking, initiated_by_type, now=now),
        refundable_amount=balance.net_refundable,
    )


def _refund_window_days() -> int:
    return getattr(settings, "REFUND_WINDOW_DAYS", 30)
