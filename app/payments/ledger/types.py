"""
Data types for ledger operations.

Types:
    RefundableBalance: What a booking has paid and what is committed to refunds
    RecordTransitionParams: Who/why for a refund status change audit entry

Usage:
    from payments.ledger.types import RefundableBalance

    balance = RefundLedger.balance(booking.pk)
    if amount > balance.net_refundable:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class RefundableBalance:
    """
    Refundable balance of a booking.

    Attributes:
        paid_amount: Sum of succeeded payment transaction amounts
        refunded_amount: Sum of processed refund amounts
        reserved_amount: Sum of pending, processing and retry-queued refund amounts

    Example:
        balance = RefundableBalance(
            paid_amount=Decimal("1500.00"),
            refunded_amount=Decimal("500.00"),
            reserved_amount=Decimal("0.00"),
        )
        balance.net_refundable  # Decimal("1000.00")
    """

    paid_amount: Decimal
    refunded_amount: Decimal = Decimal("0.00")
    reserved_amount: Decimal = Decimal("0.00")

    @property
    def net_refundable(self) -> Decimal:
        return self.paid_amount - self.refunded_amount - self.reserved_amount

    @property
    def is_fully_refunded(self) -> bool:
        """Processed refunds cover everything that was paid."""
        return self.paid_amount > 0 and self.refunded_amount >= self.paid_amount


@dataclass
class RecordTransitionParams:
    """
    Who performed a refund status change, and the context to keep.

    Attributes:
        performed_by: Actor id, or None for the system
        performed_by_type: admin, staff, customer, provider or system
        details: Structured context stored on the audit entry
        ip_address: Client IP for API-initiated changes
    """

    performed_by: str | None = None
    performed_by_type: str = "system"
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
