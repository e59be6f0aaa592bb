"""
Ledger - persistence of payment and refund transactions.

Public API:
    Services:
        PaymentLedger - PaymentTransaction create/read/lookups
        RefundLedger - RefundTransaction create/read, balance, retry claims,
            audited status changes

    Types:
        RefundableBalance - Paid vs. refunded vs. reserved amounts
        RecordTransitionParams - Actor and context for an audit entry

Usage:
    from payments.ledger import RefundLedger

    balance = RefundLedger.balance(booking.pk)
    balance.net_refundable  # Decimal("1500.00")
"""

from .services import PaymentLedger, RefundLedger
from .types import RecordTransitionParams, RefundableBalance

__all__ = [
    "PaymentLedger",
    "RefundLedger",
    "RecordTransitionParams",
    "RefundableBalance",
]
