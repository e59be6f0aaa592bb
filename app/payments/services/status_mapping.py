"""
Mapping from PayMongo status vocabulary onto PaymentStatus.

Shared by the status pull and the webhook path. Unknown statuses map to
PENDING so an unrecognized value can never mark a payment as succeeded.
"""

from __future__ import annotations

from payments.state_machines import PaymentStatus

GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "awaiting_payment_method": PaymentStatus.PENDING,
    "processing": PaymentStatus.PROCESSING,
    "awaiting_next_action": PaymentStatus.PROCESSING,
    "succeeded": PaymentStatus.SUCCEEDED,
    "paid": PaymentStatus.SUCCEEDED,
    "chargeable": PaymentStatus.SUCCEEDED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
}


def normalize_gateway_status(status: str | None) -> str:
    """Lower-case, trim, and treat '-' and '_' alike."""
    return (status or "").strip().lower().replace("-", "_")


def map_gateway_status(status: str | None) -> PaymentStatus:
    """
    Map a PayMongo source/intent/payment status to a local status.

    Example:
        map_gateway_status("Awaiting-Next-Action")  # PaymentStatus.PROCESSING
        map_gateway_status("refunded")               # PaymentStatus.PENDING
    """
    return GATEWAY_STATUS_MAP.get(normalize_gateway_status(status), PaymentStatus.PENDING)
