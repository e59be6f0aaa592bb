"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    ACTIVE_REFUND_STATUSES,
    GATEWAY_PAYMENT_METHODS,
    MANUAL_PAYMENT_METHODS,
    TERMINAL_PAYMENT_STATUSES,
    InitiatorType,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    RefundAuditAction,
    RefundReason,
    RefundStatus,
    RefundType,
    WebhookEventStatus,
    is_gateway_method,
)

__all__ = [
    "ACTIVE_REFUND_STATUSES",
    "GATEWAY_PAYMENT_METHODS",
    "MANUAL_PAYMENT_METHODS",
    "TERMINAL_PAYMENT_STATUSES",
    "InitiatorType",
    "PaymentMethod",
    "PaymentProvider",
    "PaymentStatus",
    "RefundAuditAction",
    "RefundReason",
    "RefundStatus",
    "RefundType",
    "WebhookEventStatus",
    "is_gateway_method",
]
