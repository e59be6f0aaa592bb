"""
Payment domain models.

This module contains all payment-related models:
- PaymentTransaction: One payment attempt for a booking
- RefundTransaction: One refund request for a booking
- RefundAuditLog: Append-only trail of refund status changes
- WebhookEvent: PayMongo webhook event tracking for idempotent processing
"""

from payments.models.payment_transaction import PaymentTransaction
from payments.models.refund_audit_log import RefundAuditLog
from payments.models.refund_transaction import RefundTransaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "PaymentTransaction",
    "RefundAuditLog",
    "RefundTransaction",
    "WebhookEvent",
]
