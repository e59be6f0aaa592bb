"""
State and choice enums for payment models.

These are Django TextChoices for database storage and admin integration;
the status enums back django-fsm fields on the models.

State Machines Overview:

PaymentTransaction States (forward-only):
    pending -> processing -> succeeded
    pending/processing -> failed
    pending/processing -> cancelled
    pending -> succeeded (gateway reports chargeable/paid directly)

RefundTransaction States:
    pending -> processing -> processed       (automatic, gateway-mediated)
    pending -> processed                     (manual: cash / QR)
    pending/processing -> failed
    failed -> processing                     (retry claim)
    pending -> cancelled                     (denied by staff)
"""

from django.db import models


class PaymentMethod(models.TextChoices):
    """
    Payment methods known to the engine.

    GCASH, CARD and PAYMAYA settle through the payment gateway; CASH and
    QR_CODE are collected and refunded by staff outside the system.
    Only GCASH and CASH can be used to create new payments.
    """

    GCASH = "gcash", "GCash"
    CARD = "card", "Card"
    PAYMAYA = "paymaya", "PayMaya"
    CASH = "cash", "Cash"
    QR_CODE = "qr_code", "QR Code"


GATEWAY_PAYMENT_METHODS = frozenset(
    [PaymentMethod.GCASH.value, PaymentMethod.CARD.value, PaymentMethod.PAYMAYA.value]
)

MANUAL_PAYMENT_METHODS = frozenset(
    [PaymentMethod.CASH.value, PaymentMethod.QR_CODE.value]
)


def is_gateway_method(method: str | None) -> bool:
    """
    Whether a payment method is settled (and refunded) through the gateway.

    Unknown or missing methods are treated as manual.
    """
    if not method:
        return False
    return method.strip().lower() in GATEWAY_PAYMENT_METHODS


class PaymentProvider(models.TextChoices):
    """Who moves the money for a transaction."""

    PAYMONGO = "paymongo", "PayMongo"
    MANUAL = "manual", "Manual"


class PaymentStatus(models.TextChoices):
    """
    Local status of a PaymentTransaction.

    Terminal states: SUCCEEDED, FAILED, CANCELLED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_PAYMENT_STATUSES = frozenset(
    [
        PaymentStatus.SUCCEEDED.value,
        PaymentStatus.FAILED.value,
        PaymentStatus.CANCELLED.value,
    ]
)


class RefundStatus(models.TextChoices):
    """
    Status of a RefundTransaction.

    Active states: PENDING, PROCESSING (at most one per booking)
    Terminal states: PROCESSED, CANCELLED
    FAILED is terminal unless the refund is flagged retryable.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


ACTIVE_REFUND_STATUSES = frozenset(
    [RefundStatus.PENDING.value, RefundStatus.PROCESSING.value]
)


class RefundReason(models.TextChoices):
    """Why a refund was issued."""

    CUSTOMER_REQUESTED = "customer_requested", "Customer Requested"
    DUPLICATE = "duplicate", "Duplicate"
    FRAUDULENT = "fraudulent", "Fraudulent"
    SERVICE_NOT_PROVIDED = "service_not_provided", "Service Not Provided"
    ADMIN_INITIATED = "admin_initiated", "Admin Initiated"
    OTHER = "other", "Other"


class RefundType(models.TextChoices):
    """Whether the gateway or staff moves the refunded money."""

    AUTOMATIC = "automatic", "Automatic"
    MANUAL = "manual", "Manual"


class InitiatorType(models.TextChoices):
    """Kind of actor that initiated or acted on a refund."""

    ADMIN = "admin", "Admin"
    STAFF = "staff", "Staff"
    CUSTOMER = "customer", "Customer"
    PROVIDER = "provider", "Provider"
    SYSTEM = "system", "System"


class RefundAuditAction(models.TextChoices):
    """Actions recorded in the refund audit trail."""

    CREATED = "created", "Created"
    DISPATCHED = "dispatched", "Dispatched"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    DENIED = "denied", "Denied"
    COMPLETED = "completed", "Completed"
    RETRIED = "retried", "Retried"
    RECONCILED = "reconciled", "Reconciled"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for gateway webhook events.

    State Flow:
        PENDING -> PROCESSING -> PROCESSED
        PENDING -> PROCESSING -> FAILED -> PROCESSING (retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
