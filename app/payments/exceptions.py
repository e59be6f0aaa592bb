"""
Payment-specific exceptions for payment and refund operations.

This module provides a hierarchy of exceptions for the payment engine,
covering payment domain errors, gateway errors and concurrency control.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentValidationError - Payment validation failures
    └── PaymentProcessingError - Payment processing failures
        └── GatewayError - Base for all PayMongo errors
            ├── GatewayPaymentNotRefundableError - Payment cannot be refunded (permanent)
            ├── GatewayAmountExceedsRefundableError - Amount too large (permanent)
            ├── GatewayAlreadyRefundedError - Payment already refunded (permanent)
            ├── GatewayInvalidRequestError - Invalid request params (permanent)
            ├── GatewayRateLimitError - Rate limited (transient, retry)
            ├── GatewayUnavailableError - API unavailable (transient, retry)
            └── GatewayTimeoutError - Request timeout (transient, outcome unknown)

    WebhookSignatureError - Webhook signature missing or invalid
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayError, LockAcquisitionError

    try:
        PayMongoAdapter.create_refund(params)
    except GatewayError as e:
        if e.is_retryable:
            refund.fail(e.message, retryable=True)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentValidationError(PaymentError):
    """
    Raised when payment validation fails.

    Use for:
    - Invalid payment amount
    - Unsupported payment method
    - Amount outside the per-method limits
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PaymentProcessingError(PaymentError):
    """
    Raised when payment processing fails.

    Use for:
    - PayMongo API errors
    - Processing timeouts
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    http_status: int = 502


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentProcessingError):
    """
    Base exception for all PayMongo errors.

    Provides common attributes for gateway error handling:
    - gateway_code: PayMongo's error code (errors[0].code)
    - status_code: HTTP status returned by the API, if any
    - is_retryable: Whether the operation can be retried
    - outcome_unknown: The request may have been applied server-side

    Example:
        try:
            PayMongoAdapter.create_refund(params)
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(e)
            else:
                flag_for_manual_processing(e)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False
    outcome_unknown: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code
        self.status_code = status_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class GatewayPaymentNotRefundableError(GatewayError):
    """
    The referenced payment cannot be refunded.

    Covers payments the gateway does not know about and payments in a
    state that does not allow refunds. Staff must settle these by hand.
    """

    default_error_code: str = "PAYMENT_NOT_REFUNDABLE"


class GatewayAmountExceedsRefundableError(GatewayError):
    """Refund amount is larger than what remains refundable at the gateway."""

    default_error_code: str = "AMOUNT_EXCEEDS_REFUNDABLE"


class GatewayAlreadyRefundedError(GatewayError):
    """
    The payment has already been fully refunded at the gateway.

    Usually means an earlier dispatch succeeded without being recorded;
    check the gateway dashboard before touching the local row.
    """

    default_error_code: str = "ALREADY_REFUNDED"


class GatewayInvalidRequestError(GatewayError):
    """
    Invalid request parameters or credentials sent to PayMongo.

    Note:
        This usually indicates a bug or a misconfiguration, not a user
        error. Log these errors for developer investigation.
    """

    default_error_code: str = "INVALID_GATEWAY_REQUEST"


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class GatewayRateLimitError(GatewayError):
    """Rate limited by the PayMongo API (HTTP 429)."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """
    PayMongo API is temporarily unavailable.

    This covers:
    - Network connectivity issues
    - PayMongo server errors (5xx)
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(GatewayError):
    """
    PayMongo API call timed out.

    The request was sent but no response was received within
    PAYMONGO_API_TIMEOUT_SECONDS.

    IMPORTANT: The operation may have succeeded on PayMongo's side.
    Refunds that time out are reconciled against the gateway's refund
    list before they are dispatched again.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True
    outcome_unknown: bool = True


# =============================================================================
# Webhook Exceptions
# =============================================================================


class WebhookSignatureError(PaymentError):
    """Raised when a webhook signature header is missing, malformed or wrong."""

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    This exception indicates that another process holds the lock
    and it couldn't be acquired within the timeout period.

    Example:
        lock = DistributedLock("refund:booking:501", ttl=30, timeout=10)
        if not lock.acquire():
            raise LockAcquisitionError(
                "Failed to acquire lock 'refund:booking:501' within 10s",
                details={"key": "refund:booking:501", "timeout": 10}
            )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentValidationError",
    "PaymentProcessingError",
    # Gateway
    "GatewayError",
    "GatewayPaymentNotRefundableError",
    "GatewayAmountExceedsRefundableError",
    "GatewayAlreadyRefundedError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayUnavailableError",
    "GatewayTimeoutError",
    # Webhooks
    "WebhookSignatureError",
    # Concurrency control
    "LockAcquisitionError",
]
