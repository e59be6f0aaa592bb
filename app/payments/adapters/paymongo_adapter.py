"""
PayMongo API adapter for payment operations.

This module provides the PayMongoAdapter class which encapsulates all
PayMongo API interactions. All gateway calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Bounded timeout on every API call
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency-Key header on mutating calls
- Thread-safe for use from Celery workers

Configuration (via settings):
- PAYMONGO_SECRET_KEY: PayMongo secret API key (sk_xxx)
- PAYMONGO_WEBHOOK_SECRET: Webhook signing secret (whsk_xxx)
- PAYMONGO_API_BASE_URL: API root (default: https://api.paymongo.com/v1)
- PAYMONGO_API_TIMEOUT_SECONDS: API call timeout (default: 30)

Usage:
    from payments.adapters import PayMongoAdapter, CreateSourceParams

    result = PayMongoAdapter.create_source(
        CreateSourceParams(
            amount_centavos=150000,
            source_type="gcash",
            success_url="https://example.com/paid",
            failed_url="https://example.com/failed",
            idempotency_key="create_source:501:1:a1b2c3d4",
        )
    )
    result.checkout_url  # redirect the customer here
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import requests
from django.conf import settings

from payments.exceptions import (
    GatewayAlreadyRefundedError,
    GatewayAmountExceedsRefundableError,
    GatewayError,
    GatewayInvalidRequestError,
    GatewayPaymentNotRefundableError,
    GatewayRateLimitError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    WebhookSignatureError,
)

DEFAULT_BASE_URL = "https://api.paymongo.com/v1"

# PayMongo only accepts these refund reasons
GATEWAY_REFUND_REASONS = {
    "duplicate": "duplicate",
    "fraudulent": "fraudulent",
    "customer_requested": "requested_by_customer",
}


# =============================================================================
# Amount Conversion
# =============================================================================


CENTAVO = Decimal("0.01")


def to_amount(value: Any) -> Decimal | None:
    """
    Parse a PHP amount and round it half up to whole centavos.

    Returns None when the value is not a finite number. Anything below
    one centavo rounds to 0.00, which callers reject.

    Example:
        to_amount("100.005")  # Decimal("100.01")
        to_amount("0.004")  # Decimal("0.00")
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENTAVO, rounding=ROUND_HALF_UP)


def to_centavos(amount: Decimal) -> int:
    """
    Convert a PHP amount to integer centavos, rounding half up.

    Example:
        to_centavos(Decimal("1500.005"))  # 150001
    """
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_centavos(centavos: int) -> Decimal:
    return (Decimal(centavos) / 100).quantize(CENTAVO)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateSourceParams:
    """
    Parameters for creating a PayMongo Source (GCash checkout).

    Attributes:
        amount_centavos: Amount in centavos (10000 = PHP 100.00)
        source_type: Source type, e.g. 'gcash'
        success_url: Where PayMongo redirects after authorization
        failed_url: Where PayMongo redirects after failure
        idempotency_key: Unique key for idempotent creation
        currency: ISO 4217 currency code (default: 'PHP')
        description: Shown on the checkout page
        billing: Optional {name, email, phone}
        metadata: Key-value pairs to attach to the source
    """

    amount_centavos: int
    source_type: str
    success_url: str
    failed_url: str
    idempotency_key: str
    currency: str = "PHP"
    description: str | None = None
    billing: dict[str, str] | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_centavos <= 0:
            raise ValueError("amount_centavos must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class SourceResult:
    """
    Result from PayMongo Source operations.

    Attributes:
        id: Source ID (src_xxx)
        status: pending, chargeable, cancelled, expired, paid
        amount_centavos: Amount in centavos
        currency: Currency code
        checkout_url: Redirect URL for the customer
        raw_response: Full 'data' object from PayMongo
    """

    id: str
    status: str
    amount_centavos: int
    currency: str
    checkout_url: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreatePaymentIntentParams:
    """Parameters for creating a PayMongo Payment Intent."""

    amount_centavos: int
    idempotency_key: str
    payment_method_allowed: list[str] = field(default_factory=lambda: ["gcash"])
    currency: str = "PHP"
    description: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_centavos <= 0:
            raise ValueError("amount_centavos must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class PaymentIntentResult:
    """
    Result from PayMongo Payment Intent operations.

    Attributes:
        id: Payment Intent ID (pi_xxx)
        status: awaiting_payment_method, awaiting_next_action, processing,
            succeeded, ...
        amount_centavos: Amount in centavos
        currency: Currency code
        client_key: Key for client-side attachment
        payment_ids: Ids of payments (pay_xxx) made against the intent
        raw_response: Full 'data' object from PayMongo
    """

    id: str
    status: str
    amount_centavos: int
    currency: str
    client_key: str | None = None
    payment_ids: list[str] = field(default_factory=list)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_id(self) -> str | None:
        return self.payment_ids[0] if self.payment_ids else None


@dataclass
class CreateRefundParams:
    """
    Parameters for creating a PayMongo Refund.

    Attributes:
        payment_id: PayMongo payment to refund (pay_xxx)
        amount_centavos: Amount to refund in centavos
        reason: Local refund reason, mapped to PayMongo's vocabulary
        idempotency_key: Unique key for idempotent creation
        notes: Free-text notes stored on the gateway refund
        metadata: Must carry 'refund_transaction_id' so a timed-out
            dispatch can be found again with list_refunds()
    """

    payment_id: str
    amount_centavos: int
    reason: str
    idempotency_key: str
    notes: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_centavos <= 0:
            raise ValueError("amount_centavos must be positive")
        if not self.payment_id:
            raise ValueError("payment_id is required")


@dataclass
class RefundResult:
    """
    Result from PayMongo Refund operations.

    Attributes:
        id: Refund ID (ref_xxx)
        status: pending, processing, succeeded, failed
        amount_centavos: Refunded amount in centavos
        payment_id: Original payment ID
        metadata: Attached metadata
        raw_response: Full 'data' object from PayMongo
    """

    id: str
    status: str
    amount_centavos: int
    payment_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for PayMongo API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    retried HTTP call after a timeout cannot create a second object.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_refund",
            entity_id=refund.pk,
            attempt=refund.retry_count + 1,
        )
        # Result: "create_refund:17:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: int | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# PayMongo Adapter
# =============================================================================


class PayMongoAdapter:
    """
    Adapter for PayMongo API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Usage:
        result = PayMongoAdapter.retrieve_source("src_xxx")
        result = PayMongoAdapter.create_refund(params)
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def _base_url() -> str:
        return getattr(settings, "PAYMONGO_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/")

    @staticmethod
    def _timeout() -> float:
        return getattr(settings, "PAYMONGO_API_TIMEOUT_SECONDS", 30)

    @staticmethod
    def _secret_key() -> str:
        secret_key = getattr(settings, "PAYMONGO_SECRET_KEY", "")
        if not secret_key:
            raise GatewayInvalidRequestError(
                "PayMongo secret key is not configured",
                gateway_code="missing_secret_key",
            )
        return secret_key

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """
        Perform one HTTP call and return the decoded JSON document.

        Raises:
            GatewayError: Translated from the transport or HTTP error
        """
        logger = cls.get_logger()
        headers = {"Accept": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        start_time = time.time()
        logger.info("Starting PayMongo operation", extra=log_context)

        try:
            response = requests.request(
                method,
                f"{cls._base_url()}{path}",
                json=body,
                params=params,
                headers=headers,
                auth=(cls._secret_key(), ""),
                timeout=cls._timeout(),
            )
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_transport_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        try:
            document = response.json() if response.content else {}
        except ValueError:
            document = {}

        if response.status_code >= 400:
            cls._handle_gateway_error(
                response.status_code, document, log_context, duration_ms
            )

        logger.info(
            "PayMongo operation completed",
            extra={
                **log_context,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return document

    # =========================================================================
    # Sources
    # =========================================================================

    @classmethod
    def create_source(cls, params: CreateSourceParams) -> SourceResult:
        """
        Create a PayMongo Source the customer authorizes at checkout_url.

        Raises:
            GatewayInvalidRequestError: Invalid parameters or credentials
            GatewayUnavailableError: PayMongo unavailable
            GatewayTimeoutError: Request timed out
        """
        attributes: dict[str, Any] = {
            "amount": params.amount_centavos,
            "currency": params.currency,
            "type": params.source_type,
            "redirect": {
                "success": params.success_url,
                "failed": params.failed_url,
            },
        }
        if params.billing:
            attributes["billing"] = params.billing
        if params.description:
            attributes["description"] = params.description
        if params.metadata:
            attributes["metadata"] = params.metadata

        document = cls._request(
            "POST",
            "/sources",
            log_context={
                "operation": "create_source",
                "amount_centavos": params.amount_centavos,
                "source_type": params.source_type,
                "idempotency_key": params.idempotency_key,
            },
            body={"data": {"attributes": attributes}},
            idempotency_key=params.idempotency_key,
        )
        return cls._parse_source(document.get("data") or {})

    @classmethod
    def retrieve_source(cls, source_id: str) -> SourceResult:
        document = cls._request(
            "GET",
            f"/sources/{source_id}",
            log_context={"operation": "retrieve_source", "source_id": source_id},
        )
        return cls._parse_source(document.get("data") or {})

    # =========================================================================
    # Payment Intents
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls, params: CreatePaymentIntentParams
    ) -> PaymentIntentResult:
        attributes: dict[str, Any] = {
            "amount": params.amount_centavos,
            "currency": params.currency,
            "payment_method_allowed": params.payment_method_allowed,
            "capture_type": "automatic",
        }
        if params.description:
            attributes["description"] = params.description
        if params.metadata:
            attributes["metadata"] = params.metadata

        document = cls._request(
            "POST",
            "/payment_intents",
            log_context={
                "operation": "create_payment_intent",
                "amount_centavos": params.amount_centavos,
                "idempotency_key": params.idempotency_key,
            },
            body={"data": {"attributes": attributes}},
            idempotency_key=params.idempotency_key,
        )
        return cls._parse_payment_intent(document.get("data") or {})

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        document = cls._request(
            "GET",
            f"/payment_intents/{payment_intent_id}",
            log_context={
                "operation": "retrieve_payment_intent",
                "payment_intent_id": payment_intent_id,
            },
        )
        return cls._parse_payment_intent(document.get("data") or {})

    # =========================================================================
    # Payments
    # =========================================================================

    @classmethod
    def find_payment_for_source(cls, source_id: str, limit: int = 100) -> str | None:
        """
        Find the PayMongo payment created from a chargeable source.

        Used to backfill provider_transaction_id when the payment.paid
        webhook never arrived.

        Returns:
            The payment id (pay_xxx), or None if no payment references it
        """
        document = cls._request(
            "GET",
            "/payments",
            log_context={"operation": "list_payments", "source_id": source_id},
            params={"limit": limit},
        )
        for payment in document.get("data") or []:
            attributes = payment.get("attributes") or {}
            source = attributes.get("source") or {}
            if source.get("id") == source_id:
                return payment.get("id")
        return None

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(cls, params: CreateRefundParams) -> RefundResult:
        """
        Refund (part of) a PayMongo payment.

        Raises:
            GatewayPaymentNotRefundableError: Payment unknown or not refundable
            GatewayAmountExceedsRefundableError: Amount above remaining balance
            GatewayAlreadyRefundedError: Payment fully refunded already
            GatewayRateLimitError: Rate limited
            GatewayUnavailableError: PayMongo unavailable
            GatewayTimeoutError: Request timed out (outcome unknown)
        """
        attributes: dict[str, Any] = {
            "amount": params.amount_centavos,
            "payment_id": params.payment_id,
            "reason": GATEWAY_REFUND_REASONS.get(params.reason, "others"),
        }
        if params.notes:
            attributes["notes"] = params.notes[:255]
        if params.metadata:
            attributes["metadata"] = params.metadata

        document = cls._request(
            "POST",
            "/refunds",
            log_context={
                "operation": "create_refund",
                "payment_id": params.payment_id,
                "amount_centavos": params.amount_centavos,
                "idempotency_key": params.idempotency_key,
            },
            body={"data": {"attributes": attributes}},
            idempotency_key=params.idempotency_key,
        )
        return cls._parse_refund(document.get("data") or {})

    @classmethod
    def list_refunds(cls, payment_id: str) -> list[RefundResult]:
        """List the gateway refunds recorded against a payment."""
        document = cls._request(
            "GET",
            "/refunds",
            log_context={"operation": "list_refunds", "payment_id": payment_id},
            params={"payment_id": payment_id},
        )
        return [cls._parse_refund(item) for item in document.get("data") or []]

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, header: str | None) -> dict[str, Any]:
        """
        Verify a Paymongo-Signature header and parse the event.

        The header has the form ``t=<timestamp>,te=<test sig>,li=<live sig>``
        (``v1`` is accepted as well). The signature is the hex HMAC-SHA256
        of ``"{t}.{payload}"`` keyed with PAYMONGO_WEBHOOK_SECRET.

        Returns:
            Parsed event document

        Raises:
            WebhookSignatureError: Secret unset, header missing/malformed,
                or no signature matches
        """
        secret = getattr(settings, "PAYMONGO_WEBHOOK_SECRET", "")
        if not secret:
            cls.get_logger().error("PAYMONGO_WEBHOOK_SECRET is not configured")
            raise WebhookSignatureError("Webhook secret is not configured")
        if not header:
            raise WebhookSignatureError("Missing Paymongo-Signature header")

        parts: dict[str, str] = {}
        for element in header.split(","):
            key, sep, value = element.strip().partition("=")
            if sep:
                parts[key] = value

        timestamp = parts.get("t")
        candidates = [parts[key] for key in ("v1", "te", "li") if parts.get(key)]
        if not timestamp or not candidates:
            raise WebhookSignatureError("Malformed Paymongo-Signature header")

        signed_payload = f"{timestamp}.".encode() + payload
        expected = hmac.new(
            secret.encode(), signed_payload, hashlib.sha256
        ).hexdigest()

        if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
            raise WebhookSignatureError("Invalid webhook signature")

        try:
            return json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError(
                "Webhook payload is not valid JSON",
                details={"error": str(e)},
            ) from e

    # =========================================================================
    # Parsing
    # =========================================================================

    @staticmethod
    def _parse_source(data: dict[str, Any]) -> SourceResult:
        attributes = data.get("attributes") or {}
        redirect = attributes.get("redirect") or {}
        return SourceResult(
            id=data.get("id", ""),
            status=attributes.get("status", ""),
            amount_centavos=attributes.get("amount", 0),
            currency=attributes.get("currency", "PHP"),
            checkout_url=redirect.get("checkout_url"),
            raw_response=data,
        )

    @staticmethod
    def _parse_payment_intent(data: dict[str, Any]) -> PaymentIntentResult:
        attributes = data.get("attributes") or {}
        return PaymentIntentResult(
            id=data.get("id", ""),
            status=attributes.get("status", ""),
            amount_centavos=attributes.get("amount", 0),
            currency=attributes.get("currency", "PHP"),
            client_key=attributes.get("client_key"),
            payment_ids=[
                payment.get("id")
                for payment in attributes.get("payments") or []
                if payment.get("id")
            ],
            raw_response=data,
        )

    @staticmethod
    def _parse_refund(data: dict[str, Any]) -> RefundResult:
        attributes = data.get("attributes") or {}
        return RefundResult(
            id=data.get("id", ""),
            status=attributes.get("status", ""),
            amount_centavos=attributes.get("amount", 0),
            payment_id=attributes.get("payment_id"),
            metadata=dict(attributes.get("metadata") or {}),
            raw_response=data,
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_transport_error(
        cls,
        error: requests.RequestException,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate requests exceptions to domain exceptions.

        Raises:
            GatewayTimeoutError: No response within the timeout
            GatewayUnavailableError: Connection or other transport failure
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, requests.Timeout):
            logger.warning("PayMongo request timed out", extra=log_context)
            raise GatewayTimeoutError(
                "PayMongo request timed out; outcome unknown",
                gateway_code="timeout",
            ) from error

        logger.error(
            "Connection error to PayMongo",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            "Could not connect to PayMongo. Please retry.",
            gateway_code="connection_error",
        ) from error

    @classmethod
    def _handle_gateway_error(
        cls,
        status_code: int,
        document: dict[str, Any],
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate a PayMongo error response to a domain exception.

        PayMongo errors look like
        ``{"errors": [{"code": "...", "detail": "...", "source": {...}}]}``.

        Raises:
            GatewayRateLimitError: HTTP 429
            GatewayUnavailableError: HTTP 5xx
            GatewayAlreadyRefundedError: Payment already refunded
            GatewayAmountExceedsRefundableError: Amount too large
            GatewayPaymentNotRefundableError: Payment missing or not refundable
            GatewayInvalidRequestError: Any other 4xx
        """
        logger = cls.get_logger()
        errors = document.get("errors") or [{}]
        first = errors[0] if isinstance(errors[0], dict) else {}
        gateway_code = first.get("code") or ""
        detail = first.get("detail") or f"PayMongo returned HTTP {status_code}"
        log_context = {
            **log_context,
            "duration_ms": duration_ms,
            "status_code": status_code,
            "gateway_code": gateway_code,
        }

        if status_code == 429:
            logger.warning("Rate limited by PayMongo", extra=log_context)
            raise GatewayRateLimitError(
                detail, gateway_code=gateway_code, status_code=status_code
            )

        if status_code >= 500:
            logger.error("PayMongo API error", extra=log_context)
            raise GatewayUnavailableError(
                detail, gateway_code=gateway_code, status_code=status_code
            )

        if status_code in (401, 403):
            logger.critical(
                "PayMongo authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayInvalidRequestError(
                detail, gateway_code=gateway_code, status_code=status_code
            )

        text = f"{gateway_code} {detail}".lower().replace("_", " ")
        logger.error("PayMongo rejected request", extra=log_context)

        if "already" in text and "refunded" in text:
            raise GatewayAlreadyRefundedError(
                detail, gateway_code=gateway_code, status_code=status_code
            )
        if "amount" in text and ("exceed" in text or "greater than" in text):
            raise GatewayAmountExceedsRefundableError(
                detail, gateway_code=gateway_code, status_code=status_code
            )
        if log_context.get("operation") == "create_refund" and (
            "not refundable" in text
            or "resource not found" in text
            or status_code == 404
        ):
            raise GatewayPaymentNotRefundableError(
                detail, gateway_code=gateway_code, status_code=status_code
            )

        raise GatewayInvalidRequestError(
            detail, gateway_code=gateway_code, status_code=status_code
        )
