"""
Tests for PayMongoAdapter.

Tests cover:
- Request construction (URL, auth, timeout, Idempotency-Key)
- Response parsing for sources, payment intents, payments and refunds
- Translation of transport and HTTP errors to gateway exceptions
- Webhook signature verification
- Amount conversion and idempotency keys

The HTTP transport (requests.request) is patched in every test; no call
leaves the process.
"""

import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from payments.adapters import (
    CreatePaymentIntentParams,
    CreateRefundParams,
    CreateSourceParams,
    IdempotencyKeyGenerator,
    PayMongoAdapter,
    from_centavos,
    to_amount,
    to_centavos,
)
from payments.exceptions import (
    GatewayAlreadyRefundedError,
    GatewayAmountExceedsRefundableError,
    GatewayInvalidRequestError,
    GatewayPaymentNotRefundableError,
    GatewayRateLimitError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    WebhookSignatureError,
)

REQUEST_PATH = "payments.adapters.paymongo_adapter.requests.request"


# =============================================================================
# Helpers
# =============================================================================


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(body).encode() if body is not None else b""
    response.json.return_value = body
    return response


def error_body(code, detail):
    return {"errors": [{"code": code, "detail": detail}]}


def sign(payload: bytes, secret="whsk_test_secret", timestamp="1700000000"):
    return hmac.new(
        secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256
    ).hexdigest()


def refund_params(**overrides):
    params = {
        "payment_id": "pay_abc",
        "amount_centavos": 50000,
        "reason": "customer_requested",
        "idempotency_key": "create_refund:1:1:abcd1234",
        "metadata": {"refund_transaction_id": "1"},
    }
    params.update(overrides)
    return CreateRefundParams(**params)


SOURCE_DATA = {
    "id": "src_abc",
    "type": "source",
    "attributes": {
        "amount": 150000,
        "currency": "PHP",
        "status": "pending",
        "type": "gcash",
        "redirect": {
            "checkout_url": "https://checkout.paymongo.test/src_abc",
            "success": "https://example.com/success",
            "failed": "https://example.com/failed",
        },
    },
}


# =============================================================================
# Amount Conversion
# =============================================================================


class TestAmountConversion:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("1500.00"), 150000),
            (Decimal("0.01"), 1),
            (Decimal("100.005"), 10001),
            (Decimal("100.004"), 10000),
        ],
    )
    def test_to_centavos_rounds_half_up(self, amount, expected):
        assert to_centavos(amount) == expected

    def test_from_centavos(self):
        assert from_centavos(150050) == Decimal("1500.50")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1500", Decimal("1500.00")),
            ("100.005", Decimal("100.01")),
            ("0.004", Decimal("0.00")),
            (Decimal("-2.5"), Decimal("-2.50")),
            (750, Decimal("750.00")),
        ],
    )
    def test_to_amount_rounds_to_centavos(self, value, expected):
        assert to_amount(value) == expected

    @pytest.mark.parametrize("value", ["abc", None, "NaN", "Infinity", ""])
    def test_to_amount_rejects_non_numbers(self, value):
        assert to_amount(value) is None


# =============================================================================
# Parameter Validation
# =============================================================================


class TestParams:
    def test_source_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            CreateSourceParams(
                amount_centavos=0,
                source_type="gcash",
                success_url="https://example.com/s",
                failed_url="https://example.com/f",
                idempotency_key="k",
            )

    def test_refund_requires_payment_id(self):
        with pytest.raises(ValueError):
            refund_params(payment_id="")

    def test_intent_requires_idempotency_key(self):
        with pytest.raises(ValueError):
            CreatePaymentIntentParams(amount_centavos=100, idempotency_key="")


# =============================================================================
# Idempotency Keys
# =============================================================================


class TestIdempotencyKeyGenerator:
    def test_same_inputs_same_key(self):
        first = IdempotencyKeyGenerator.generate("create_refund", 17, 1)
        second = IdempotencyKeyGenerator.generate("create_refund", 17, 1)

        assert first == second
        assert first.startswith("create_refund:17:1:")
        assert len(first.rsplit(":", 1)[1]) == 8

    def test_attempt_changes_key(self):
        first = IdempotencyKeyGenerator.generate("create_refund", 17, 1)
        second = IdempotencyKeyGenerator.generate("create_refund", 17, 2)

        assert first != second


# =============================================================================
# Sources
# =============================================================================


class TestCreateSource:
    def test_timeout_defaults_to_thirty_seconds(self, settings):
        del settings.PAYMONGO_API_TIMEOUT_SECONDS

        with patch(
            REQUEST_PATH, return_value=make_response(200, {"data": SOURCE_DATA})
        ) as mock_request:
            PayMongoAdapter.create_source(
                CreateSourceParams(
                    amount_centavos=150000,
                    source_type="gcash",
                    success_url="https://example.com/success",
                    failed_url="https://example.com/failed",
                    idempotency_key="create_source:1:1:abcd1234",
                )
            )

        assert mock_request.call_args.kwargs["timeout"] == 30

    def test_posts_source_with_idempotency_key(self, settings):
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": SOURCE_DATA})) as mock_request:
            result = PayMongoAdapter.create_source(
                CreateSourceParams(
                    amount_centavos=150000,
                    source_type="gcash",
                    success_url="https://example.com/success",
                    failed_url="https://example.com/failed",
                    idempotency_key="create_source:1:1:abcd1234",
                    metadata={"booking_id": "1"},
                )
            )

        args, kwargs = mock_request.call_args
        assert args == ("POST", "https://api.paymongo.test/v1/sources")
        assert kwargs["headers"]["Idempotency-Key"] == "create_source:1:1:abcd1234"
        assert kwargs["auth"] == ("sk_test_123", "")
        assert kwargs["timeout"] == settings.PAYMONGO_API_TIMEOUT_SECONDS
        attributes = kwargs["json"]["data"]["attributes"]
        assert attributes["amount"] == 150000
        assert attributes["type"] == "gcash"
        assert attributes["redirect"]["success"] == "https://example.com/success"
        assert attributes["metadata"] == {"booking_id": "1"}

        assert result.id == "src_abc"
        assert result.status == "pending"
        assert result.checkout_url == "https://checkout.paymongo.test/src_abc"

    def test_retrieve_source(self):
        chargeable = {**SOURCE_DATA, "attributes": {**SOURCE_DATA["attributes"], "status": "chargeable"}}
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": chargeable})) as mock_request:
            result = PayMongoAdapter.retrieve_source("src_abc")

        assert mock_request.call_args[0] == ("GET", "https://api.paymongo.test/v1/sources/src_abc")
        assert "Idempotency-Key" not in mock_request.call_args[1]["headers"]
        assert result.status == "chargeable"

    def test_missing_secret_key(self, settings):
        """Should refuse to call PayMongo without credentials."""
        settings.PAYMONGO_SECRET_KEY = ""

        with patch(REQUEST_PATH) as mock_request:
            with pytest.raises(GatewayInvalidRequestError):
                PayMongoAdapter.retrieve_source("src_abc")

        mock_request.assert_not_called()


# =============================================================================
# Payment Intents and Payments
# =============================================================================


class TestPaymentIntents:
    def test_retrieve_payment_intent_collects_payment_ids(self):
        data = {
            "id": "pi_abc",
            "attributes": {
                "amount": 150000,
                "currency": "PHP",
                "status": "succeeded",
                "client_key": "pi_abc_client",
                "payments": [{"id": "pay_1"}, {"id": "pay_2"}],
            },
        }
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": data})):
            result = PayMongoAdapter.retrieve_payment_intent("pi_abc")

        assert result.status == "succeeded"
        assert result.payment_ids == ["pay_1", "pay_2"]
        assert result.payment_id == "pay_1"

    def test_intent_without_payments_has_no_payment_id(self):
        data = {"id": "pi_abc", "attributes": {"status": "awaiting_payment_method"}}
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": data})):
            result = PayMongoAdapter.retrieve_payment_intent("pi_abc")

        assert result.payment_id is None

    def test_find_payment_for_source(self):
        payments = {
            "data": [
                {"id": "pay_other", "attributes": {"source": {"id": "src_other"}}},
                {"id": "pay_match", "attributes": {"source": {"id": "src_abc"}}},
            ]
        }
        with patch(REQUEST_PATH, return_value=make_response(200, payments)):
            assert PayMongoAdapter.find_payment_for_source("src_abc") == "pay_match"

    def test_find_payment_for_source_not_found(self):
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": []})):
            assert PayMongoAdapter.find_payment_for_source("src_abc") is None


# =============================================================================
# Refunds
# =============================================================================


class TestRefunds:
    def test_create_refund_maps_reason_and_metadata(self):
        data = {
            "id": "ref_abc",
            "attributes": {
                "amount": 50000,
                "status": "pending",
                "payment_id": "pay_abc",
                "metadata": {"refund_transaction_id": "1"},
            },
        }
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": data})) as mock_request:
            result = PayMongoAdapter.create_refund(refund_params(notes="Booking #1"))

        kwargs = mock_request.call_args[1]
        attributes = kwargs["json"]["data"]["attributes"]
        assert attributes["reason"] == "requested_by_customer"
        assert attributes["payment_id"] == "pay_abc"
        assert attributes["notes"] == "Booking #1"
        assert attributes["metadata"] == {"refund_transaction_id": "1"}
        assert kwargs["headers"]["Idempotency-Key"] == "create_refund:1:1:abcd1234"

        assert result.id == "ref_abc"
        assert result.payment_id == "pay_abc"
        assert result.metadata == {"refund_transaction_id": "1"}

    def test_unsupported_reason_becomes_others(self):
        with patch(REQUEST_PATH, return_value=make_response(200, {"data": {"id": "ref_x"}})) as mock_request:
            PayMongoAdapter.create_refund(refund_params(reason="service_not_provided"))

        assert mock_request.call_args[1]["json"]["data"]["attributes"]["reason"] == "others"

    def test_list_refunds(self):
        body = {
            "data": [
                {"id": "ref_1", "attributes": {"status": "succeeded", "metadata": {"refund_transaction_id": "5"}}},
                {"id": "ref_2", "attributes": {"status": "pending"}},
            ]
        }
        with patch(REQUEST_PATH, return_value=make_response(200, body)) as mock_request:
            results = PayMongoAdapter.list_refunds("pay_abc")

        assert mock_request.call_args[1]["params"] == {"payment_id": "pay_abc"}
        assert [r.id for r in results] == ["ref_1", "ref_2"]
        assert results[0].metadata == {"refund_transaction_id": "5"}
        assert results[1].metadata == {}


# =============================================================================
# Error Translation
# =============================================================================


class TestErrorTranslation:
    def test_timeout_is_retryable_with_unknown_outcome(self):
        with patch(REQUEST_PATH, side_effect=requests.Timeout("read timed out")):
            with pytest.raises(GatewayTimeoutError) as exc_info:
                PayMongoAdapter.create_refund(refund_params())

        assert exc_info.value.is_retryable is True
        assert exc_info.value.outcome_unknown is True

    def test_connection_error_is_unavailable(self):
        with patch(REQUEST_PATH, side_effect=requests.ConnectionError("refused")):
            with pytest.raises(GatewayUnavailableError) as exc_info:
                PayMongoAdapter.retrieve_source("src_abc")

        assert exc_info.value.is_retryable is True
        assert exc_info.value.outcome_unknown is False

    def test_rate_limited(self):
        response = make_response(429, error_body("rate_limited", "Too many requests"))
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayRateLimitError) as exc_info:
                PayMongoAdapter.create_refund(refund_params())

        assert exc_info.value.status_code == 429
        assert exc_info.value.is_retryable is True

    def test_server_error_is_unavailable(self):
        with patch(REQUEST_PATH, return_value=make_response(503)):
            with pytest.raises(GatewayUnavailableError) as exc_info:
                PayMongoAdapter.create_refund(refund_params())

        assert "HTTP 503" in exc_info.value.message

    def test_authentication_failure_is_permanent(self):
        response = make_response(401, error_body("api_key_invalid", "Invalid API key"))
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayInvalidRequestError) as exc_info:
                PayMongoAdapter.retrieve_source("src_abc")

        assert exc_info.value.is_retryable is False

    def test_already_refunded(self):
        response = make_response(
            400, error_body("payment_already_refunded", "The payment has already been refunded.")
        )
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayAlreadyRefundedError):
                PayMongoAdapter.create_refund(refund_params())

    def test_amount_exceeds_refundable(self):
        response = make_response(
            400,
            error_body(
                "parameter_above_maximum",
                "The amount exceeds the remaining refundable amount.",
            ),
        )
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayAmountExceedsRefundableError):
                PayMongoAdapter.create_refund(refund_params())

    def test_unknown_payment_on_refund_is_not_refundable(self):
        response = make_response(404, error_body("resource_not_found", "No such payment."))
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayPaymentNotRefundableError) as exc_info:
                PayMongoAdapter.create_refund(refund_params())

        assert exc_info.value.gateway_code == "resource_not_found"
        assert exc_info.value.details["status_code"] == 404

    def test_not_found_outside_refunds_is_invalid_request(self):
        response = make_response(404, error_body("resource_not_found", "No such source."))
        with patch(REQUEST_PATH, return_value=response):
            with pytest.raises(GatewayInvalidRequestError):
                PayMongoAdapter.retrieve_source("src_missing")


# =============================================================================
# Webhook Signatures
# =============================================================================


class TestVerifyWebhookSignature:
    PAYLOAD = json.dumps({"data": {"id": "evt_1", "attributes": {"type": "payment.paid"}}}).encode()

    def test_valid_test_mode_signature(self):
        header = f"t=1700000000,te={sign(self.PAYLOAD)},li="

        event = PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, header)

        assert event["data"]["id"] == "evt_1"

    def test_valid_live_mode_signature(self):
        header = f"t=1700000000,te=,li={sign(self.PAYLOAD)}"

        event = PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, header)

        assert event["data"]["attributes"]["type"] == "payment.paid"

    def test_wrong_secret_rejected(self):
        header = f"t=1700000000,te={sign(self.PAYLOAD, secret='whsk_other')},li="

        with pytest.raises(WebhookSignatureError, match="Invalid webhook signature"):
            PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, header)

    def test_tampered_payload_rejected(self):
        header = f"t=1700000000,te={sign(self.PAYLOAD)},li="

        with pytest.raises(WebhookSignatureError):
            PayMongoAdapter.verify_webhook_signature(self.PAYLOAD + b" ", header)

    def test_missing_header(self):
        with pytest.raises(WebhookSignatureError, match="Missing"):
            PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, "")

    def test_malformed_header(self):
        with pytest.raises(WebhookSignatureError, match="Malformed"):
            PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, "te=abc")

    def test_secret_not_configured(self, settings):
        settings.PAYMONGO_WEBHOOK_SECRET = ""

        with pytest.raises(WebhookSignatureError, match="not configured"):
            PayMongoAdapter.verify_webhook_signature(self.PAYLOAD, "t=1,te=abc")

    def test_signed_non_json_payload(self):
        payload = b"not json"
        header = f"t=1700000000,te={sign(payload)},li="

        with pytest.raises(WebhookSignatureError, match="not valid JSON"):
            PayMongoAdapter.verify_webhook_signature(payload, header)
