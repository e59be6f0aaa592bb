"""
Payment adapters for external services.

All PayMongo API calls should go through PayMongoAdapter to ensure
consistent error handling, timeouts, idempotency, and observability.

Usage:
    from payments.adapters import PayMongoAdapter, CreateRefundParams

    result = PayMongoAdapter.create_refund(
        CreateRefundParams(
            payment_id="pay_xxx",
            amount_centavos=150000,
            reason="customer_requested",
            idempotency_key="create_refund:17:1:a1b2c3d4",
        )
    )
"""

from payments.adapters.paymongo_adapter import (
    CENTAVO,
    CreatePaymentIntentParams,
    CreateRefundParams,
    CreateSourceParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PayMongoAdapter,
    RefundResult,
    SourceResult,
    from_centavos,
    to_amount,
    to_centavos,
)

__all__ = [
    "CENTAVO",
    "CreatePaymentIntentParams",
    "CreateRefundParams",
    "CreateSourceParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PayMongoAdapter",
    "RefundResult",
    "SourceResult",
    "from_centavos",
    "to_amount",
    "to_centavos",
]
