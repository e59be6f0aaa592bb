"""
Payment services for coordinating payment and refund operations.

This module provides:
- PaymentOrchestrator: Payment creation, status pull and reconciliation
- RefundOrchestrator: Refund creation, dispatch, approval and settlement
- RetryCoordinator: Re-dispatch of refunds that failed transiently
- check_refund_eligibility: Refund eligibility and policy decision

Usage:
    from payments.services import PaymentOrchestrator, CreatePaymentRequest

    result = PaymentOrchestrator.create_payment(
        CreatePaymentRequest(booking_id=42, amount="1500.00", payment_method="gcash")
    )

    from payments.services import RefundOrchestrator, ProcessRefundRequest

    result = RefundOrchestrator.process_refund(
        ProcessRefundRequest(booking_id=42, amount="1500.00", reason="duplicate")
    )

    from payments.services import RetryCoordinator

    summary = RetryCoordinator.retry_failed_refunds()
"""

from payments.services.eligibility import (
    RefundEligibility,
    RefundPolicy,
    cancellation_policy,
    check_refund_eligibility,
    refund_policy_for,
)
from payments.services.payment_orchestrator import (
    CreatePaymentRequest,
    PaymentOrchestrator,
    PaymentResult,
    PaymentStatusResult,
    ReconciliationOutcome,
)
from payments.services.refund_orchestrator import (
    ProcessRefundRequest,
    RefundOrchestrator,
    RefundResult,
    manual_refund_instructions,
)
from payments.services.retry_coordinator import (
    RetryCoordinator,
    RetryOutcome,
    RetrySummary,
)
from payments.services.status_mapping import map_gateway_status

__all__ = [
    # Eligibility
    "RefundEligibility",
    "RefundPolicy",
    "cancellation_policy",
    "check_refund_eligibility",
    "refund_policy_for",
    # Payments
    "CreatePaymentRequest",
    "PaymentOrchestrator",
    "PaymentResult",
    "PaymentStatusResult",
    "ReconciliationOutcome",
    "map_gateway_status",
    # Refunds
    "ProcessRefundRequest",
    "RefundOrchestrator",
    "RefundResult",
    "manual_refund_instructions",
    # Retries
    "RetryCoordinator",
    "RetryOutcome",
    "RetrySummary",
]
