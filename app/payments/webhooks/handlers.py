"""
Webhook event handlers for PayMongo events.

This module provides a handler registry keyed by GatewayEventKind and the
handlers for the events the payment engine acts on. Handlers only
translate events; the orchestrators own every state change, so a webhook
and a status pull for the same payment go through the same
reconciliation code.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler(GatewayEventKind.PAYMENT_PAID)
    def handle_payment_paid(event: GatewayEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.services import ServiceResult

from payments.services import PaymentOrchestrator, RefundOrchestrator

from .events import GatewayEvent, GatewayEventKind, parse_event

if TYPE_CHECKING:
    from payments.models import WebhookEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[GatewayEventKind, Callable[[GatewayEvent], ServiceResult]] = {}


def register_handler(*kinds: GatewayEventKind) -> Callable:
    """
    Decorator to register a handler for one or more event kinds.

    Usage:
        @register_handler(GatewayEventKind.REFUND_SUCCEEDED, GatewayEventKind.REFUND_FAILED)
        def handle_refund(event: GatewayEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[GatewayEvent], ServiceResult]) -> Callable:
        for kind in kinds:
            WEBHOOK_HANDLERS[kind] = func
            logger.debug(f"Registered webhook handler for {kind.value}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Parse a stored webhook event and dispatch it to its handler.

    Unknown event types are acknowledged as successful no-ops so PayMongo
    stops redelivering them.
    """
    event = parse_event(webhook_event.payload)
    handler = WEBHOOK_HANDLERS.get(event.kind)

    if handler is None:
        logger.info(
            f"No handler registered for event type: {event.event_type}",
            extra={"gateway_event_id": event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event.event_type} to handler",
        extra={"gateway_event_id": event.event_id, "resource_id": event.resource_id},
    )
    return handler(event)


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler(
    GatewayEventKind.SOURCE_CHARGEABLE,
    GatewayEventKind.PAYMENT_PAID,
    GatewayEventKind.PAYMENT_FAILED,
)
def handle_payment_event(event: GatewayEvent) -> ServiceResult:
    """source.chargeable, payment.paid and payment.failed."""
    return PaymentOrchestrator.apply_gateway_event(event)


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(
    GatewayEventKind.REFUND_SUCCEEDED,
    GatewayEventKind.REFUND_FAILED,
    GatewayEventKind.REFUND_UPDATED,
)
def handle_refund_event(event: GatewayEvent) -> ServiceResult:
    """
    Settle a refund from PayMongo.

    refund.succeeded / refund.failed carry their outcome in the event type;
    payment.refund.updated carries it in the refund's status attribute.
    """
    if event.kind == GatewayEventKind.REFUND_SUCCEEDED:
        status = "succeeded"
    elif event.kind == GatewayEventKind.REFUND_FAILED:
        status = "failed"
    else:
        status = event.status or ""

    if not event.resource_id:
        logger.error(
            f"{event.event_type}: Could not extract refund id",
            extra={"gateway_event_id": event.event_id},
        )
        return ServiceResult.failure(
            "Could not extract refund id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    return RefundOrchestrator.reconcile_refund(
        event.resource_id,
        status,
        failure_reason=event.failure_reason,
        refund_transaction_id=event.metadata.get("refund_transaction_id"),
    )
