"""
Webhook endpoint view for PayMongo.

The view:
1. Verifies the Paymongo-Signature header
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import paymongo_webhook

    urlpatterns = [
        path("webhooks/paymongo/", paymongo_webhook, name="paymongo_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import PayMongoAdapter
from payments.exceptions import PaymentValidationError, WebhookSignatureError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

from .events import parse_event

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def paymongo_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue PayMongo webhook events.

    PayMongo retries deliveries that do not get a 2xx response, so the
    event is stored and queued and the response is sent straight away.

    Idempotency:
    - WebhookEvent.gateway_event_id is unique
    - Events already processed return 200 without being queued again

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing/invalid signature or malformed payload

    Example Paymongo-Signature header:
        t=1496734173,te=,li=0fb5...
    """
    signature = request.headers.get("Paymongo-Signature", "")
    if not signature:
        logger.warning("Webhook received without Paymongo-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        payload = PayMongoAdapter.verify_webhook_signature(request.body, signature)
        event = parse_event(payload)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed", extra={"error": e.message}
        )
        return HttpResponse("Invalid signature", status=400)
    except (PaymentValidationError, ValueError) as e:
        logger.warning("Webhook payload rejected", extra={"error": str(e)})
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received PayMongo webhook: {event.event_type}",
        extra={"gateway_event_id": event.event_id, "event_type": event.event_type},
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        gateway_event_id=event.event_id,
        defaults={
            "event_type": event.event_type,
            "payload": payload,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"gateway_event_id": event.event_id},
        )
        return HttpResponse("Already processed", status=200)

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(webhook_event.id)
        logger.info(
            "Webhook queued for processing",
            extra={
                "gateway_event_id": event.event_id,
                "webhook_event_id": webhook_event.id,
            },
        )
    except Exception as e:
        # Stored as pending; retry_failed_webhooks picks it up
        logger.error(
            f"Failed to queue webhook: {type(e).__name__}",
            extra={"gateway_event_id": event.event_id},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
