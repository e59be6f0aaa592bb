"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing PayMongo webhook events
- Retrying failed webhook events and resetting stuck ones
- Retrying refunds that failed transiently (celery-beat, every 15 minutes)
- Retrying a booking's queued refunds once its payment is confirmed
- Returning refunds stuck mid-retry to the retry set

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(webhook_event.id)

    # Retry refunds for one booking
    from payments.tasks import retry_refunds_for_booking
    retry_refunds_for_booking.delay(booking.pk)
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100


def _max_webhook_retries() -> int:
    return getattr(settings, "WEBHOOK_MAX_RETRIES", 5)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: int) -> dict:
    """
    Process a PayMongo webhook event asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler for its event kind
    5. Marks as processed or failed

    A handler returning a failure (e.g. an event for an unknown payment)
    is recorded and not retried by Celery; an exception is re-raised so
    Celery retries with backoff.

    Returns:
        Dict with processing result status
    """
    from payments.webhooks.handlers import dispatch_webhook

    try:
        webhook_event = WebhookEvent.objects.get(pk=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found", extra={"webhook_event_id": webhook_event_id}
        )
        return {"status": "not_found", "webhook_event_id": webhook_event_id}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": webhook_event_id,
                "gateway_event_id": webhook_event.gateway_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": webhook_event_id}

    webhook_event.mark_processing()
    webhook_event.save()

    log_context = {
        "webhook_event_id": webhook_event_id,
        "gateway_event_id": webhook_event.gateway_event_id,
        "event_type": webhook_event.event_type,
        "retry_count": webhook_event.retry_count,
    }
    logger.info(f"Dispatching webhook: {webhook_event.event_type}", extra=log_context)

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={**log_context, "error": error_msg},
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        logger.info("Webhook processed successfully", extra=log_context)
        return {
            "status": "processed",
            "webhook_event_id": webhook_event_id,
            "gateway_event_id": webhook_event.gateway_event_id,
        }

    error_msg = result.error or "Handler returned failure"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={**log_context, "error_code": result.error_code},
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": webhook_event_id,
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to re-queue failed and never-queued webhook events.

    Failed events are retried until WEBHOOK_MAX_RETRIES. Pending events
    older than a few minutes were stored but never queued (the broker was
    down when they arrived).
    """
    stale_pending = timezone.now() - timedelta(minutes=5)
    failed = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=_max_webhook_retries(),
    )
    never_queued = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PENDING,
        created_at__lt=stale_pending,
    )
    candidates = (failed | never_queued).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in candidates:
        process_webhook_event.delay(webhook.pk)
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": webhook.pk,
                "gateway_event_id": webhook.gateway_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING (worker crashed mid-task) to FAILED
    so retry_failed_webhooks picks them up.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": webhook.pk,
                "gateway_event_id": webhook.gateway_event_id,
            },
        )

    return {"reset_count": reset_count}


# =============================================================================
# Refund Retry Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def retry_failed_refunds(self, limit: int | None = RETRY_BATCH_SIZE) -> dict:
    """
    Periodic task: re-dispatch refunds that failed transiently.

    Scheduled every REFUND_RETRY_INTERVAL_MINUTES by the
    'Retry Failed Refunds' django-celery-beat entry.
    """
    from payments.services import RetryCoordinator

    summary = RetryCoordinator.retry_failed_refunds(limit=limit)
    return summary.to_dict()


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def retry_refunds_for_booking(self, booking_id: int) -> dict:
    """Retry a booking's queued refunds right after its payment is confirmed."""
    from payments.services import RetryCoordinator

    logger.info("Retrying refunds for booking", extra={"booking_id": booking_id})
    summary = RetryCoordinator.retry_failed_refunds(booking_id=booking_id)
    return summary.to_dict()


@shared_task
def cleanup_stuck_refunds() -> dict:
    """
    Return refunds stuck in PROCESSING (retry worker crashed after claiming
    them, before PayMongo answered) to the retry set.
    """
    from payments.services import RetryCoordinator

    released_count = RetryCoordinator.release_stale_claims(
        older_than_minutes=STUCK_PROCESSING_THRESHOLD_MINUTES
    )
    return {"released_count": released_count}
