"""
WebhookEvent model for PayMongo webhook event tracking.

Stores every webhook event received from PayMongo for idempotent
processing and audit trails. The unique gateway_event_id constraint
ensures duplicate deliveries are detected and handled correctly.

Usage:
    from payments.models import WebhookEvent
    from payments.state_machines import WebhookEventStatus

    event, created = WebhookEvent.objects.get_or_create(
        gateway_event_id="evt_1234567890",
        defaults={
            "event_type": "source.chargeable",
            "payload": webhook_payload,
        }
    )

    if not created and event.status == WebhookEventStatus.PROCESSED:
        # Duplicate delivery - already processed
        return HttpResponse(status=200)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel

from payments.state_machines import WebhookEventStatus


class WebhookEvent(BaseModel):
    """
    Tracks PayMongo webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, verify Paymongo-Signature
        2. Insert/get WebhookEvent with gateway_event_id
        3. If exists and PROCESSED -> return 200 (duplicate)
        4. Queue process_webhook_event task
        5. Task sets PROCESSING, dispatches to handler
        6. Task sets PROCESSED or FAILED
        7. FAILED events are picked up by retry_failed_webhooks

    Fields:
        gateway_event_id: Unique PayMongo event id (evt_xxx)
        event_type: PayMongo event type (e.g. 'payment.paid')
        payload: Full JSON payload from PayMongo
        status: Processing status
        processed_at: When event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    gateway_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="PayMongo Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="PayMongo event type (e.g., 'source.chargeable')",
    )

    payload = models.JSONField(
        help_text="Full webhook payload from PayMongo (JSON)",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(
                fields=["status", "retry_count"], name="payments_we_status_retry_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.gateway_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
