"""
Celery tasks for notification delivery.

Tasks:
    send_payment_email: Deliver a payment/refund notification via email

Design:
    - Tasks receive plain strings, never model instances
    - SMTP and connection errors are transient and retried with backoff

Usage:
    from notifications.tasks import send_payment_email

    # Queued by notifications.hooks.PaymentNotifier
    send_payment_email.delay(
        recipient="owner@example.com",
        subject="Refund processed",
        body="...",
    )
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def send_payment_email(self, recipient: str, subject: str, body: str) -> bool:
    """
    Send a payment or refund notification email.

    Args:
        recipient: Customer email address
        subject: Email subject line
        body: Plain-text body

    Returns:
        True if the backend accepted the message
    """
    logger.info(
        "Sending payment email",
        extra={"recipient": recipient, "subject": subject, "attempt": self.request.retries},
    )
    sent = send_mail(
        subject,
        body,
        getattr(settings, "DEFAULT_FROM_EMAIL", None),
        [recipient],
        fail_silently=False,
    )
    return bool(sent)
