"""
Celery configuration for the payment and refund engine.

Celery runs:
- PayMongo webhook processing (payments.tasks.process_webhook_event)
- Periodic refund retries and webhook maintenance (celery-beat)
- Notification email delivery (notifications.tasks)

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
