"""
Webhook handling for payment events from PayMongo.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import paymongo_webhook

    urlpatterns = [
        path("webhooks/paymongo/", paymongo_webhook, name="paymongo_webhook"),
    ]
"""
