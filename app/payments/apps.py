"""
Payments app configuration.

This app provides the payment and refund engine:
- PayMongo gateway client (GCash sources, payment intents, refunds)
- Payment and refund ledgers with an audit trail
- Payment/refund orchestrators and the refund retry coordinator
- PayMongo webhook handling
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
