"""Django app configuration for notifications."""

from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    """Payment and refund notifications. No models of its own."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "notifications"
    verbose_name = "Payment Notifications"
