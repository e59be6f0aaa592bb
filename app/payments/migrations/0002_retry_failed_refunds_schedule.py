"""
Add celery-beat schedule for retrying failed refunds.

Creates the periodic task for payments.tasks.retry_failed_refunds, which
runs every REFUND_RETRY_INTERVAL_MINUTES (default 15) and re-dispatches refunds flagged retryable.
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Retry Failed Refunds"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for retrying failed refunds."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=getattr(settings, "REFUND_RETRY_INTERVAL_MINUTES", 15),
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payments.tasks.retry_failed_refunds",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Re-dispatches PayMongo refunds that failed with a transient "
                "error, up to REFUND_MAX_RETRIES attempts."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")
    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
