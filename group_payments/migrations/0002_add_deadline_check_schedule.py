"""
Add celery-beat schedule for the payment deadline check.

This migration creates the periodic task schedule for the
run_deadline_check task, which runs every hour to send payment
reminders, enforce passed deadlines, retry failed refunds and
reconcile payments stuck in processing.
"""

from django.db import migrations

TASK_NAME = "Group Payment Deadline Check"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the deadline check."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "group_payments.workers.deadline_scheduler.run_deadline_check",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Sends payment reminders and enforces deadlines on split "
                "payments whose deadline and grace period have passed."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("group_payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
