"""
Add celery-beat schedules for settlement and gateway event workers.

Creates three periodic tasks:
- Nightly NORMAL settlement filing for the previous day (00:30)
- Pickup of PENDING settlement requests every 5 minutes
- Retry of failed or stuck gateway events every 10 minutes
"""

from django.db import migrations

DAILY_SETTLEMENTS = "Schedule Daily Settlements"
PENDING_SETTLEMENTS = "Process Pending Settlements"
GATEWAY_EVENT_RETRY = "Retry Failed Gateway Events"


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the settlement workers."""
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # Nightly at 00:30 in the beat scheduler's timezone
    nightly, _ = CrontabSchedule.objects.get_or_create(
        minute="30",
        hour="0",
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
    )
    PeriodicTask.objects.get_or_create(
        name=DAILY_SETTLEMENTS,
        defaults={
            "task": "payments.workers.settlement_executor.schedule_daily_settlements",
            "crontab": nightly,
            "enabled": True,
            "description": (
                "Files NORMAL settlement requests for every vendor with "
                "pending revenue on the previous day."
            ),
        },
    )

    every_five, _ = IntervalSchedule.objects.get_or_create(every=5, period="minutes")
    PeriodicTask.objects.get_or_create(
        name=PENDING_SETTLEMENTS,
        defaults={
            "task": "payments.workers.settlement_executor.process_pending_settlements",
            "interval": every_five,
            "enabled": True,
            "description": "Moves PENDING settlement requests to PROCESSING.",
        },
    )

    every_ten, _ = IntervalSchedule.objects.get_or_create(every=10, period="minutes")
    PeriodicTask.objects.get_or_create(
        name=GATEWAY_EVENT_RETRY,
        defaults={
            "task": "payments.tasks.retry_failed_gateway_events",
            "interval": every_ten,
            "enabled": True,
            "description": "Re-queues failed and stuck gateway events.",
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[DAILY_SETTLEMENTS, PENDING_SETTLEMENTS, GATEWAY_EVENT_RETRY],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
