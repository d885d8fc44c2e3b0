"""
Celery configuration for the payments service.

Background work handled here:
- Processing stored payment-gateway events (webhook fan-out)
- Retrying gateway events that failed processing
- Moving pending settlement requests into processing
- Filing nightly NORMAL settlement requests for the previous day

Redis is both the message broker and result backend. Periodic schedules are
stored in the database (django-celery-beat); the payments app seeds them in a
data migration.

Usage:
    from payments.tasks import process_gateway_event

    process_gateway_event.delay(str(event.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for tasks.py in each installed app; workers/ modules are listed
# explicitly because they are not named tasks.py.
app.autodiscover_tasks()
app.autodiscover_tasks(["payments.workers"], related_name="settlement_executor")
