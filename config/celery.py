"""
Celery configuration for the group payments backend.

Celery runs the background side of the payment engine:
- The periodic deadline check (reminders, enforcement, refund retries)
- Per-aggregate enforcement tasks
- Reconciliation of payments stuck in processing

Redis is used as both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps; the periodic schedule is
stored in the database by django-celery-beat.

Usage:
    # Trigger a deadline check manually
    from group_payments.workers import run_deadline_check

    run_deadline_check.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks.py in every installed app
app.autodiscover_tasks()
