"""
Celery tasks for group payments.

The tasks are defined in group_payments.workers and re-exported here to
ensure Celery autodiscover finds them.

Usage:
    from group_payments.tasks import run_deadline_check

    # Typically scheduled via celery-beat (see migration 0002)
    run_deadline_check.delay()
"""

from group_payments.workers import (  # noqa: F401
    enforce_split_payment,
    reconcile_processing_payments,
    run_deadline_check,
)
