"""
Workers for background split payment processing.

This module contains Celery tasks for the deadline scheduler:
- run_deadline_check: Reminders, enforcement, refund retries, reconciliation
- enforce_split_payment: Enforces one split payment's deadline
- reconcile_processing_payments: Polls the gateway for stuck payments

Usage:
    from group_payments.workers import (
        enforce_split_payment,
        reconcile_processing_payments,
        run_deadline_check,
    )

    # Trigger a tick manually
    run_deadline_check.delay()
    enforce_split_payment.delay(str(split_payment_id))
"""

from group_payments.workers.deadline_scheduler import (
    DeadlineScheduler,
    build_scheduler,
    enforce_split_payment,
    reconcile_processing_payments,
    run_deadline_check,
)

__all__ = [
    "DeadlineScheduler",
    "build_scheduler",
    # Tasks
    "enforce_split_payment",
    "reconcile_processing_payments",
    "run_deadline_check",
]
