"""
Group payments app configuration.

This app splits a booking's cost between participants and enforces the
payment deadline:
- Split calculation and fee allocation
- Per-participant payment ledger
- Reminders and deadline enforcement
- Refund cascade for cancelled groups
"""

from django.apps import AppConfig


class GroupPaymentsConfig(AppConfig):
    """Configuration for the group payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "group_payments"
    verbose_name = "Group Payments"
