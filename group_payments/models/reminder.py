"""
PaymentReminder model: one row per reminder dispatch attempt.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from group_payments.state_machines import ReminderStatus


class PaymentReminder(UUIDPrimaryKeyMixin, BaseModel):
    """
    Log of a reminder sent (or attempted) to a participant.

    Fields:
        individual_payment: Share the reminder was about
        reminder_type: reminder_72h, reminder_24h, reminder_2h, ...
        offset_hours: Schedule offset that triggered the reminder
        status: sent or failed
        sent_at: Dispatch time
        error: Notifier error when the dispatch failed
    """

    individual_payment = models.ForeignKey(
        "group_payments.IndividualPayment",
        on_delete=models.CASCADE,
        related_name="reminders",
    )
    reminder_type = models.CharField(max_length=30)
    offset_hours = models.PositiveIntegerField()
    status = models.CharField(
        max_length=10,
        choices=ReminderStatus.choices,
        db_index=True,
    )
    sent_at = models.DateTimeField()
    error = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-sent_at"]
        verbose_name = "Payment Reminder"
        verbose_name_plural = "Payment Reminders"
        db_table = "payment_reminders"

    def __str__(self) -> str:
        return f"PaymentReminder({self.individual_payment_id}, {self.reminder_type}, {self.status})"
