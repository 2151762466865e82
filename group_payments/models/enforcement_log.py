"""
EnforcementLog model: audit trail of deadline enforcement.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from group_payments.state_machines import EnforcementOutcome


class EnforcementLog(UUIDPrimaryKeyMixin, BaseModel):
    """
    What enforcement decided for a split payment, and on what numbers.

    Fields:
        split_payment: Aggregate that was enforced
        outcome: completed_partial or cancelled_insufficient
        amount_collected_cents: Total paid at decision time
        completion_percentage: Collected share of the total
        threshold: Threshold the decision was made against
        refunds_total / refunds_succeeded / refunds_failed: Cascade summary
        enforcement_token: Fencing token of the worker that applied it
    """

    split_payment = models.ForeignKey(
        "group_payments.SplitPayment",
        on_delete=models.PROTECT,
        related_name="enforcement_logs",
    )
    outcome = models.CharField(max_length=30, choices=EnforcementOutcome.choices)
    amount_collected_cents = models.PositiveBigIntegerField()
    completion_percentage = models.DecimalField(max_digits=6, decimal_places=2)
    threshold = models.DecimalField(max_digits=4, decimal_places=3)
    refunds_total = models.PositiveIntegerField(default=0)
    refunds_succeeded = models.PositiveIntegerField(default=0)
    refunds_failed = models.PositiveIntegerField(default=0)
    enforcement_token = models.UUIDField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Enforcement Log"
        verbose_name_plural = "Enforcement Logs"
        db_table = "payment_enforcement_logs"

    def __str__(self) -> str:
        return f"EnforcementLog({self.split_payment_id}, {self.outcome})"
