"""
PaymentRefund model: one row per refund attempt on a share.

A refund cascade writes a row per paid share before calling the gateway and
records the outcome on it afterwards, so a failed refund leaves a trace
even though the share itself stays paid.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from group_payments.state_machines import RefundStatus

# Reason recorded when a group is cancelled for missing its threshold
INSUFFICIENT_GROUP_PAYMENTS = "insufficient_group_payments"


class PaymentRefund(UUIDPrimaryKeyMixin, BaseModel):
    """
    A refund attempt for one share.

    Fields:
        individual_payment: Share being refunded
        amount_cents: Amount refunded
        reason: Why the group was refunded
        status: processing, succeeded or failed
        attempt: Attempt number for this share (1-based)
        gateway_refund_id: Refund id at the gateway (re_xxx)
        error: Gateway error when the attempt failed
        processed_at: When the outcome was recorded
    """

    individual_payment = models.ForeignKey(
        "group_payments.IndividualPayment",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    amount_cents = models.PositiveBigIntegerField()
    reason = models.CharField(max_length=50, default=INSUFFICIENT_GROUP_PAYMENTS)
    status = models.CharField(
        max_length=12,
        choices=RefundStatus.choices,
        default=RefundStatus.PROCESSING,
        db_index=True,
    )
    attempt = models.PositiveSmallIntegerField(default=1)
    gateway_refund_id = models.CharField(max_length=255, blank=True, default="")
    error = models.TextField(blank=True, default="")
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Refund"
        verbose_name_plural = "Payment Refunds"
        db_table = "payment_refunds"
        constraints = [
            models.UniqueConstraint(
                fields=["individual_payment", "attempt"],
                name="payment_refund_unique_attempt",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentRefund({self.individual_payment_id}, #{self.attempt}, {self.status})"

    def mark_succeeded(self, gateway_refund_id: str) -> None:
        self.status = RefundStatus.SUCCEEDED
        self.gateway_refund_id = gateway_refund_id
        self.processed_at = timezone.now()
        self.save(update_fields=["status", "gateway_refund_id", "processed_at", "updated_at"])

    def mark_failed(self, error: str) -> None:
        self.status = RefundStatus.FAILED
        self.error = error
        self.processed_at = timezone.now()
        self.save(update_fields=["status", "error", "processed_at", "updated_at"])
