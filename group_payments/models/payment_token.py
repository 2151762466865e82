"""
PaymentToken model for unauthenticated payment links.

A token lets a participant open ``/pay/<token>`` and pay their share without
logging in. Tokens are single-use and stop working when they expire or when
the share they point at can no longer be paid.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from group_payments.state_machines import IndividualPaymentStatus


class PaymentToken(UUIDPrimaryKeyMixin, BaseModel):
    """
    Single-use, expiring reference to one share.

    Fields:
        token: Random URL-safe string used in the payment link
        individual_payment: Share the link pays for
        expires_at: Link stops working after this time
        used_at: Set when the link was consumed
    """

    token = models.CharField(max_length=128, unique=True)
    individual_payment = models.ForeignKey(
        "group_payments.IndividualPayment",
        on_delete=models.CASCADE,
        related_name="payment_tokens",
    )
    expires_at = models.DateTimeField(db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Token"
        verbose_name_plural = "Payment Tokens"
        db_table = "payment_tokens"

    def __str__(self) -> str:
        return f"PaymentToken({self.individual_payment_id}, expires {self.expires_at:%Y-%m-%d %H:%M})"

    def invalid_reason(self, now=None) -> str | None:
        """Why the token can't be used, or None if it can."""
        now = now or timezone.now()
        if self.used_at is not None:
            return "Payment link has already been used"
        if now >= self.expires_at:
            return "Payment link has expired"
        if self.individual_payment.status in IndividualPaymentStatus.terminal_states():
            return "Payment has already been processed"
        return None

    def is_valid(self, now=None) -> bool:
        return self.invalid_reason(now) is None
