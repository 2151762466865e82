"""
Booking model.

A Booking is the parent of a split payment. Its ``payment_status`` mirrors
how much of the charge has been collected and its ``status`` records
whether the booking goes ahead.

Usage:
    booking.mark_paid()       # group collected enough, booking confirmed
    booking.cancel(reason)    # group cancelled, participants refunded
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class BookingStatus(models.TextChoices):
    """Lifecycle of a booking."""

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    CANCELLED = "cancelled", "Cancelled"


class BookingPaymentStatus(models.TextChoices):
    """How much of the booking charge has been collected."""

    UNPAID = "unpaid", "Unpaid"
    PARTIALLY_PAID = "partially_paid", "Partially Paid"
    PAID = "paid", "Paid"
    REFUNDED = "refunded", "Refunded"


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """
    A reservation whose cost is collected from a group.

    Fields:
        organizer: User who made the booking
        title: Short description shown in notifications
        total_amount_cents: Full booking charge
        currency: ISO currency code
        status: Booking lifecycle status
        payment_status: Collection status, updated by enforcement
        cancellation_reason: Why the booking was cancelled
    """

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
        help_text="User who made the booking",
    )
    title = models.CharField(
        max_length=200,
        help_text="Short description of what was booked",
    )
    total_amount_cents = models.PositiveBigIntegerField(
        help_text="Full booking charge in cents",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )
    status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=BookingPaymentStatus.choices,
        default=BookingPaymentStatus.UNPAID,
        db_index=True,
    )
    cancellation_reason = models.CharField(
        max_length=100,
        blank=True,
        default="",
    )
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        db_table = "bookings"

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status}, {self.payment_status})"

    def mark_partially_paid(self) -> None:
        """Record that some, but not all, of the charge has come in."""
        if self.payment_status == BookingPaymentStatus.UNPAID:
            self.payment_status = BookingPaymentStatus.PARTIALLY_PAID
            self.save(update_fields=["payment_status", "updated_at"])

    def mark_paid(self) -> None:
        """Confirm the booking once the group has paid (fully or enough)."""
        self.payment_status = BookingPaymentStatus.PAID
        self.status = BookingStatus.CONFIRMED
        self.confirmed_at = timezone.now()
        self.save(
            update_fields=["payment_status", "status", "confirmed_at", "updated_at"]
        )

    def cancel(self, reason: str = "", refunded: bool = False) -> None:
        """Cancel the booking, optionally recording that payments were refunded."""
        self.status = BookingStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_at = timezone.now()
        if refunded:
            self.payment_status = BookingPaymentStatus.REFUNDED
        self.save(
            update_fields=[
                "status",
                "cancellation_reason",
                "cancelled_at",
                "payment_status",
                "updated_at",
            ]
        )
