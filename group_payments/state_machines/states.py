"""
State enums for group payment models.

This module defines the state and choice enums used by group payment models
with django-fsm. These are Django TextChoices for database storage and admin
integration.

State Machines Overview:

SplitPayment (aggregate) States:
    pending → partially_paid → completed
    pending/partially_paid → completed            (every share paid)
    pending/partially_paid → completed_partial    (deadline, threshold met)
    pending/partially_paid → cancelled_insufficient (deadline, threshold missed)
    pending/partially_paid → cancelled            (organizer cancels)

IndividualPayment (participant share) States:
    pending → processing → paid → refunded
    pending → processing → failed → pending (retry)
    pending → expired (deadline passed without payment)

PaymentRefund States:
    processing → succeeded
    processing → failed
"""

from django.db import models


class SplitPaymentStatus(models.TextChoices):
    """
    States for the SplitPayment aggregate.

    Terminal states: COMPLETED, COMPLETED_PARTIAL, CANCELLED_INSUFFICIENT,
    CANCELLED. The status only ever moves towards a terminal state.
    """

    PENDING = "pending", "Pending"
    PARTIALLY_PAID = "partially_paid", "Partially Paid"
    COMPLETED = "completed", "Completed"
    COMPLETED_PARTIAL = "completed_partial", "Completed (Partial)"
    CANCELLED_INSUFFICIENT = "cancelled_insufficient", "Cancelled (Insufficient Funds)"
    CANCELLED = "cancelled", "Cancelled"

    @classmethod
    def open_states(cls) -> list[str]:
        """States in which the group is still collecting."""
        return [cls.PENDING, cls.PARTIALLY_PAID]

    @classmethod
    def terminal_states(cls) -> list[str]:
        return [
            cls.COMPLETED,
            cls.COMPLETED_PARTIAL,
            cls.CANCELLED_INSUFFICIENT,
            cls.CANCELLED,
        ]


class IndividualPaymentStatus(models.TextChoices):
    """
    States for one participant's share.

    Terminal states: PAID (unless refunded by a cascade), EXPIRED, REFUNDED.
    FAILED is recoverable through the retry edge back to PENDING.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    EXPIRED = "expired", "Expired"
    REFUNDED = "refunded", "Refunded"

    @classmethod
    def terminal_states(cls) -> list[str]:
        return [cls.PAID, cls.EXPIRED, cls.REFUNDED]


class SplitType(models.TextChoices):
    """How the total is divided between participants."""

    EQUAL = "equal", "Equal"
    CUSTOM = "custom", "Custom"


class FeeHandling(models.TextChoices):
    """
    Who carries the payment processor's fee.

    ORGANIZER: the organizer absorbs every fee
    PARTICIPANTS: each participant pays the fee on their own transaction
    SPLIT: the fee total is spread evenly across participants
    """

    ORGANIZER = "organizer", "Organizer"
    PARTICIPANTS = "participants", "Participants"
    SPLIT = "split", "Split"


class RefundStatus(models.TextChoices):
    """States for a single refund attempt."""

    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class ReminderStatus(models.TextChoices):
    """Outcome of a reminder dispatch."""

    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"


class EnforcementOutcome(models.TextChoices):
    """Result of deadline enforcement on a split payment."""

    COMPLETE_PARTIAL = "completed_partial", "Proceed With Partial Funds"
    CANCEL = "cancelled_insufficient", "Cancel And Refund"
