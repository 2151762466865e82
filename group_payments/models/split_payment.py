"""
SplitPayment and IndividualPayment models.

SplitPayment is the aggregate root for one group's obligation to cover a
booking. IndividualPayment is one participant's share of it. Both are
created together in one transaction and are never deleted; they only move
forward through their state machines.

Usage:
    from group_payments.models import IndividualPayment, SplitPayment

    split_payment = SplitPayment.objects.get(pk=split_payment_id)
    for share in split_payment.individual_payments.all():
        print(share.participant_id, share.status, share.amount_due_cents)

    # State transitions using django-fsm
    share.start_processing(intent_id="pi_123", client_secret="pi_123_secret")
    share.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedModelMixin
from core.models import BaseModel

from group_payments.state_machines import (
    FeeHandling,
    IndividualPaymentStatus,
    SplitPaymentStatus,
    SplitType,
)


class SplitPayment(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
    """
    One booking charge divided among a group.

    The status is derived from the shares (see group_payments.status) and
    only moves forward:

        PENDING -> PARTIALLY_PAID -> COMPLETED
        PENDING/PARTIALLY_PAID -> COMPLETED_PARTIAL (deadline, threshold met)
        PENDING/PARTIALLY_PAID -> CANCELLED_INSUFFICIENT (deadline, missed)
        PENDING/PARTIALLY_PAID -> CANCELLED (organizer cancels)

    Fields:
        booking: Booking being paid for
        organizer: User who set up the split
        payee_account_id: Gateway account that receives the funds
        total_amount_cents: Amount the shares must add up to
        split_type: equal or custom
        fee_handling: Who carries processor fees
        participant_count: Number of shares
        payment_deadline: When collection ends
        status: Aggregate status (managed by FSM)
        metadata: Free-form data, including the computed split snapshot
        enforcement_started_at / enforcement_token: Enforcement lease
        enforced_at: When deadline enforcement was applied
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="split_payments",
        help_text="Booking this split payment covers",
    )
    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="organized_split_payments",
        help_text="User who created the split",
    )
    payee_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway account receiving the funds (e.g. acct_xxx)",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    total_amount_cents = models.PositiveBigIntegerField(
        help_text="Total to collect, in cents",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )
    split_type = models.CharField(
        max_length=10,
        choices=SplitType.choices,
        default=SplitType.EQUAL,
    )
    fee_handling = models.CharField(
        max_length=20,
        choices=FeeHandling.choices,
        default=FeeHandling.ORGANIZER,
    )
    participant_count = models.PositiveIntegerField()

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    payment_deadline = models.DateTimeField(
        db_index=True,
        help_text="Participants must pay before this time",
    )
    status = FSMField(
        default=SplitPaymentStatus.PENDING,
        choices=SplitPaymentStatus.choices,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Aggregate status (managed by FSM)",
    )
    description = models.TextField(blank=True, default="")
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form data including the computed split snapshot",
    )

    # ==========================================================================
    # Enforcement Lease
    # ==========================================================================

    enforcement_started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a worker claimed deadline enforcement",
    )
    enforcement_token = models.UUIDField(
        null=True,
        blank=True,
        help_text="Fencing token of the worker holding the enforcement claim",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    completed_at = models.DateTimeField(null=True, blank=True)
    enforced_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Split Payment"
        verbose_name_plural = "Split Payments"
        db_table = "split_payments"
        indexes = [
            models.Index(
                fields=["status", "payment_deadline"],
                name="split_payment_status_dl_idx",
            ),
            models.Index(
                fields=["organizer", "status"],
                name="split_payment_org_status_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(total_amount_cents__gt=0),
                name="split_payment_total_positive",
            ),
            models.CheckConstraint(
                check=models.Q(participant_count__gt=0),
                name="split_payment_participants_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.total_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"SplitPayment({self.id}, {self.status}, {amount_display})"

    @property
    def is_open(self) -> bool:
        """Whether the group is still collecting payments."""
        return self.status in SplitPaymentStatus.open_states()

    def deadline_passed(self, now=None) -> bool:
        return (now or timezone.now()) >= self.payment_deadline

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SplitPaymentStatus.PENDING,
        target=SplitPaymentStatus.PARTIALLY_PAID,
    )
    def mark_partially_paid(self):
        """First share paid. Transition: PENDING -> PARTIALLY_PAID"""

    @transition(
        field=status,
        source=[SplitPaymentStatus.PENDING, SplitPaymentStatus.PARTIALLY_PAID],
        target=SplitPaymentStatus.COMPLETED,
    )
    def complete(self):
        """Every share paid. Transition: PENDING/PARTIALLY_PAID -> COMPLETED"""
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[SplitPaymentStatus.PENDING, SplitPaymentStatus.PARTIALLY_PAID],
        target=SplitPaymentStatus.COMPLETED_PARTIAL,
    )
    def complete_partial(self):
        """
        Proceed with what was collected.

        Transition: PENDING/PARTIALLY_PAID -> COMPLETED_PARTIAL

        Applied by enforcement when the deadline passed and the minimum
        threshold was met.
        """
        now = timezone.now()
        self.completed_at = now
        self.enforced_at = now

    @transition(
        field=status,
        source=[SplitPaymentStatus.PENDING, SplitPaymentStatus.PARTIALLY_PAID],
        target=SplitPaymentStatus.CANCELLED_INSUFFICIENT,
    )
    def cancel_insufficient(self):
        """
        Cancel for lack of funds.

        Transition: PENDING/PARTIALLY_PAID -> CANCELLED_INSUFFICIENT

        Applied by enforcement after the refund cascade has run.
        """
        now = timezone.now()
        self.cancelled_at = now
        self.enforced_at = now

    @transition(
        field=status,
        source=[SplitPaymentStatus.PENDING, SplitPaymentStatus.PARTIALLY_PAID],
        target=SplitPaymentStatus.CANCELLED,
    )
    def cancel(self):
        """Organizer cancellation. Transition: PENDING/PARTIALLY_PAID -> CANCELLED"""
        self.cancelled_at = timezone.now()

    # Derived status -> transition that reaches it
    TRANSITIONS = {
        SplitPaymentStatus.PARTIALLY_PAID.value: "mark_partially_paid",
        SplitPaymentStatus.COMPLETED.value: "complete",
        SplitPaymentStatus.COMPLETED_PARTIAL.value: "complete_partial",
        SplitPaymentStatus.CANCELLED_INSUFFICIENT.value: "cancel_insufficient",
        SplitPaymentStatus.CANCELLED.value: "cancel",
    }

    def move_to(self, target: str) -> bool:
        """
        Apply the transition that reaches ``target``.

        Returns:
            True if the status changed, False if it already was ``target``

        Raises:
            TransitionNotAllowed: If ``target`` can't be reached from here
        """
        if self.status == target:
            return False
        getattr(self, self.TRANSITIONS[str(target)])()
        return True


class IndividualPayment(UUIDPrimaryKeyMixin, VersionedModelMixin, BaseModel):
    """
    One participant's share of a split payment.

    State Flow:
        PENDING -> PROCESSING -> PAID -> REFUNDED
        PENDING -> PROCESSING -> FAILED -> PENDING (retry)
        PENDING -> EXPIRED

    Fields:
        split_payment: Owning aggregate
        participant: User who owes the share
        amount_due_cents: Share of the booking total
        fee_cents: Processor fee charged on top of the share
        amount_paid_cents: Amount collected (equal to amount_due once paid)
        status: Share status (managed by FSM)
        payment_deadline: Never later than the aggregate's deadline
        reminder_count / last_reminder_sent: Reminder bookkeeping
        gateway_intent_id / gateway_client_secret: Current payment intent
        gateway_confirmation_id: Charge the gateway confirmed
        gateway_refund_id: Refund issued by a cascade
        participant_email / participant_name: Contact details
        attempt_count: Number of payment attempts started
    """

    split_payment = models.ForeignKey(
        SplitPayment,
        on_delete=models.PROTECT,
        related_name="individual_payments",
    )
    participant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="individual_payments",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount_due_cents = models.PositiveBigIntegerField(
        help_text="Share of the booking total, in cents",
    )
    fee_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Processor fee charged on top of the share",
    )
    amount_paid_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount collected from the participant",
    )

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    status = FSMField(
        default=IndividualPaymentStatus.PENDING,
        choices=IndividualPaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Share status (managed by FSM)",
    )
    payment_deadline = models.DateTimeField(db_index=True)
    reminder_count = models.PositiveSmallIntegerField(default=0)
    last_reminder_sent = models.DateTimeField(null=True, blank=True)
    attempt_count = models.PositiveSmallIntegerField(default=0)

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    gateway_intent_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Current payment intent (pi_xxx)",
    )
    gateway_client_secret = models.CharField(max_length=255, blank=True, default="")
    gateway_confirmation_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Charge confirmed by the gateway (ch_xxx)",
    )
    gateway_refund_id = models.CharField(max_length=255, blank=True, default="")
    failure_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Participant Contact
    # ==========================================================================

    participant_email = models.EmailField()
    participant_name = models.CharField(max_length=200, blank=True, default="")

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    processing_started_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    last_reconciled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time reconciliation asked the gateway about this share",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Individual Payment"
        verbose_name_plural = "Individual Payments"
        db_table = "individual_payments"
        indexes = [
            models.Index(
                fields=["status", "payment_deadline"],
                name="individual_pay_status_dl_idx",
            ),
            models.Index(
                fields=["participant", "status"],
                name="individual_pay_part_stat_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["split_payment", "participant"],
                name="individual_payment_unique_participant",
            ),
            models.CheckConstraint(
                check=models.Q(amount_paid_cents__lte=models.F("amount_due_cents")),
                name="individual_payment_paid_within_due",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_due_cents / 100:.2f}"
        return f"IndividualPayment({self.id}, {self.status}, {amount_display})"

    @property
    def charge_amount_cents(self) -> int:
        """What the participant is charged: their share plus any fee."""
        return self.amount_due_cents + self.fee_cents

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=IndividualPaymentStatus.PENDING,
        target=IndividualPaymentStatus.PROCESSING,
    )
    def start_processing(self, intent_id: str, client_secret: str | None = None):
        """
        Payment intent created at the gateway.

        Transition: PENDING -> PROCESSING
        """
        self.gateway_intent_id = intent_id
        self.gateway_client_secret = client_secret or ""
        self.processing_started_at = timezone.now()

    @transition(
        field=status,
        source=IndividualPaymentStatus.PROCESSING,
        target=IndividualPaymentStatus.PAID,
    )
    def mark_paid(self, confirmation_id: str):
        """
        Gateway confirmed the charge.

        Transition: PROCESSING -> PAID
        """
        self.gateway_confirmation_id = confirmation_id
        self.amount_paid_cents = self.amount_due_cents
        self.paid_at = timezone.now()
        self.failure_reason = ""

    @transition(
        field=status,
        source=IndividualPaymentStatus.PROCESSING,
        target=IndividualPaymentStatus.FAILED,
    )
    def mark_failed(self, reason: str | None = None):
        """
        Gateway reported the charge failed.

        Transition: PROCESSING -> FAILED

        Only applied on positive confirmation of failure, never on timeout.
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=IndividualPaymentStatus.FAILED,
        target=IndividualPaymentStatus.PENDING,
    )
    def reset_for_retry(self):
        """
        Allow another attempt after a failure.

        Transition: FAILED -> PENDING

        The old intent is dropped so the next attempt creates a new one.
        """
        self.gateway_intent_id = ""
        self.gateway_client_secret = ""
        self.failed_at = None

    @transition(
        field=status,
        source=IndividualPaymentStatus.PENDING,
        target=IndividualPaymentStatus.EXPIRED,
    )
    def expire(self):
        """Deadline passed without payment. Transition: PENDING -> EXPIRED"""
        self.expired_at = timezone.now()

    @transition(
        field=status,
        source=IndividualPaymentStatus.PAID,
        target=IndividualPaymentStatus.REFUNDED,
    )
    def mark_refunded(self, refund_id: str):
        """
        Money returned by a refund cascade.

        Transition: PAID -> REFUNDED

        amount_paid_cents is kept as a record of what was collected; stats
        only count shares that are currently paid.
        """
        self.gateway_refund_id = refund_id
        self.refunded_at = timezone.now()
