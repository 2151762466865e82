"""
Deadline scheduler for split payments.

One tick of the scheduler:
1. Sends due payment reminders (72h, 24h, 2h before the deadline by default)
2. Enforces split payments whose deadline and grace period have passed
3. Retries refunds that failed for recently cancelled split payments
4. Reconciles shares stuck in PROCESSING with the gateway

Every step works item by item: a failure on one share or group is recorded
in the TickReport and never stops the rest of the batch. Only a database
outage aborts the tick (PersistenceError).

Tasks:
- run_deadline_check: Periodic task (celery-beat, hourly) running one tick
- enforce_split_payment: Enforce the deadline of one split payment
- reconcile_processing_payments: Reconciliation step on its own

Usage:
    # Typically called via celery-beat schedule
    from group_payments.workers import run_deadline_check

    run_deadline_check.delay()

    # Or in-process
    report = build_scheduler().tick()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from celery import shared_task
from django.db import DatabaseError
from django.db.models import Case, F, IntegerField, Value, When
from django.utils import timezone

from group_payments.adapters import EmailNotifier, StripeGateway
from group_payments.adapters.notifier import format_amount
from group_payments.conf import SplitPaymentSettings
from group_payments.exceptions import LockAcquisitionError, PersistenceError
from group_payments.models import IndividualPayment, PaymentReminder, SplitPayment
from group_payments.services import ENFORCEMENT_SKIPPED, EnforcementPolicy, SplitPaymentLedger
from group_payments.state_machines import (
    IndividualPaymentStatus,
    ReminderStatus,
    SplitPaymentStatus,
)
from group_payments.types import ItemOutcome, TickReport

if TYPE_CHECKING:
    from datetime import datetime

    from core.services import ServiceResult
    from group_payments.adapters import Notifier

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum items per step per tick (prevents memory issues)
BATCH_SIZE = 100

PERSISTENCE_ERROR = PersistenceError.default_error_code


def reminder_type(offset_hours: int) -> str:
    return f"reminder_{offset_hours}h"


class DeadlineScheduler:
    """
    Runs reminders, enforcement, refund retries and reconciliation.

    Args:
        config: Engine configuration
        ledger: Ledger for payment links, refunds and reconciliation
        enforcement: Deadline enforcement policy
        notifier: Reminder delivery
    """

    def __init__(
        self,
        config: SplitPaymentSettings,
        ledger: SplitPaymentLedger,
        enforcement: EnforcementPolicy,
        notifier: Notifier,
    ):
        self.config = config
        self.ledger = ledger
        self.enforcement = enforcement
        self.notifier = notifier

    def tick(self, now: datetime | None = None, dry_run: bool = False) -> TickReport:
        """
        Run every step once.

        Args:
            now: Reference time (default: timezone.now())
            dry_run: Report what would be done without sending, enforcing,
                refunding or reconciling anything

        Returns:
            TickReport with per-item outcomes

        Raises:
            PersistenceError: The database could not be reached
        """
        now = now or timezone.now()
        report = TickReport()
        logger.info("Starting deadline check", extra={"now": now.isoformat(), "dry_run": dry_run})

        try:
            report.reminders = self.send_reminders(now, dry_run)
            report.enforcements = self.enforce_deadlines(now, dry_run)
            enforced_ids = {o.item_id for o in report.enforcements}
            report.refund_retries = self.retry_refunds(now, dry_run, skip_ids=enforced_ids)
            report.reconciliations = self.reconcile(now, dry_run)
        except DatabaseError as e:
            logger.error("Deadline check aborted: database unavailable", exc_info=True)
            raise PersistenceError(
                "Payment storage is unavailable",
                details={"error": str(e)},
            ) from e

        logger.info(
            "Deadline check complete",
            extra={"dry_run": dry_run, **report.to_dict()},
        )
        return report

    # =========================================================================
    # Step 1: Reminders
    # =========================================================================

    def crossed_offsets(self, deadline: datetime, now: datetime) -> list[int]:
        """Reminder offsets (hours) whose window has opened, widest first."""
        remaining = deadline - now
        return [
            hours
            for hours in self.config.reminder_schedule_hours
            if remaining <= timedelta(hours=hours)
        ]

    def owed_reminders(self, now: datetime):
        """Number of reminder windows each share's deadline has crossed, in SQL."""
        return sum(
            (
                Case(
                    When(payment_deadline__lte=now + timedelta(hours=hours), then=Value(1)),
                    default=Value(0),
                    output_field=IntegerField(),
                )
                for hours in self.config.reminder_schedule_hours
            ),
            Value(0, output_field=IntegerField()),
        )

    def send_reminders(self, now: datetime, dry_run: bool = False) -> list[ItemOutcome]:
        """
        Send at most one reminder per unpaid share.

        A share owed k reminders (k offsets crossed) with fewer than k sent
        gets one reminder for the narrowest window crossed, and its count
        jumps to k. Windows missed while the scheduler was down are not
        sent one by one.
        """
        if not self.config.reminder_schedule_hours:
            return []

        offsets = self.config.reminder_schedule_hours
        shares = (
            IndividualPayment.objects.filter(
                status=IndividualPaymentStatus.PENDING,
                payment_deadline__gt=now,
                payment_deadline__lte=now + timedelta(hours=offsets[0]),
                reminder_count__lt=len(offsets),
                split_payment__status__in=SplitPaymentStatus.open_states(),
            )
            .annotate(owed_reminders=self.owed_reminders(now))
            .filter(reminder_count__lt=F("owed_reminders"))
            .select_related("split_payment")
            .order_by("payment_deadline")[:BATCH_SIZE]
        )

        outcomes = []
        for share in shares:
            owed = share.owed_reminders
            offset = self.crossed_offsets(share.payment_deadline, now)[-1]
            if dry_run:
                outcomes.append(ItemOutcome(item_id=str(share.id), outcome="would_send"))
                continue
            outcomes.append(self._remind(share, offset, owed, now))
        return outcomes

    def _remind(self, share: IndividualPayment, offset: int, owed: int, now: datetime) -> ItemOutcome:
        kind = reminder_type(offset)
        hours_remaining = int((share.payment_deadline - now).total_seconds() // 3600)
        try:
            token_result = self.ledger.issue_payment_token(share.id, now=now)
            summary = {
                "reminder_type": kind,
                "amount": format_amount(share.charge_amount_cents, share.split_payment.currency),
                "deadline": share.payment_deadline,
                "hours_remaining": hours_remaining,
                "payment_link": (
                    self.ledger.payment_link(token_result.data) if token_result.success else None
                ),
            }
            self.notifier.send_reminder(share, summary)
        except DatabaseError:
            raise
        except Exception as e:
            PaymentReminder.objects.create(
                individual_payment=share,
                reminder_type=kind,
                offset_hours=offset,
                status=ReminderStatus.FAILED,
                sent_at=now,
                error=str(e),
            )
            logger.warning(
                "Reminder failed",
                extra={
                    "individual_payment_id": str(share.id),
                    "reminder_type": kind,
                    "error": str(e),
                },
            )
            return ItemOutcome(item_id=str(share.id), outcome="failed", error=str(e))

        # Conditional on the count read, so a concurrent tick can't lower it
        IndividualPayment.objects.filter(
            pk=share.pk,
            reminder_count=share.reminder_count,
        ).update(reminder_count=owed, last_reminder_sent=now)
        PaymentReminder.objects.create(
            individual_payment=share,
            reminder_type=kind,
            offset_hours=offset,
            status=ReminderStatus.SENT,
            sent_at=now,
        )
        logger.info(
            "Reminder sent",
            extra={
                "individual_payment_id": str(share.id),
                "reminder_type": kind,
                "hours_remaining": hours_remaining,
            },
        )
        return ItemOutcome(item_id=str(share.id), outcome="sent")

    # =========================================================================
    # Step 2: Enforcement
    # =========================================================================

    def enforce_deadlines(self, now: datetime, dry_run: bool = False) -> list[ItemOutcome]:
        outcomes = []
        for split_payment in self.enforcement.due_split_payments(now)[:BATCH_SIZE]:
            item_id = str(split_payment.id)
            if dry_run:
                stats = self.ledger.stats_for(split_payment)
                decision = self.enforcement.decide(split_payment, stats)
                outcomes.append(ItemOutcome(item_id=item_id, outcome="would_" + str(decision)))
                continue

            result = self.enforcement.enforce(split_payment.id, now)
            if result.success:
                outcomes.append(ItemOutcome(item_id=item_id, outcome=result.data.outcome))
            elif result.error_code == ENFORCEMENT_SKIPPED:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="skipped"))
            else:
                self._raise_if_persistence(result)
                outcomes.append(
                    ItemOutcome(item_id=item_id, outcome="failed", error=result.error)
                )
        return outcomes

    # =========================================================================
    # Step 3: Refund Retries
    # =========================================================================

    def retry_refunds(
        self,
        now: datetime,
        dry_run: bool = False,
        skip_ids: set[str] | None = None,
    ) -> list[ItemOutcome]:
        """
        Run the refund cascade again for cancelled groups still holding
        paid shares, within REFUND_PROCESSING_DAYS of cancellation.
        """
        skip_ids = skip_ids or set()
        window_start = now - timedelta(days=self.config.refund_processing_days)
        split_payments = (
            SplitPayment.objects.filter(
                status__in=[
                    SplitPaymentStatus.CANCELLED_INSUFFICIENT,
                    SplitPaymentStatus.CANCELLED,
                ],
                cancelled_at__gte=window_start,
                individual_payments__status=IndividualPaymentStatus.PAID,
            )
            .distinct()
            .order_by("cancelled_at")[:BATCH_SIZE]
        )

        outcomes = []
        for split_payment in split_payments:
            if str(split_payment.id) in skip_ids:
                continue
            if dry_run:
                outcomes.append(ItemOutcome(item_id=str(split_payment.id), outcome="would_refund"))
                continue
            try:
                summary = self.ledger.refund_cascade.run(split_payment)
            except LockAcquisitionError:
                outcomes.append(ItemOutcome(item_id=str(split_payment.id), outcome="skipped"))
                continue
            outcomes.extend(summary.outcomes)
        return outcomes

    # =========================================================================
    # Step 4: Reconciliation
    # =========================================================================

    def reconcile(self, now: datetime, dry_run: bool = False) -> list[ItemOutcome]:
        """
        Ask the gateway about shares stuck in PROCESSING.

        Settled intents are confirmed, declined or canceled ones are marked
        FAILED, and intents still settling are left for the next tick.
        Shares never polled come first, then the ones polled longest ago,
        so a backlog of unsettled intents can't hold the batch.
        """
        cutoff = now - timedelta(minutes=self.config.reconciliation_delay_minutes)
        shares = IndividualPayment.objects.filter(
            status=IndividualPaymentStatus.PROCESSING,
            processing_started_at__lte=cutoff,
        ).order_by(
            F("last_reconciled_at").asc(nulls_first=True),
            "processing_started_at",
        )[:BATCH_SIZE]

        outcomes = []
        for share in shares:
            item_id = str(share.id)
            if dry_run:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="would_reconcile"))
                continue

            IndividualPayment.objects.filter(pk=share.pk).update(last_reconciled_at=now)
            result = self.ledger.verify_and_confirm(share.id)
            if result.success:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="confirmed"))
                continue

            self._raise_if_persistence(result)
            status = (
                IndividualPayment.objects.filter(pk=share.pk)
                .values_list("status", flat=True)
                .first()
            )
            if status == IndividualPaymentStatus.FAILED:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="marked_failed"))
            elif status == IndividualPaymentStatus.PROCESSING and result.http_status == 503:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="unsettled"))
            else:
                outcomes.append(ItemOutcome(item_id=item_id, outcome="failed", error=result.error))
        return outcomes

    @staticmethod
    def _raise_if_persistence(result: ServiceResult) -> None:
        if result.error_code == PERSISTENCE_ERROR:
            raise PersistenceError(result.error or "Payment storage is unavailable")


def build_scheduler(config: SplitPaymentSettings | None = None) -> DeadlineScheduler:
    """Wire a scheduler with the configured gateway and notifier."""
    config = config or SplitPaymentSettings.from_settings()
    ledger = SplitPaymentLedger(
        config=config,
        gateway=StripeGateway(max_retries=config.gateway_max_retries),
    )
    notifier = EmailNotifier()
    enforcement = EnforcementPolicy(config, ledger, notifier=notifier)
    return DeadlineScheduler(config, ledger, enforcement, notifier)


# =============================================================================
# Periodic Task: Deadline Check
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(PersistenceError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def run_deadline_check(self) -> dict:
    """
    Run one scheduler tick.

    Returns:
        Dict with processed and failed counts per step

    Note:
        Idempotent: reminders are counted per share and enforcement is
        lease-guarded, so overlapping runs don't double-process.
    """
    report = build_scheduler().tick()
    return report.to_dict()


# =============================================================================
# Individual Enforcement Task
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(PersistenceError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def enforce_split_payment(self, split_payment_id: str) -> dict:
    """
    Enforce the deadline of one split payment.

    Returns:
        Dict with:
        - status: "enforced", "skipped", "not_found" or "failed"
        - split_payment_id: The split payment processed
        - outcome: Enforcement outcome when enforced
        - error / error_code: When failed
    """
    try:
        split_payment_uuid = UUID(str(split_payment_id))
    except ValueError:
        logger.error(f"Invalid split_payment_id format: {split_payment_id}")
        return {"status": "not_found", "split_payment_id": str(split_payment_id)}

    scheduler = build_scheduler()
    result = scheduler.enforcement.enforce(split_payment_uuid)

    if result.success:
        return {
            "status": "enforced",
            "split_payment_id": str(split_payment_uuid),
            "outcome": result.data.outcome,
        }
    if result.error_code == ENFORCEMENT_SKIPPED:
        return {"status": "skipped", "split_payment_id": str(split_payment_uuid)}

    DeadlineScheduler._raise_if_persistence(result)
    logger.warning(
        "Enforcement failed",
        extra={
            "split_payment_id": str(split_payment_uuid),
            "error": result.error,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "failed",
        "split_payment_id": str(split_payment_uuid),
        "error": result.error,
        "error_code": result.error_code,
    }


# =============================================================================
# Reconciliation Task
# =============================================================================


@shared_task(bind=True, acks_late=True)
def reconcile_processing_payments(self) -> dict:
    """
    Reconcile shares stuck in PROCESSING with the gateway.

    Returns:
        Dict with processed and failed counts
    """
    outcomes = build_scheduler().reconcile(timezone.now())
    failed = [o for o in outcomes if o.failed]
    for outcome in failed:
        logger.warning(
            "Reconciliation failed",
            extra={"individual_payment_id": outcome.item_id, "error": outcome.error},
        )
    return {"processed": len(outcomes), "failed": len(failed)}


__all__ = [
    "BATCH_SIZE",
    "DeadlineScheduler",
    "build_scheduler",
    "enforce_split_payment",
    "reconcile_processing_payments",
    "run_deadline_check",
]


