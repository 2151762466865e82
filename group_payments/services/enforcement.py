"""
Deadline enforcement for split payments.

When a group's payment deadline (plus the grace period) passes, the group
either goes ahead with what it collected or is cancelled and refunded:

    collected >= MINIMUM_PAYMENT_THRESHOLD of the total -> COMPLETED_PARTIAL
    otherwise                                           -> CANCELLED_INSUFFICIENT

Enforcement runs at most once per group even with several schedulers: a
worker first claims a lease on the aggregate row with a conditional update,
and only the holder of the current lease token may apply the outcome.

Usage:
    from group_payments.services import EnforcementPolicy

    policy = EnforcementPolicy(config, ledger, notifier=EmailNotifier())
    result = policy.enforce(split_payment.id)
    if result.success:
        print(result.data.outcome)
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import DatabaseError
from django.db.models import Q
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService, ServiceResult

from group_payments.adapters.notifier import format_amount
from group_payments.exceptions import ConcurrencyConflict
from group_payments.models import (
    INSUFFICIENT_GROUP_PAYMENTS,
    EnforcementLog,
    SplitPayment,
)
from group_payments.services.ledger_service import apply_transition
from group_payments.state_machines import EnforcementOutcome, SplitPaymentStatus
from group_payments.types import EnforcementResult

if TYPE_CHECKING:
    from datetime import datetime

    from django.db.models import QuerySet

    from group_payments.adapters import Notifier
    from group_payments.conf import SplitPaymentSettings
    from group_payments.services.ledger_service import SplitPaymentLedger
    from group_payments.types import CascadeSummary, PaymentStats

# error_code of a result where another worker (or an earlier run) owns the group
ENFORCEMENT_SKIPPED = "ENFORCEMENT_SKIPPED"


class EnforcementPolicy(BaseService):
    """
    Decides and applies the outcome of a passed deadline.

    Args:
        config: Engine configuration
        ledger: Ledger used for share expiry and stats
        notifier: Organizer notices (optional)
    """

    def __init__(
        self,
        config: SplitPaymentSettings,
        ledger: SplitPaymentLedger,
        notifier: Notifier | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.refund_cascade = ledger.refund_cascade
        self.notifier = notifier

    # =========================================================================
    # Decision
    # =========================================================================

    @staticmethod
    def decide(split_payment: SplitPayment, stats: PaymentStats) -> str:
        """Outcome for a group whose deadline passed. Pure and total."""
        if stats.meets_minimum_threshold:
            return EnforcementOutcome.COMPLETE_PARTIAL
        return EnforcementOutcome.CANCEL

    def due_split_payments(self, now: datetime | None = None) -> QuerySet[SplitPayment]:
        """Open split payments whose deadline and grace period have passed."""
        now = now or timezone.now()
        return SplitPayment.objects.filter(
            status__in=SplitPaymentStatus.open_states(),
            payment_deadline__lte=now - timedelta(minutes=self.config.enforcement_grace_minutes),
        ).order_by("payment_deadline")

    # =========================================================================
    # Application
    # =========================================================================

    def enforce(
        self,
        split_payment_id: uuid.UUID | str,
        now: datetime | None = None,
    ) -> ServiceResult[EnforcementResult]:
        """
        Enforce the deadline of one split payment.

        Steps:
            1. Claim the enforcement lease (skipped if someone else holds it,
               the group is closed or not yet due)
            2. Expire unpaid shares and decide from the stats
            3. Proceed: COMPLETED_PARTIAL and confirm the booking
               Cancel: refund paid shares, CANCELLED_INSUFFICIENT and cancel
               the booking
            4. Write an EnforcementLog and notify the organizer

        Returns:
            ServiceResult containing an EnforcementResult, or a failure with
            error_code ENFORCEMENT_SKIPPED when there was nothing to do
        """
        now = now or timezone.now()
        logger = self.get_logger()
        token = uuid.uuid4()

        try:
            if not self._claim(split_payment_id, token, now):
                return ServiceResult.failure(
                    "Split payment is not due for enforcement or is already being enforced",
                    error_code=ENFORCEMENT_SKIPPED,
                    http_status=409,
                )

            with self.atomic():
                split_payment = self._locked(split_payment_id, token)
                expired = self.ledger.expire_pending(split_payment)
                stats = self.ledger.stats_for(split_payment)
                outcome = self.decide(split_payment, stats)

                logger.info(
                    "Enforcing payment deadline",
                    extra={
                        "split_payment_id": str(split_payment.id),
                        "outcome": outcome,
                        "expired_shares": expired,
                        "completion_percentage": stats.completion_percentage,
                    },
                )

                if outcome == EnforcementOutcome.COMPLETE_PARTIAL:
                    self._complete_partial(split_payment, stats, token)

            refund_summary = None
            if outcome == EnforcementOutcome.CANCEL:
                refund_summary = self.refund_cascade.run(
                    split_payment, reason=INSUFFICIENT_GROUP_PAYMENTS
                )
                with self.atomic():
                    split_payment = self._locked(split_payment_id, token)
                    self._cancel(split_payment, stats, refund_summary, token)
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.ledger.persistence_failure(e, "enforce")

        result = EnforcementResult(
            split_payment_id=str(split_payment.id),
            outcome=str(outcome),
            stats=stats,
            refund_summary=refund_summary,
        )
        self._notify(split_payment, result)
        return ServiceResult.success(result)

    def _claim(self, split_payment_id, token: uuid.UUID, now: datetime) -> bool:
        """Take the enforcement lease; True if this worker now holds it."""
        lease_cutoff = now - timedelta(seconds=self.config.enforcement_lease_seconds)
        claimed = (
            self.due_split_payments(now)
            .filter(pk=split_payment_id)
            .filter(
                Q(enforcement_started_at__isnull=True)
                | Q(enforcement_started_at__lt=lease_cutoff)
            )
            .update(enforcement_started_at=now, enforcement_token=token)
        )
        return claimed == 1

    @staticmethod
    def _locked(split_payment_id, token: uuid.UUID) -> SplitPayment:
        """Lock the aggregate row, checking this worker still holds the lease."""
        split_payment = (
            SplitPayment.objects.select_for_update()
            .select_related("booking", "organizer")
            .get(pk=split_payment_id)
        )
        if split_payment.enforcement_token != token:
            raise ConcurrencyConflict(
                "Enforcement lease was taken over by another worker",
                details={"split_payment_id": str(split_payment_id)},
            )
        return split_payment

    def _complete_partial(self, split_payment: SplitPayment, stats: PaymentStats, token) -> None:
        apply_transition(split_payment, "complete_partial")
        split_payment.save()
        split_payment.booking.mark_paid()
        self._log(split_payment, EnforcementOutcome.COMPLETE_PARTIAL, stats, None, token)

    def _cancel(
        self,
        split_payment: SplitPayment,
        stats: PaymentStats,
        refund_summary: CascadeSummary,
        token,
    ) -> None:
        apply_transition(split_payment, "cancel_insufficient")
        split_payment.save()
        split_payment.booking.cancel(
            reason=INSUFFICIENT_GROUP_PAYMENTS,
            refunded=refund_summary.succeeded > 0,
        )
        self._log(split_payment, EnforcementOutcome.CANCEL, stats, refund_summary, token)

    def _log(self, split_payment, outcome, stats, refund_summary, token) -> EnforcementLog:
        summary = refund_summary.to_dict() if refund_summary else {}
        notes = ""
        if summary.get("failed"):
            notes = "Refund failed for: " + ", ".join(summary["failed_ids"])
        return EnforcementLog.objects.create(
            split_payment=split_payment,
            outcome=outcome,
            amount_collected_cents=stats.total_paid,
            completion_percentage=Decimal(str(round(stats.completion_percentage, 2))),
            threshold=self.config.minimum_payment_threshold,
            refunds_total=summary.get("total", 0),
            refunds_succeeded=summary.get("succeeded", 0),
            refunds_failed=summary.get("failed", 0),
            enforcement_token=token,
            notes=notes,
        )

    def _notify(self, split_payment: SplitPayment, result: EnforcementResult) -> None:
        if self.notifier is None:
            return
        refunds = result.refund_summary
        summary = {
            "split_payment_id": result.split_payment_id,
            "outcome": result.outcome,
            "amount_collected": format_amount(result.stats.total_paid, split_payment.currency),
            "completion_percentage": result.stats.completion_percentage,
            "refunds_total": refunds.total if refunds else 0,
            "refunds_succeeded": refunds.succeeded if refunds else 0,
            "refunds_failed": refunds.failed if refunds else 0,
        }
        try:
            self.notifier.send_enforcement_notice(split_payment.organizer, summary)
        except Exception:
            # The outcome is already committed; a lost notice is only logged
            self.get_logger().exception(
                "Failed to send enforcement notice",
                extra={"split_payment_id": result.split_payment_id},
            )
