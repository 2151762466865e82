"""
Tests for EnforcementPolicy.

Covers the threshold decision, the at-most-once lease, the refund cascade
on cancellation and the organizer notice.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from bookings.models import Booking, BookingPaymentStatus, BookingStatus
from group_payments.adapters import RefundResult
from group_payments.exceptions import GatewayPermanentError
from group_payments.models import EnforcementLog, IndividualPayment, SplitPayment
from group_payments.services import ENFORCEMENT_SKIPPED, EnforcementPolicy
from group_payments.state_machines import (
    EnforcementOutcome,
    IndividualPaymentStatus,
    SplitPaymentStatus,
)
from group_payments.tests.factories import (
    IndividualPaymentFactory,
    PaidIndividualPaymentFactory,
    SplitPaymentFactory,
)


def reload(instance):
    return type(instance).objects.get(pk=instance.pk)


@pytest.fixture
def now():
    return timezone.now()


@pytest.fixture
def overdue(booking, participants, now):
    """A split payment whose deadline passed two hours ago, grace included."""
    split_payment = SplitPaymentFactory(
        booking=booking,
        payment_deadline=now - timedelta(hours=2),
    )
    return split_payment


def add_shares(split_payment, participants, paid):
    shares = []
    for index, user in enumerate(participants):
        factory = PaidIndividualPaymentFactory if index < paid else IndividualPaymentFactory
        shares.append(factory(split_payment=split_payment, participant=user))
    return shares


class TestDecide:
    @pytest.mark.django_db
    def test_threshold_met_proceeds(self, ledger, overdue, participants):
        add_shares(overdue, participants, paid=4)

        stats = ledger.stats_for(overdue)

        assert EnforcementPolicy.decide(overdue, stats) == EnforcementOutcome.COMPLETE_PARTIAL

    @pytest.mark.django_db
    def test_threshold_missed_cancels(self, ledger, overdue, participants):
        add_shares(overdue, participants, paid=3)

        stats = ledger.stats_for(overdue)

        # 75% collected, 80% required
        assert EnforcementPolicy.decide(overdue, stats) == EnforcementOutcome.CANCEL


@pytest.mark.django_db
class TestEnforce:
    def test_proceeds_with_partial_funds(self, config, ledger, notifier, overdue, participants, booking, now):
        config = config.with_overrides(minimum_payment_threshold=Decimal("0.5"))
        policy = EnforcementPolicy(config, ledger, notifier=notifier)
        add_shares(overdue, participants, paid=3)

        result = policy.enforce(overdue.id, now=now)

        assert result.success
        assert result.data.outcome == EnforcementOutcome.COMPLETE_PARTIAL
        split_payment = reload(overdue)
        assert split_payment.status == SplitPaymentStatus.COMPLETED_PARTIAL
        assert split_payment.enforced_at is not None
        assert IndividualPayment.objects.filter(
            split_payment=overdue, status=IndividualPaymentStatus.EXPIRED
        ).count() == 1
        booking = Booking.objects.get(pk=booking.pk)
        assert booking.status == BookingStatus.CONFIRMED
        log = EnforcementLog.objects.get(split_payment=overdue)
        assert log.amount_collected_cents == 7500
        assert log.completion_percentage == Decimal("75.00")
        assert log.refunds_total == 0

    def test_cancels_and_refunds_below_threshold(
        self, enforcement, gateway, overdue, participants, booking, now
    ):
        shares = add_shares(overdue, participants, paid=2)

        result = enforcement.enforce(overdue.id, now=now)

        assert result.success
        assert result.data.outcome == EnforcementOutcome.CANCEL
        assert result.data.refund_summary.succeeded == 2
        assert reload(overdue).status == SplitPaymentStatus.CANCELLED_INSUFFICIENT
        assert [reload(s).status for s in shares] == [
            IndividualPaymentStatus.REFUNDED,
            IndividualPaymentStatus.REFUNDED,
            IndividualPaymentStatus.EXPIRED,
            IndividualPaymentStatus.EXPIRED,
        ]
        booking = Booking.objects.get(pk=booking.pk)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.payment_status == BookingPaymentStatus.REFUNDED
        assert gateway.refund.call_count == 2
        log = EnforcementLog.objects.get(split_payment=overdue)
        assert log.refunds_succeeded == 2
        assert log.notes == ""

    def test_nobody_paid_cancels_without_refunds(self, enforcement, gateway, overdue, participants, now):
        add_shares(overdue, participants, paid=0)

        result = enforcement.enforce(overdue.id, now=now)

        assert result.data.outcome == EnforcementOutcome.CANCEL
        assert result.data.refund_summary.total == 0
        gateway.refund.assert_not_called()

    def test_failed_refund_is_reported_not_fatal(
        self, enforcement, gateway, overdue, participants, now
    ):
        shares = add_shares(overdue, participants, paid=2)
        gateway.refund.side_effect = [
            GatewayPermanentError("No such charge", gateway_code="resource_missing"),
            RefundResult(
                id="re_ok",
                amount_cents=2500,
                currency="usd",
                status="succeeded",
                confirmation_id="ch_ok",
            ),
        ]

        result = enforcement.enforce(overdue.id, now=now)

        summary = result.data.refund_summary
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert reload(overdue).status == SplitPaymentStatus.CANCELLED_INSUFFICIENT
        assert reload(shares[0]).status == IndividualPaymentStatus.PAID
        log = EnforcementLog.objects.get(split_payment=overdue)
        assert log.refunds_failed == 1
        assert str(shares[0].id) in log.notes

    def test_runs_only_once(self, enforcement, overdue, participants, now):
        add_shares(overdue, participants, paid=1)

        first = enforcement.enforce(overdue.id, now=now)
        second = enforcement.enforce(overdue.id, now=now)

        assert first.success
        assert second.error_code == ENFORCEMENT_SKIPPED
        assert EnforcementLog.objects.filter(split_payment=overdue).count() == 1

    def test_live_lease_blocks_other_workers(self, enforcement, overdue, participants, now):
        add_shares(overdue, participants, paid=1)
        SplitPayment.objects.filter(pk=overdue.pk).update(enforcement_started_at=now)

        result = enforcement.enforce(overdue.id, now=now)

        assert result.error_code == ENFORCEMENT_SKIPPED
        assert reload(overdue).status == SplitPaymentStatus.PENDING

    def test_stale_lease_is_taken_over(self, enforcement, overdue, participants, now):
        add_shares(overdue, participants, paid=1)
        SplitPayment.objects.filter(pk=overdue.pk).update(
            enforcement_started_at=now - timedelta(hours=1)
        )

        result = enforcement.enforce(overdue.id, now=now)

        assert result.success

    def test_grace_period_not_over(self, enforcement, booking, participants, now):
        split_payment = SplitPaymentFactory(
            booking=booking,
            payment_deadline=now - timedelta(minutes=10),
        )
        add_shares(split_payment, participants, paid=0)

        result = enforcement.enforce(split_payment.id, now=now)

        assert result.error_code == ENFORCEMENT_SKIPPED
        assert result.http_status == 409

    def test_completed_group_is_left_alone(self, enforcement, booking, now):
        split_payment = SplitPaymentFactory(
            booking=booking,
            payment_deadline=now - timedelta(hours=2),
            status=SplitPaymentStatus.COMPLETED,
        )

        result = enforcement.enforce(split_payment.id, now=now)

        assert result.error_code == ENFORCEMENT_SKIPPED


@pytest.mark.django_db
class TestNotice:
    def test_organizer_is_notified(self, enforcement, notifier, overdue, participants, organizer, now):
        add_shares(overdue, participants, paid=1)

        enforcement.enforce(overdue.id, now=now)

        notifier.send_enforcement_notice.assert_called_once()
        recipient, summary = notifier.send_enforcement_notice.call_args.args
        assert recipient == organizer
        assert summary["outcome"] == EnforcementOutcome.CANCEL
        assert summary["amount_collected"] == "25.00 USD"
        assert summary["refunds_succeeded"] == 1

    def test_notice_failure_does_not_undo_outcome(self, enforcement, notifier, overdue, participants, now):
        add_shares(overdue, participants, paid=4)
        notifier.send_enforcement_notice.side_effect = RuntimeError("SMTP down")

        result = enforcement.enforce(overdue.id, now=now)

        assert result.success
        assert reload(overdue).status == SplitPaymentStatus.COMPLETED_PARTIAL


@pytest.mark.django_db
def test_due_split_payments(enforcement, booking, now):
    due = SplitPaymentFactory(booking=booking, payment_deadline=now - timedelta(hours=2))
    SplitPaymentFactory(booking=booking, payment_deadline=now - timedelta(minutes=5))
    SplitPaymentFactory(booking=booking, payment_deadline=now + timedelta(hours=5))

    assert list(enforcement.due_split_payments(now)) == [due]
