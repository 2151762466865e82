"""
Tests for group payment models and their django-fsm transitions.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from group_payments.models import IndividualPayment, SplitPayment
from group_payments.state_machines import IndividualPaymentStatus, SplitPaymentStatus
from group_payments.tests.factories import (
    IndividualPaymentFactory,
    PaidIndividualPaymentFactory,
    PaymentRefundFactory,
    PaymentTokenFactory,
    ProcessingIndividualPaymentFactory,
    SplitPaymentFactory,
)


@pytest.mark.django_db
class TestSplitPaymentTransitions:
    def test_partially_paid(self):
        split_payment = SplitPaymentFactory()

        split_payment.mark_partially_paid()
        split_payment.save()

        assert SplitPayment.objects.get(pk=split_payment.pk).status == SplitPaymentStatus.PARTIALLY_PAID

    def test_complete_stamps_completed_at(self):
        split_payment = SplitPaymentFactory(status=SplitPaymentStatus.PARTIALLY_PAID)

        split_payment.complete()

        assert split_payment.status == SplitPaymentStatus.COMPLETED
        assert split_payment.completed_at is not None

    def test_enforcement_outcomes_stamp_enforced_at(self):
        proceed = SplitPaymentFactory()
        cancel = SplitPaymentFactory()

        proceed.complete_partial()
        cancel.cancel_insufficient()

        assert proceed.enforced_at is not None
        assert cancel.enforced_at is not None
        assert cancel.cancelled_at is not None

    def test_terminal_status_cannot_move(self):
        split_payment = SplitPaymentFactory(status=SplitPaymentStatus.COMPLETED)

        with pytest.raises(TransitionNotAllowed):
            split_payment.cancel()

    def test_move_to_same_status_is_noop(self):
        split_payment = SplitPaymentFactory()

        assert split_payment.move_to(SplitPaymentStatus.PENDING) is False

    def test_move_to_applies_transition(self):
        split_payment = SplitPaymentFactory()

        assert split_payment.move_to(SplitPaymentStatus.COMPLETED) is True
        assert split_payment.status == SplitPaymentStatus.COMPLETED

    def test_save_bumps_version(self):
        split_payment = SplitPaymentFactory()
        version = split_payment.version

        split_payment.mark_partially_paid()
        split_payment.save(update_fields=["status"])

        assert SplitPayment.objects.get(pk=split_payment.pk).version == version + 1

    def test_is_open(self):
        assert SplitPaymentFactory().is_open is True
        assert SplitPaymentFactory(status=SplitPaymentStatus.CANCELLED).is_open is False

    def test_total_must_be_positive(self):
        with pytest.raises(IntegrityError):
            SplitPaymentFactory(total_amount_cents=0)


@pytest.mark.django_db
class TestIndividualPaymentTransitions:
    def test_full_payment_path(self):
        share = IndividualPaymentFactory(fee_cents=103)

        share.start_processing("pi_123", "pi_123_secret")
        share.mark_paid("ch_123")
        share.save()

        share = IndividualPayment.objects.get(pk=share.pk)
        assert share.status == IndividualPaymentStatus.PAID
        assert share.amount_paid_cents == share.amount_due_cents
        assert share.charge_amount_cents == 2603
        assert share.gateway_confirmation_id == "ch_123"
        assert share.paid_at is not None

    def test_failure_and_retry(self):
        share = ProcessingIndividualPaymentFactory()

        share.mark_failed("card_declined")
        assert share.failure_reason == "card_declined"

        share.reset_for_retry()
        assert share.status == IndividualPaymentStatus.PENDING
        assert share.gateway_intent_id == ""

    def test_expire_only_from_pending(self):
        share = ProcessingIndividualPaymentFactory()

        with pytest.raises(TransitionNotAllowed):
            share.expire()

    def test_paid_cannot_fail(self):
        share = PaidIndividualPaymentFactory()

        with pytest.raises(TransitionNotAllowed):
            share.mark_failed("late decline")

    def test_refund(self):
        share = PaidIndividualPaymentFactory()

        share.mark_refunded("re_123")

        assert share.status == IndividualPaymentStatus.REFUNDED
        assert share.refunded_at is not None

    def test_status_is_protected(self):
        share = IndividualPaymentFactory()

        with pytest.raises(AttributeError):
            share.status = IndividualPaymentStatus.PAID

    def test_one_share_per_participant(self):
        share = IndividualPaymentFactory()

        with pytest.raises(IntegrityError):
            IndividualPaymentFactory(split_payment=share.split_payment, participant=share.participant)


@pytest.mark.django_db
class TestPaymentToken:
    def test_valid(self):
        assert PaymentTokenFactory().is_valid() is True

    def test_used(self):
        token = PaymentTokenFactory(used_at=timezone.now())

        assert token.invalid_reason() == "Payment link has already been used"

    def test_expired(self):
        token = PaymentTokenFactory(expires_at=timezone.now() - timedelta(minutes=1))

        assert token.invalid_reason() == "Payment link has expired"

    def test_share_already_paid(self):
        token = PaymentTokenFactory(individual_payment=PaidIndividualPaymentFactory())

        assert token.invalid_reason() == "Payment has already been processed"


@pytest.mark.django_db
class TestPaymentRefund:
    def test_mark_succeeded(self):
        refund = PaymentRefundFactory()

        refund.mark_succeeded("re_1")
        refund.refresh_from_db()

        assert refund.status == "succeeded"
        assert refund.gateway_refund_id == "re_1"
        assert refund.processed_at is not None

    def test_mark_failed(self):
        refund = PaymentRefundFactory()

        refund.mark_failed("Your card was declined")
        refund.refresh_from_db()

        assert refund.status == "failed"
        assert refund.error == "Your card was declined"

    def test_attempt_unique_per_share(self):
        refund = PaymentRefundFactory()

        with pytest.raises(IntegrityError):
            PaymentRefundFactory(individual_payment=refund.individual_payment, attempt=1)
