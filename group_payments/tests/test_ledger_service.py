"""
Tests for SplitPaymentLedger.

The gateway is a mock (see conftest), everything else runs against the
test database.
"""

from datetime import timedelta

import pytest
from django.db import DatabaseError
from django.utils import timezone

from bookings.models import Booking, BookingPaymentStatus, BookingStatus
from group_payments.exceptions import (
    ConcurrencyConflict,
    GatewayPermanentError,
    GatewayTransientError,
)
from group_payments.models import IndividualPayment, PaymentToken, SplitPayment
from group_payments.services import SplitPaymentLedger
from group_payments.state_machines import (
    FeeHandling,
    IndividualPaymentStatus,
    SplitPaymentStatus,
    SplitType,
)
from group_payments.tests.factories import (
    IndividualPaymentFactory,
    PaidIndividualPaymentFactory,
    SplitPaymentFactory,
    UserFactory,
)
from group_payments.types import Participant


def as_participants(users):
    return [Participant(user_id=u.pk, email=u.email, name=u.username) for u in users]


def reload(instance):
    return type(instance).objects.get(pk=instance.pk)


def pay(ledger, share, confirmation_id=None):
    """Drive a share through intent creation and confirmation."""
    handle = ledger.process_individual_payment(share.id, share.participant)
    assert handle.success, handle.error
    result = ledger.confirm_payment(share.id, confirmation_id or f"ch_{share.id.hex[:8]}")
    assert result.success, result.error
    return result.data


# =============================================================================
# Creation
# =============================================================================


@pytest.mark.django_db
class TestCreateSplitPayment:
    @pytest.fixture
    def deadline(self):
        return timezone.now() + timedelta(hours=72)

    def test_equal_split(self, ledger, booking, organizer, participants, deadline):
        result = ledger.create_split_payment(
            booking, organizer, 10000, as_participants(participants[:3]), deadline
        )

        assert result.success
        split_payment = result.data
        amounts = list(
            split_payment.individual_payments.order_by("-amount_due_cents").values_list(
                "amount_due_cents", flat=True
            )
        )
        assert amounts == [3334, 3333, 3333]
        assert split_payment.total_amount_cents == sum(amounts)
        assert split_payment.status == SplitPaymentStatus.PENDING
        assert split_payment.participant_count == 3
        assert split_payment.metadata["split"]["remainder"] == 1

    def test_organizer_paying_outside_group(self, ledger, booking, organizer, participants, deadline):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants[:3]),
            deadline,
            include_organizer=False,
        )

        split_payment = result.data
        assert split_payment.total_amount_cents == 7500
        assert split_payment.metadata["split"]["organizer_share_cents"] == 2500

    def test_custom_split(self, ledger, booking, organizer, participants, deadline):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants[:2]),
            deadline,
            split_type=SplitType.CUSTOM,
            custom_amounts=[7000, 3000],
        )

        assert result.success
        assert sorted(
            result.data.individual_payments.values_list("amount_due_cents", flat=True)
        ) == [3000, 7000]

    def test_custom_split_mismatch_persists_nothing(
        self, ledger, booking, organizer, participants, deadline
    ):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants[:2]),
            deadline,
            split_type=SplitType.CUSTOM,
            custom_amounts=[7000, 2999],
        )

        assert not result.success
        assert result.error_code == "SPLIT_MISMATCH"
        assert result.http_status == 400
        assert SplitPayment.objects.count() == 0
        assert IndividualPayment.objects.count() == 0

    def test_zero_custom_share_persists_nothing(
        self, ledger, booking, organizer, participants, deadline
    ):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants[:2]),
            deadline,
            split_type=SplitType.CUSTOM,
            custom_amounts=[10000, 0],
        )

        assert result.error_code == "SPLIT_VALIDATION_ERROR"
        assert result.http_status == 400
        assert SplitPayment.objects.count() == 0

    def test_total_below_one_cent_per_participant(
        self, ledger, booking, organizer, participants, deadline
    ):
        result = ledger.create_split_payment(
            booking, organizer, 2, as_participants(participants[:3]), deadline
        )

        assert result.error_code == "SPLIT_VALIDATION_ERROR"
        assert IndividualPayment.objects.count() == 0

    def test_participant_fees(self, ledger, booking, organizer, participants, deadline):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants),
            deadline,
            fee_handling=FeeHandling.PARTICIPANTS,
        )

        shares = result.data.individual_payments.all()
        assert {s.fee_cents for s in shares} == {103}
        assert {s.charge_amount_cents for s in shares} == {2603}

    def test_duplicate_participants(self, ledger, booking, organizer, participants, deadline):
        duplicated = as_participants([participants[0], participants[0]])

        result = ledger.create_split_payment(booking, organizer, 10000, duplicated, deadline)

        assert result.error_code == "SPLIT_VALIDATION_ERROR"
        assert result.errors == {"non_field_errors": ["Duplicate participants detected"]}

    def test_deadline_too_soon(self, ledger, booking, organizer, participants):
        result = ledger.create_split_payment(
            booking,
            organizer,
            10000,
            as_participants(participants),
            timezone.now() + timedelta(hours=2),
        )

        assert not result.success
        assert "at least 24 hours" in result.error

    def test_unknown_participant(self, ledger, booking, organizer, deadline):
        ghost = [Participant(user_id=999999, email="ghost@example.com")]

        result = ledger.create_split_payment(booking, organizer, 10000, ghost, deadline)

        assert result.error == "Unknown participant"
        assert SplitPayment.objects.count() == 0


# =============================================================================
# Paying
# =============================================================================


@pytest.mark.django_db
class TestProcessIndividualPayment:
    def test_creates_intent(self, ledger, gateway, pending_share):
        result = ledger.process_individual_payment(pending_share.id, pending_share.participant)

        assert result.success
        assert result.data.intent_id == "pi_test_1"
        assert result.data.client_secret == "pi_test_1_secret"
        assert result.data.amount_cents == 2500
        share = reload(pending_share)
        assert share.status == IndividualPaymentStatus.PROCESSING
        assert share.attempt_count == 1
        key = gateway.create_intent.call_args.kwargs["idempotency_key"]
        assert key.startswith(f"create_intent:{pending_share.id}:1:")

    def test_second_call_returns_stored_intent(self, ledger, gateway, pending_share):
        first = ledger.process_individual_payment(pending_share.id, pending_share.participant)
        second = ledger.process_individual_payment(pending_share.id, pending_share.participant)

        assert second.success
        assert second.data.intent_id == first.data.intent_id
        assert second.data.created is False
        assert gateway.create_intent.call_count == 1

    def test_other_users_share(self, ledger, pending_share):
        result = ledger.process_individual_payment(pending_share.id, UserFactory())

        assert result.error_code == "NOT_AUTHORIZED"
        assert result.error == "Unauthorized: User cannot pay for another user's portion"
        assert result.http_status == 403

    def test_already_paid(self, ledger, split_payment):
        share = PaidIndividualPaymentFactory(split_payment=split_payment)

        result = ledger.process_individual_payment(share.id, share.participant)

        assert result.error_code == "ALREADY_PAID"
        assert result.error == "Payment has already been processed"

    def test_deadline_passed(self, ledger, split_payment):
        share = IndividualPaymentFactory(
            split_payment=split_payment,
            payment_deadline=timezone.now() - timedelta(minutes=1),
        )

        result = ledger.process_individual_payment(share.id, share.participant)

        assert result.error_code == "DEADLINE_EXPIRED"
        assert result.error == "Payment deadline has passed"

    def test_gateway_unreachable_leaves_share_pending(self, ledger, gateway, pending_share):
        gateway.create_intent.side_effect = GatewayTransientError("Could not connect to Stripe")

        result = ledger.process_individual_payment(pending_share.id, pending_share.participant)

        assert not result.success
        assert result.http_status == 503
        assert reload(pending_share).status == IndividualPaymentStatus.PENDING

    def test_closed_split_payment(self, ledger, booking, participants):
        split_payment = SplitPaymentFactory(booking=booking, status=SplitPaymentStatus.CANCELLED)
        share = IndividualPaymentFactory(split_payment=split_payment, participant=participants[0])

        result = ledger.process_individual_payment(share.id, share.participant)

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_zero_amount_share_never_reaches_gateway(self, ledger, gateway, split_payment):
        share = IndividualPaymentFactory(split_payment=split_payment, amount_due_cents=0)

        result = ledger.process_individual_payment(share.id, share.participant)

        assert result.error_code == "SPLIT_VALIDATION_ERROR"
        assert result.http_status == 400
        gateway.create_intent.assert_not_called()
        assert reload(share).status == IndividualPaymentStatus.PENDING

    def test_unknown_share(self, ledger, organizer):
        result = ledger.process_individual_payment(
            "00000000-0000-0000-0000-000000000000", organizer
        )

        assert result.http_status == 404


# =============================================================================
# Confirmation
# =============================================================================


@pytest.mark.django_db
class TestConfirmPayment:
    def test_first_payment_marks_partially_paid(self, ledger, shares, split_payment, booking):
        share = pay(ledger, shares[0], "ch_1")

        assert share.status == IndividualPaymentStatus.PAID
        assert share.amount_paid_cents == 2500
        assert share.paid_at is not None
        assert reload(split_payment).status == SplitPaymentStatus.PARTIALLY_PAID
        assert reload(booking).payment_status == BookingPaymentStatus.PARTIALLY_PAID

    def test_three_of_four_paid(self, ledger, shares, split_payment):
        for share in shares[:3]:
            pay(ledger, share)

        split_payment = reload(split_payment)
        stats = ledger.stats_for(split_payment)
        assert split_payment.status == SplitPaymentStatus.PARTIALLY_PAID
        assert stats.completion_percentage == 75.0
        assert stats.paid_count == 3
        assert stats.remaining == 2500

    def test_all_paid_completes_and_confirms_booking(self, ledger, shares, split_payment, booking):
        for share in shares:
            pay(ledger, share)

        split_payment = reload(split_payment)
        booking = Booking.objects.get(pk=booking.pk)
        assert split_payment.status == SplitPaymentStatus.COMPLETED
        assert split_payment.completed_at is not None
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == BookingPaymentStatus.PAID

    def test_same_confirmation_twice_is_idempotent(self, ledger, pending_share, split_payment):
        pay(ledger, pending_share, "ch_same")
        version = reload(pending_share).version

        again = ledger.confirm_payment(pending_share.id, "ch_same")

        assert again.success
        assert reload(pending_share).version == version
        assert ledger.stats_for(split_payment).total_paid == 2500

    def test_different_confirmation_rejected(self, ledger, pending_share):
        pay(ledger, pending_share, "ch_first")

        result = ledger.confirm_payment(pending_share.id, "ch_other")

        assert result.error_code == "ALREADY_PAID"

    def test_confirm_without_intent(self, ledger, pending_share):
        result = ledger.confirm_payment(pending_share.id, "ch_1")

        assert result.error_code == "INVALID_STATE_TRANSITION"

    def test_late_confirmation_on_cancelled_group(self, ledger, pending_share, split_payment, organizer):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)
        SplitPayment.objects.filter(pk=split_payment.pk).update(status=SplitPaymentStatus.CANCELLED)

        result = ledger.confirm_payment(pending_share.id, "ch_late")

        assert result.success
        assert reload(split_payment).status == SplitPaymentStatus.CANCELLED

    def test_lost_race_to_same_confirmation(self, ledger, pending_share, mocker):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)

        def winner_confirms_first(model_class, pk, expected_version):
            IndividualPayment.objects.filter(pk=pk).update(
                status=IndividualPaymentStatus.PAID,
                gateway_confirmation_id="ch_same",
                amount_paid_cents=2500,
                version=expected_version + 1,
            )
            raise ConcurrencyConflict("IndividualPayment was modified concurrently")

        mocker.patch(
            "group_payments.services.ledger_service.check_version",
            side_effect=winner_confirms_first,
        )

        result = ledger.confirm_payment(pending_share.id, "ch_same")

        assert result.success
        assert result.data.gateway_confirmation_id == "ch_same"

    def test_second_conflict_is_reported(self, ledger, pending_share, mocker):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)
        locked = mocker.patch(
            "group_payments.services.ledger_service.check_version",
            side_effect=ConcurrencyConflict("IndividualPayment was modified concurrently"),
        )

        result = ledger.confirm_payment(pending_share.id, "ch_1")

        assert result.error_code == "CONCURRENCY_CONFLICT"
        assert result.http_status == 409
        assert locked.call_count == 2
        assert reload(pending_share).status == IndividualPaymentStatus.PROCESSING


@pytest.mark.django_db
class TestVerifyAndConfirm:
    def test_settled_intent_confirms(self, ledger, gateway, pending_share):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)

        result = ledger.verify_and_confirm(pending_share.id)

        assert result.success
        assert result.data.gateway_confirmation_id == "ch_test_confirmed"
        gateway.confirm_intent.assert_called_once_with("pi_test_1")

    def test_declined_intent_fails_share(self, ledger, gateway, pending_share):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)
        gateway.confirm_intent.side_effect = GatewayPermanentError(
            "Your card was declined.", gateway_code="requires_payment_method"
        )

        result = ledger.verify_and_confirm(pending_share.id)

        assert not result.success
        share = reload(pending_share)
        assert share.status == IndividualPaymentStatus.FAILED
        assert share.failure_reason == "Your card was declined."

    def test_unsettled_intent_changes_nothing(self, ledger, gateway, pending_share):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)
        gateway.confirm_intent.side_effect = GatewayTransientError("not settled")

        result = ledger.verify_and_confirm(pending_share.id)

        assert result.http_status == 503
        assert reload(pending_share).status == IndividualPaymentStatus.PROCESSING

    def test_pending_share_has_nothing_to_verify(self, ledger, pending_share):
        result = ledger.verify_and_confirm(pending_share.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"


@pytest.mark.django_db
class TestFailAndRetry:
    def test_fail_then_retry(self, ledger, gateway, pending_share):
        ledger.process_individual_payment(pending_share.id, pending_share.participant)

        failed = ledger.fail_payment(pending_share.id, "card_declined")
        assert failed.data.status == IndividualPaymentStatus.FAILED

        # Paying a failed share needs an explicit retry
        blocked = ledger.process_individual_payment(pending_share.id, pending_share.participant)
        assert blocked.error_code == "INVALID_STATE_TRANSITION"

        retried = ledger.retry_payment(pending_share.id, pending_share.participant)
        assert retried.data.status == IndividualPaymentStatus.PENDING

        again = ledger.process_individual_payment(pending_share.id, pending_share.participant)
        assert again.success
        assert again.data.intent_id == "pi_test_2"
        key = gateway.create_intent.call_args.kwargs["idempotency_key"]
        assert key.startswith(f"create_intent:{pending_share.id}:2:")

    def test_fail_pending_share_not_allowed(self, ledger, pending_share):
        result = ledger.fail_payment(pending_share.id, "declined")

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.http_status == 409

    def test_retry_someone_elses_share(self, ledger, pending_share):
        result = ledger.retry_payment(pending_share.id, UserFactory())

        assert result.error_code == "NOT_AUTHORIZED"


# =============================================================================
# Cancellation
# =============================================================================


@pytest.mark.django_db
class TestCancelSplitPayment:
    def test_cancel_refunds_and_expires(self, ledger, gateway, shares, split_payment, booking, organizer):
        pay(ledger, shares[0])
        pay(ledger, shares[1])

        result = ledger.cancel_split_payment(split_payment.id, organizer)

        assert result.success
        assert result.data.total == 2
        assert result.data.succeeded == 2
        assert reload(split_payment).status == SplitPaymentStatus.CANCELLED
        statuses = sorted(s.status for s in IndividualPayment.objects.filter(split_payment=split_payment))
        assert statuses == ["expired", "expired", "refunded", "refunded"]
        booking = Booking.objects.get(pk=booking.pk)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.payment_status == BookingPaymentStatus.REFUNDED
        assert gateway.refund.call_count == 2

    def test_only_organizer_can_cancel(self, ledger, split_payment, participants):
        result = ledger.cancel_split_payment(split_payment.id, participants[0])

        assert result.error_code == "NOT_AUTHORIZED"
        assert reload(split_payment).status == SplitPaymentStatus.PENDING

    def test_cannot_cancel_completed(self, ledger, booking, organizer):
        split_payment = SplitPaymentFactory(booking=booking, status=SplitPaymentStatus.COMPLETED)

        result = ledger.cancel_split_payment(split_payment.id, organizer)

        assert result.error_code == "INVALID_STATE_TRANSITION"


# =============================================================================
# Payment Links
# =============================================================================


@pytest.mark.django_db
class TestPaymentTokens:
    def test_token_expires_at_deadline_by_default(self, ledger, pending_share):
        result = ledger.issue_payment_token(pending_share.id)

        assert result.data.expires_at == pending_share.payment_deadline
        assert ledger.payment_link(result.data).endswith(f"/pay/{result.data.token}")

    def test_ttl_caps_expiry(self, ledger, pending_share):
        now = timezone.now()

        result = ledger.issue_payment_token(pending_share.id, ttl_hours=2, now=now)

        assert result.data.expires_at == now + timedelta(hours=2)

    def test_pay_with_token_consumes_it(self, ledger, pending_share):
        token = ledger.issue_payment_token(pending_share.id).data

        first = ledger.pay_with_token(token.token)
        second = ledger.pay_with_token(token.token)

        assert first.success
        assert PaymentToken.objects.get(pk=token.pk).used_at is not None
        assert second.error_code == "PAYMENT_TOKEN_INVALID"
        assert second.error == "Payment link has already been used"

    def test_unknown_token(self, ledger, db):
        result = ledger.pay_with_token("nope")

        assert result.error == "Payment link is invalid"

    def test_no_token_for_paid_share(self, ledger, split_payment):
        share = PaidIndividualPaymentFactory(split_payment=split_payment)

        result = ledger.issue_payment_token(share.id)

        assert result.error_code == "ALREADY_PAID"


# =============================================================================
# Queries and Failures
# =============================================================================


@pytest.mark.django_db
class TestUpcomingDeadlines:
    def test_lists_open_groups_inside_window(self, ledger, organizer, booking):
        now = timezone.now()
        soon = SplitPaymentFactory(booking=booking, payment_deadline=now + timedelta(hours=5))
        IndividualPaymentFactory(split_payment=soon)
        SplitPaymentFactory(booking=booking, payment_deadline=now + timedelta(hours=100))
        SplitPaymentFactory(
            booking=booking,
            payment_deadline=now + timedelta(hours=3),
            status=SplitPaymentStatus.COMPLETED,
        )

        result = ledger.upcoming_deadlines(organizer, hours=48, now=now)

        assert [item["split_payment"].pk for item in result.data] == [soon.pk]
        assert result.data[0]["risk_level"] == "high"
        assert result.data[0]["hours_until_deadline"] == 5.0


@pytest.mark.django_db
class TestPersistenceFailure:
    def test_database_error_becomes_persistence_error(self, ledger, pending_share, mocker):
        mocker.patch.object(
            SplitPaymentLedger,
            "_get_individual",
            side_effect=DatabaseError("connection refused"),
        )

        result = ledger.confirm_payment(pending_share.id, "ch_1")

        assert not result.success
        assert result.error_code == "PERSISTENCE_ERROR"
