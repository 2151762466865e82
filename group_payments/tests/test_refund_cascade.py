"""
Tests for RefundCascade.
"""

import pytest

from group_payments.adapters import RefundResult
from group_payments.exceptions import (
    GatewayPermanentError,
    GatewayTransientError,
    LockAcquisitionError,
)
from group_payments.models import PaymentRefund
from group_payments.services import RefundCascade
from group_payments.services.ledger_service import ORGANIZER_CANCELLED
from group_payments.state_machines import IndividualPaymentStatus, RefundStatus
from group_payments.tests.factories import (
    IndividualPaymentFactory,
    PaidIndividualPaymentFactory,
    PaymentRefundFactory,
)


def reload(instance):
    return type(instance).objects.get(pk=instance.pk)


@pytest.fixture
def cascade(config, gateway):
    return RefundCascade(config, gateway)


@pytest.fixture
def paid_shares(split_payment, participants):
    return [
        PaidIndividualPaymentFactory(split_payment=split_payment, participant=user)
        for user in participants[:2]
    ]


@pytest.mark.django_db
class TestRefundCascade:
    def test_refunds_every_paid_share(self, cascade, gateway, split_payment, paid_shares, participants):
        unpaid = IndividualPaymentFactory(split_payment=split_payment, participant=participants[2])

        summary = cascade.run(split_payment)

        assert summary.total == 2
        assert summary.succeeded == 2
        assert summary.failed == 0
        for share in paid_shares:
            share = reload(share)
            assert share.status == IndividualPaymentStatus.REFUNDED
            assert share.gateway_refund_id.startswith("re_test_")
            assert share.refunded_at is not None
        assert reload(unpaid).status == IndividualPaymentStatus.PENDING
        assert PaymentRefund.objects.filter(status=RefundStatus.SUCCEEDED).count() == 2

    def test_gateway_called_with_confirmation_and_key(self, cascade, gateway, split_payment, paid_shares):
        cascade.run(split_payment)

        keys = set()
        for call in gateway.refund.call_args_list:
            assert call.kwargs["confirmation_id"].startswith("ch_test_")
            assert call.kwargs["amount_cents"] is None
            keys.add(call.kwargs["idempotency_key"])
        assert len(keys) == 2
        assert all(key.startswith("refund:") for key in keys)

    def test_one_failure_does_not_block_others(self, cascade, gateway, split_payment, paid_shares):
        gateway.refund.side_effect = [
            GatewayTransientError("Stripe unavailable"),
            RefundResult(
                id="re_second",
                amount_cents=2500,
                currency="usd",
                status="succeeded",
                confirmation_id=paid_shares[1].gateway_confirmation_id,
            ),
        ]

        summary = cascade.run(split_payment)

        assert summary.succeeded == 1
        assert summary.failed_ids == [str(paid_shares[0].id)]
        assert reload(paid_shares[0]).status == IndividualPaymentStatus.PAID
        assert reload(paid_shares[1]).status == IndividualPaymentStatus.REFUNDED
        failed = PaymentRefund.objects.get(individual_payment=paid_shares[0])
        assert failed.status == RefundStatus.FAILED
        assert "Stripe unavailable" in failed.error

    def test_retry_uses_next_attempt(self, cascade, gateway, split_payment, paid_shares):
        gateway.refund.side_effect = GatewayTransientError("Stripe unavailable")
        cascade.run(split_payment)

        gateway.refund.side_effect = lambda **kwargs: RefundResult(
            id="re_retry",
            amount_cents=2500,
            currency="usd",
            status="succeeded",
            confirmation_id=kwargs["confirmation_id"],
        )
        summary = cascade.run(split_payment)

        assert summary.succeeded == 2
        attempts = PaymentRefund.objects.filter(individual_payment=paid_shares[0]).order_by("attempt")
        assert [r.attempt for r in attempts] == [1, 2]
        first_key = gateway.refund.call_args_list[0].kwargs["idempotency_key"]
        retry_keys = [c.kwargs["idempotency_key"] for c in gateway.refund.call_args_list[2:]]
        assert first_key not in retry_keys

    def test_already_refunded_counts_as_success(self, cascade, gateway, split_payment, paid_shares):
        gateway.refund.side_effect = GatewayPermanentError(
            "Charge has already been refunded",
            gateway_code="charge_already_refunded",
        )

        summary = cascade.run(split_payment)

        assert summary.succeeded == 2
        assert all(
            reload(s).status == IndividualPaymentStatus.REFUNDED for s in paid_shares
        )

    def test_second_run_is_a_no_op(self, cascade, gateway, split_payment, paid_shares):
        cascade.run(split_payment)

        summary = cascade.run(split_payment)

        assert summary.total == 0
        assert gateway.refund.call_count == 2

    def test_reason_is_recorded(self, cascade, split_payment, paid_shares):
        cascade.run(split_payment, reason=ORGANIZER_CANCELLED)

        assert set(PaymentRefund.objects.values_list("reason", flat=True)) == {
            ORGANIZER_CANCELLED
        }

    def test_attempt_numbers_continue_after_earlier_records(self, cascade, split_payment, participants):
        share = PaidIndividualPaymentFactory(split_payment=split_payment, participant=participants[0])
        PaymentRefundFactory(individual_payment=share, attempt=1, status=RefundStatus.FAILED)

        cascade.run(split_payment)

        assert sorted(
            PaymentRefund.objects.filter(individual_payment=share).values_list("attempt", flat=True)
        ) == [1, 2]

    def test_concurrent_cascade_is_refused(self, cascade, gateway, split_payment, paid_shares, mock_redis):
        mock_redis.set.return_value = None

        with pytest.raises(LockAcquisitionError):
            cascade.run(split_payment)

        gateway.refund.assert_not_called()
