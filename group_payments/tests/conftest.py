"""
Pytest fixtures for group payment tests.

The gateway and notifier are mocks so no test talks to Stripe or sends
mail, and Redis is replaced by a MagicMock that grants every lock.

Usage:
    def test_pay_share(ledger, pending_share, gateway):
        result = ledger.process_individual_payment(pending_share.id, pending_share.participant)
        assert result.success
        gateway.create_intent.assert_called_once()
"""

import itertools
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from group_payments.adapters import PaymentIntentResult, RefundResult
from group_payments.adapters.protocols import Notifier, PaymentGateway
from group_payments.conf import SplitPaymentSettings
from group_payments.services import EnforcementPolicy, SplitPaymentLedger
from group_payments.tests.factories import (
    BookingFactory,
    IndividualPaymentFactory,
    SplitPaymentFactory,
    UserFactory,
)
from group_payments.workers import DeadlineScheduler


# =============================================================================
# Infrastructure Mocks
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """
    Mock Redis client for distributed locks.

    Every lock is granted and released successfully.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch(
        "group_payments.locks.get_redis_connection",
        return_value=mock_client,
    )
    return mock_client


@pytest.fixture
def gateway(mocker):
    """
    Mock payment gateway.

    create_intent returns a fresh intent per call, confirm_intent reports a
    settled charge, refund succeeds.
    """
    counter = itertools.count(1)
    mock_gateway = mocker.MagicMock(spec=PaymentGateway)

    def create_intent(amount_cents, currency, payee_account, metadata, idempotency_key):
        n = next(counter)
        return PaymentIntentResult(
            id=f"pi_test_{n}",
            status="requires_payment_method",
            amount_cents=amount_cents,
            currency=currency,
            client_secret=f"pi_test_{n}_secret",
            metadata=metadata,
        )

    def refund(confirmation_id, reason, amount_cents, idempotency_key):
        n = next(counter)
        return RefundResult(
            id=f"re_test_{n}",
            amount_cents=amount_cents or 0,
            currency="usd",
            status="succeeded",
            confirmation_id=confirmation_id,
        )

    mock_gateway.create_intent.side_effect = create_intent
    mock_gateway.confirm_intent.return_value = "ch_test_confirmed"
    mock_gateway.refund.side_effect = refund
    return mock_gateway


@pytest.fixture
def notifier(mocker):
    return mocker.MagicMock(spec=Notifier)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def config():
    return SplitPaymentSettings()


@pytest.fixture
def ledger(config, gateway):
    return SplitPaymentLedger(config=config, gateway=gateway)


@pytest.fixture
def enforcement(config, ledger, notifier):
    return EnforcementPolicy(config, ledger, notifier=notifier)


@pytest.fixture
def scheduler(config, ledger, enforcement, notifier):
    return DeadlineScheduler(config, ledger, enforcement, notifier)


# =============================================================================
# Data
# =============================================================================


@pytest.fixture
def organizer(db):
    return UserFactory()


@pytest.fixture
def booking(db, organizer):
    return BookingFactory(organizer=organizer)


@pytest.fixture
def participants(db):
    return UserFactory.create_batch(4)


@pytest.fixture
def split_payment(db, booking):
    """A pending $100 split payment between four participants, due in three days."""
    return SplitPaymentFactory(
        booking=booking,
        payment_deadline=timezone.now() + timedelta(days=3),
    )


@pytest.fixture
def shares(split_payment, participants):
    """Four pending $25 shares of split_payment."""
    return [
        IndividualPaymentFactory(split_payment=split_payment, participant=user)
        for user in participants
    ]


@pytest.fixture
def pending_share(shares):
    return shares[0]


# =============================================================================
# API Clients
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client for public endpoints."""
    return APIClient()


@pytest.fixture
def authenticated_client_factory(db):
    """
    Factory to create authenticated clients for any user.

    Usage:
        def test_example(authenticated_client_factory, organizer):
            client = authenticated_client_factory(organizer)
    """

    def _create(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _create


@pytest.fixture
def organizer_client(authenticated_client_factory, organizer):
    return authenticated_client_factory(organizer)


@pytest.fixture
def use_ledger(mocker, ledger):
    """Make the views use the fixture ledger (mocked gateway)."""
    mocker.patch("group_payments.views.get_ledger", return_value=ledger)
    return ledger
