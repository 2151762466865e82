"""
Factory Boy factories for group payment test data.

Usage:
    from group_payments.tests.factories import (
        BookingFactory,
        IndividualPaymentFactory,
        SplitPaymentFactory,
        UserFactory,
    )

    # A pending split payment due in three days
    split_payment = SplitPaymentFactory()

    # A paid share
    share = IndividualPaymentFactory(
        split_payment=split_payment,
        status=IndividualPaymentStatus.PAID,
        amount_paid_cents=2500,
    )
"""

import uuid
from datetime import timedelta

import factory
from django.utils import timezone

from bookings.models import Booking
from group_payments.models import (
    IndividualPayment,
    PaymentRefund,
    PaymentToken,
    SplitPayment,
)
from group_payments.state_machines import (
    FeeHandling,
    IndividualPaymentStatus,
    SplitPaymentStatus,
    SplitType,
)


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class BookingFactory(factory.django.DjangoModelFactory):
    """Default creates a pending $100 USD booking."""

    class Meta:
        model = Booking
        skip_postgeneration_save = True

    organizer = factory.SubFactory(UserFactory)
    title = factory.Sequence(lambda n: f"Lake house weekend {n}")
    total_amount_cents = 10000
    currency = "usd"


class SplitPaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for SplitPayment aggregates.

    Default creates a PENDING split payment of $100 between 4 participants,
    due in three days. Shares are not created; use IndividualPaymentFactory.
    """

    class Meta:
        model = SplitPayment
        skip_postgeneration_save = True

    booking = factory.SubFactory(BookingFactory)
    organizer = factory.SelfAttribute("booking.organizer")
    payee_account_id = factory.Sequence(lambda n: f"acct_test_{n}")
    total_amount_cents = 10000
    currency = "usd"
    split_type = SplitType.EQUAL
    fee_handling = FeeHandling.ORGANIZER
    participant_count = 4
    payment_deadline = factory.LazyFunction(lambda: timezone.now() + timedelta(days=3))
    status = SplitPaymentStatus.PENDING
    metadata = factory.LazyFunction(dict)


class IndividualPaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for one participant's share.

    The deadline follows the split payment's.
    """

    class Meta:
        model = IndividualPayment
        skip_postgeneration_save = True

    split_payment = factory.SubFactory(SplitPaymentFactory)
    participant = factory.SubFactory(UserFactory)
    amount_due_cents = 2500
    fee_cents = 0
    amount_paid_cents = 0
    status = IndividualPaymentStatus.PENDING
    payment_deadline = factory.SelfAttribute("split_payment.payment_deadline")
    participant_email = factory.SelfAttribute("participant.email")
    participant_name = factory.Faker("name")


class PaidIndividualPaymentFactory(IndividualPaymentFactory):
    status = IndividualPaymentStatus.PAID
    amount_paid_cents = factory.SelfAttribute("amount_due_cents")
    gateway_intent_id = factory.LazyFunction(lambda: f"pi_test_{uuid.uuid4().hex[:16]}")
    gateway_confirmation_id = factory.LazyFunction(lambda: f"ch_test_{uuid.uuid4().hex[:16]}")
    paid_at = factory.LazyFunction(timezone.now)


class ProcessingIndividualPaymentFactory(IndividualPaymentFactory):
    status = IndividualPaymentStatus.PROCESSING
    gateway_intent_id = factory.LazyFunction(lambda: f"pi_test_{uuid.uuid4().hex[:16]}")
    gateway_client_secret = factory.LazyAttribute(lambda o: f"{o.gateway_intent_id}_secret")
    processing_started_at = factory.LazyFunction(timezone.now)
    attempt_count = 1


class PaymentTokenFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PaymentToken
        skip_postgeneration_save = True

    token = factory.LazyFunction(lambda: uuid.uuid4().hex)
    individual_payment = factory.SubFactory(IndividualPaymentFactory)
    expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(hours=24))


class PaymentRefundFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PaymentRefund
        skip_postgeneration_save = True

    individual_payment = factory.SubFactory(PaidIndividualPaymentFactory)
    amount_cents = factory.SelfAttribute("individual_payment.amount_paid_cents")
    attempt = 1
