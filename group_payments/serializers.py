"""
Serializers for the group payments API.

Serializer Hierarchy:
    SplitPaymentCreateSerializer: Request body for a new split payment
    ParticipantInputSerializer: One participant inside a create request
    SplitPaymentSerializer: Split payment with its shares and stats
    IndividualPaymentSerializer: One participant's share
    PaymentStatsSerializer: Collection progress of a split payment
    PaymentIntentSerializer: Intent details for client-side confirmation
    CascadeSummarySerializer: Refund results of a cancellation
    UpcomingDeadlineSerializer: Open split payment close to its deadline

Design Decisions:
    - Read and write serializers are separate
    - Amounts are integer cents everywhere
    - Stats are computed by the ledger and passed in through the context
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from bookings.models import Booking
from group_payments.models import IndividualPayment, SplitPayment
from group_payments.state_machines import FeeHandling, SplitType
from group_payments.types import Participant

User = get_user_model()


# =============================================================================
# Request Serializers
# =============================================================================


class ParticipantInputSerializer(serializers.Serializer):
    user_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.all(),
        help_text="User who pays this share",
    )
    email = serializers.EmailField(required=False, allow_blank=True)
    name = serializers.CharField(required=False, allow_blank=True, max_length=200)

    def to_participant(self, data: dict) -> Participant:
        user = data["user_id"]
        return Participant(
            user_id=user.pk,
            email=data.get("email") or user.email,
            name=data.get("name", ""),
        )


class SplitPaymentCreateSerializer(serializers.Serializer):
    """
    Create a split payment for one of the requester's bookings.

    Validation beyond field types (group size, duplicates, deadline window,
    custom amounts) is done by the ledger so API and service share one set
    of rules.
    """

    booking_id = serializers.PrimaryKeyRelatedField(
        queryset=Booking.objects.all(),
        help_text="Booking being paid for",
    )
    total_amount_cents = serializers.IntegerField(min_value=1)
    participants = ParticipantInputSerializer(many=True)
    payment_deadline = serializers.DateTimeField()
    split_type = serializers.ChoiceField(choices=SplitType.choices, default=SplitType.EQUAL)
    custom_amounts = serializers.ListField(
        child=serializers.IntegerField(min_value=0),
        required=False,
        allow_null=True,
    )
    include_organizer = serializers.BooleanField(default=True)
    fee_handling = serializers.ChoiceField(
        choices=FeeHandling.choices,
        required=False,
        allow_null=True,
    )
    payee_account_id = serializers.CharField(required=False, allow_blank=True, default="")
    currency = serializers.CharField(max_length=3, default="usd")
    description = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_booking_id(self, booking: Booking) -> Booking:
        request = self.context.get("request")
        if request is not None and booking.organizer_id != request.user.pk:
            raise serializers.ValidationError("You can only split your own bookings")
        return booking

    def participant_list(self) -> list[Participant]:
        field = ParticipantInputSerializer()
        return [field.to_participant(p) for p in self.validated_data["participants"]]


class UpcomingDeadlinesQuerySerializer(serializers.Serializer):
    hours = serializers.IntegerField(min_value=1, max_value=24 * 14, default=48)


# =============================================================================
# Response Serializers
# =============================================================================


class PaymentStatsSerializer(serializers.Serializer):
    total_due = serializers.IntegerField()
    total_paid = serializers.IntegerField()
    remaining = serializers.IntegerField()
    participant_count = serializers.IntegerField()
    paid_count = serializers.IntegerField()
    pending_count = serializers.IntegerField()
    processing_count = serializers.IntegerField()
    failed_count = serializers.IntegerField()
    expired_count = serializers.IntegerField()
    refunded_count = serializers.IntegerField()
    completion_percentage = serializers.FloatField()
    meets_minimum_threshold = serializers.BooleanField()


class IndividualPaymentSerializer(serializers.ModelSerializer):
    """One participant's share. The client secret is never exposed here."""

    charge_amount_cents = serializers.IntegerField(read_only=True)

    class Meta:
        model = IndividualPayment
        fields = [
            "id",
            "participant",
            "participant_name",
            "amount_due_cents",
            "fee_cents",
            "charge_amount_cents",
            "amount_paid_cents",
            "status",
            "payment_deadline",
            "reminder_count",
            "paid_at",
            "failure_reason",
        ]
        read_only_fields = fields


class SplitPaymentSerializer(serializers.ModelSerializer):
    """
    Split payment with its shares.

    Pass ``stats`` in the serializer context to include collection progress.
    """

    individual_payments = IndividualPaymentSerializer(many=True, read_only=True)
    stats = serializers.SerializerMethodField()

    class Meta:
        model = SplitPayment
        fields = [
            "id",
            "booking",
            "organizer",
            "total_amount_cents",
            "currency",
            "split_type",
            "fee_handling",
            "participant_count",
            "status",
            "payment_deadline",
            "description",
            "completed_at",
            "cancelled_at",
            "created_at",
            "individual_payments",
            "stats",
        ]
        read_only_fields = fields

    def get_stats(self, obj: SplitPayment) -> dict | None:
        stats = self.context.get("stats")
        if stats is None:
            return None
        return PaymentStatsSerializer(stats).data


class PaymentIntentSerializer(serializers.Serializer):
    individual_payment_id = serializers.CharField()
    intent_id = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    amount_cents = serializers.IntegerField()
    created = serializers.BooleanField()


class ItemOutcomeSerializer(serializers.Serializer):
    item_id = serializers.CharField()
    outcome = serializers.CharField()
    error = serializers.CharField(allow_null=True)


class CascadeSummarySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    succeeded = serializers.IntegerField()
    failed = serializers.IntegerField()
    outcomes = ItemOutcomeSerializer(many=True)


class UpcomingDeadlineSerializer(serializers.Serializer):
    split_payment_id = serializers.SerializerMethodField()
    booking_title = serializers.SerializerMethodField()
    payment_deadline = serializers.SerializerMethodField()
    hours_until_deadline = serializers.FloatField()
    risk_level = serializers.CharField()
    stats = PaymentStatsSerializer()

    def get_split_payment_id(self, obj: dict) -> str:
        return str(obj["split_payment"].id)

    def get_booking_title(self, obj: dict) -> str:
        return obj["split_payment"].booking.title

    def get_payment_deadline(self, obj: dict) -> str:
        return obj["split_payment"].payment_deadline.isoformat()
