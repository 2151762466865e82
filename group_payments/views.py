"""
DRF views for the group payments app.

Endpoints:
    POST /api/v1/group-payments/split-payments/                 - Create split payment
    GET  /api/v1/group-payments/split-payments/upcoming/        - Deadlines at risk
    GET  /api/v1/group-payments/split-payments/{id}/            - Split payment with stats
    POST /api/v1/group-payments/split-payments/{id}/cancel/     - Organizer cancels
    POST /api/v1/group-payments/payments/{id}/pay/              - Start paying a share
    POST /api/v1/group-payments/payments/{id}/confirm/          - Confirm with the gateway
    POST /api/v1/group-payments/payments/{id}/retry/            - Retry a failed share
    POST /api/v1/group-payments/pay/{token}/                    - Pay through a payment link

Security:
    - All endpoints require authentication except payment links
    - Only the organizer may cancel; only the participant may pay their share
    - Business rules are enforced by SplitPaymentLedger, views only map
      ServiceResults to HTTP responses
"""

from __future__ import annotations

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from group_payments.models import IndividualPayment, SplitPayment
from group_payments.serializers import (
    CascadeSummarySerializer,
    IndividualPaymentSerializer,
    PaymentIntentSerializer,
    SplitPaymentCreateSerializer,
    SplitPaymentSerializer,
    UpcomingDeadlineSerializer,
    UpcomingDeadlinesQuerySerializer,
)
from group_payments.services import SplitPaymentLedger

logger = logging.getLogger(__name__)

TAGS = ["Group Payments"]


def get_ledger() -> SplitPaymentLedger:
    return SplitPaymentLedger()


def error_response(result) -> Response:
    return Response(result.to_response(), status=result.http_status)


def visible_split_payments(user):
    """Split payments the user organizes or has a share in."""
    return SplitPayment.objects.filter(
        Q(organizer=user) | Q(individual_payments__participant=user)
    ).distinct()


# =============================================================================
# Split Payments
# =============================================================================


class SplitPaymentCreateView(APIView):
    """
    Create a split payment for a booking.

    POST /api/v1/group-payments/split-payments/

    Request body:
        {
            "booking_id": "uuid",
            "total_amount_cents": 10000,
            "participants": [{"user_id": 1, "email": "a@example.com"}],
            "payment_deadline": "2025-01-10T12:00:00Z",
            "split_type": "equal"
        }
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_split_payment",
        summary="Create split payment",
        request=SplitPaymentCreateSerializer,
        responses={201: SplitPaymentSerializer},
        tags=TAGS,
    )
    def post(self, request):
        serializer = SplitPaymentCreateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        ledger = get_ledger()
        result = ledger.create_split_payment(
            booking=data["booking_id"],
            organizer=request.user,
            total_cents=data["total_amount_cents"],
            participants=serializer.participant_list(),
            deadline=data["payment_deadline"],
            split_type=data["split_type"],
            custom_amounts=data.get("custom_amounts"),
            include_organizer=data["include_organizer"],
            fee_handling=data.get("fee_handling"),
            payee_account_id=data["payee_account_id"],
            currency=data["currency"],
            description=data["description"],
        )
        if not result.success:
            return error_response(result)

        split_payment = result.data
        payload = SplitPaymentSerializer(
            split_payment,
            context={"stats": ledger.stats_for(split_payment)},
        ).data
        return Response(payload, status=status.HTTP_201_CREATED)


class SplitPaymentDetailView(APIView):
    """
    Split payment with its shares and collection progress.

    GET /api/v1/group-payments/split-payments/{id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_split_payment",
        summary="Get split payment",
        responses={200: SplitPaymentSerializer},
        tags=TAGS,
    )
    def get(self, request, split_payment_id):
        split_payment = get_object_or_404(
            visible_split_payments(request.user).prefetch_related("individual_payments"),
            pk=split_payment_id,
        )
        stats = get_ledger().stats_for(split_payment)
        return Response(SplitPaymentSerializer(split_payment, context={"stats": stats}).data)


class SplitPaymentCancelView(APIView):
    """
    Organizer cancels a split payment and refunds what was paid.

    POST /api/v1/group-payments/split-payments/{id}/cancel/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="cancel_split_payment",
        summary="Cancel split payment",
        request=None,
        responses={200: CascadeSummarySerializer},
        tags=TAGS,
    )
    def post(self, request, split_payment_id):
        result = get_ledger().cancel_split_payment(split_payment_id, request.user)
        if not result.success:
            return error_response(result)
        return Response(CascadeSummarySerializer(result.data).data)


class UpcomingDeadlinesView(APIView):
    """
    The requester's open split payments due soon, with a risk level.

    GET /api/v1/group-payments/split-payments/upcoming/?hours=48
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_upcoming_deadlines",
        summary="List upcoming payment deadlines",
        parameters=[UpcomingDeadlinesQuerySerializer],
        responses={200: UpcomingDeadlineSerializer(many=True)},
        tags=TAGS,
    )
    def get(self, request):
        query = UpcomingDeadlinesQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = get_ledger().upcoming_deadlines(request.user, hours=query.validated_data["hours"])
        if not result.success:
            return error_response(result)
        return Response(UpcomingDeadlineSerializer(result.data, many=True).data)


# =============================================================================
# Individual Payments
# =============================================================================


class IndividualPaymentPayView(APIView):
    """
    Start paying a share; returns the client secret to confirm the charge.

    POST /api/v1/group-payments/payments/{id}/pay/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="pay_individual_payment",
        summary="Pay share",
        request=None,
        responses={200: PaymentIntentSerializer},
        tags=TAGS,
    )
    def post(self, request, payment_id):
        result = get_ledger().process_individual_payment(payment_id, request.user)
        if not result.success:
            return error_response(result)
        return Response(PaymentIntentSerializer(result.data).data)


class IndividualPaymentConfirmView(APIView):
    """
    Confirm a share after the client completed the charge.

    The gateway is asked for the outcome; nothing the client sends is
    trusted as proof of payment.

    POST /api/v1/group-payments/payments/{id}/confirm/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_individual_payment",
        summary="Confirm share payment",
        request=None,
        responses={200: IndividualPaymentSerializer},
        tags=TAGS,
    )
    def post(self, request, payment_id):
        payment = get_object_or_404(IndividualPayment, pk=payment_id, participant=request.user)
        result = get_ledger().verify_and_confirm(payment.pk)
        if not result.success:
            return error_response(result)
        return Response(IndividualPaymentSerializer(result.data).data)


class IndividualPaymentRetryView(APIView):
    """
    Put a failed share back to pending so it can be paid again.

    POST /api/v1/group-payments/payments/{id}/retry/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="retry_individual_payment",
        summary="Retry failed share",
        request=None,
        responses={200: IndividualPaymentSerializer},
        tags=TAGS,
    )
    def post(self, request, payment_id):
        result = get_ledger().retry_payment(payment_id, request.user)
        if not result.success:
            return error_response(result)
        return Response(IndividualPaymentSerializer(result.data).data)


class PaymentLinkView(APIView):
    """
    Start paying the share a payment link points at.

    POST /api/v1/group-payments/pay/{token}/

    The token itself authorizes the payment, so no login is required.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(
        operation_id="pay_with_link",
        summary="Pay share through a payment link",
        request=None,
        responses={200: PaymentIntentSerializer},
        tags=TAGS,
    )
    def post(self, request, token):
        result = get_ledger().pay_with_token(token)
        if not result.success:
            return error_response(result)
        return Response(PaymentIntentSerializer(result.data).data)
