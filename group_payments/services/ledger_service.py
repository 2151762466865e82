"""
Ledger for split payments and their participant shares.

SplitPaymentLedger owns the lifecycle of a SplitPayment and its
IndividualPayment children: creation, intent creation, confirmation,
failure and retry, cancellation and payment links. After every write to a
share the aggregate status is recomputed from the shares inside the same
transaction (see group_payments.status.derive_status).

Usage:
    from group_payments.services import SplitPaymentLedger

    ledger = SplitPaymentLedger()
    result = ledger.create_split_payment(
        booking=booking,
        organizer=request.user,
        total_cents=10000,
        participants=[Participant(user_id=u.id, email=u.email) for u in users],
        deadline=timezone.now() + timedelta(hours=48),
    )
    if not result.success:
        return Response(result.to_response(), status=result.http_status)

    intent = ledger.process_individual_payment(share.id, requester=request.user)
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone

from django_fsm import TransitionNotAllowed

from core.exceptions import BaseApplicationError
from core.helpers import generate_token
from core.services import BaseService, ServiceResult

from group_payments.adapters import IdempotencyKeyGenerator, StripeGateway
from group_payments.calculator import SplitCalculator
from group_payments.conf import SplitPaymentSettings
from group_payments.exceptions import (
    AlreadyPaid,
    ConcurrencyConflict,
    DeadlineExpired,
    GatewayPermanentError,
    InvalidStateTransitionError,
    NotAuthorized,
    PaymentTokenInvalid,
    PersistenceError,
    SplitPaymentNotFoundError,
    SplitValidationError,
)
from group_payments.locks import ShareLock, check_version
from group_payments.models import IndividualPayment, PaymentToken, SplitPayment
from group_payments.services.refund_cascade import RefundCascade
from group_payments.state_machines import (
    IndividualPaymentStatus,
    SplitPaymentStatus,
    SplitType,
)
from group_payments.status import assess_risk, compute_stats, derive_status
from group_payments.types import PaymentIntentHandle

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime
    from typing import Any

    from bookings.models import Booking
    from group_payments.adapters import PaymentGateway
    from group_payments.types import CascadeSummary, Participant, PaymentStats


# =============================================================================
# Constants
# =============================================================================

# Refund reason recorded when the organizer cancels
ORGANIZER_CANCELLED = "organizer_cancelled"

UNAUTHORIZED_MESSAGE = "Unauthorized: User cannot pay for another user's portion"


def apply_transition(instance: Any, name: str, *args: Any) -> None:
    """
    Call an FSM transition, translating TransitionNotAllowed.

    Raises:
        InvalidStateTransitionError: The transition isn't allowed from the
            instance's current status
    """
    try:
        getattr(instance, name)(*args)
    except TransitionNotAllowed as e:
        raise InvalidStateTransitionError(
            f"Cannot {name.replace('_', ' ')} {type(instance).__name__} "
            f"in status '{instance.status}'",
            details={"current_state": instance.status, "transition": name},
        ) from e


class SplitPaymentLedger(BaseService):
    """
    Service for the split payment lifecycle.

    Concurrency:
        - Intent creation holds a Redis lock per share, so two clicks on
          "pay" never create two intents
        - Share transitions go through check_version (row lock + version
          match); the loser gets ConcurrencyConflict
        - The aggregate row is locked while its status is recomputed, so
          racing recomputations serialize and converge

    Args:
        config: Engine configuration (default: from settings)
        gateway: Payment processor (default: StripeGateway)
        refund_cascade: Cascade used on cancellation (default: built from
            config and gateway)
    """

    def __init__(
        self,
        config: SplitPaymentSettings | None = None,
        gateway: PaymentGateway | None = None,
        refund_cascade: RefundCascade | None = None,
    ):
        self.config = config or SplitPaymentSettings.from_settings()
        self.gateway = gateway or StripeGateway(max_retries=self.config.gateway_max_retries)
        self.calculator = SplitCalculator(self.config)
        self.refund_cascade = refund_cascade or RefundCascade(self.config, self.gateway)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_split_payment(
        self,
        booking: Booking,
        organizer: Any,
        total_cents: int,
        participants: Sequence[Participant],
        deadline: datetime,
        split_type: str = SplitType.EQUAL,
        custom_amounts: Sequence[int] | None = None,
        include_organizer: bool = True,
        fee_handling: str | None = None,
        payee_account_id: str = "",
        currency: str = "usd",
        description: str = "",
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[SplitPayment]:
        """
        Validate, split and persist a new split payment with its shares.

        Nothing is written unless every check passes; the aggregate and all
        shares are created in one transaction.

        When the organizer pays their own part outside the group
        (``include_organizer=False``), the split payment collects only the
        participants' portion and the organizer's share is kept in
        ``metadata["split"]["organizer_share_cents"]``.

        Returns:
            ServiceResult containing the SplitPayment
        """
        now = now or timezone.now()
        fee_handling = fee_handling or self.config.fee_handling
        logger = self.get_logger()

        try:
            self.calculator.validate(total_cents, participants)
            self.calculator.validate_deadline(deadline, now)
            split, fees = self.calculator.calculate(
                total_cents,
                len(participants),
                split_type=split_type,
                custom_amounts=custom_amounts,
                include_organizer=include_organizer,
                fee_handling=fee_handling,
            )
            users = self._resolve_participants(participants)
        except SplitValidationError as e:
            return self.failure_from(e)

        if split_type == SplitType.CUSTOM:
            share_fees = self.calculator.share_fees(split.splits, fee_handling)
        else:
            share_fees = [fees.participant_fee] * len(split.splits)

        collect_cents = split.total_verification
        snapshot = {
            "split_type": split_type,
            "splits": split.splits,
            "base_amount": split.base_amount,
            "remainder": split.remainder,
            "share_fees": share_fees,
            "fee_handling": fee_handling,
            "fee_per_transaction": fees.fee_per_transaction,
            "total_fees": fees.total_fees,
            "organizer_fee": fees.organizer_fee,
            "include_organizer": include_organizer,
            "organizer_share_cents": total_cents - collect_cents,
        }

        try:
            with self.atomic():
                split_payment = SplitPayment.objects.create(
                    booking=booking,
                    organizer=organizer,
                    payee_account_id=payee_account_id,
                    total_amount_cents=collect_cents,
                    currency=currency.lower(),
                    split_type=split_type,
                    fee_handling=fee_handling,
                    participant_count=len(participants),
                    payment_deadline=deadline,
                    description=description,
                    metadata={**(metadata or {}), "split": snapshot},
                )
                for participant, amount, fee in zip(participants, split.splits, share_fees):
                    IndividualPayment.objects.create(
                        split_payment=split_payment,
                        participant=users[str(participant.user_id)],
                        amount_due_cents=amount,
                        fee_cents=fee,
                        payment_deadline=deadline,
                        participant_email=participant.email,
                        participant_name=participant.name,
                    )
        except DatabaseError as e:
            return self.persistence_failure(e, "create_split_payment")

        logger.info(
            "Split payment created",
            extra={
                "split_payment_id": str(split_payment.id),
                "booking_id": str(booking.id),
                "total_amount_cents": collect_cents,
                "participant_count": len(participants),
                "split_type": split_type,
            },
        )
        return ServiceResult.success(split_payment)

    @staticmethod
    def _resolve_participants(participants: Sequence[Participant]) -> dict[str, Any]:
        user_model = get_user_model()
        ids = [p.user_id for p in participants]
        users = {str(u.pk): u for u in user_model.objects.filter(pk__in=ids)}
        missing = [str(i) for i in ids if str(i) not in users]
        if missing:
            raise SplitValidationError(
                "Unknown participant",
                details={"errors": [f"Unknown participant: {i}" for i in missing]},
            )
        return users

    # =========================================================================
    # Queries
    # =========================================================================

    def get_split_payment(self, split_payment_id: uuid.UUID | str) -> ServiceResult[SplitPayment]:
        try:
            return ServiceResult.success(self._get_split_payment(split_payment_id))
        except SplitPaymentNotFoundError as e:
            return self.failure_from(e)

    def stats(self, children: Iterable[IndividualPayment]) -> PaymentStats:
        """Aggregate totals and counts over a set of shares."""
        return compute_stats(children, self.config.minimum_payment_threshold)

    def stats_for(self, split_payment: SplitPayment) -> PaymentStats:
        return self.stats(split_payment.individual_payments.all())

    def upcoming_deadlines(
        self,
        organizer: Any,
        hours: int = 48,
        now: datetime | None = None,
    ) -> ServiceResult[list[dict[str, Any]]]:
        """
        Open split payments of ``organizer`` due within ``hours``.

        Groups whose deadline already passed but that haven't been enforced
        yet are included too, with a negative hours_until_deadline.

        Returns:
            ServiceResult containing dicts with split_payment, stats,
            hours_until_deadline and risk_level, soonest first
        """
        now = now or timezone.now()
        split_payments = (
            SplitPayment.objects.filter(
                organizer=organizer,
                status__in=SplitPaymentStatus.open_states(),
                payment_deadline__lte=now + timedelta(hours=hours),
            )
            .prefetch_related("individual_payments")
            .order_by("payment_deadline")
        )

        upcoming = []
        for split_payment in split_payments:
            stats = self.stats_for(split_payment)
            hours_left = (split_payment.payment_deadline - now).total_seconds() / 3600
            upcoming.append(
                {
                    "split_payment": split_payment,
                    "stats": stats,
                    "hours_until_deadline": round(hours_left, 1),
                    "risk_level": assess_risk(stats, hours_left),
                }
            )
        return ServiceResult.success(upcoming)

    # =========================================================================
    # Paying
    # =========================================================================

    def process_individual_payment(
        self,
        individual_id: uuid.UUID | str,
        requester: Any,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentIntentHandle]:
        """
        Start payment of a share by creating a gateway intent.

        Calling again while the share is PROCESSING returns the intent
        already created. If the gateway can't be reached the share is left
        as it was; retrying reuses the same idempotency key, so at most one
        intent is ever created per attempt.

        Returns:
            ServiceResult containing a PaymentIntentHandle
        """
        try:
            payment = self._get_individual(individual_id)
            if payment.participant_id != getattr(requester, "pk", None):
                raise NotAuthorized(UNAUTHORIZED_MESSAGE)
            return ServiceResult.success(self._start_payment(payment, now or timezone.now()))
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "process_individual_payment")

    def _start_payment(self, payment: IndividualPayment, now: datetime) -> PaymentIntentHandle:
        with ShareLock.for_intent(payment.id):
            # Re-read under the lock; another request may have got here first
            payment = self._get_individual(payment.id)

            if (
                payment.status == IndividualPaymentStatus.PROCESSING
                and payment.gateway_intent_id
            ):
                return self._handle(payment, created=False)

            self._check_payable(payment, now)

            attempt = payment.attempt_count + 1
            split_payment = payment.split_payment
            intent = self.gateway.create_intent(
                amount_cents=payment.charge_amount_cents,
                currency=split_payment.currency,
                payee_account=split_payment.payee_account_id or None,
                metadata={
                    "individual_payment_id": str(payment.id),
                    "split_payment_id": str(split_payment.id),
                    "booking_id": str(split_payment.booking_id),
                },
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_intent", payment.id, attempt
                ),
            )

            with self.atomic():
                locked = check_version(IndividualPayment, payment.pk, payment.version)
                apply_transition(locked, "start_processing", intent.id, intent.client_secret)
                locked.attempt_count = attempt
                locked.save()

        self.get_logger().info(
            "Payment intent created",
            extra={
                "individual_payment_id": str(locked.id),
                "payment_intent_id": intent.id,
                "amount_cents": locked.charge_amount_cents,
                "attempt": attempt,
            },
        )
        return self._handle(locked, created=True)

    @staticmethod
    def _check_payable(payment: IndividualPayment, now: datetime) -> None:
        if payment.status in (
            IndividualPaymentStatus.PAID,
            IndividualPaymentStatus.REFUNDED,
            IndividualPaymentStatus.PROCESSING,
        ):
            raise AlreadyPaid(
                "Payment has already been processed",
                details={"individual_payment_id": str(payment.id), "status": payment.status},
            )
        if payment.status == IndividualPaymentStatus.EXPIRED or now >= payment.payment_deadline:
            raise DeadlineExpired(
                "Payment deadline has passed",
                details={
                    "individual_payment_id": str(payment.id),
                    "payment_deadline": payment.payment_deadline.isoformat(),
                },
            )
        if payment.status == IndividualPaymentStatus.FAILED:
            raise InvalidStateTransitionError(
                "Payment failed; retry it before paying again",
                details={"individual_payment_id": str(payment.id), "current_state": payment.status},
            )
        if not payment.split_payment.is_open:
            raise InvalidStateTransitionError(
                "Split payment is no longer collecting payments",
                details={
                    "split_payment_id": str(payment.split_payment_id),
                    "current_state": payment.split_payment.status,
                },
            )
        if payment.charge_amount_cents <= 0:
            raise SplitValidationError(
                "Nothing to charge for this share",
                details={
                    "individual_payment_id": str(payment.id),
                    "amount_cents": payment.charge_amount_cents,
                },
            )

    @staticmethod
    def _handle(payment: IndividualPayment, created: bool) -> PaymentIntentHandle:
        return PaymentIntentHandle(
            individual_payment_id=str(payment.id),
            intent_id=payment.gateway_intent_id,
            client_secret=payment.gateway_client_secret or None,
            amount_cents=payment.charge_amount_cents,
            created=created,
        )

    # =========================================================================
    # Confirmation
    # =========================================================================

    def confirm_payment(
        self,
        individual_id: uuid.UUID | str,
        confirmation_id: str,
    ) -> ServiceResult[IndividualPayment]:
        """
        Record that the gateway confirmed a share's charge.

        Confirming twice with the same confirmation id succeeds without
        changing anything. A different confirmation id for a share that is
        already paid is rejected with AlreadyPaid.

        Returns:
            ServiceResult containing the updated IndividualPayment
        """
        try:
            payment = self._get_individual(individual_id)
            return ServiceResult.success(self._confirm(payment, confirmation_id))
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "confirm_payment")

    def _confirm(self, payment: IndividualPayment, confirmation_id: str) -> IndividualPayment:
        if payment.status != IndividualPaymentStatus.PAID:
            try:
                return self._mark_paid(payment, confirmation_id)
            except ConcurrencyConflict:
                # Lost the race: re-read once and resolve against the winner
                payment = self._get_individual(payment.pk)

        if payment.status == IndividualPaymentStatus.PAID:
            return self._already_confirmed(payment, confirmation_id)
        return self._mark_paid(payment, confirmation_id)

    def _mark_paid(self, payment: IndividualPayment, confirmation_id: str) -> IndividualPayment:
        with self.atomic():
            locked = check_version(IndividualPayment, payment.pk, payment.version)
            apply_transition(locked, "mark_paid", confirmation_id)
            locked.save()
            self.recompute(locked.split_payment_id)

        self.get_logger().info(
            "Payment confirmed",
            extra={
                "individual_payment_id": str(locked.id),
                "confirmation_id": confirmation_id,
                "amount_paid_cents": locked.amount_paid_cents,
            },
        )
        return locked

    def _already_confirmed(self, payment: IndividualPayment, confirmation_id: str) -> IndividualPayment:
        if payment.gateway_confirmation_id == confirmation_id:
            self.get_logger().info(
                "Duplicate confirmation ignored",
                extra={
                    "individual_payment_id": str(payment.id),
                    "confirmation_id": confirmation_id,
                },
            )
            return payment
        raise AlreadyPaid(
            "Payment has already been processed",
            details={
                "individual_payment_id": str(payment.id),
                "confirmation_id": payment.gateway_confirmation_id,
            },
        )

    def verify_and_confirm(self, individual_id: uuid.UUID | str) -> ServiceResult[IndividualPayment]:
        """
        Ask the gateway whether a processing share's intent settled.

        - succeeded: the share is confirmed
        - declined or canceled: the share is marked FAILED
        - still settling or gateway unreachable: nothing changes
        """
        try:
            payment = self._get_individual(individual_id)
            if payment.status == IndividualPaymentStatus.PAID:
                return ServiceResult.success(payment)
            if (
                payment.status != IndividualPaymentStatus.PROCESSING
                or not payment.gateway_intent_id
            ):
                raise InvalidStateTransitionError(
                    "Payment has no intent awaiting confirmation",
                    details={"individual_payment_id": str(payment.id), "current_state": payment.status},
                )
            try:
                confirmation_id = self.gateway.confirm_intent(payment.gateway_intent_id)
            except GatewayPermanentError as e:
                self._fail(payment, e.message)
                raise
            return ServiceResult.success(self._confirm(payment, confirmation_id))
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "verify_and_confirm")

    # =========================================================================
    # Failure and Retry
    # =========================================================================

    def fail_payment(
        self,
        individual_id: uuid.UUID | str,
        reason: str,
    ) -> ServiceResult[IndividualPayment]:
        """
        Record that the gateway declined a share's charge.

        Only call this on a definite decline; a timeout is not a failure.
        """
        try:
            payment = self._get_individual(individual_id)
            return ServiceResult.success(self._fail(payment, reason))
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "fail_payment")

    def _fail(self, payment: IndividualPayment, reason: str) -> IndividualPayment:
        with self.atomic():
            locked = check_version(IndividualPayment, payment.pk, payment.version)
            apply_transition(locked, "mark_failed", reason)
            locked.save()
        self.get_logger().warning(
            "Payment failed",
            extra={"individual_payment_id": str(locked.id), "reason": reason},
        )
        return locked

    def retry_payment(
        self,
        individual_id: uuid.UUID | str,
        requester: Any,
        now: datetime | None = None,
    ) -> ServiceResult[IndividualPayment]:
        """
        Put a failed share back to PENDING so it can be paid again.
        """
        now = now or timezone.now()
        try:
            payment = self._get_individual(individual_id)
            if payment.participant_id != getattr(requester, "pk", None):
                raise NotAuthorized(UNAUTHORIZED_MESSAGE)
            if now >= payment.payment_deadline:
                raise DeadlineExpired(
                    "Payment deadline has passed",
                    details={"individual_payment_id": str(payment.id)},
                )
            with self.atomic():
                locked = check_version(IndividualPayment, payment.pk, payment.version)
                apply_transition(locked, "reset_for_retry")
                locked.save()
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "retry_payment")

        self.get_logger().info(
            "Payment reset for retry",
            extra={"individual_payment_id": str(locked.id), "attempt_count": locked.attempt_count},
        )
        return ServiceResult.success(locked)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_split_payment(
        self,
        split_payment_id: uuid.UUID | str,
        requester: Any,
        reason: str = ORGANIZER_CANCELLED,
    ) -> ServiceResult[CascadeSummary]:
        """
        Organizer cancels a split payment that is still collecting.

        Unpaid shares expire, the booking is cancelled and every paid share
        is refunded. Refund failures are reported in the returned summary;
        the deadline scheduler retries them later.

        Returns:
            ServiceResult containing the refund CascadeSummary
        """
        try:
            split_payment = self._get_split_payment(split_payment_id)
            if split_payment.organizer_id != getattr(requester, "pk", None):
                raise NotAuthorized("Only the organizer can cancel this split payment")

            with self.atomic():
                split_payment = SplitPayment.objects.select_for_update().get(pk=split_payment.pk)
                apply_transition(split_payment, "cancel")
                split_payment.save()
                self.expire_pending(split_payment)
                has_paid = split_payment.individual_payments.filter(
                    status=IndividualPaymentStatus.PAID
                ).exists()
                split_payment.booking.cancel(reason=reason, refunded=has_paid)

            summary = self.refund_cascade.run(split_payment, reason=reason)
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "cancel_split_payment")

        self.get_logger().info(
            "Split payment cancelled",
            extra={"split_payment_id": str(split_payment.id), **summary.to_dict()},
        )
        return ServiceResult.success(summary)

    # =========================================================================
    # Payment Links
    # =========================================================================

    def issue_payment_token(
        self,
        individual_id: uuid.UUID | str,
        ttl_hours: int | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentToken]:
        """
        Create a single-use payment link for a share.

        The token expires after ``ttl_hours`` (default:
        PAYMENT_TOKEN_TTL_HOURS), and never later than the share's deadline.
        """
        now = now or timezone.now()
        try:
            payment = self._get_individual(individual_id)
            if payment.status in IndividualPaymentStatus.terminal_states():
                raise AlreadyPaid(
                    "Payment has already been processed",
                    details={"individual_payment_id": str(payment.id)},
                )
            ttl_hours = ttl_hours if ttl_hours is not None else self.config.payment_token_ttl_hours
            expires_at = payment.payment_deadline
            if ttl_hours is not None:
                expires_at = min(expires_at, now + timedelta(hours=ttl_hours))

            token = PaymentToken.objects.create(
                token=generate_token(32),
                individual_payment=payment,
                expires_at=expires_at,
            )
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "issue_payment_token")

        return ServiceResult.success(token)

    def payment_link(self, token: PaymentToken) -> str:
        return f"{self.config.payment_link_base_url.rstrip('/')}/pay/{token.token}"

    def pay_with_token(
        self,
        token: str,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentIntentHandle]:
        """
        Start payment of the share a payment link points at.

        The link is consumed once the intent exists.
        """
        now = now or timezone.now()
        try:
            payment_token = (
                PaymentToken.objects.select_related("individual_payment")
                .filter(token=token)
                .first()
            )
            if payment_token is None:
                raise PaymentTokenInvalid("Payment link is invalid")
            reason = payment_token.invalid_reason(now)
            if reason:
                raise PaymentTokenInvalid(reason, details={"token_id": str(payment_token.id)})

            handle = self._start_payment(payment_token.individual_payment, now)
            PaymentToken.objects.filter(pk=payment_token.pk, used_at__isnull=True).update(
                used_at=now
            )
        except BaseApplicationError as e:
            return self.failure_from(e)
        except DatabaseError as e:
            return self.persistence_failure(e, "pay_with_token")

        return ServiceResult.success(handle)

    # =========================================================================
    # Aggregate Recompute
    # =========================================================================

    def recompute(self, split_payment_id: uuid.UUID | str) -> SplitPayment:
        """
        Re-derive the aggregate status from its shares and persist it.

        Must be called inside the transaction that changed a share. Moves
        the booking's payment status along with it.
        """
        split_payment = (
            SplitPayment.objects.select_for_update()
            .select_related("booking")
            .get(pk=split_payment_id)
        )
        statuses = list(split_payment.individual_payments.values_list("status", flat=True))
        target = derive_status(statuses, split_payment.status)

        if split_payment.move_to(target):
            split_payment.save()
            self.get_logger().info(
                "Split payment status changed",
                extra={"split_payment_id": str(split_payment.id), "status": target},
            )
            booking = split_payment.booking
            if target == SplitPaymentStatus.COMPLETED:
                booking.mark_paid()
            elif target == SplitPaymentStatus.PARTIALLY_PAID:
                booking.mark_partially_paid()
        elif split_payment.status in (
            SplitPaymentStatus.CANCELLED,
            SplitPaymentStatus.CANCELLED_INSUFFICIENT,
        ):
            # A charge settled after the group closed; the scheduler refunds it
            self.get_logger().warning(
                "Payment confirmed on a closed split payment",
                extra={"split_payment_id": str(split_payment.id), "status": split_payment.status},
            )
        return split_payment

    def expire_pending(self, split_payment: SplitPayment) -> int:
        """
        Expire every share of ``split_payment`` that is still PENDING.

        Returns:
            Number of shares expired
        """
        expired = 0
        pending = IndividualPayment.objects.select_for_update().filter(
            split_payment_id=split_payment.id,
            status=IndividualPaymentStatus.PENDING,
        )
        for share in pending:
            share.expire()
            share.save()
            expired += 1
        return expired

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _get_individual(individual_id: uuid.UUID | str) -> IndividualPayment:
        payment = (
            IndividualPayment.objects.select_related("split_payment")
            .filter(pk=individual_id)
            .first()
        )
        if payment is None:
            raise SplitPaymentNotFoundError(
                f"Individual payment {individual_id} not found",
                details={"individual_payment_id": str(individual_id)},
            )
        return payment

    @staticmethod
    def _get_split_payment(split_payment_id: uuid.UUID | str) -> SplitPayment:
        split_payment = (
            SplitPayment.objects.select_related("booking")
            .filter(pk=split_payment_id)
            .first()
        )
        if split_payment is None:
            raise SplitPaymentNotFoundError(
                f"Split payment {split_payment_id} not found",
                details={"split_payment_id": str(split_payment_id)},
            )
        return split_payment

    def persistence_failure(self, exc: DatabaseError, operation: str) -> ServiceResult:
        """Log a database error and turn it into a PersistenceError result."""
        self.get_logger().error(
            "Database error",
            extra={"operation": operation, "error": str(exc)},
            exc_info=True,
        )
        return ServiceResult.from_exception(
            PersistenceError(
                "Payment storage is unavailable, please retry",
                details={"operation": operation},
            )
        )
