"""
Stripe implementation of the PaymentGateway protocol.

Every Stripe call goes through StripeGateway._execute, which applies the
configured timeout, turns SDK errors into GatewayTransientError or
GatewayPermanentError and retries transient ones with jittered
exponential backoff. Idempotency keys are passed through unchanged on
every retry, so a retried call can never charge or refund twice.

Settings:
    STRIPE_SECRET_KEY
    STRIPE_API_TIMEOUT_SECONDS (default 10)
    STRIPE_MAX_RETRIES (default 3)
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import stripe
from django.conf import settings

from group_payments.exceptions import (
    GatewayError,
    GatewayPermanentError,
    GatewayTransientError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Reason Stripe records on refunds issued for a failed group
STRIPE_REFUND_REASON = "requested_by_customer"

# PaymentIntent statuses after which the intent can no longer succeed
FAILED_INTENT_STATUSES = frozenset({"canceled", "requires_payment_method"})


@dataclass
class PaymentIntentResult:
    """
    A PaymentIntent as the ledger needs it.

    ``confirmation_id`` is the charge id once the intent succeeded;
    ``raw_response`` keeps the full Stripe payload for debugging.
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    confirmation_id: str | None = None
    failure_message: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def failed(self) -> bool:
        return self.status in FAILED_INTENT_STATUSES


@dataclass
class RefundResult:
    id: str
    amount_cents: int
    currency: str
    status: str
    confirmation_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


class IdempotencyKeyGenerator:
    """
    Deterministic idempotency keys: ``{operation}:{entity_id}:{attempt}:{hash}``.

    The same operation on the same share and attempt always gives the same
    key; a new attempt (a retried payment, a second refund try) gives a
    new one. The hash ties keys to this deployment's SECRET_KEY.
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        prefix = f"{operation}:{entity_id}:{attempt}"
        digest = hashlib.sha256(f"{prefix}:{settings.SECRET_KEY}".encode()).hexdigest()
        return f"{prefix}:{digest[:8]}"


# =============================================================================
# Retries
# =============================================================================


def is_retryable_gateway_error(error: Exception) -> bool:
    return isinstance(error, GatewayError) and error.is_retryable


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential delay for the 0-indexed ``attempt`` plus up to 25% jitter.

    attempt 0 -> 1.0-1.25s, attempt 1 -> 2.0-2.5s, attempt 2 -> 4.0-5.0s
    """
    delay = min(base * 2**attempt, max_delay)
    return delay * (1 + random.uniform(0, 0.25))


def call_with_retries(
    fn: Callable[[], T],
    max_attempts: int,
    sleep: Callable[[float], None] = time.sleep,
    base_delay: float = 1.0,
) -> T:
    """
    Call ``fn``, retrying transient gateway errors up to ``max_attempts``.

    Permanent gateway errors and non-gateway exceptions propagate at once;
    the last transient error propagates when the attempts run out.
    """
    last_attempt = max(1, max_attempts) - 1
    attempt = 0
    while True:
        try:
            return fn()
        except GatewayError as e:
            if attempt == last_attempt or not is_retryable_gateway_error(e):
                raise
            sleep(backoff_delay(attempt, base=base_delay))
            attempt += 1


# =============================================================================
# Error Translation
# =============================================================================

# stripe error -> (retryable, gateway code, client message, log level).
# A None code or message falls back to the SDK error's own.
STRIPE_ERROR_MAP: tuple[tuple[type[Exception], bool, str | None, str | None, int], ...] = (
    (stripe.InvalidRequestError, False, None, None, logging.ERROR),
    (stripe.AuthenticationError, False, "authentication_error",
     "Stripe authentication failed", logging.CRITICAL),
    (stripe.RateLimitError, True, "rate_limit",
     "Stripe rate limit exceeded. Please retry.", logging.WARNING),
    # Includes timeouts: the request may have reached Stripe
    (stripe.APIConnectionError, True, "api_connection_error",
     "Could not connect to Stripe. Please retry.", logging.ERROR),
    (stripe.APIError, True, "api_error",
     "Stripe service error. Please retry.", logging.ERROR),
)


def translate_stripe_error(error: Exception, log_context: dict[str, Any]) -> GatewayError:
    """
    Map an exception raised by the Stripe SDK to a GatewayError and log it.

    Errors Stripe does not classify are treated as transient.
    """
    if isinstance(error, stripe.CardError):
        decline_code = getattr(error, "decline_code", None)
        logger.warning(
            "Card declined by Stripe",
            extra={**log_context, "stripe_code": error.code, "decline_code": decline_code},
        )
        return GatewayPermanentError(
            str(error.user_message or error),
            error_code="CARD_DECLINED",
            gateway_code=error.code,
            decline_code=decline_code,
        )

    for error_class, retryable, code, message, level in STRIPE_ERROR_MAP:
        if isinstance(error, error_class):
            gateway_code = code or getattr(error, "code", None)
            logger.log(
                level,
                "Stripe call failed",
                extra={**log_context, "stripe_error": error_class.__name__, "stripe_code": gateway_code},
            )
            exc_class = GatewayTransientError if retryable else GatewayPermanentError
            return exc_class(message or str(error), gateway_code=gateway_code)

    logger.error(
        "Unexpected error from Stripe",
        extra={**log_context, "error_type": type(error).__name__},
        exc_info=error,
    )
    return GatewayTransientError(f"Unexpected Stripe error: {error}", gateway_code="unknown_error")


# =============================================================================
# Stripe Gateway
# =============================================================================


class StripeGateway:
    """
    PaymentGateway backed by the Stripe API.

    Funds go to the organizer's venue through Stripe Connect
    (``transfer_data.destination``) when a payee account is given.

    Args:
        max_retries: Attempts for transient failures
            (default: settings.STRIPE_MAX_RETRIES)
        sleep: Called between retries (tests pass a mock)
    """

    def __init__(
        self,
        max_retries: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries is None:
            max_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        self.max_retries = max_retries
        self.sleep = sleep

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.new_default_http_client(timeout=timeout)
        # Retrying is done here with backoff; the SDK must not retry as well
        stripe.max_network_retries = 0

    def _execute(self, operation: str, log_context: dict[str, Any], call: Callable[[], T]) -> T:
        self._configure_stripe()
        log_context = {"operation": operation, **log_context}

        def attempt() -> T:
            started = time.monotonic()
            try:
                response = call()
            except GatewayError:
                raise
            except Exception as e:
                duration_ms = round((time.monotonic() - started) * 1000, 1)
                raise translate_stripe_error(e, {**log_context, "duration_ms": duration_ms}) from e
            logger.info(
                "Stripe call succeeded",
                extra={**log_context, "duration_ms": round((time.monotonic() - started) * 1000, 1)},
            )
            return response

        return call_with_retries(attempt, self.max_retries, sleep=self.sleep)

    # =========================================================================
    # Operations
    # =========================================================================

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        payee_account: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntentResult:
        """
        Create a PaymentIntent for one participant's share (fees included).

        Raises:
            ValueError: Non-positive amount or missing idempotency key
            GatewayPermanentError: Invalid request or account
            GatewayTransientError: Stripe unreachable after retries
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata,
            "payment_method_types": ["card"],
        }
        if payee_account:
            params["transfer_data"] = {"destination": payee_account}

        intent = self._execute(
            "create_payment_intent",
            {"amount_cents": amount_cents, "currency": currency, "idempotency_key": idempotency_key},
            lambda: stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params),
        )
        return self._intent_result(intent)

    def retrieve_intent(self, intent_id: str) -> PaymentIntentResult:
        intent = self._execute(
            "retrieve_payment_intent",
            {"payment_intent_id": intent_id},
            lambda: stripe.PaymentIntent.retrieve(intent_id),
        )
        return self._intent_result(intent)

    def confirm_intent(self, intent_id: str) -> str:
        """
        Return the charge id of a succeeded PaymentIntent.

        Raises:
            GatewayPermanentError: The intent was canceled or declined
            GatewayTransientError: The intent is still settling
        """
        result = self.retrieve_intent(intent_id)
        details = {"payment_intent_id": intent_id}

        if result.succeeded:
            return result.confirmation_id or result.id
        if result.failed:
            raise GatewayPermanentError(
                result.failure_message or f"Payment intent {result.status}",
                gateway_code=result.status,
                details=details,
            )
        raise GatewayTransientError(
            f"Payment intent not settled yet ({result.status})",
            gateway_code=result.status,
            details=details,
        )

    def refund(
        self,
        confirmation_id: str,
        reason: str,
        amount_cents: int | None,
        idempotency_key: str,
    ) -> RefundResult:
        """
        Refund a confirmed charge (``ch_``) or PaymentIntent (``pi_``).

        ``amount_cents=None`` refunds the whole charge. ``reason`` is the
        group-level reason and is kept in the refund's metadata.

        Raises:
            GatewayPermanentError: Already refunded or unknown charge
            GatewayTransientError: Stripe unreachable after retries
        """
        target = "payment_intent" if confirmation_id.startswith("pi_") else "charge"
        params: dict[str, Any] = {
            target: confirmation_id,
            "reason": STRIPE_REFUND_REASON,
            "metadata": {"refund_reason": reason},
        }
        if amount_cents is not None:
            params["amount"] = amount_cents

        refund = self._execute(
            "create_refund",
            {
                "confirmation_id": confirmation_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Refund.create(idempotency_key=idempotency_key, **params),
        )
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            confirmation_id=confirmation_id,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict(),
        )

    @staticmethod
    def _intent_result(intent: Any) -> PaymentIntentResult:
        charge = getattr(intent, "latest_charge", None)
        if charge is not None and not isinstance(charge, str):
            charge = charge.id
        last_error = getattr(intent, "last_payment_error", None)

        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            confirmation_id=charge,
            failure_message=getattr(last_error, "message", None) if last_error else None,
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict(),
        )
