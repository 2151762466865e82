"""
Exceptions for the group payment engine.

Exception Hierarchy:
    SplitPaymentError (base for the engine, BaseApplicationError)
    ├── SplitPaymentNotFoundError - Split/individual payment lookup failures
    ├── AlreadyPaid - Share already paid or being paid with another id
    ├── DeadlineExpired - Payment attempted after the deadline
    ├── PaymentTokenInvalid - Payment link expired, used or unusable
    ├── RefundFailure - One participant's refund failed
    └── PersistenceError - Store unreachable

    SplitValidationError - Bad split/participant input (ValidationError)
    ├── InvalidParticipantCount - Split across zero or fewer participants
    └── SplitMismatch - Custom amounts don't add up to the total

    NotAuthorized - Requester doesn't own the share (PermissionDeniedError)

    ConcurrencyConflict - Optimistic locking conflict (ConflictError)
    LockAcquisitionError - Distributed lock timeout (ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (ConflictError)

    GatewayError - Payment processor failure (ExternalServiceError)
    ├── GatewayTransientError - Safe to retry with backoff
    └── GatewayPermanentError - Retrying with the same input won't help

Usage:
    from group_payments.exceptions import SplitMismatch, ConcurrencyConflict

    raise SplitMismatch(
        "Custom amounts (900) don't match total (1000)",
        details={"total_cents": 1000, "sum_cents": 900},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Domain Exceptions
# =============================================================================


class SplitPaymentError(BaseApplicationError):
    """Base exception for group payment operations."""

    default_error_code: str = "SPLIT_PAYMENT_ERROR"


class SplitPaymentNotFoundError(NotFoundError):
    """Raised when a split payment, share or token lookup fails."""

    default_error_code: str = "SPLIT_PAYMENT_NOT_FOUND"


class AlreadyPaid(SplitPaymentError):
    """
    Raised when a share has already been paid.

    Also raised when a confirmation arrives for a share that was paid
    under a different gateway confirmation id.
    """

    default_error_code: str = "ALREADY_PAID"
    http_status: int = 409


class DeadlineExpired(SplitPaymentError):
    """Raised when a participant tries to pay after the deadline."""

    default_error_code: str = "DEADLINE_EXPIRED"
    http_status: int = 410


class PaymentTokenInvalid(SplitPaymentError):
    """Raised when a payment link is unknown, expired or already used."""

    default_error_code: str = "PAYMENT_TOKEN_INVALID"
    http_status: int = 410


class RefundFailure(SplitPaymentError):
    """
    Raised when refunding one participant fails.

    A refund cascade catches this per participant and records it; it never
    aborts refunds for the rest of the group.
    """

    default_error_code: str = "REFUND_FAILED"
    http_status: int = 502


class PersistenceError(SplitPaymentError):
    """
    Raised when the database cannot be reached.

    Fatal for the current operation; the scheduler reports the tick as
    failed and tries again on the next interval.
    """

    default_error_code: str = "PERSISTENCE_ERROR"
    http_status: int = 503


class SplitValidationError(ValidationError):
    """
    Raised when split or participant input is rejected.

    Raised before anything is persisted. Every problem found is listed in
    ``details["errors"]``.
    """

    default_error_code: str = "SPLIT_VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        details.setdefault("errors", [message])
        super().__init__(message, error_code=error_code, details=details)

    @property
    def errors(self) -> list[str]:
        return self.details["errors"]


class InvalidParticipantCount(SplitValidationError):
    """Raised when a split is requested for zero or fewer participants."""

    default_error_code: str = "INVALID_PARTICIPANT_COUNT"


class SplitMismatch(SplitValidationError):
    """Raised when custom amounts don't sum exactly to the total."""

    default_error_code: str = "SPLIT_MISMATCH"


class NotAuthorized(PermissionDeniedError):
    """Raised when a user tries to act on someone else's share."""

    default_error_code: str = "NOT_AUTHORIZED"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class ConcurrencyConflict(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The record was modified by another process between read and update.
    The caller must re-read and, if the operation no longer applies, stop.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "CONCURRENCY_CONFLICT"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another process holds the lock and it couldn't be acquired within the
    timeout period.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed in the standard error format.

    Example:
        try:
            payment.mark_paid(confirmation_id)
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot mark payment paid from '{payment.status}'",
                details={"current_state": payment.status, "transition": "mark_paid"},
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment processor failures.

    Attributes:
        gateway_code: Processor's own error code
        decline_code: Card decline code (if applicable)
        is_retryable: Whether the same call may succeed if repeated

    Example:
        try:
            gateway.create_intent(...)
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(e)
            else:
                report_failure(e)
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code
        self.decline_code = decline_code


class GatewayTransientError(GatewayError):
    """
    Rate limiting, connectivity problems, processor 5xx and timeouts.

    The operation may have succeeded on the processor's side; retry with
    the same idempotency key.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class GatewayPermanentError(GatewayError):
    """Card declines, invalid requests and account problems."""

    default_error_code: str = "GATEWAY_REJECTED"
    http_status: int = 402
    is_retryable: bool = False


__all__ = [
    # Domain
    "SplitPaymentError",
    "SplitPaymentNotFoundError",
    "AlreadyPaid",
    "DeadlineExpired",
    "PaymentTokenInvalid",
    "RefundFailure",
    "PersistenceError",
    "SplitValidationError",
    "InvalidParticipantCount",
    "SplitMismatch",
    "NotAuthorized",
    # Concurrency control
    "ConcurrencyConflict",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    # Gateway
    "GatewayError",
    "GatewayTransientError",
    "GatewayPermanentError",
]
