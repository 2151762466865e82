"""
Protocol definitions for the services the payment engine talks to.

The ledger, enforcement policy and scheduler depend on these interfaces
rather than on Stripe or the mail framework, so tests can hand them a
Mock and alternative processors can be plugged in.

Available Protocols:
    PaymentGateway: Payment intent, confirmation and refund operations
    Notifier: Reminder and enforcement notices

Usage:
    from group_payments.adapters.protocols import PaymentGateway

    def charge(gateway: PaymentGateway, share):
        return gateway.create_intent(
            amount_cents=share.charge_amount_cents,
            currency="usd",
            payee_account="acct_123",
            metadata={"individual_payment_id": str(share.id)},
            idempotency_key=f"create_intent:{share.id}:1",
        )

Note:
    - @runtime_checkable allows isinstance() checks
    - Implementations raise group_payments.exceptions.GatewayError
      subclasses, never processor SDK exceptions
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any

    from group_payments.adapters.stripe_adapter import (
        PaymentIntentResult,
        RefundResult,
    )


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Protocol for payment processors.

    Transient failures (timeouts, rate limits, 5xx) raise
    GatewayTransientError; the caller must then assume the operation may
    have happened and retry with the same idempotency key.
    """

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        payee_account: str | None,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntentResult:
        """Create a payment intent the participant confirms client-side."""
        ...

    def confirm_intent(self, intent_id: str) -> str:
        """
        Check an intent has settled.

        Returns:
            Confirmation id (the charge id)

        Raises:
            GatewayPermanentError: The intent failed or was canceled
            GatewayTransientError: The intent hasn't settled yet
        """
        ...

    def retrieve_intent(self, intent_id: str) -> PaymentIntentResult:
        """Fetch an intent's current state."""
        ...

    def refund(
        self,
        confirmation_id: str,
        reason: str,
        amount_cents: int | None,
        idempotency_key: str,
    ) -> RefundResult:
        """Refund a confirmed charge, fully or partially."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """
    Protocol for participant and organizer notifications.

    Implementations raise on delivery failure; callers record the failure
    and carry on with the rest of the batch.
    """

    def send_reminder(self, participant: Any, summary: dict[str, Any]) -> None:
        """
        Remind a participant their share is still unpaid.

        Args:
            participant: IndividualPayment being reminded about
            summary: reminder_type, amount, deadline, hours_remaining,
                payment_link
        """
        ...

    def send_enforcement_notice(self, organizer: Any, summary: dict[str, Any]) -> None:
        """
        Tell the organizer what happened at the deadline.

        Args:
            organizer: User who created the split
            summary: outcome, amount collected, completion, refund counts
        """
        ...
