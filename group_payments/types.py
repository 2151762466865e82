"""
Value types shared by the group payment services.

These are plain dataclasses with no database access. Services return them
inside ServiceResult, and the cascade-style operations (reminders, refunds,
reconciliation) report one ItemOutcome per item so callers can retry exactly
the failed subset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Split Calculation
# =============================================================================


@dataclass(frozen=True)
class Participant:
    """
    One person a booking is split with.

    Attributes:
        user_id: Primary key of the participant's user account
        email: Contact address for reminders and payment links
        name: Display name (optional)
    """

    user_id: Any
    email: str
    name: str = ""


@dataclass(frozen=True)
class SplitCalculation:
    """
    Result of dividing a total between participants.

    Attributes:
        splits: Amount per participant in cents, in participant order
        base_amount: Floor share before remainder distribution
        remainder: Cents handed out one by one to the first participants
        total_verification: Sum of splits, equal to the amount divided
    """

    splits: list[int]
    base_amount: int
    remainder: int
    total_verification: int


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Processor fee allocation for one share.

    Attributes:
        base_amount: Share before fees
        fee_per_transaction: Fixed plus percentage fee for one charge
        participant_fee: Fee added on top of each participant's share
        adjusted_amount: What each participant is charged
        total_fees: Fees across all transactions
        organizer_fee: Fees absorbed by the organizer
        mode: FeeHandling mode used
    """

    base_amount: int
    fee_per_transaction: int
    participant_fee: int
    adjusted_amount: int
    total_fees: int
    organizer_fee: int
    mode: str


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class PaymentStats:
    """
    Aggregated view of a split payment's shares.

    completion_percentage is total_paid / total_due * 100, or 0 when
    nothing is due.
    """

    total_due: int
    total_paid: int
    remaining: int
    participant_count: int
    paid_count: int
    pending_count: int
    processing_count: int
    failed_count: int
    expired_count: int
    refunded_count: int
    completion_percentage: float
    meets_minimum_threshold: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PaymentIntentHandle:
    """
    What a participant needs to complete a payment client-side.

    Attributes:
        individual_payment_id: Share being paid
        intent_id: Gateway payment intent id
        client_secret: Secret for client-side confirmation
        amount_cents: Amount charged, fees included
        created: False when an existing intent was returned
    """

    individual_payment_id: str
    intent_id: str
    client_secret: str | None
    amount_cents: int
    created: bool = True


# =============================================================================
# Cascades
# =============================================================================


@dataclass(frozen=True)
class ItemOutcome:
    """
    Outcome of one item in a batch operation.

    Attributes:
        item_id: Id of the record the operation ran on
        outcome: Short machine-readable outcome (sent, refunded, failed, ...)
        error: Error message when the item failed
    """

    item_id: str
    outcome: str
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CascadeSummary:
    """
    Summary of a refund cascade.

    Attributes:
        total: Paid shares the cascade attempted
        succeeded: Shares refunded
        failed: Shares whose refund failed (they stay paid)
        outcomes: Per-share outcomes
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def record(self, outcome: ItemOutcome) -> None:
        self.total += 1
        if outcome.failed:
            self.failed += 1
        else:
            self.succeeded += 1
        self.outcomes.append(outcome)

    @property
    def failed_ids(self) -> list[str]:
        return [o.item_id for o in self.outcomes if o.failed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_ids": self.failed_ids,
        }


@dataclass(frozen=True)
class EnforcementResult:
    """
    What enforcement did to one split payment.

    Attributes:
        split_payment_id: Aggregate enforced
        outcome: EnforcementOutcome value
        stats: Stats the decision was based on
        refund_summary: Cascade summary when the group was cancelled
    """

    split_payment_id: str
    outcome: str
    stats: PaymentStats
    refund_summary: CascadeSummary | None = None


@dataclass
class TickReport:
    """
    Everything one scheduler tick did.

    Each list holds per-item outcomes; a failure in one item never
    prevents the others from running.
    """

    reminders: list[ItemOutcome] = field(default_factory=list)
    enforcements: list[ItemOutcome] = field(default_factory=list)
    refund_retries: list[ItemOutcome] = field(default_factory=list)
    reconciliations: list[ItemOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [
            outcome
            for outcome in (
                *self.reminders,
                *self.enforcements,
                *self.refund_retries,
                *self.reconciliations,
            )
            if outcome.failed
        ]

    def to_dict(self) -> dict[str, Any]:
        def count(outcomes: list[ItemOutcome]) -> dict[str, int]:
            return {
                "processed": len(outcomes),
                "failed": sum(1 for o in outcomes if o.failed),
            }

        return {
            "reminders": count(self.reminders),
            "enforcements": count(self.enforcements),
            "refund_retries": count(self.refund_retries),
            "reconciliations": count(self.reconciliations),
        }
