"""
Derivation of split payment status and statistics.

Both functions here are pure: they look only at the shares handed to them.
The ledger calls them after every write to a share, inside the same
transaction, and persists whatever they return. Because the result depends
only on current share state, two racing recomputations converge.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from group_payments.state_machines import IndividualPaymentStatus, SplitPaymentStatus
from group_payments.types import PaymentStats

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


# Rank used to keep the aggregate status monotone
_STATUS_RANK = {
    SplitPaymentStatus.PENDING.value: 0,
    SplitPaymentStatus.PARTIALLY_PAID.value: 1,
    SplitPaymentStatus.COMPLETED.value: 2,
    SplitPaymentStatus.COMPLETED_PARTIAL.value: 2,
    SplitPaymentStatus.CANCELLED_INSUFFICIENT.value: 2,
    SplitPaymentStatus.CANCELLED.value: 2,
}


def derive_status(
    child_statuses: Sequence[str],
    current: str = SplitPaymentStatus.PENDING,
    *,
    deadline_passed: bool = False,
    meets_threshold: bool = False,
) -> str:
    """
    Work out the aggregate status from the shares' statuses.

    Rules, first match wins:
    - the current status is terminal: unchanged
    - every share paid: completed
    - deadline passed and threshold met: completed_partial
    - deadline passed and threshold missed: cancelled_insufficient
    - at least one share paid: partially_paid
    - otherwise: unchanged

    The result never ranks below ``current``.

    Args:
        child_statuses: IndividualPaymentStatus of every share
        current: Aggregate status as stored
        deadline_passed: Whether the deadline (plus grace) has elapsed
        meets_threshold: Whether enough has been collected to proceed

    Returns:
        SplitPaymentStatus value
    """
    if current in SplitPaymentStatus.terminal_states():
        return str(current)

    paid = sum(1 for status in child_statuses if status == IndividualPaymentStatus.PAID)

    if child_statuses and paid == len(child_statuses):
        candidate = SplitPaymentStatus.COMPLETED
    elif deadline_passed:
        candidate = (
            SplitPaymentStatus.COMPLETED_PARTIAL
            if meets_threshold
            else SplitPaymentStatus.CANCELLED_INSUFFICIENT
        )
    elif paid > 0:
        candidate = SplitPaymentStatus.PARTIALLY_PAID
    else:
        candidate = current

    if _STATUS_RANK[str(candidate)] < _STATUS_RANK[str(current)]:
        return str(current)
    return str(candidate)


def compute_stats(children: Iterable, threshold: Decimal) -> PaymentStats:
    """
    Aggregate totals and counts over a split payment's shares.

    ``total_paid`` counts only shares currently paid, so a confirmation
    processed twice is never counted twice and refunded shares drop out.

    Args:
        children: IndividualPayment instances (or anything with
            status, amount_due_cents and amount_paid_cents)
        threshold: Minimum fraction of total_due needed to proceed

    Returns:
        PaymentStats
    """
    counts = {status: 0 for status in IndividualPaymentStatus.values}
    total_due = 0
    total_paid = 0
    participant_count = 0

    for child in children:
        participant_count += 1
        counts[str(child.status)] += 1
        total_due += child.amount_due_cents
        if child.status == IndividualPaymentStatus.PAID:
            total_paid += child.amount_paid_cents

    completion = (total_paid / total_due * 100) if total_due > 0 else 0.0
    meets_threshold = total_due > 0 and Decimal(total_paid) >= (
        Decimal(total_due) * Decimal(str(threshold))
    )

    return PaymentStats(
        total_due=total_due,
        total_paid=total_paid,
        remaining=total_due - total_paid,
        participant_count=participant_count,
        paid_count=counts[IndividualPaymentStatus.PAID.value],
        pending_count=counts[IndividualPaymentStatus.PENDING.value],
        processing_count=counts[IndividualPaymentStatus.PROCESSING.value],
        failed_count=counts[IndividualPaymentStatus.FAILED.value],
        expired_count=counts[IndividualPaymentStatus.EXPIRED.value],
        refunded_count=counts[IndividualPaymentStatus.REFUNDED.value],
        completion_percentage=completion,
        meets_minimum_threshold=meets_threshold,
    )


def assess_risk(stats: PaymentStats, hours_until_deadline: float) -> str:
    """
    Rough risk that a group will miss its deadline.

    Returns one of critical, high, medium, low.
    """
    if hours_until_deadline <= 0:
        return "medium" if stats.meets_minimum_threshold else "critical"
    if hours_until_deadline <= 6:
        return "high" if stats.completion_percentage < 50 else "medium"
    if hours_until_deadline <= 24:
        return "medium" if stats.completion_percentage < 25 else "low"
    return "low"
