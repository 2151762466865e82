"""
State machine enums for group payment models.

This module exposes the state enums used by group payment models with
django-fsm.
"""

from group_payments.state_machines.states import (
    EnforcementOutcome,
    FeeHandling,
    IndividualPaymentStatus,
    RefundStatus,
    ReminderStatus,
    SplitPaymentStatus,
    SplitType,
)

__all__ = [
    "EnforcementOutcome",
    "FeeHandling",
    "IndividualPaymentStatus",
    "RefundStatus",
    "ReminderStatus",
    "SplitPaymentStatus",
    "SplitType",
]
