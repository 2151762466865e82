"""
Group payment services.

Services:
    SplitPaymentLedger: Split payment lifecycle (create, pay, confirm, cancel)
    EnforcementPolicy: Deadline outcome (proceed partially or cancel)
    RefundCascade: Refunds every paid share of a cancelled group

Usage:
    from group_payments.services import SplitPaymentLedger

    ledger = SplitPaymentLedger()
    result = ledger.confirm_payment(share.id, "ch_123")
"""

from group_payments.services.enforcement import ENFORCEMENT_SKIPPED, EnforcementPolicy
from group_payments.services.ledger_service import SplitPaymentLedger, apply_transition
from group_payments.services.refund_cascade import RefundCascade

__all__ = [
    "ENFORCEMENT_SKIPPED",
    "EnforcementPolicy",
    "RefundCascade",
    "SplitPaymentLedger",
    "apply_transition",
]
