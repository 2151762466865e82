"""
Group payment models.

Models:
    SplitPayment: Aggregate root for one booking's group charge
    IndividualPayment: One participant's share
    PaymentToken: Single-use payment link
    PaymentReminder: Reminder dispatch log
    PaymentRefund: Refund attempt per share
    EnforcementLog: Deadline enforcement audit trail
"""

from group_payments.models.enforcement_log import EnforcementLog
from group_payments.models.payment_token import PaymentToken
from group_payments.models.refund import INSUFFICIENT_GROUP_PAYMENTS, PaymentRefund
from group_payments.models.reminder import PaymentReminder
from group_payments.models.split_payment import IndividualPayment, SplitPayment

__all__ = [
    "EnforcementLog",
    "INSUFFICIENT_GROUP_PAYMENTS",
    "IndividualPayment",
    "PaymentRefund",
    "PaymentReminder",
    "PaymentToken",
    "SplitPayment",
]
