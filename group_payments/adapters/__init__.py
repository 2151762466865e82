"""
Adapters for the services the payment engine depends on.

Usage:
    from group_payments.adapters import StripeGateway, EmailNotifier
"""

from group_payments.adapters.notifier import EmailNotifier
from group_payments.adapters.protocols import Notifier, PaymentGateway
from group_payments.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    RefundResult,
    StripeGateway,
    backoff_delay,
    call_with_retries,
    is_retryable_gateway_error,
)

__all__ = [
    "EmailNotifier",
    "IdempotencyKeyGenerator",
    "Notifier",
    "PaymentGateway",
    "PaymentIntentResult",
    "RefundResult",
    "StripeGateway",
    "backoff_delay",
    "call_with_retries",
    "is_retryable_gateway_error",
]
