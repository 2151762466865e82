"""
Configuration object for the group payment engine.

SplitPaymentSettings is an immutable snapshot of the ``SPLIT_PAYMENTS``
settings dict (see config/settings.py). Services take it as a constructor
argument instead of reading Django settings on every call, so tests can pass
a tailored configuration without patching settings.

Usage:
    from group_payments.conf import SplitPaymentSettings

    config = SplitPaymentSettings.from_settings()
    ledger = SplitPaymentLedger(config=config)

    # In tests
    config = SplitPaymentSettings(minimum_payment_threshold=Decimal("0.5"))
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal

from django.conf import settings

from group_payments.state_machines import FeeHandling


@dataclass(frozen=True)
class SplitPaymentSettings:
    """
    Tunables for splitting, reminders and deadline enforcement.

    Attributes:
        max_group_size: Most participants a split may have
        min_deadline_hours: Earliest allowed deadline, in hours from creation
        max_deadline_hours: Latest allowed deadline, in hours from creation
        reminder_schedule_hours: Reminder offsets before the deadline
        minimum_payment_threshold: Fraction of the total needed to proceed
        refund_processing_days: Window for retrying failed cascade refunds
        fee_handling: Default FeeHandling mode
        fixed_fee_cents: Fixed part of the processor fee per transaction
        percentage_fee: Percentage part of the processor fee
        enforcement_grace_minutes: Delay after the deadline before enforcing
        enforcement_lease_seconds: Lifetime of an enforcement claim
        payment_token_ttl_hours: Payment link lifetime (None: until deadline)
        reconciliation_delay_minutes: Age after which processing payments
            are polled at the gateway
        payment_link_base_url: Prefix for /pay/<token> links
        gateway_max_retries: Attempts for transient gateway failures
    """

    max_group_size: int = 20
    min_deadline_hours: int = 24
    max_deadline_hours: int = 168
    reminder_schedule_hours: tuple[int, ...] = field(default=(72, 24, 2))
    minimum_payment_threshold: Decimal = Decimal("0.8")
    refund_processing_days: int = 3
    fee_handling: str = FeeHandling.ORGANIZER
    fixed_fee_cents: int = 30
    percentage_fee: Decimal = Decimal("0.029")
    enforcement_grace_minutes: int = 60
    enforcement_lease_seconds: int = 300
    payment_token_ttl_hours: int | None = None
    reconciliation_delay_minutes: int = 15
    payment_link_base_url: str = "http://localhost:3000"
    gateway_max_retries: int = 3

    def __post_init__(self) -> None:
        # Largest offset first, so index i is the i-th reminder sent
        schedule = tuple(sorted({int(h) for h in self.reminder_schedule_hours}, reverse=True))
        object.__setattr__(self, "reminder_schedule_hours", schedule)
        object.__setattr__(
            self, "minimum_payment_threshold", Decimal(str(self.minimum_payment_threshold))
        )
        object.__setattr__(self, "percentage_fee", Decimal(str(self.percentage_fee)))
        if self.fee_handling not in FeeHandling.values:
            raise ValueError(f"Unknown fee handling mode: {self.fee_handling}")
        if not Decimal("0") <= self.minimum_payment_threshold <= Decimal("1"):
            raise ValueError("minimum_payment_threshold must be between 0 and 1")

    @classmethod
    def from_settings(cls) -> SplitPaymentSettings:
        """Build the configuration from ``settings.SPLIT_PAYMENTS``."""
        raw = getattr(settings, "SPLIT_PAYMENTS", {})
        defaults = cls()
        return cls(
            max_group_size=raw.get("MAX_GROUP_SIZE", defaults.max_group_size),
            min_deadline_hours=raw.get(
                "MIN_PAYMENT_DEADLINE_HOURS", defaults.min_deadline_hours
            ),
            max_deadline_hours=raw.get(
                "MAX_PAYMENT_DEADLINE_HOURS", defaults.max_deadline_hours
            ),
            reminder_schedule_hours=tuple(
                raw.get("REMINDER_SCHEDULE_HOURS", defaults.reminder_schedule_hours)
            ),
            minimum_payment_threshold=raw.get(
                "MINIMUM_PAYMENT_THRESHOLD", defaults.minimum_payment_threshold
            ),
            refund_processing_days=raw.get(
                "REFUND_PROCESSING_DAYS", defaults.refund_processing_days
            ),
            fee_handling=raw.get("FEE_HANDLING", defaults.fee_handling),
            fixed_fee_cents=raw.get("FIXED_FEE_CENTS", defaults.fixed_fee_cents),
            percentage_fee=raw.get("PERCENTAGE_FEE", defaults.percentage_fee),
            enforcement_grace_minutes=raw.get(
                "ENFORCEMENT_GRACE_MINUTES", defaults.enforcement_grace_minutes
            ),
            enforcement_lease_seconds=raw.get(
                "ENFORCEMENT_LEASE_SECONDS", defaults.enforcement_lease_seconds
            ),
            payment_token_ttl_hours=raw.get(
                "PAYMENT_TOKEN_TTL_HOURS", defaults.payment_token_ttl_hours
            ),
            reconciliation_delay_minutes=raw.get(
                "RECONCILIATION_DELAY_MINUTES", defaults.reconciliation_delay_minutes
            ),
            payment_link_base_url=raw.get(
                "PAYMENT_LINK_BASE_URL", defaults.payment_link_base_url
            ),
            gateway_max_retries=getattr(
                settings, "STRIPE_MAX_RETRIES", defaults.gateway_max_retries
            ),
        )

    def with_overrides(self, **changes) -> SplitPaymentSettings:
        """Return a copy with some values replaced."""
        return replace(self, **changes)
