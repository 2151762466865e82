"""
Split calculation for group payments.

Pure functions that divide a booking total into per-participant amounts and
allocate the processor's fees. Nothing here touches the database or the
network, so every rule can be checked with plain unit tests.

All amounts are integer cents. Division uses floor division and the
remainder is handed out one cent at a time, so the shares always add up to
exactly the amount being divided.

Usage:
    from group_payments.calculator import SplitCalculator

    calculator = SplitCalculator(config)
    calculator.validate(10000, participants)
    split = calculator.equal_split(10000, 3)
    # SplitCalculation(splits=[3334, 3333, 3333], base_amount=3333, ...)

    fees = calculator.with_fees(split.base_amount, 3, FeeHandling.PARTICIPANTS)
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from group_payments.exceptions import (
    InvalidParticipantCount,
    SplitMismatch,
    SplitValidationError,
)
from group_payments.state_machines import FeeHandling, SplitType
from group_payments.types import FeeBreakdown, SplitCalculation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from group_payments.conf import SplitPaymentSettings
    from group_payments.types import Participant

# Gateways refuse zero-amount charges
MINIMUM_SHARE_CENTS = 1


class SplitCalculator:
    """
    Divides totals and allocates fees.

    Holds only the configuration (group size limit, deadline window, fee
    rates); every method is deterministic.
    """

    def __init__(self, config: SplitPaymentSettings):
        self.config = config

    # =========================================================================
    # Splitting
    # =========================================================================

    @staticmethod
    def equal_split(
        total_cents: int,
        participant_count: int,
        include_organizer: bool = True,
    ) -> SplitCalculation:
        """
        Divide a total evenly.

        When the organizer is not paying through the split
        (``include_organizer=False``) the total is divided by
        ``participant_count + 1`` and only the participants' shares are
        returned; the organizer's share is settled outside the group.

        Args:
            total_cents: Amount to divide
            participant_count: Number of paying participants
            include_organizer: Whether the participants cover the whole total

        Returns:
            SplitCalculation with one amount per participant

        Raises:
            InvalidParticipantCount: If participant_count <= 0
        """
        if participant_count <= 0:
            raise InvalidParticipantCount(
                "Participant count must be greater than 0",
                details={"participant_count": participant_count},
            )
        if total_cents < 0:
            raise SplitValidationError(
                "Total amount cannot be negative",
                details={"total_cents": total_cents},
            )

        divisor = participant_count if include_organizer else participant_count + 1
        base_amount, remainder = divmod(total_cents, divisor)

        splits = [
            base_amount + (1 if index < remainder else 0)
            for index in range(participant_count)
        ]

        return SplitCalculation(
            splits=splits,
            base_amount=base_amount,
            remainder=remainder,
            total_verification=sum(splits),
        )

    @staticmethod
    def custom_split(total_cents: int, amounts: Sequence[int]) -> SplitCalculation:
        """
        Accept caller-chosen amounts that add up exactly to the total.

        Raises:
            SplitMismatch: If the amounts don't sum to total_cents
            SplitValidationError: If an amount is negative or missing
        """
        if not amounts:
            raise InvalidParticipantCount(
                "At least one custom amount is required",
                details={"participant_count": 0},
            )
        if any(int(amount) != amount or amount < 0 for amount in amounts):
            raise SplitValidationError(
                "Custom amounts must be whole, non-negative cents",
                details={"amounts": list(amounts)},
            )

        amount_sum = sum(amounts)
        if amount_sum != total_cents:
            raise SplitMismatch(
                f"Custom amounts ({amount_sum}) don't match total ({total_cents})",
                details={"total_cents": total_cents, "sum_cents": amount_sum},
            )

        return SplitCalculation(
            splits=[int(amount) for amount in amounts],
            base_amount=min(amounts),
            remainder=0,
            total_verification=amount_sum,
        )

    # =========================================================================
    # Fees
    # =========================================================================

    def transaction_fee(self, amount_cents: int) -> int:
        """Fixed plus percentage processor fee for one charge, half-up rounded."""
        percentage_part = (Decimal(amount_cents) * self.config.percentage_fee).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return self.config.fixed_fee_cents + int(percentage_part)

    def with_fees(
        self,
        base_amount: int,
        participant_count: int,
        mode: str | None = None,
    ) -> FeeBreakdown:
        """
        Allocate processor fees according to a fee handling mode.

        - organizer: shares are unchanged, the organizer absorbs every fee
        - participants: each participant pays the fee on their own charge
        - split: the fee total is spread evenly, rounding up

        Args:
            base_amount: Share before fees
            participant_count: Number of charges
            mode: FeeHandling value (defaults to the configured mode)

        Returns:
            FeeBreakdown for one share
        """
        if participant_count <= 0:
            raise InvalidParticipantCount(
                "Participant count must be greater than 0",
                details={"participant_count": participant_count},
            )
        mode = mode or self.config.fee_handling
        fee = self.transaction_fee(base_amount)
        total_fees = fee * participant_count

        if mode == FeeHandling.PARTICIPANTS:
            participant_fee = fee
        elif mode == FeeHandling.SPLIT:
            participant_fee = math.ceil(total_fees / participant_count)
        elif mode == FeeHandling.ORGANIZER:
            participant_fee = 0
        else:
            raise SplitValidationError(
                f"Unknown fee handling mode: {mode}",
                details={"fee_handling": mode},
            )

        return FeeBreakdown(
            base_amount=base_amount,
            fee_per_transaction=fee,
            participant_fee=participant_fee,
            adjusted_amount=base_amount + participant_fee,
            total_fees=total_fees,
            organizer_fee=total_fees if mode == FeeHandling.ORGANIZER else 0,
            mode=mode,
        )

    def share_fees(self, splits: Sequence[int], mode: str | None = None) -> list[int]:
        """
        Fee added to each share when the shares differ (custom splits).

        Same modes as with_fees, but each fee is worked out on the share it
        applies to rather than on a common base amount.
        """
        mode = mode or self.config.fee_handling
        fees = [self.transaction_fee(amount) for amount in splits]
        if mode == FeeHandling.PARTICIPANTS:
            return fees
        if mode == FeeHandling.SPLIT:
            per_share = math.ceil(sum(fees) / len(splits)) if splits else 0
            return [per_share] * len(splits)
        return [0] * len(splits)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, total_cents: int, participants: Sequence[Participant]) -> None:
        """
        Reject bad input before anything is persisted.

        Collects every problem rather than stopping at the first one.

        Raises:
            SplitValidationError: With all messages in details["errors"]
        """
        errors: list[str] = []

        if total_cents is None or total_cents <= 0:
            errors.append("Total amount must be greater than 0")

        if not participants:
            errors.append("At least one participant is required")
        elif len(participants) > self.config.max_group_size:
            errors.append(f"Group size exceeds maximum of {self.config.max_group_size}")

        user_ids = [str(p.user_id) for p in participants if p.user_id is not None]
        emails = [p.email.strip().lower() for p in participants if p.email]
        if len(set(user_ids)) != len(user_ids) or len(set(emails)) != len(emails):
            errors.append("Duplicate participants detected")

        if errors:
            raise SplitValidationError(
                errors[0] if len(errors) == 1 else "Validation failed",
                details={"errors": errors},
            )

    def validate_deadline(self, deadline: datetime, now: datetime) -> None:
        """
        Check the deadline falls inside the configured window.

        Raises:
            SplitValidationError: If the deadline is too soon or too far out
        """
        earliest = now + timedelta(hours=self.config.min_deadline_hours)
        latest = now + timedelta(hours=self.config.max_deadline_hours)
        if deadline < earliest:
            raise SplitValidationError(
                "Payment deadline must be at least "
                f"{self.config.min_deadline_hours} hours from now",
                details={"payment_deadline": deadline.isoformat()},
            )
        if deadline > latest:
            raise SplitValidationError(
                "Payment deadline cannot be more than "
                f"{self.config.max_deadline_hours} hours from now",
                details={"payment_deadline": deadline.isoformat()},
            )

    # =========================================================================
    # Combined
    # =========================================================================

    def calculate(
        self,
        total_cents: int,
        participant_count: int,
        split_type: str = SplitType.EQUAL,
        custom_amounts: Sequence[int] | None = None,
        include_organizer: bool = True,
        fee_handling: str | None = None,
    ) -> tuple[SplitCalculation, FeeBreakdown]:
        """
        Compute shares and the fee allocation for a new split payment.

        Raises:
            SplitValidationError: On any invalid combination of inputs
        """
        if split_type == SplitType.CUSTOM:
            if custom_amounts is None or len(custom_amounts) != participant_count:
                raise SplitValidationError(
                    "Custom split requires one amount per participant",
                    details={
                        "participant_count": participant_count,
                        "amount_count": len(custom_amounts or []),
                    },
                )
            split = self.custom_split(total_cents, custom_amounts)
        elif split_type == SplitType.EQUAL:
            split = self.equal_split(total_cents, participant_count, include_organizer)
        else:
            raise SplitValidationError(
                f"Unknown split type: {split_type}",
                details={"split_type": split_type},
            )

        if min(split.splits) < MINIMUM_SHARE_CENTS:
            raise SplitValidationError(
                "Every share must be at least 1 cent",
                details={"splits": split.splits},
            )

        fees = self.with_fees(split.base_amount, participant_count, fee_handling)
        return split, fees
