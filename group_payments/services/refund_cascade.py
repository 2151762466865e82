"""
Refund cascade for split payments that did not go ahead.

When a group is cancelled (deadline missed or organizer cancellation),
every participant who already paid must get their money back. The cascade
refunds each paid share independently: one participant's failed refund is
recorded and reported, never allowed to block the others.

Usage:
    from group_payments.services import RefundCascade

    summary = RefundCascade(config, gateway).run(split_payment)
    if summary.failed:
        # Shares in summary.failed_ids stay PAID and are retried by the
        # deadline scheduler within REFUND_PROCESSING_DAYS
        ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError
from core.services import BaseService

from group_payments.adapters import IdempotencyKeyGenerator
from group_payments.exceptions import GatewayError, RefundFailure
from group_payments.locks import ShareLock, check_version
from group_payments.models import (
    INSUFFICIENT_GROUP_PAYMENTS,
    IndividualPayment,
    PaymentRefund,
)
from group_payments.state_machines import IndividualPaymentStatus
from group_payments.types import CascadeSummary, ItemOutcome

if TYPE_CHECKING:
    from group_payments.adapters import PaymentGateway
    from group_payments.conf import SplitPaymentSettings
    from group_payments.models import SplitPayment


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Stripe reports this when a charge was refunded by an earlier attempt
ALREADY_REFUNDED_CODE = "charge_already_refunded"


class RefundCascade(BaseService):
    """
    Refunds every paid share of a split payment.

    Per share:
        1. Record a PaymentRefund attempt (committed before calling out)
        2. Call the gateway OUTSIDE any transaction
        3. Mark the share REFUNDED and the attempt SUCCEEDED, or record the
           failure on the attempt and leave the share PAID

    Safety Guarantees:
        - A Redis lock per split payment stops two cascades running at once
        - Idempotency keys are derived from the share id and attempt number
        - Shares are only moved to REFUNDED once the gateway confirmed
    """

    def __init__(self, config: SplitPaymentSettings, gateway: PaymentGateway):
        self.config = config
        self.gateway = gateway

    def run(
        self,
        split_payment: SplitPayment,
        reason: str = INSUFFICIENT_GROUP_PAYMENTS,
    ) -> CascadeSummary:
        """
        Refund every share of ``split_payment`` that is currently paid.

        Safe to call again: shares refunded by an earlier run are no longer
        PAID and are skipped.

        Returns:
            CascadeSummary with one outcome per paid share

        Raises:
            LockAcquisitionError: Another cascade is running for this group
        """
        summary = CascadeSummary()
        with ShareLock.for_refunds(split_payment.id) as lock:
            paid_shares = list(
                IndividualPayment.objects.filter(
                    split_payment_id=split_payment.id,
                    status=IndividualPaymentStatus.PAID,
                ).order_by("created_at")
            )

            self.get_logger().info(
                "Starting refund cascade",
                extra={
                    "split_payment_id": str(split_payment.id),
                    "paid_shares": len(paid_shares),
                    "reason": reason,
                },
            )

            for share in paid_shares:
                try:
                    refund_id = self._refund_share(share, reason)
                    summary.record(ItemOutcome(item_id=str(share.id), outcome="refunded"))
                    self.get_logger().info(
                        "Share refunded",
                        extra={
                            "individual_payment_id": str(share.id),
                            "gateway_refund_id": refund_id,
                        },
                    )
                except BaseApplicationError as e:
                    summary.record(
                        ItemOutcome(item_id=str(share.id), outcome="failed", error=str(e))
                    )
                    self.get_logger().warning(
                        "Share refund failed",
                        extra={
                            "individual_payment_id": str(share.id),
                            "error_code": e.error_code,
                            "error": e.message,
                        },
                    )
                lock.extend()

        self.get_logger().info(
            "Refund cascade finished",
            extra={"split_payment_id": str(split_payment.id), **summary.to_dict()},
        )
        return summary

    def _refund_share(self, share: IndividualPayment, reason: str) -> str:
        """
        Refund one share.

        Returns:
            Gateway refund id

        Raises:
            RefundFailure: The gateway refused or couldn't be reached
            ConcurrencyConflict: The share changed while refunding
        """
        # Phase 1: record the attempt
        attempt = share.refunds.count() + 1
        record = PaymentRefund.objects.create(
            individual_payment=share,
            amount_cents=share.charge_amount_cents,
            reason=reason,
            attempt=attempt,
        )

        # Phase 2: call the gateway outside the transaction
        try:
            result = self.gateway.refund(
                confirmation_id=share.gateway_confirmation_id,
                reason=reason,
                amount_cents=None,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "refund", share.id, attempt
                ),
            )
            refund_id = result.id
        except GatewayError as e:
            if e.gateway_code != ALREADY_REFUNDED_CODE:
                record.mark_failed(str(e))
                raise RefundFailure(
                    f"Refund failed for payment {share.id}: {e.message}",
                    details={
                        "individual_payment_id": str(share.id),
                        "attempt": attempt,
                        "retryable": e.is_retryable,
                    },
                ) from e
            refund_id = share.gateway_refund_id or ALREADY_REFUNDED_CODE

        # Phase 3: record the outcome
        with self.atomic():
            locked = check_version(IndividualPayment, share.pk, share.version)
            locked.mark_refunded(refund_id)
            locked.save()
            record.mark_succeeded(refund_id)

        return refund_id
