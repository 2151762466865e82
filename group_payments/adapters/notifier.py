"""
Email implementation of the Notifier protocol.

Uses Django's mail framework, so the backend is whatever EMAIL_BACKEND
names (console locally, SMTP in production, locmem in tests).

Usage:
    from group_payments.adapters import EmailNotifier

    EmailNotifier().send_reminder(share, {
        "reminder_type": "reminder_24h",
        "amount": "33.34 USD",
        "deadline": share.payment_deadline,
        "hours_remaining": 23,
        "payment_link": "https://app.example.com/pay/abc",
    })
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.mail import EmailMultiAlternatives

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


class EmailNotifier:
    """
    Sends payment reminders and enforcement notices by email.

    Delivery errors propagate; the scheduler records them per item.
    """

    def __init__(self, from_email: str | None = None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def _send(self, to: str, subject: str, body: str) -> None:
        message = EmailMultiAlternatives(
            subject=subject,
            body=body,
            from_email=self.from_email,
            to=[to],
        )
        message.send(fail_silently=False)
        logger.info("Email sent", extra={"to": to, "email_subject": subject})

    def send_reminder(self, participant: Any, summary: dict[str, Any]) -> None:
        name = participant.participant_name or "there"
        subject = f"Payment reminder: {summary['hours_remaining']}h left to pay your share"
        lines = [
            f"Hi {name},",
            "",
            f"Your share of {summary['amount']} is still unpaid.",
            f"The payment deadline is {summary['deadline']:%Y-%m-%d %H:%M %Z}.",
        ]
        if summary.get("payment_link"):
            lines += ["", f"Pay now: {summary['payment_link']}"]
        self._send(participant.participant_email, subject, "\n".join(lines))

    def send_enforcement_notice(self, organizer: Any, summary: dict[str, Any]) -> None:
        if summary["outcome"] == "completed_partial":
            subject = "Your group booking is going ahead"
            headline = (
                f"The payment deadline passed with {summary['amount_collected']} "
                f"collected ({summary['completion_percentage']:.0f}%). "
                "The booking has been confirmed."
            )
        else:
            subject = "Your group booking was cancelled"
            headline = (
                f"The payment deadline passed with only {summary['completion_percentage']:.0f}% "
                "collected. The booking was cancelled and participants are being refunded "
                f"({summary['refunds_succeeded']} of {summary['refunds_total']} refunds issued)."
            )
        self._send(organizer.email, subject, headline)
