"""
Management command to run one deadline scheduler tick.

Sends due reminders, enforces passed deadlines, retries failed refunds and
reconciles stuck payments. Exits non-zero when the database is unreachable.

Usage:
    python manage.py run_deadline_check
    python manage.py run_deadline_check --dry-run
"""

from django.core.management.base import BaseCommand, CommandError

from group_payments.exceptions import PersistenceError
from group_payments.workers import build_scheduler

SECTIONS = ("reminders", "enforcements", "refund_retries", "reconciliations")


class Command(BaseCommand):
    help = "Run the group payment deadline check once"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without sending, enforcing or refunding",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]

        try:
            report = build_scheduler().tick(dry_run=dry_run)
        except PersistenceError as e:
            raise CommandError(f"Deadline check failed: {e.message}") from e

        for section in SECTIONS:
            outcomes = getattr(report, section)
            label = section.replace("_", " ")
            if not outcomes:
                self.stdout.write(f"{label}: nothing to do")
                continue
            self.stdout.write(f"{label}: {len(outcomes)}")
            for outcome in outcomes:
                line = f"  - {outcome.item_id} | {outcome.outcome}"
                if outcome.failed:
                    self.stdout.write(self.style.WARNING(f"{line} | {outcome.error}"))
                else:
                    self.stdout.write(line)

        if dry_run:
            self.stdout.write(self.style.WARNING("--dry-run mode: No changes made."))
            return

        failures = len(report.failures)
        if failures:
            self.stdout.write(
                self.style.WARNING(f"Deadline check finished with {failures} failed item(s)")
            )
        else:
            self.stdout.write(self.style.SUCCESS("Deadline check finished"))
