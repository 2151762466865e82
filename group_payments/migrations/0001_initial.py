import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
        (
            "id",
            models.UUIDField(
                default=uuid.uuid4,
                editable=False,
                help_text="Unique identifier for this record",
                primary_key=True,
                serialize=False,
            ),
        ),
    ]


def _version():
    return (
        "version",
        models.PositiveIntegerField(
            default=1,
            help_text="Version for optimistic locking - incremented on each save",
        ),
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SplitPayment",
            fields=[
                *_timestamps(),
                _version(),
                (
                    "payee_account_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Gateway account receiving the funds (e.g. acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "total_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Total to collect, in cents"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd", help_text="ISO 4217 currency code", max_length=3
                    ),
                ),
                (
                    "split_type",
                    models.CharField(
                        choices=[("equal", "Equal"), ("custom", "Custom")],
                        default="equal",
                        max_length=10,
                    ),
                ),
                (
                    "fee_handling",
                    models.CharField(
                        choices=[
                            ("organizer", "Organizer"),
                            ("participants", "Participants"),
                            ("split", "Split"),
                        ],
                        default="organizer",
                        max_length=20,
                    ),
                ),
                ("participant_count", models.PositiveIntegerField()),
                (
                    "payment_deadline",
                    models.DateTimeField(
                        db_index=True,
                        help_text="Participants must pay before this time",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("partially_paid", "Partially Paid"),
                            ("completed", "Completed"),
                            ("completed_partial", "Completed (Partial)"),
                            (
                                "cancelled_insufficient",
                                "Cancelled (Insufficient Funds)",
                            ),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Aggregate status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("description", models.TextField(blank=True, default="")),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Free-form data including the computed split snapshot",
                    ),
                ),
                (
                    "enforcement_started_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When a worker claimed deadline enforcement",
                        null=True,
                    ),
                ),
                (
                    "enforcement_token",
                    models.UUIDField(
                        blank=True,
                        help_text="Fencing token of the worker holding the enforcement claim",
                        null=True,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("enforced_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "booking",
                    models.ForeignKey(
                        help_text="Booking this split payment covers",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="split_payments",
                        to="bookings.booking",
                    ),
                ),
                (
                    "organizer",
                    models.ForeignKey(
                        help_text="User who created the split",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="organized_split_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Split Payment",
                "verbose_name_plural": "Split Payments",
                "db_table": "split_payments",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="IndividualPayment",
            fields=[
                *_timestamps(),
                _version(),
                (
                    "amount_due_cents",
                    models.PositiveBigIntegerField(
                        help_text="Share of the booking total, in cents"
                    ),
                ),
                (
                    "fee_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Processor fee charged on top of the share",
                    ),
                ),
                (
                    "amount_paid_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Amount collected from the participant",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                            ("expired", "Expired"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Share status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("payment_deadline", models.DateTimeField(db_index=True)),
                ("reminder_count", models.PositiveSmallIntegerField(default=0)),
                ("last_reminder_sent", models.DateTimeField(blank=True, null=True)),
                ("attempt_count", models.PositiveSmallIntegerField(default=0)),
                (
                    "gateway_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Current payment intent (pi_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_client_secret",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "gateway_confirmation_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Charge confirmed by the gateway (ch_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "gateway_refund_id",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("participant_email", models.EmailField(max_length=254)),
                (
                    "participant_name",
                    models.CharField(blank=True, default="", max_length=200),
                ),
                ("processing_started_at", models.DateTimeField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "participant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="individual_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "split_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="individual_payments",
                        to="group_payments.splitpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Individual Payment",
                "verbose_name_plural": "Individual Payments",
                "db_table": "individual_payments",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentToken",
            fields=[
                *_timestamps(),
                ("token", models.CharField(max_length=128, unique=True)),
                ("expires_at", models.DateTimeField(db_index=True)),
                ("used_at", models.DateTimeField(blank=True, null=True)),
                (
                    "individual_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_tokens",
                        to="group_payments.individualpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Token",
                "verbose_name_plural": "Payment Tokens",
                "db_table": "payment_tokens",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentReminder",
            fields=[
                *_timestamps(),
                ("reminder_type", models.CharField(max_length=30)),
                ("offset_hours", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[("sent", "Sent"), ("failed", "Failed")],
                        db_index=True,
                        max_length=10,
                    ),
                ),
                ("sent_at", models.DateTimeField()),
                ("error", models.TextField(blank=True, default="")),
                (
                    "individual_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reminders",
                        to="group_payments.individualpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Reminder",
                "verbose_name_plural": "Payment Reminders",
                "db_table": "payment_reminders",
                "ordering": ["-sent_at"],
            },
        ),
        migrations.CreateModel(
            name="PaymentRefund",
            fields=[
                *_timestamps(),
                ("amount_cents", models.PositiveBigIntegerField()),
                (
                    "reason",
                    models.CharField(
                        default="insufficient_group_payments", max_length=50
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="processing",
                        max_length=12,
                    ),
                ),
                ("attempt", models.PositiveSmallIntegerField(default=1)),
                (
                    "gateway_refund_id",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                ("error", models.TextField(blank=True, default="")),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "individual_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="group_payments.individualpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Refund",
                "verbose_name_plural": "Payment Refunds",
                "db_table": "payment_refunds",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="EnforcementLog",
            fields=[
                *_timestamps(),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("completed_partial", "Proceed With Partial Funds"),
                            ("cancelled_insufficient", "Cancel And Refund"),
                        ],
                        max_length=30,
                    ),
                ),
                ("amount_collected_cents", models.PositiveBigIntegerField()),
                (
                    "completion_percentage",
                    models.DecimalField(decimal_places=2, max_digits=6),
                ),
                ("threshold", models.DecimalField(decimal_places=3, max_digits=4)),
                ("refunds_total", models.PositiveIntegerField(default=0)),
                ("refunds_succeeded", models.PositiveIntegerField(default=0)),
                ("refunds_failed", models.PositiveIntegerField(default=0)),
                ("enforcement_token", models.UUIDField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "split_payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="enforcement_logs",
                        to="group_payments.splitpayment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Enforcement Log",
                "verbose_name_plural": "Enforcement Logs",
                "db_table": "payment_enforcement_logs",
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="splitpayment",
            index=models.Index(
                fields=["status", "payment_deadline"],
                name="split_payment_status_dl_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="splitpayment",
            index=models.Index(
                fields=["organizer", "status"],
                name="split_payment_org_status_idx",
            ),
        ),
        migrations.AddConstraint(
            model_name="splitpayment",
            constraint=models.CheckConstraint(
                check=models.Q(("total_amount_cents__gt", 0)),
                name="split_payment_total_positive",
            ),
        ),
        migrations.AddConstraint(
            model_name="splitpayment",
            constraint=models.CheckConstraint(
                check=models.Q(("participant_count__gt", 0)),
                name="split_payment_participants_positive",
            ),
        ),
        migrations.AddIndex(
            model_name="individualpayment",
            index=models.Index(
                fields=["status", "payment_deadline"],
                name="individual_pay_status_dl_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="individualpayment",
            index=models.Index(
                fields=["participant", "status"],
                name="individual_pay_part_stat_idx",
            ),
        ),
        migrations.AddConstraint(
            model_name="individualpayment",
            constraint=models.UniqueConstraint(
                fields=("split_payment", "participant"),
                name="individual_payment_unique_participant",
            ),
        ),
        migrations.AddConstraint(
            model_name="individualpayment",
            constraint=models.CheckConstraint(
                check=models.Q(
                    ("amount_paid_cents__lte", models.F("amount_due_cents"))
                ),
                name="individual_payment_paid_within_due",
            ),
        ),
        migrations.AddConstraint(
            model_name="paymentrefund",
            constraint=models.UniqueConstraint(
                fields=("individual_payment", "attempt"),
                name="payment_refund_unique_attempt",
            ),
        ),
    ]
