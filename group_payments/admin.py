"""
Group payments admin configuration.

Registers split payments and their shares with the Django admin. Status
fields are read-only: they only change through the ledger services.
"""

from django.contrib import admin

from group_payments.models import (
    EnforcementLog,
    IndividualPayment,
    PaymentRefund,
    PaymentReminder,
    PaymentToken,
    SplitPayment,
)

__all__ = [
    "EnforcementLogAdmin",
    "IndividualPaymentAdmin",
    "PaymentRefundAdmin",
    "PaymentReminderAdmin",
    "PaymentTokenAdmin",
    "SplitPaymentAdmin",
]


class IndividualPaymentInline(admin.TabularInline):
    model = IndividualPayment
    extra = 0
    can_delete = False
    fields = [
        "participant",
        "amount_due_cents",
        "fee_cents",
        "amount_paid_cents",
        "status",
        "reminder_count",
        "paid_at",
    ]
    readonly_fields = fields


@admin.register(SplitPayment)
class SplitPaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for SplitPayment.

    Shows the shares inline so collection progress is visible at a glance.
    """

    list_display = [
        "id",
        "booking",
        "organizer",
        "total_amount_cents",
        "currency",
        "participant_count",
        "status",
        "payment_deadline",
        "created_at",
    ]
    list_filter = ["status", "split_type", "fee_handling", "currency"]
    search_fields = ["id", "booking__title", "organizer__email"]
    readonly_fields = [
        "id",
        "status",
        "created_at",
        "updated_at",
        "version",
        "enforcement_started_at",
        "enforcement_token",
        "completed_at",
        "enforced_at",
        "cancelled_at",
    ]
    ordering = ["-created_at"]
    inlines = [IndividualPaymentInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "booking", "organizer", "payee_account_id"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "total_amount_cents",
                    "currency",
                    "split_type",
                    "fee_handling",
                    "participant_count",
                ),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "status",
                    "payment_deadline",
                    "completed_at",
                    "enforced_at",
                    "cancelled_at",
                ),
            },
        ),
        (
            "Enforcement",
            {
                "fields": ("enforcement_started_at", "enforcement_token"),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("description", "metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
    )


@admin.register(IndividualPayment)
class IndividualPaymentAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "split_payment",
        "participant",
        "amount_due_cents",
        "fee_cents",
        "status",
        "reminder_count",
        "payment_deadline",
    ]
    list_filter = ["status"]
    search_fields = ["id", "participant_email", "gateway_intent_id", "gateway_confirmation_id"]
    readonly_fields = [
        "id",
        "status",
        "gateway_intent_id",
        "gateway_confirmation_id",
        "gateway_refund_id",
        "processing_started_at",
        "paid_at",
        "failed_at",
        "expired_at",
        "refunded_at",
        "last_reconciled_at",
        "created_at",
        "updated_at",
        "version",
    ]
    exclude = ["gateway_client_secret"]
    ordering = ["-created_at"]


@admin.register(PaymentToken)
class PaymentTokenAdmin(admin.ModelAdmin):
    list_display = ["id", "individual_payment", "expires_at", "used_at", "created_at"]
    list_filter = ["used_at"]
    readonly_fields = ["id", "token", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(PaymentReminder)
class PaymentReminderAdmin(admin.ModelAdmin):
    list_display = ["id", "individual_payment", "reminder_type", "status", "sent_at"]
    list_filter = ["reminder_type", "status"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-sent_at"]


@admin.register(PaymentRefund)
class PaymentRefundAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "individual_payment",
        "amount_cents",
        "status",
        "attempt",
        "gateway_refund_id",
        "processed_at",
    ]
    list_filter = ["status", "reason"]
    search_fields = ["id", "gateway_refund_id"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(EnforcementLog)
class EnforcementLogAdmin(admin.ModelAdmin):
    """Read-only audit trail of deadline enforcement."""

    list_display = [
        "id",
        "split_payment",
        "outcome",
        "amount_collected_cents",
        "completion_percentage",
        "refunds_failed",
        "created_at",
    ]
    list_filter = ["outcome"]
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
