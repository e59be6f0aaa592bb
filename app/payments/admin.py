"""
Payment admin configuration.

Registers payment and refund models with the Django admin. Transaction
rows are read-only here: every state change goes through the
orchestrators so that the audit trail and booking status stay consistent.
"""

from django.contrib import admin

from payments.models import (
    PaymentTransaction,
    RefundAuditLog,
    RefundTransaction,
    WebhookEvent,
)

__all__ = [
    "PaymentTransactionAdmin",
    "RefundTransactionAdmin",
    "WebhookEventAdmin",
]


class ReadOnlyAdminMixin:
    """Allow viewing only."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "booking",
        "amount",
        "payment_method",
        "status",
        "provider",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "provider", "created_at"]
    search_fields = [
        "id",
        "booking__id",
        "gateway_source_id",
        "gateway_intent_id",
        "provider_transaction_id",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "booking", "status")}),
        ("Amount", {"fields": ("amount", "currency", "payment_method")}),
        (
            "PayMongo",
            {
                "fields": (
                    "provider",
                    "gateway_source_id",
                    "gateway_intent_id",
                    "provider_transaction_id",
                    "checkout_url",
                ),
            },
        ),
        ("Failure Info", {"fields": ("failure_reason",), "classes": ("collapse",)}),
        ("Metadata", {"fields": ("metadata",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


class RefundAuditLogInline(admin.TabularInline):
    model = RefundAuditLog
    extra = 0
    can_delete = False
    fields = [
        "created_at",
        "action",
        "previous_status",
        "new_status",
        "performed_by",
        "performed_by_type",
        "details",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(RefundTransaction)
class RefundTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for RefundTransaction.

    Surfaces refunds needing staff attention via the
    requires_manual_processing and outcome_unknown filters.
    """

    list_display = [
        "id",
        "booking",
        "amount",
        "status",
        "refund_type",
        "reason",
        "retry_count",
        "requires_manual_processing",
        "created_at",
    ]
    list_filter = [
        "status",
        "refund_type",
        "requires_manual_processing",
        "outcome_unknown",
        "retryable",
        "created_at",
    ]
    search_fields = ["id", "booking__id", "gateway_refund_id", "initiated_by"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundAuditLogInline]

    fieldsets = (
        (None, {"fields": ("id", "booking", "payment_transaction", "status")}),
        ("Amount", {"fields": ("amount", "currency", "reason")}),
        (
            "Processing",
            {
                "fields": (
                    "refund_type",
                    "payment_method",
                    "provider",
                    "gateway_refund_id",
                    "processed_at",
                ),
            },
        ),
        (
            "Retry State",
            {
                "fields": (
                    "retryable",
                    "retry_count",
                    "last_retry_at",
                    "outcome_unknown",
                    "requires_manual_processing",
                ),
            },
        ),
        ("Initiator", {"fields": ("initiated_by", "initiated_by_type")}),
        ("Notes", {"fields": ("notes", "failure_reason")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "gateway_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "gateway_event_id", "event_type"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "gateway_event_id", "event_type", "status")}),
        ("Processing", {"fields": ("processed_at", "retry_count")}),
        ("Error Info", {"fields": ("error_message",), "classes": ("collapse",)}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )
