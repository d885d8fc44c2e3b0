"""
Payment admin configuration.

Registers ledger and settlement models with the Django admin. Records are
read-mostly here: status changes go through the service layer (operator
API endpoints), never through admin forms.
"""

from django.contrib import admin

from payments.models import GatewayEvent, Payment, Refund, SettlementCursor, SettlementRequest

__all__ = [
    "GatewayEventAdmin",
    "PaymentAdmin",
    "RefundAdmin",
    "SettlementCursorAdmin",
    "SettlementRequestAdmin",
]


def format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


class RefundInline(admin.TabularInline):
    """Refunds shown on the payment page (append-only)."""

    model = Refund
    extra = 0
    fields = ["id", "amount_cents", "status", "reason", "requested_at", "processed_at"]
    readonly_fields = fields
    ordering = ["requested_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    Provides visibility into payments, their refunds and settlement tags.
    """

    list_display = [
        "payment_id",
        "vendor_id",
        "amount_display",
        "net_display",
        "status",
        "settlement_status",
        "method_type",
        "completed_at",
    ]
    list_filter = ["status", "settlement_status", "method_type", "gateway", "created_at"]
    search_fields = ["payment_id", "transaction_id", "vendor_id", "user_id", "booking_id"]
    readonly_fields = [
        "id",
        "payment_id",
        "status",
        "settlement_status",
        "settlement_request",
        "total_refunded_cents",
        "net_amount_cents",
        "initiated_at",
        "processed_at",
        "completed_at",
        "failed_at",
        "cancelled_at",
        "refunded_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "payment_id", "status"),
            },
        ),
        (
            "References",
            {
                "fields": ("booking_id", "user_id", "vendor_id", "station_id"),
            },
        ),
        (
            "Amount",
            {
                "fields": (
                    "base_amount_cents",
                    "tax_amount_cents",
                    "discount_amount_cents",
                    "final_amount_cents",
                    "currency",
                    "total_refunded_cents",
                    "net_amount_cents",
                ),
            },
        ),
        (
            "Payment Method",
            {
                "fields": (
                    "method_type",
                    "gateway",
                    "card_type",
                    "bank_name",
                    "card_last4",
                    "transaction_id",
                    "transaction_details",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Settlement",
            {
                "fields": ("settlement_status", "settlement_request"),
            },
        ),
        (
            "Lifecycle",
            {
                "fields": (
                    "initiated_at",
                    "processed_at",
                    "completed_at",
                    "failed_at",
                    "cancelled_at",
                    "refunded_at",
                    "failure_reason",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "notes", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Payment) -> str:
        return format_amount(obj.final_amount_cents, obj.currency)

    @admin.display(description="Net")
    def net_display(self, obj: Payment) -> str:
        return format_amount(obj.net_amount_cents, obj.currency)

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ["id", "payment", "amount_cents", "status", "requested_at", "processed_at"]
    list_filter = ["status", "requested_at"]
    search_fields = ["id", "payment__payment_id", "refund_reference", "reason"]
    readonly_fields = [
        "id",
        "payment",
        "amount_cents",
        "status",
        "requested_at",
        "processed_at",
        "failed_at",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-requested_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for refunds (audit trail)."""
        return False


@admin.register(SettlementRequest)
class SettlementRequestAdmin(admin.ModelAdmin):
    """
    Admin configuration for SettlementRequest.

    Claims are immutable; use the operator endpoints to process, complete
    or fail a request so that claimed payments are tagged consistently.
    """

    list_display = [
        "settlement_id",
        "vendor_id",
        "transaction_date",
        "request_type",
        "claimed_amount_cents",
        "status",
        "requested_at",
    ]
    list_filter = ["status", "request_type", "transaction_date"]
    search_fields = ["settlement_id", "vendor_id", "payment_reference"]
    readonly_fields = [
        "id",
        "settlement_id",
        "vendor_id",
        "transaction_date",
        "requested_at",
        "request_type",
        "claimed_payment_ids",
        "claimed_amount_cents",
        "status",
        "processing_started_at",
        "processed_at",
        "failed_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "requested_at"
    ordering = ["-requested_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for settlement requests (audit trail)."""
        return False


@admin.register(SettlementCursor)
class SettlementCursorAdmin(admin.ModelAdmin):
    list_display = ["vendor_id", "transaction_date", "version", "last_claimed_at"]
    search_fields = ["vendor_id"]
    readonly_fields = ["vendor_id", "transaction_date", "version", "last_claimed_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(GatewayEvent)
class GatewayEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for GatewayEvent.

    Gateway events are immutable once received.
    """

    list_display = [
        "event_id",
        "event_type",
        "payment_id",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["event_id", "payment_id"]
    readonly_fields = [
        "id",
        "event_id",
        "event_type",
        "payment_id",
        "payload",
        "processed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
