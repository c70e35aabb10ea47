"""
Payment admin configuration.

Registers the payment domain models with the Django admin. Orders are
read-mostly: state only changes through the OrderReconciler, which the
"refresh status" action calls.
"""

from django.contrib import admin, messages

from payments.models import PaymentOrder, PaymentRecord, StatusAnomaly

__all__ = [
    "PaymentOrderAdmin",
    "PaymentRecordAdmin",
    "StatusAnomalyAdmin",
]


class StatusAnomalyInline(admin.TabularInline):
    """Inline display of rejected status updates for a payment order."""

    model = StatusAnomaly
    extra = 0
    fields = ["created_at", "current_state", "attempted_state", "source", "message", "reviewed"]
    readonly_fields = ["created_at", "current_state", "attempted_state", "source", "message"]
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentOrder)
class PaymentOrderAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentOrder.

    Provides visibility into payment orders and their states.
    State changes should be made through the service layer, not admin.
    """

    list_display = [
        "order_id",
        "customer_email",
        "amount_display",
        "state",
        "status_source",
        "gateway_tracking_id",
        "created_at",
    ]
    list_filter = ["state", "status_source", "currency", "created_at"]
    search_fields = [
        "order_id",
        "gateway_tracking_id",
        "customer_email",
    ]
    readonly_fields = [
        "id",
        "order_id",
        "amount",
        "currency",
        "customer_email",
        "customer_name",
        "plan_id",
        "plan_name",
        "gateway_tracking_id",
        "redirect_url",
        "raw_gateway_payload",
        "state",
        "status_source",
        "version",
        "completed_at",
        "failed_at",
        "failure_reason",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [StatusAnomalyInline]
    actions = ["refresh_status"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "order_id", "state", "status_source"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency"),
            },
        ),
        (
            "Customer & Plan",
            {
                "fields": ("customer_email", "customer_name", "plan_id", "plan_name"),
            },
        ),
        (
            "Gateway",
            {
                "fields": ("gateway_tracking_id", "redirect_url", "raw_gateway_payload"),
            },
        ),
        (
            "State Timestamps",
            {
                "fields": ("completed_at", "failed_at"),
                "classes": ("collapse",),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("failure_reason",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at", "version"),
            },
        ),
    )

    def amount_display(self, obj: PaymentOrder) -> str:
        """Display the amount with its currency."""
        return f"{obj.amount:.2f} {obj.currency}"

    amount_display.short_description = "Amount"

    @admin.action(description="Refresh status from Pesapal")
    def refresh_status(self, request, queryset):
        """Poll the gateway for each selected order."""
        from payments.services import OrderReconciler

        reconciler = OrderReconciler()
        failed = 0
        for order_id in queryset.values_list("order_id", flat=True):
            if not reconciler.poll_status(order_id).success:
                failed += 1

        total = queryset.count()
        if failed:
            self.message_user(
                request,
                f"Could not refresh {failed} of {total} orders.",
                level=messages.WARNING,
            )
        else:
            self.message_user(request, f"Refreshed {total} orders.")

    def has_add_permission(self, request) -> bool:
        """Orders are created through the API only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payment orders (audit trail)."""
        return False


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentRecord.

    Records are immutable once created.
    """

    list_display = [
        "order_id",
        "email",
        "plan_name",
        "amount",
        "currency",
        "payment_method",
        "created_at",
    ]
    list_filter = ["currency", "payment_method", "created_at"]
    search_fields = ["order_id", "gateway_tracking_id", "email"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(StatusAnomaly)
class StatusAnomalyAdmin(admin.ModelAdmin):
    """
    Admin configuration for StatusAnomaly.

    Operators review rejected status updates here.
    """

    list_display = [
        "payment_order",
        "current_state",
        "attempted_state",
        "source",
        "reviewed",
        "created_at",
    ]
    list_filter = ["reviewed", "source", "attempted_state", "created_at"]
    search_fields = ["payment_order__order_id", "payment_order__gateway_tracking_id"]
    readonly_fields = [
        "id",
        "payment_order",
        "current_state",
        "attempted_state",
        "source",
        "message",
        "payload",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_reviewed"]

    @admin.action(description="Mark selected anomalies as reviewed")
    def mark_reviewed(self, request, queryset):
        """Bulk action to mark anomalies as reviewed."""
        count = queryset.filter(reviewed=False).update(reviewed=True)
        self.message_user(request, f"Marked {count} anomalies as reviewed.")

    def has_add_permission(self, request) -> bool:
        """Disable adding anomalies through admin."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for anomalies (audit trail)."""
        return False
