from django.contrib import admin, messages

from ordering.domain.errors import OrderingError
from ordering.infra.models import (
    AddressORM,
    CatalogItemORM,
    CustomerORM,
    IdempotencyKey,
    InvoiceORM,
    OrderItemORM,
    OrderORM,
    PriceTierORM,
)
from ordering.infra.notification_queue import NotificationTaskORM
from ordering.services.notifications import NotificationService


@admin.register(CustomerORM)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("name", "email")


@admin.register(AddressORM)
class AddressAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "city", "country")
    search_fields = ("customer__name", "city", "postal_code")


class PriceTierInline(admin.TabularInline):
    model = PriceTierORM
    extra = 0


@admin.register(CatalogItemORM)
class CatalogItemAdmin(admin.ModelAdmin):
    list_display = ("sku", "name", "base_price", "wholesale_price", "minimum_order_quantity", "is_active")
    list_filter = ("is_active",)
    search_fields = ("sku", "name")
    inlines = [PriceTierInline]


class OrderItemInline(admin.TabularInline):
    model = OrderItemORM
    extra = 0
    can_delete = False
    readonly_fields = ("catalog_item", "quantity", "unit_price", "total_amount", "status")


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    """Status changes go through the GraphQL API so transitions stay validated."""
    list_display = ("order_number", "customer", "status", "payment_status", "final_amount", "order_date")
    list_filter = ("status", "payment_status", "order_date")
    search_fields = ("order_number", "customer__name", "tracking_number")
    readonly_fields = (
        "order_number", "customer", "status", "payment_status", "subtotal", "tax_amount",
        "shipping_amount", "discount_amount", "final_amount", "shipping_address",
        "order_date", "shipped_date", "delivered_date", "payment_date",
    )
    inlines = [OrderItemInline]


@admin.register(InvoiceORM)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "order", "status", "amount", "issue_date", "due_date")
    list_filter = ("status", "issue_date")
    search_fields = ("invoice_number", "order__order_number")
    readonly_fields = ("invoice_number", "order", "amount", "tax_amount", "issue_date")


@admin.register(NotificationTaskORM)
class NotificationTaskAdmin(admin.ModelAdmin):
    list_display = ("id", "type", "recipient_email", "status", "attempt_count", "is_terminal", "next_attempt_at", "created_at")
    list_filter = ("status", "type", "is_terminal", "created_at")
    search_fields = ("recipient_email", "order__order_number")
    readonly_fields = (
        "id", "type", "template_key", "recipient_email", "recipient_name", "customer", "order",
        "subject", "html_body", "text_body", "metadata", "status", "attempt_count", "is_terminal",
        "last_attempt_at", "next_attempt_at", "claimed_at", "claim_token", "last_error",
        "sent_at", "delivered_at", "opened_at", "clicked_at", "bounced_at", "bounce_reason",
    )
    actions = ["suppress_retries", "retry_exhausted"]

    @admin.action(description="Suppress further retries")
    def suppress_retries(self, request, queryset):
        service = NotificationService()
        suppressed = 0
        for task_id in queryset.values_list("id", flat=True):
            try:
                service.suppress(task_id)
                suppressed += 1
            except OrderingError as e:
                self.message_user(request, f"{task_id}: {e.message}", level=messages.WARNING)
        self.message_user(request, f"Suppressed {suppressed} notification(s)")

    @admin.action(description="Retry exhausted notifications")
    def retry_exhausted(self, request, queryset):
        service = NotificationService()
        requeued = 0
        for task_id in queryset.filter(status="failed", is_terminal=True).values_list("id", flat=True):
            try:
                service.retry(task_id)
                requeued += 1
            except OrderingError as e:
                self.message_user(request, f"{task_id}: {e.message}", level=messages.WARNING)
        self.message_user(request, f"Requeued {requeued} notification(s)")


@admin.register(IdempotencyKey)
class IdempotencyAdmin(admin.ModelAdmin):
    list_display = ("key", "user_id", "operation", "created_at")
    list_filter = ("operation", "created_at")
    search_fields = ("key", "user_id")
