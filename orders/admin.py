from django.contrib import admin, messages

from storefront.errors import StoreError

from .models import Order, OrderLine, OrderStatus
from .services import set_order_status


class OrderLineInline(admin.TabularInline):
    model = OrderLine
    extra = 0
    readonly_fields = ("position", "product_id", "product_name", "quantity", "unit_price")
    can_delete = False


def _status_action(status, label):
    def action(modeladmin, request, queryset):
        for order_id in queryset.values_list("pk", flat=True):
            try:
                set_order_status(order_id, status)
            except StoreError as e:
                modeladmin.message_user(request, f"Order #{order_id}: {e}", level=messages.WARNING)
    action.__name__ = f"mark_{status}"
    action.short_description = label
    return action


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "payment_status", "order_status", "total", "payment_reference", "created_at")
    search_fields = ("id", "payment_reference", "user__username", "user__email")
    list_filter = ("payment_status", "order_status", "state", "created_at")
    # Statuses only move through reconciliation or the actions below.
    readonly_fields = (
        "payment_status", "order_status",
        "subtotal", "delivery_fee", "discount_amount", "total",
        "payment_reference", "gateway_meta", "paid_at", "created_at", "updated_at",
    )
    inlines = [OrderLineInline]
    ordering = ("-created_at",)
    actions = [
        _status_action(OrderStatus.SHIPPED, "Mark selected orders as shipped"),
        _status_action(OrderStatus.DELIVERED, "Mark selected orders as delivered"),
        _status_action(OrderStatus.CANCELLED, "Cancel selected unpaid orders"),
    ]
