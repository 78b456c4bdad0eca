"""
Django Admin configuration for order models.

Status and money fields are read-only here: status changes go through
the lifecycle manager (POST /api/orders/{id}/status/) so the inventory
ledger and history stay in step.
"""
from django.contrib import admin

from .models import ModificationRequest, Order, OrderItem, OrderStatusHistory


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'product_name', 'quantity', 'unit_price', 'total_price']
    can_delete = False


class OrderStatusHistoryInline(admin.TabularInline):
    model = OrderStatusHistory
    extra = 0
    readonly_fields = ['from_status', 'to_status', 'actor', 'note', 'created_at']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'confirmation_number', 'customer_id', 'status', 'payment_status',
        'total_amount', 'item_count', 'created_at'
    ]
    list_filter = ['status', 'payment_status', 'payment_method', 'created_at']
    search_fields = ['id', 'confirmation_number', 'payment_order_id', 'email', 'phone']
    ordering = ['-created_at']
    readonly_fields = [
        'status', 'payment_status', 'subtotal', 'tax_amount', 'shipping_amount',
        'discount_amount', 'total_amount', 'confirmation_number', 'payment_order_id',
        'payment_id', 'created_at', 'updated_at'
    ]
    inlines = [OrderItemInline, OrderStatusHistoryInline]

    def item_count(self, obj):
        return obj.item_count
    item_count.short_description = 'Items'


@admin.register(ModificationRequest)
class ModificationRequestAdmin(admin.ModelAdmin):
    list_display = ['id', 'order', 'request_type', 'status', 'requested_by', 'created_at']
    list_filter = ['request_type', 'status']
    search_fields = ['order__confirmation_number', 'requested_by']
    raw_id_fields = ['order']
