from django.contrib import admin

from .models import Cart, CartItem


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    raw_id_fields = ['product']
    readonly_fields = ['unit_price', 'total_price', 'added_at']


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer_id', 'session_id', 'estimated_total', 'coupon_code', 'expires_at']
    search_fields = ['customer_id', 'session_id']
    list_filter = ['expires_at']
    inlines = [CartItemInline]
    readonly_fields = [
        'subtotal', 'estimated_tax', 'estimated_shipping',
        'discount_amount', 'estimated_total'
    ]
