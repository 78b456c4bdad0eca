from django.contrib import admin

from .models import Coupon, CouponRedemption


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = [
        'code', 'discount_type', 'discount_value', 'usage_count',
        'usage_limit', 'valid_until', 'is_active'
    ]
    list_filter = ['discount_type', 'is_active']
    search_fields = ['code', 'description']
    readonly_fields = ['usage_count', 'created_at', 'updated_at']


@admin.register(CouponRedemption)
class CouponRedemptionAdmin(admin.ModelAdmin):
    list_display = ['coupon', 'customer_id', 'order_id', 'discount_amount', 'redeemed_at']
    search_fields = ['coupon__code', 'customer_id']
    raw_id_fields = ['coupon']
