from django.contrib import admin

from .models import WishlistItem


@admin.register(WishlistItem)
class WishlistItemAdmin(admin.ModelAdmin):
    list_display = ['customer_id', 'product', 'created_at']
    search_fields = ['customer_id', 'product__name']
    raw_id_fields = ['product']
