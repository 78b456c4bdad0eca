"""
Django Admin configuration for inventory models.
"""
from django.contrib import admin
from .models import Category, Product, InventoryRecord


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'product_count', 'created_at']
    search_fields = ['name']
    ordering = ['name']

    def product_count(self, obj):
        return obj.products.count()
    product_count.short_description = 'Products'


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'price', 'material', 'category', 'is_active', 'created_at']
    list_filter = ['category', 'material', 'is_active', 'created_at']
    search_fields = ['name', 'description']
    ordering = ['name']
    raw_id_fields = ['category']


@admin.register(InventoryRecord)
class InventoryRecordAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'product', 'stock_quantity', 'reserved_quantity',
        'available_quantity', 'is_low_stock', 'updated_at'
    ]
    list_filter = ['updated_at']
    search_fields = ['product__name']
    ordering = ['product__name']
    raw_id_fields = ['product']
    # Reservations are owned by the ledger
    readonly_fields = ['reserved_quantity', 'last_restocked_at']

    def available_quantity(self, obj):
        return obj.available_quantity
    available_quantity.short_description = 'Available'

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'
