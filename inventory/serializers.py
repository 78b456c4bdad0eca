"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from rest_framework import serializers
from .models import Category, Product, InventoryRecord


class CategorySerializer(serializers.ModelSerializer):
    """Serializer for Category model."""
    product_count = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = ['id', 'name', 'product_count', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_product_count(self, obj):
        """Get count of products in this category."""
        return obj.products.count()


class CategoryMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested category representation."""
    class Meta:
        model = Category
        fields = ['id', 'name']


class ProductSerializer(serializers.ModelSerializer):
    """Serializer for Product model with nested category and availability."""
    category = CategoryMinimalSerializer(read_only=True)
    category_id = serializers.PrimaryKeyRelatedField(
        queryset=Category.objects.all(),
        source='category',
        write_only=True,
        required=False,
        allow_null=True
    )
    available_quantity = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'description', 'price', 'material', 'weight_grams',
            'category', 'category_id', 'is_active', 'available_quantity',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def get_available_quantity(self, obj):
        record = getattr(obj, 'inventory', None)
        return record.available_quantity if record else 0


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested representations."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'price']


class InventoryRecordSerializer(serializers.ModelSerializer):
    """
    Inventory record with derived availability.

    Quantities are read-only here; stock changes go through the stock
    adjustment endpoint so they pass the ledger's checks.
    """
    product = ProductMinimalSerializer(read_only=True)
    available_quantity = serializers.IntegerField(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = InventoryRecord
        fields = [
            'id', 'product', 'stock_quantity', 'reserved_quantity',
            'available_quantity', 'reorder_point', 'is_low_stock',
            'is_out_of_stock', 'last_restocked_at', 'updated_at'
        ]
        read_only_fields = [
            'id', 'stock_quantity', 'reserved_quantity',
            'last_restocked_at', 'updated_at'
        ]


class InventoryCreateSerializer(serializers.ModelSerializer):
    product_id = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.all(),
        source='product'
    )

    class Meta:
        model = InventoryRecord
        fields = ['id', 'product_id', 'stock_quantity', 'reorder_point']

    def validate_product_id(self, value):
        if InventoryRecord.objects.filter(product=value).exists():
            raise serializers.ValidationError(
                "An inventory record for this product already exists."
            )
        return value


class StockAdjustmentSerializer(serializers.Serializer):
    """
    Either add units (`restock`) or overwrite the physical count
    (`set_stock`), never both.
    """
    restock = serializers.IntegerField(min_value=1, required=False)
    set_stock = serializers.IntegerField(min_value=0, required=False)

    def validate(self, attrs):
        if ('restock' in attrs) == ('set_stock' in attrs):
            raise serializers.ValidationError("Provide exactly one of 'restock' or 'set_stock'.")
        return attrs
