"""
Serializers for cart endpoints.
"""
from rest_framework import serializers

from .models import Cart, CartItem


class CartItemSerializer(serializers.ModelSerializer):
    product_id = serializers.IntegerField(read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    current_price = serializers.DecimalField(
        source='product.price', max_digits=10, decimal_places=2, read_only=True
    )

    class Meta:
        model = CartItem
        fields = [
            'id', 'product_id', 'product_name', 'quantity', 'unit_price',
            'current_price', 'total_price', 'added_at'
        ]


class CartSerializer(serializers.ModelSerializer):
    """Cart with line items and the stored estimate."""
    items = CartItemSerializer(many=True, read_only=True)
    item_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Cart
        fields = [
            'id', 'session_id', 'customer_id', 'items', 'item_count',
            'subtotal', 'estimated_tax', 'estimated_shipping', 'discount_amount',
            'estimated_total', 'coupon_code', 'expires_at', 'updated_at'
        ]


class AddItemSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class UpdateQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField()


class ApplyCouponSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=40)
