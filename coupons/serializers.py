"""
Serializers for coupon endpoints.
"""
from rest_framework import serializers

from .models import Coupon, CouponRedemption


class CouponSerializer(serializers.ModelSerializer):
    """Full coupon representation for admin management."""

    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'description', 'discount_type', 'discount_value',
            'minimum_order_amount', 'maximum_discount_amount',
            'valid_from', 'valid_until', 'usage_limit', 'usage_count',
            'per_customer_limit', 'is_active',
            'allowed_customer_ids', 'excluded_customer_ids',
            'applicable_product_ids', 'excluded_product_ids',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'usage_count', 'created_at', 'updated_at']

    def validate(self, attrs):
        valid_from = attrs.get('valid_from', getattr(self.instance, 'valid_from', None))
        valid_until = attrs.get('valid_until', getattr(self.instance, 'valid_until', None))
        if valid_from and valid_until and valid_until <= valid_from:
            raise serializers.ValidationError("valid_until must be after valid_from.")
        discount_type = attrs.get('discount_type', getattr(self.instance, 'discount_type', None))
        value = attrs.get('discount_value', getattr(self.instance, 'discount_value', None))
        if discount_type == Coupon.DiscountType.PERCENTAGE and value is not None and value > 100:
            raise serializers.ValidationError("Percentage discount cannot exceed 100.")
        return attrs


class CouponRedemptionSerializer(serializers.ModelSerializer):
    code = serializers.CharField(source='coupon.code', read_only=True)

    class Meta:
        model = CouponRedemption
        fields = ['id', 'code', 'customer_id', 'order_id', 'discount_amount', 'redeemed_at']


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=40)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    product_ids = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
