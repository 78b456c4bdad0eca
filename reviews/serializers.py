"""
Serializers for review endpoints.
"""
from rest_framework import serializers

from .models import ProductReview


class ProductReviewSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = ProductReview
        fields = [
            'id', 'product', 'product_name', 'order', 'rating', 'title', 'comment',
            'is_approved', 'is_verified_purchase', 'helpful_count',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class AdminReviewSerializer(ProductReviewSerializer):

    class Meta(ProductReviewSerializer.Meta):
        fields = ProductReviewSerializer.Meta.fields + [
            'customer_id', 'moderated_by', 'moderated_at', 'admin_notes'
        ]
        read_only_fields = fields


class ReviewCreateSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    rating = serializers.IntegerField(min_value=1, max_value=5)
    title = serializers.CharField(max_length=120, required=False, allow_blank=True, default='')
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReviewUpdateSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5, required=False)
    title = serializers.CharField(max_length=120, required=False, allow_blank=True)
    comment = serializers.CharField(required=False, allow_blank=True)


class ModerationSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['approve', 'reject'])
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class BulkModerationSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['approve', 'reject'])
    review_ids = serializers.ListField(child=serializers.IntegerField(), min_length=1)
