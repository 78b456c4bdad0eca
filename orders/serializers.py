"""
Serializers for order models.
"""
from rest_framework import serializers

from . import policy
from .models import ModificationRequest, Order, OrderItem, OrderStatusHistory


class OrderItemSerializer(serializers.ModelSerializer):
    """Frozen order line; product_name and unit_price come from checkout."""

    class Meta:
        model = OrderItem
        fields = ['id', 'product_id', 'product_name', 'quantity', 'unit_price', 'total_price']


class OrderStatusHistorySerializer(serializers.ModelSerializer):

    class Meta:
        model = OrderStatusHistory
        fields = ['from_status', 'to_status', 'actor', 'note', 'created_at']


class AddressSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    address_line1 = serializers.CharField(max_length=255)
    address_line2 = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    postal_code = serializers.CharField(max_length=12)
    country = serializers.CharField(max_length=60, required=False, default='India')


def _address(order, prefix):
    return {
        name: getattr(order, f"{prefix}_{name}")
        for name in AddressSerializer().fields
    }


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items, addresses and the
    customer-facing eligibility flags.

    The flags are computed on the server clock and mirror exactly what
    the cancel and modify endpoints will accept.
    """
    items = OrderItemSerializer(many=True, read_only=True)
    item_count = serializers.IntegerField(read_only=True)
    shipping_address = serializers.SerializerMethodField()
    billing_address = serializers.SerializerMethodField()
    can_cancel = serializers.SerializerMethodField()
    can_modify = serializers.SerializerMethodField()
    modification_deadline = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'confirmation_number', 'status', 'payment_method', 'payment_status',
            'email', 'phone', 'items', 'item_count',
            'subtotal', 'tax_amount', 'shipping_amount', 'discount_amount', 'total_amount',
            'coupon_code', 'payment_order_id', 'tracking_number', 'estimated_delivery',
            'shipping_address', 'billing_address', 'cancellation_reason',
            'can_cancel', 'can_modify', 'modification_deadline',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_shipping_address(self, obj):
        return _address(obj, 'shipping')

    def get_billing_address(self, obj):
        return _address(obj, 'billing')

    def get_can_cancel(self, obj):
        return policy.is_cancellable(obj)

    def get_can_modify(self, obj):
        return policy.is_modifiable(obj)

    def get_modification_deadline(self, obj):
        return policy.modification_deadline(obj).isoformat()


class OrderListSerializer(serializers.ModelSerializer):
    """
    Compact serializer for listing orders.
    """
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'confirmation_number', 'status', 'payment_status',
            'total_amount', 'item_count', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return sum(item.quantity for item in obj.items.all())
        return obj.item_count


class OrderTrackingSerializer(OrderSerializer):
    history = OrderStatusHistorySerializer(source='status_history', many=True, read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ['history']
        read_only_fields = fields


class CheckoutSerializer(serializers.Serializer):
    """
    Request format for POST /orders/checkout/:
    {
        "email": "asha@example.com",
        "phone": "9876543210",
        "payment_method": "razorpay",
        "shipping_address": {...},
        "billing_address": {...}      (optional, defaults to shipping)
    }
    """
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=20)
    payment_method = serializers.ChoiceField(
        choices=Order.PaymentMethod.choices,
        default=Order.PaymentMethod.RAZORPAY
    )
    shipping_address = AddressSerializer()
    billing_address = AddressSerializer(required=False)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(max_length=20, required=False)


class ModificationRequestCreateSerializer(serializers.Serializer):
    request_type = serializers.ChoiceField(choices=ModificationRequest.Type.choices)
    details = serializers.DictField()
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(max_length=20, required=False)


class ModificationRequestSerializer(serializers.ModelSerializer):

    class Meta:
        model = ModificationRequest
        fields = ['id', 'order', 'request_type', 'details', 'status', 'requested_by', 'created_at']
        read_only_fields = fields


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    tracking_number = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    estimated_delivery = serializers.DateField(required=False)
    note = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class GuestLookupSerializer(serializers.Serializer):
    confirmation_number = serializers.CharField(max_length=32)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=20)


class GuestOrdersSerializer(serializers.Serializer):
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=20)
