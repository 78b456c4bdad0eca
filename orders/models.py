"""
Order Models - Orders, frozen line items and their audit trail.

Order Status Flow:
    pending -> processing -> shipped -> delivered
    pending -> cancelled
    processing -> cancelled

Totals, item prices and addresses are snapshots taken at checkout and
are never recomputed from live products or saved addresses.

Models:
    - Order: Customer order with frozen totals and address snapshot
    - OrderItem: Frozen (product, name, quantity, price) line
    - OrderStatusHistory: One row per status transition
    - ModificationRequest: Customer change request awaiting support
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from inventory.models import Product


class Order(models.Model):
    """
    Order entity created from a cart at checkout.

    Identifiers:
        - id: System key
        - confirmation_number: Customer-facing, set once payment is confirmed
        - payment_order_id: Gateway-side order reference
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PROCESSING = 'processing', 'Processing'
        SHIPPED = 'shipped', 'Shipped'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    class PaymentMethod(models.TextChoices):
        RAZORPAY = 'razorpay', 'Razorpay'
        CASH_ON_DELIVERY = 'cash_on_delivery', 'Cash on delivery'

    class PaymentStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        FAILED = 'failed', 'Failed'
        REFUNDED = 'refunded', 'Refunded'

    customer_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="user_<pk> for customers, guest_<hash> for guests"
    )
    email = models.EmailField()
    phone = models.CharField(max_length=20)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.RAZORPAY
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING
    )

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    shipping_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Total order amount, frozen at checkout"
    )
    coupon_code = models.CharField(max_length=40, blank=True, default='')

    confirmation_number = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="ORD-YYYYMMDD-HHMMSS-RRRR, assigned on payment confirmation"
    )
    payment_order_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway order id; empty only for cash on delivery"
    )
    payment_id = models.CharField(max_length=64, blank=True, default='')
    tracking_number = models.CharField(max_length=64, blank=True, default='')
    estimated_delivery = models.DateField(null=True, blank=True)

    shipping_first_name = models.CharField(max_length=100)
    shipping_last_name = models.CharField(max_length=100, blank=True, default='')
    shipping_address_line1 = models.CharField(max_length=255)
    shipping_address_line2 = models.CharField(max_length=255, blank=True, default='')
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100)
    shipping_postal_code = models.CharField(max_length=12)
    shipping_country = models.CharField(max_length=60, default='India')

    billing_first_name = models.CharField(max_length=100)
    billing_last_name = models.CharField(max_length=100, blank=True, default='')
    billing_address_line1 = models.CharField(max_length=255)
    billing_address_line2 = models.CharField(max_length=255, blank=True, default='')
    billing_city = models.CharField(max_length=100)
    billing_state = models.CharField(max_length=100)
    billing_postal_code = models.CharField(max_length=12)
    billing_country = models.CharField(max_length=60, default='India')

    cancellation_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['customer_id', 'created_at']),
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"Order #{self.id} ({self.status})"

    @property
    def is_guest(self) -> bool:
        return self.customer_id.startswith('guest_')

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PaymentStatus.PAID

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items.all())

    @property
    def customer_name(self) -> str:
        return f"{self.shipping_first_name} {self.shipping_last_name}".strip()

    def lines(self):
        """(product_id, quantity) pairs for the inventory ledger."""
        return [(item.product_id, item.quantity) for item in self.items.all()]


class OrderItem(models.Model):
    """
    Frozen order line.

    product_name and unit_price are copied from the cart so later catalogue
    edits do not change order history.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,  # Prevent deletion of products with orders
        related_name='order_items',
        help_text="Ordered product"
    )
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity}x {self.product_name} @ ₹{self.unit_price}"


class OrderStatusHistory(models.Model):

    class Actor(models.TextChoices):
        SYSTEM = 'system', 'System'
        CUSTOMER = 'customer', 'Customer'
        ADMIN = 'admin', 'Admin'

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='status_history'
    )
    from_status = models.CharField(max_length=20, blank=True, default='')
    to_status = models.CharField(max_length=20)
    actor = models.CharField(max_length=20, choices=Actor.choices)
    note = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name_plural = 'Order status history'

    def __str__(self):
        return f"#{self.order_id}: {self.from_status or '-'} -> {self.to_status}"


class ModificationRequest(models.Model):

    class Type(models.TextChoices):
        ADDRESS_CHANGE = 'address_change', 'Address change'
        ITEM_QUANTITY = 'item_quantity', 'Item quantity'
        ADD_ITEM = 'add_item', 'Add item'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='modification_requests'
    )
    request_type = models.CharField(max_length=20, choices=Type.choices)
    details = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    requested_by = models.CharField(max_length=64)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.get_request_type_display()} for order #{self.order_id}"
