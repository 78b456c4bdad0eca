"""
Cart Models - Shopping carts for guests and signed-in customers.

Models:
    - Cart: Keyed by session_id (guest) or customer_id (customer)
    - CartItem: Product line with the unit price captured when added

Cart-level money fields are derived from the items by
cart.services.recalculate() after every mutation; nothing else writes them.
"""
from django.db import models
from django.db.models import Q
from django.utils import timezone

from inventory.models import Product


class Cart(models.Model):
    session_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Opaque guest session key (X-Cart-Session header)"
    )
    customer_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Customer id for signed-in shoppers"
    )
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    estimated_tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    estimated_shipping = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    estimated_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    coupon_code = models.CharField(max_length=40, blank=True, default='')
    expires_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']
        constraints = [
            models.UniqueConstraint(
                fields=['session_id'],
                condition=Q(session_id__isnull=False),
                name='cart_unique_session'
            ),
            models.UniqueConstraint(
                fields=['customer_id'],
                condition=Q(customer_id__isnull=False),
                name='cart_unique_customer'
            ),
        ]

    def __str__(self):
        owner = self.customer_id or f"session {self.session_id}"
        return f"Cart #{self.pk} ({owner})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items.all())


class CartItem(models.Model):
    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='cart_items'
    )
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price captured when the line was added or its quantity changed"
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    added_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['added_at', 'id']
        constraints = [
            models.UniqueConstraint(fields=['cart', 'product'], name='cart_item_unique_product'),
        ]

    def __str__(self):
        return f"{self.quantity} x {self.product.name}"
