"""
Wishlist Models - Products a signed-in customer has saved for later.
"""
from django.db import models

from inventory.models import Product


class WishlistItem(models.Model):
    customer_id = models.CharField(max_length=64, db_index=True)
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='wishlist_items'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['customer_id', 'product'],
                name='one_wishlist_entry_per_product'
            ),
        ]

    def __str__(self):
        return f"{self.product} saved by {self.customer_id}"
