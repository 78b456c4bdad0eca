"""
Review Models - Customer ratings for delivered products.

Models:
    - ProductReview: One rating per customer and product, hidden until approved
    - ReviewHelpfulVote: A customer's helpful / not helpful vote on a review
"""
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from inventory.models import Product


class ProductReview(models.Model):
    """
    Review written against a delivered order.

    New and edited reviews start unapproved; only approved reviews are
    shown on the storefront or counted in a product's rating.
    """
    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='reviews'
    )
    customer_id = models.CharField(max_length=64, db_index=True)
    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviews',
        help_text="Delivered order the purchase was verified against"
    )
    rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    title = models.CharField(max_length=120, blank=True, default='')
    comment = models.TextField(blank=True, default='')

    is_approved = models.BooleanField(default=False, db_index=True)
    is_verified_purchase = models.BooleanField(default=True)
    helpful_count = models.PositiveIntegerField(default=0)

    moderated_by = models.CharField(max_length=64, blank=True, default='')
    moderated_at = models.DateTimeField(null=True, blank=True)
    admin_notes = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['customer_id', 'product'],
                name='one_review_per_customer_product'
            ),
        ]
        indexes = [
            models.Index(fields=['product', 'is_approved']),
        ]

    def __str__(self):
        return f"{self.rating}/5 for {self.product} by {self.customer_id}"


class ReviewHelpfulVote(models.Model):
    review = models.ForeignKey(
        ProductReview,
        on_delete=models.CASCADE,
        related_name='votes'
    )
    customer_id = models.CharField(max_length=64)
    is_helpful = models.BooleanField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['review', 'customer_id'],
                name='one_vote_per_customer_review'
            ),
        ]

    def __str__(self):
        return f"{self.customer_id} on review #{self.review_id}: {self.is_helpful}"
