"""
Coupon Models - Discount codes and their redemptions.

Models:
    - Coupon: A discount code with validity window, limits and eligibility lists
    - CouponRedemption: One use of a coupon at checkout
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Coupon(models.Model):
    """
    Discount code applied to a cart subtotal.

    Eligibility lists hold customer ids (``user_<pk>``) or product ids;
    an empty list means no restriction.
    """

    class DiscountType(models.TextChoices):
        PERCENTAGE = 'percentage', 'Percentage'
        FIXED = 'fixed_amount', 'Fixed amount'

    code = models.CharField(
        max_length=40,
        unique=True,
        help_text="Code customers type at checkout (stored upper-case)"
    )
    description = models.CharField(max_length=255, blank=True, default='')
    discount_type = models.CharField(
        max_length=20,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE
    )
    discount_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Percent off for percentage coupons, rupees off for fixed coupons"
    )
    minimum_order_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    maximum_discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Cap for percentage discounts"
    )
    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    usage_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Total redemptions allowed across all customers"
    )
    usage_count = models.PositiveIntegerField(default=0)
    per_customer_limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Redemptions allowed per signed-in customer"
    )
    is_active = models.BooleanField(default=True, db_index=True)
    allowed_customer_ids = models.JSONField(default=list, blank=True)
    excluded_customer_ids = models.JSONField(default=list, blank=True)
    applicable_product_ids = models.JSONField(default=list, blank=True)
    excluded_product_ids = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'valid_from', 'valid_until']),
        ]

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    @property
    def has_customer_restrictions(self) -> bool:
        return bool(self.allowed_customer_ids or self.excluded_customer_ids)

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit


class CouponRedemption(models.Model):
    coupon = models.ForeignKey(
        Coupon,
        on_delete=models.CASCADE,
        related_name='redemptions'
    )
    customer_id = models.CharField(max_length=64, db_index=True)
    order_id = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Order the coupon was redeemed on"
    )
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2)
    redeemed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-redeemed_at']
        indexes = [
            models.Index(fields=['coupon', 'customer_id']),
        ]

    def __str__(self):
        return f"{self.coupon.code} by {self.customer_id}"
