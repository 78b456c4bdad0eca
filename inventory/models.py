"""
Inventory Models - Catalogue and stock entities.

Models:
    - Category: Product categorization (traditional, modern, designer...)
    - Product: Items available for sale
    - InventoryRecord: Stock and reservations for one product (1:1)

Stock invariant (enforced by the database and by the ledger):
    0 <= reserved_quantity <= stock_quantity
    available_quantity = stock_quantity - reserved_quantity
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q


class Category(models.Model):
    """
    Product category for organizing products.
    """
    name = models.CharField(
        max_length=100,
        unique=True,
        db_index=True,
        help_text="Unique category name"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product entity representing a piece of jewelry available for sale.

    Orders never join back to the live price or name; they keep their own
    snapshot on OrderItem.
    """
    name = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Product name for display and search"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional product description"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Selling price in INR (must be positive)"
    )
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='products',
        null=True,
        blank=True,
        help_text="Product category"
    )
    material = models.CharField(max_length=50, default='silver')
    weight_grams = models.DecimalField(
        max_digits=7,
        decimal_places=2,
        null=True,
        blank=True
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        indexes = [
            models.Index(fields=['name', 'is_active']),
            models.Index(fields=['category', 'is_active']),
            models.Index(fields=['price']),
        ]

    def __str__(self):
        return f"{self.name} (₹{self.price})"


class InventoryRecord(models.Model):
    """
    Stock levels for a single product.

    stock_quantity is the physical count; reserved_quantity is held against
    orders that are not yet paid. Only the ledger in inventory.services
    should write either column.
    """
    product = models.OneToOneField(
        Product,
        on_delete=models.CASCADE,
        related_name='inventory',
        help_text="Product in inventory"
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Physical stock on hand"
    )
    reserved_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Units held against unpaid orders"
    )
    reorder_point = models.PositiveIntegerField(
        default=5,
        help_text="Available quantity at or below which stock is low"
    )
    last_restocked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Inventory Record'
        verbose_name_plural = 'Inventory Records'
        ordering = ['product__name']
        constraints = [
            models.CheckConstraint(
                condition=Q(reserved_quantity__lte=F('stock_quantity')),
                name='inventory_reserved_within_stock'
            ),
        ]

    def __str__(self):
        return (
            f"{self.product.name}: {self.stock_quantity} in stock, "
            f"{self.reserved_quantity} reserved"
        )

    @property
    def available_quantity(self) -> int:
        return self.stock_quantity - self.reserved_quantity

    @property
    def is_low_stock(self) -> bool:
        """Check if available stock is at or below the reorder point."""
        return self.available_quantity <= self.reorder_point

    @property
    def is_out_of_stock(self) -> bool:
        return self.available_quantity <= 0
