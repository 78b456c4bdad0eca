"""
Management command to seed the database with a sample jewelry catalogue.

Generates:
- Jewelry categories (rings, earrings, necklaces...)
- Products with INR prices in silver, gold-plated and oxidised finishes
- One InventoryRecord per product
- A couple of demo coupons

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from coupons.models import Coupon
from inventory.models import Category, Product, InventoryRecord


class Command(BaseCommand):
    help = 'Seed the database with sample categories, products, inventory and coupons'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=200,
            help='Number of products to create (default: 200)',
        )
        parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible catalogues',
        )

    def handle(self, *args, **options):
        if options['seed'] is not None:
            random.seed(options['seed'])

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            categories = self._create_categories()
            products = self._create_products(options['products'], categories)
            self._create_inventory(products)
            self._create_coupons()

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear catalogue, orders and carts."""
        from cart.models import Cart
        from orders.models import Order

        Order.objects.all().delete()
        Cart.objects.all().delete()
        InventoryRecord.objects.all().delete()
        Product.objects.all().delete()
        Category.objects.all().delete()
        Coupon.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_categories(self):
        category_names = [
            'Rings', 'Earrings', 'Necklaces', 'Bracelets', 'Anklets',
            'Pendants', 'Bangles', 'Nose Pins', 'Toe Rings', 'Sets'
        ]

        categories = []
        for name in category_names:
            category, created = Category.objects.get_or_create(name=name)
            categories.append(category)
            if created:
                self.stdout.write(f'  Created category: {name}')

        self.stdout.write(self.style.SUCCESS(f'Created {len(categories)} categories'))
        return categories

    def _create_products(self, count, categories):
        """Create sample products with realistic names and prices."""
        styles = [
            'Temple', 'Kundan', 'Filigree', 'Minimal', 'Floral', 'Peacock',
            'Jhumka', 'Chandbali', 'Solitaire', 'Lotus', 'Paisley', 'Tribal'
        ]
        materials = ['silver', 'gold-plated silver', 'oxidised silver', 'rose-gold plated']
        stones = ['', 'Ruby', 'Emerald', 'Pearl', 'Zircon', 'Moonstone', 'Onyx']

        products = []
        existing_names = set()

        self.stdout.write(f'Creating {count} products...')

        for i in range(count):
            category = random.choice(categories)
            style = random.choice(styles)
            stone = random.choice(stones)
            base = category.name.rstrip('s') if category.name != 'Sets' else 'Jewellery Set'

            for _ in range(10):
                name = ' '.join(part for part in (style, stone, base) if part)
                name = f"{name} #{random.randint(100, 999)}"
                if name not in existing_names:
                    existing_names.add(name)
                    break
            else:
                name = f"{category.name} Design {i + 1}"
                existing_names.add(name)

            products.append(Product(
                name=name,
                description=f"Handcrafted {style.lower()} {base.lower()} in 925 sterling silver.",
                price=Decimal(random.randrange(49900, 899900, 100)) / 100,
                category=category,
                material=random.choice(materials),
                weight_grams=Decimal(random.randint(150, 4500)) / 100,
                is_active=random.random() > 0.05
            ))

        Product.objects.bulk_create(products, ignore_conflicts=True)

        products = list(Product.objects.filter(inventory__isnull=True))
        self.stdout.write(self.style.SUCCESS(f'Created {len(products)} products'))
        return products

    def _create_inventory(self, products):
        records = [
            InventoryRecord(
                product=product,
                stock_quantity=random.randint(0, 60),
                reorder_point=random.randint(3, 10)
            )
            for product in products
        ]
        InventoryRecord.objects.bulk_create(records, batch_size=1000, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {len(records)} inventory records'))

    def _create_coupons(self):
        now = timezone.now()
        demo = [
            dict(code='WELCOME10', discount_type=Coupon.DiscountType.PERCENTAGE,
                 discount_value=Decimal('10'), minimum_order_amount=Decimal('999'),
                 maximum_discount_amount=Decimal('500')),
            dict(code='FLAT250', discount_type=Coupon.DiscountType.FIXED,
                 discount_value=Decimal('250'), minimum_order_amount=Decimal('1999')),
        ]
        for fields in demo:
            code = fields.pop('code')
            Coupon.objects.get_or_create(
                code=code,
                defaults=dict(fields, valid_from=now, valid_until=now + timedelta(days=90))
            )
        self.stdout.write(self.style.SUCCESS(f'Created {len(demo)} coupons'))
