"""
Tests for the cart store.

Test Cases:
1. Totals follow the items after every mutation
2. Merging lines and price snapshots
3. Quantity updates refresh the price, zero removes the line
4. Coupons applied, kept and dropped
5. Guest cart merged into the customer cart
6. Expired carts replaced and purged
7. Cart endpoints keyed by X-Cart-Session
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from cart import services
from cart.models import Cart, CartItem
from cart.services import CartError, CartItemNotFound
from cart.tasks import purge_expired_carts
from core.pricing import calculate_totals
from coupons.models import Coupon
from coupons.services import CouponError
from inventory.models import Product, InventoryRecord


def make_product(name, price, stock=20):
    product = Product.objects.create(name=name, price=Decimal(price))
    InventoryRecord.objects.create(product=product, stock_quantity=stock)
    return product


class CartStoreTestCase(TestCase):

    def setUp(self):
        cache.clear()
        self.ring = make_product('Oxidised Ring', '1000.00')
        self.anklet = make_product('Payal Anklet', '500.00')
        self.cart = services.get_or_create_cart(session_id='sess-1')

    def test_two_items_at_threshold_ship_free(self):
        """
        Test: 2 x 1000 reaches the free-shipping threshold.

        Then: subtotal=2000, tax=360, shipping=0, total=2360
        """
        cart = services.add_item(self.cart, self.ring.id, 2)

        self.assertEqual(cart.subtotal, Decimal('2000.00'))
        self.assertEqual(cart.estimated_tax, Decimal('360.00'))
        self.assertEqual(cart.estimated_shipping, Decimal('0.00'))
        self.assertEqual(cart.estimated_total, Decimal('2360.00'))

    def test_single_cheap_item_pays_shipping(self):
        cart = services.add_item(self.cart, self.anklet.id, 1)

        self.assertEqual(cart.subtotal, Decimal('500.00'))
        self.assertEqual(cart.estimated_tax, Decimal('90.00'))
        self.assertEqual(cart.estimated_shipping, Decimal('100.00'))
        self.assertEqual(cart.estimated_total, Decimal('690.00'))

    def test_stored_totals_match_items_after_each_mutation(self):
        services.add_item(self.cart, self.ring.id, 1)
        services.add_item(self.cart, self.anklet.id, 3)
        services.update_quantity(self.cart, self.anklet.id, 1)
        cart = services.remove_item(self.cart, self.ring.id)

        expected = calculate_totals(services.pricing_lines(cart))
        self.assertEqual(cart.subtotal, expected.subtotal)
        self.assertEqual(cart.estimated_total, expected.total)
        self.assertEqual(cart.subtotal, Decimal('500.00'))

    def test_add_merges_line_with_new_snapshot(self):
        services.add_item(self.cart, self.ring.id, 1)
        cart = services.add_item(self.cart, self.ring.id, 2, unit_price=Decimal('950.00'))

        item = CartItem.objects.get(cart=cart, product=self.ring)
        self.assertEqual(item.quantity, 3)
        self.assertEqual(item.unit_price, Decimal('950.00'))
        self.assertEqual(item.total_price, Decimal('2850.00'))
        self.assertEqual(cart.items.count(), 1)

    def test_recalculate_keeps_snapshot_but_update_refreshes(self):
        services.add_item(self.cart, self.ring.id, 1)
        Product.objects.filter(pk=self.ring.pk).update(price=Decimal('1200.00'))

        services.recalculate(Cart.objects.get(pk=self.cart.pk))
        item = CartItem.objects.get(product=self.ring)
        self.assertEqual(item.unit_price, Decimal('1000.00'))

        cart = services.update_quantity(self.cart, self.ring.id, 2)
        item.refresh_from_db()
        self.assertEqual(item.unit_price, Decimal('1200.00'))
        self.assertEqual(cart.subtotal, Decimal('2400.00'))

    def test_zero_quantity_removes_line(self):
        services.add_item(self.cart, self.ring.id, 1)
        cart = services.update_quantity(self.cart, self.ring.id, 0)

        self.assertFalse(cart.items.exists())
        self.assertEqual(cart.estimated_total, Decimal('0.00'))
        self.assertEqual(cart.estimated_shipping, Decimal('0.00'))

    def test_remove_missing_item(self):
        with self.assertRaises(CartItemNotFound):
            services.remove_item(self.cart, self.ring.id)

    def test_cannot_add_more_than_available(self):
        scarce = make_product('Last Pendant', '800.00', stock=1)
        with self.assertRaisesMessage(CartError, 'Only 1 of Last Pendant left in stock'):
            services.add_item(self.cart, scarce.id, 2)

    def test_inactive_product_rejected(self):
        Product.objects.filter(pk=self.ring.pk).update(is_active=False)
        with self.assertRaises(CartError):
            services.add_item(self.cart, self.ring.id, 1)

    def test_coupon_applied_and_dropped_when_no_longer_valid(self):
        now = timezone.now()
        Coupon.objects.create(
            code='BIG10',
            discount_type=Coupon.DiscountType.PERCENTAGE,
            discount_value=Decimal('10'),
            minimum_order_amount=Decimal('1500'),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=1),
        )
        services.add_item(self.cart, self.ring.id, 2)
        cart = services.apply_coupon(self.cart, 'big10')

        self.assertEqual(cart.coupon_code, 'BIG10')
        self.assertEqual(cart.discount_amount, Decimal('200.00'))
        self.assertEqual(cart.estimated_total, Decimal('2160.00'))

        cart = services.update_quantity(cart, self.ring.id, 1)
        self.assertEqual(cart.coupon_code, '')
        self.assertEqual(cart.discount_amount, Decimal('0.00'))

    def test_invalid_coupon_leaves_cart_untouched(self):
        services.add_item(self.cart, self.ring.id, 1)
        with self.assertRaises(CouponError):
            services.apply_coupon(self.cart, 'NOPE')
        self.assertEqual(Cart.objects.get(pk=self.cart.pk).coupon_code, '')

    def test_merge_guest_cart(self):
        services.add_item(self.cart, self.ring.id, 1)
        services.add_item(self.cart, self.anklet.id, 2)
        customer_cart = services.get_or_create_cart(customer_id='user_9')
        services.add_item(customer_cart, self.ring.id, 1)

        merged = services.merge_guest_cart('sess-1', 'user_9')

        self.assertEqual(merged.pk, customer_cart.pk)
        quantities = {i.product_id: i.quantity for i in merged.items.all()}
        self.assertEqual(quantities, {self.ring.id: 2, self.anklet.id: 2})
        self.assertEqual(merged.subtotal, Decimal('3000.00'))
        self.assertFalse(Cart.objects.filter(session_id='sess-1').exists())

    def test_merge_caps_lines_at_available_stock(self):
        """
        Test: Merging never leaves a line above what can be reserved.

        Given: Guest cart with 3 rings, customer cart with 2; ring stock 4
        When: The guest cart is merged on sign-in
        Then: The ring line holds 4; a sold-out anklet line is dropped
        """
        InventoryRecord.objects.filter(product=self.ring).update(stock_quantity=4)
        services.add_item(self.cart, self.ring.id, 3)
        services.add_item(self.cart, self.anklet.id, 1)
        customer_cart = services.get_or_create_cart(customer_id='user_9')
        services.add_item(customer_cart, self.ring.id, 2)
        InventoryRecord.objects.filter(product=self.anklet).update(reserved_quantity=20)

        merged = services.merge_guest_cart('sess-1', 'user_9')

        quantities = {i.product_id: i.quantity for i in merged.items.all()}
        self.assertEqual(quantities, {self.ring.id: 4})
        self.assertEqual(merged.subtotal, Decimal('4000.00'))

    def test_expired_cart_replaced(self):
        services.add_item(self.cart, self.ring.id, 1)
        Cart.objects.filter(pk=self.cart.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        fresh = services.get_or_create_cart(session_id='sess-1')
        self.assertNotEqual(fresh.pk, self.cart.pk)
        self.assertFalse(fresh.items.exists())

    def test_purge_expired_carts_task(self):
        Cart.objects.create(session_id='old', expires_at=timezone.now() - timedelta(days=1))
        result = purge_expired_carts()
        self.assertEqual(result, {'deleted': 1})
        self.assertTrue(Cart.objects.filter(pk=self.cart.pk).exists())


class CartApiTestCase(APITestCase):

    def setUp(self):
        cache.clear()
        self.ring = make_product('Minimal Band', '1000.00')

    def test_guest_receives_session_and_keeps_using_it(self):
        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        session_id = response['X-Cart-Session']
        self.assertTrue(session_id)

        response = self.client.post(
            '/api/cart/items/',
            {'product_id': self.ring.id, 'quantity': 2},
            format='json',
            HTTP_X_CART_SESSION=session_id
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['estimated_total'], '2360.00')

        response = self.client.patch(
            f'/api/cart/items/{self.ring.id}/', {'quantity': 0},
            format='json', HTTP_X_CART_SESSION=session_id
        )
        self.assertEqual(response.data['items'], [])

    def test_unknown_item_is_404(self):
        response = self.client.delete('/api/cart/items/999/', HTTP_X_CART_SESSION='abc')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_merge_requires_login(self):
        response = self.client.post('/api/cart/merge/', HTTP_X_CART_SESSION='abc')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_customer_merge(self):
        self.client.post(
            '/api/cart/items/', {'product_id': self.ring.id, 'quantity': 1},
            format='json', HTTP_X_CART_SESSION='guest-1'
        )
        user = get_user_model().objects.create_user('asha', 'asha@example.com', 'pw12345!')
        self.client.force_authenticate(user)

        response = self.client.post('/api/cart/merge/', HTTP_X_CART_SESSION='guest-1')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['customer_id'], f'user_{user.pk}')
        self.assertEqual(len(response.data['items']), 1)
