"""
Tests for the inventory ledger and stock administration endpoints.

Test Cases:
1. Reserving the last units, then failing on the next reservation
2. Confirm / release / restock arithmetic
3. Conservation of stock across mixed sequences
4. All-or-nothing multi-line reservation
5. Releases that would go negative are skipped
6. Stock take refusing to go below reserved units
7. Concurrent reservations never oversell
8. Admin inventory endpoints
"""
import threading
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from rest_framework.test import APITestCase

from inventory import services
from inventory.models import Category, Product, InventoryRecord
from inventory.services import (
    InsufficientStockError,
    InventoryError,
    InventoryRecordNotFound,
    ReservationMismatchError,
)


def make_product(name, price='1000.00', stock=10, reserved=0, category=None, reorder_point=5):
    product = Product.objects.create(name=name, price=Decimal(price), category=category)
    InventoryRecord.objects.create(
        product=product,
        stock_quantity=stock,
        reserved_quantity=reserved,
        reorder_point=reorder_point
    )
    return product


class InventoryLedgerTestCase(TestCase):
    """Test cases for single-product ledger operations."""

    def setUp(self):
        self.category = Category.objects.create(name='Rings')
        self.ring = make_product('Lotus Ring', stock=5, category=self.category)
        self.record = self.ring.inventory

    def test_reserve_last_units_then_fail(self):
        """
        Test: Reserving every available unit succeeds, the next one fails.

        Given: stock=5, reserved=0
        When: reserve(5) then reserve(1)
        Then: available is 0 and the second call raises InsufficientStockError
        """
        services.reserve(self.ring.id, 5)
        self.record.refresh_from_db()
        self.assertEqual(self.record.reserved_quantity, 5)
        self.assertEqual(self.record.available_quantity, 0)

        with self.assertRaises(InsufficientStockError) as context:
            services.reserve(self.ring.id, 1)

        self.assertEqual(context.exception.requested, 1)
        self.assertEqual(context.exception.available, 0)
        self.record.refresh_from_db()
        self.assertEqual(self.record.reserved_quantity, 5)

    def test_confirm_spends_reservation(self):
        services.reserve(self.ring.id, 3)
        services.confirm(self.ring.id, 3)

        self.record.refresh_from_db()
        self.assertEqual(self.record.stock_quantity, 2)
        self.assertEqual(self.record.reserved_quantity, 0)

    def test_confirm_more_than_reserved_raises(self):
        services.reserve(self.ring.id, 1)

        with self.assertRaises(ReservationMismatchError):
            services.confirm(self.ring.id, 2)

        self.record.refresh_from_db()
        self.assertEqual(self.record.stock_quantity, 5)
        self.assertEqual(self.record.reserved_quantity, 1)

    def test_release_returns_units_to_pool(self):
        services.reserve(self.ring.id, 4)
        self.assertTrue(services.release(self.ring.id, 4))

        self.record.refresh_from_db()
        self.assertEqual(self.record.stock_quantity, 5)
        self.assertEqual(self.record.available_quantity, 5)

    def test_release_that_would_go_negative_is_skipped(self):
        """
        Test: Over-release changes nothing and reports False.
        """
        services.reserve(self.ring.id, 1)

        with self.assertLogs('inventory.services', level='WARNING'):
            released = services.release(self.ring.id, 3)

        self.assertFalse(released)
        self.record.refresh_from_db()
        self.assertEqual(self.record.reserved_quantity, 1)

    def test_restock_increments_stock(self):
        services.restock(self.ring.id, 7)
        self.record.refresh_from_db()
        self.assertEqual(self.record.stock_quantity, 12)
        self.assertIsNotNone(self.record.last_restocked_at)

    def test_missing_record(self):
        orphan = Product.objects.create(name='Orphan Anklet', price=Decimal('499.00'))
        with self.assertRaises(InventoryRecordNotFound):
            services.reserve(orphan.id, 1)
        with self.assertRaises(InventoryRecordNotFound):
            services.restock(orphan.id, 1)

    def test_invalid_quantity(self):
        for quantity in (0, -2, True, 1.5):
            with self.assertRaises(ValueError):
                services.reserve(self.ring.id, quantity)

    def test_conservation_over_mixed_sequence(self):
        """
        Test: stock_final == stock_initial - sum(confirmed), reserved never negative.
        """
        product = make_product('Peacock Necklace', stock=20)
        confirmed = 0
        steps = [
            ('reserve', 6), ('confirm', 4), ('reserve', 5), ('release', 2),
            ('release', 50), ('confirm', 5), ('reserve', 9), ('release', 9),
        ]
        for action, quantity in steps:
            if action == 'reserve':
                services.reserve(product.id, quantity)
            elif action == 'confirm':
                services.confirm(product.id, quantity)
                confirmed += quantity
            else:
                services.release(product.id, quantity)

            record = InventoryRecord.objects.get(product=product)
            self.assertGreaterEqual(record.reserved_quantity, 0)
            self.assertLessEqual(record.reserved_quantity, record.stock_quantity)

        record = InventoryRecord.objects.get(product=product)
        self.assertEqual(record.stock_quantity, 20 - confirmed)
        self.assertEqual(record.reserved_quantity, 0)

    def test_sequential_reservations_never_oversell(self):
        """
        Test: Of attempts summing to more than available, exactly those that fit succeed.
        """
        product = make_product('Temple Bangle', stock=10)
        outcomes = []
        for quantity in (4, 4, 4, 2, 1):
            try:
                services.reserve(product.id, quantity)
                outcomes.append(True)
            except InsufficientStockError:
                outcomes.append(False)

        self.assertEqual(outcomes, [True, True, False, True, False])
        record = InventoryRecord.objects.get(product=product)
        self.assertEqual(record.reserved_quantity, 10)

    def test_set_stock_refuses_below_reserved(self):
        services.reserve(self.ring.id, 3)

        with self.assertRaises(InventoryError):
            services.set_stock(self.ring.id, 2)

        record = services.set_stock(self.ring.id, 3)
        self.assertEqual(record.stock_quantity, 3)
        self.assertEqual(record.available_quantity, 0)

    def test_low_stock_records(self):
        make_product('Plenty Pendant', stock=50)
        services.reserve(self.ring.id, 1)

        names = [record.product.name for record in services.low_stock_records()]
        self.assertEqual(names, ['Lotus Ring'])

    def test_get_availability(self):
        services.reserve(self.ring.id, 2)

        availability = services.get_availability(self.ring.id)

        self.assertEqual(availability['stock_quantity'], 5)
        self.assertEqual(availability['reserved_quantity'], 2)
        self.assertEqual(availability['available_quantity'], 3)
        self.assertTrue(availability['is_low_stock'])


class MultiLineReservationTestCase(TestCase):

    def setUp(self):
        self.ring = make_product('Kundan Ring', stock=5)
        self.earring = make_product('Jhumka Earring', stock=2)
        self.chain = make_product('Filigree Chain', stock=8)

    def test_reserve_lines_all_or_nothing(self):
        """
        Test: A failing line rolls back every line reserved in the same call.

        Given: earring has only 2 units
        When: reserving ring x3, earring x3, chain x1
        Then: InsufficientStockError and no reservations remain
        """
        lines = [(self.ring.id, 3), (self.earring.id, 3), (self.chain.id, 1)]

        with self.assertRaises(InsufficientStockError) as context:
            services.reserve_lines(lines)

        self.assertEqual(context.exception.product_id, self.earring.id)
        for record in InventoryRecord.objects.all():
            self.assertEqual(record.reserved_quantity, 0, record.product.name)

    def test_reserve_lines_merges_duplicate_products(self):
        reserved = services.reserve_lines([(self.chain.id, 2), (self.ring.id, 1), (self.chain.id, 3)])

        self.assertEqual(reserved, [(self.ring.id, 1), (self.chain.id, 5)])
        self.assertEqual(InventoryRecord.objects.get(product=self.chain).reserved_quantity, 5)

    def test_release_lines_counts_skipped(self):
        services.reserve_lines([(self.ring.id, 2)])

        with self.assertLogs('inventory.services', level='WARNING'):
            skipped = services.release_lines([(self.ring.id, 2), (self.earring.id, 1)])

        self.assertEqual(skipped, 1)
        self.assertEqual(InventoryRecord.objects.get(product=self.ring).reserved_quantity, 0)

    def test_confirm_and_restock_lines(self):
        lines = [(self.ring.id, 2), (self.chain.id, 4)]
        services.reserve_lines(lines)
        services.confirm_lines(lines)
        self.assertEqual(InventoryRecord.objects.get(product=self.chain).stock_quantity, 4)

        services.restock_lines(lines)
        self.assertEqual(InventoryRecord.objects.get(product=self.ring).stock_quantity, 5)
        self.assertEqual(InventoryRecord.objects.get(product=self.chain).stock_quantity, 8)


class ConcurrentReservationTestCase(TransactionTestCase):
    """
    Threads race for the same scarce product.
    Uses TransactionTestCase so each thread commits on its own connection.
    """

    def setUp(self):
        self.product = make_product('Last Solitaire', stock=10)

    def test_concurrent_reservations_no_overselling(self):
        results = []
        lock = threading.Lock()

        def attempt():
            try:
                services.reserve(self.product.id, 3)
                outcome = True
            except InsufficientStockError:
                outcome = False
            finally:
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        record = InventoryRecord.objects.get(product=self.product)
        self.assertEqual(results.count(True), 3)
        self.assertEqual(record.reserved_quantity, 9)
        self.assertLessEqual(record.reserved_quantity, record.stock_quantity)


class InventoryApiTestCase(APITestCase):

    def setUp(self):
        self.admin = get_user_model().objects.create_superuser(
            username='admin', email='admin@example.com', password='pass12345'
        )
        self.client.force_authenticate(self.admin)
        self.category = Category.objects.create(name='Earrings')
        self.stud = make_product('Zircon Stud', price='799.00', stock=3, category=self.category)
        self.hoop = make_product('Silver Hoop', price='1299.00', stock=40, category=self.category)

    def test_inventory_list_filters(self):
        response = self.client.get('/api/inventory/', {'stock_quantity__lte': '10'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        names = [row['product']['name'] for row in response.data['results']]
        self.assertEqual(names, ['Zircon Stud'])

    def test_inventory_list_rejects_bad_filter_value(self):
        response = self.client.get('/api/inventory/', {'stock_quantity__gte': 'lots'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_restock_endpoint(self):
        response = self.client.post(
            f'/api/inventory/{self.stud.id}/adjust/', {'restock': 5}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock_quantity'], 8)

    def test_set_stock_conflict(self):
        services.reserve(self.stud.id, 2)
        response = self.client.post(
            f'/api/inventory/{self.stud.id}/adjust/', {'set_stock': 1}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_adjust_requires_exactly_one_action(self):
        response = self.client.post(
            f'/api/inventory/{self.stud.id}/adjust/', {'restock': 1, 'set_stock': 4}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_low_stock_report(self):
        response = self.client.get('/api/inventory/low-stock/')
        self.assertEqual([row['product']['name'] for row in response.data], ['Zircon Stud'])

    def test_non_admin_forbidden(self):
        self.client.force_authenticate(None)
        response = self.client.get('/api/inventory/')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_product_search(self):
        response = self.client.get('/api/products/search/', {'q': 'hoop', 'in_stock': 'true'})
        self.assertEqual([row['name'] for row in response.data['results']], ['Silver Hoop'])
