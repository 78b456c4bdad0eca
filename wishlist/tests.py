"""
Tests for the customer wishlist.
"""
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from inventory.models import Product
from wishlist import services
from wishlist.models import WishlistItem
from wishlist.services import WishlistError


class WishlistServiceTestCase(TestCase):

    def setUp(self):
        cache.clear()
        self.ring = Product.objects.create(name='Lotus Ring', price=Decimal('1000.00'))
        self.chain = Product.objects.create(name='Box Chain', price=Decimal('1800.00'))

    def test_add_is_idempotent(self):
        self.assertTrue(services.add_to_wishlist('user_1', self.ring.pk))
        self.assertFalse(services.add_to_wishlist('user_1', self.ring.pk))
        self.assertEqual(WishlistItem.objects.count(), 1)

    def test_guest_and_inactive_product_rejected(self):
        with self.assertRaises(WishlistError):
            services.add_to_wishlist('guest_0123456789abcdef0123', self.ring.pk)

        Product.objects.filter(pk=self.chain.pk).update(is_active=False)
        with self.assertRaises(WishlistError):
            services.add_to_wishlist('user_1', self.chain.pk)

    def test_membership_cached_until_wishlist_changes(self):
        """
        Test: The saved-state answer is cached per customer and dropped on change.

        Given: An empty wishlist whose answer for the ring has been cached
        When: A row appears behind the cache's back, then the ring is saved properly
        Then: The stale answer holds until the save invalidates it
        """
        self.assertFalse(services.is_in_wishlist('user_1', self.ring.pk))

        WishlistItem.objects.create(customer_id='user_1', product=self.ring)
        self.assertFalse(services.is_in_wishlist('user_1', self.ring.pk))

        services.add_to_wishlist('user_1', self.chain.pk)
        self.assertTrue(services.is_in_wishlist('user_1', self.ring.pk))

        services.remove_from_wishlist('user_1', self.ring.pk)
        self.assertFalse(services.is_in_wishlist('user_1', self.ring.pk))

    def test_other_customers_cache_untouched(self):
        services.add_to_wishlist('user_2', self.ring.pk)
        self.assertTrue(services.is_in_wishlist('user_2', self.ring.pk))

        with patch('wishlist.services.WishlistItem.objects.filter') as query:
            self.assertTrue(services.is_in_wishlist('user_2', self.ring.pk))
            query.assert_not_called()

    def test_batch_check(self):
        services.add_to_wishlist('user_1', self.chain.pk)

        result = services.batch_check('user_1', [self.ring.pk, self.chain.pk])

        self.assertEqual(result, {self.ring.pk: False, self.chain.pk: True})
        self.assertEqual(services.batch_check('guest_abc', [self.ring.pk]), {self.ring.pk: False})

    def test_remove_missing_item(self):
        self.assertFalse(services.remove_from_wishlist('user_1', self.ring.pk))

    def test_migrate_guest_wishlist(self):
        services.add_to_wishlist('user_1', self.ring.pk)
        Product.objects.filter(pk=self.chain.pk).update(is_active=False)
        bangle = Product.objects.create(name='Kada Bangle', price=Decimal('2200.00'))

        result = services.migrate_guest_wishlist('user_1', [self.ring.pk, self.chain.pk, bangle.pk])

        self.assertEqual(result, {'migrated': 1, 'skipped': 2})
        self.assertEqual(
            [item.product_id for item in services.wishlist_items('user_1')],
            [bangle.pk, self.ring.pk]
        )


class WishlistApiTestCase(APITestCase):

    def setUp(self):
        cache.clear()
        self.user = get_user_model().objects.create_user('asha', 'asha@example.com', 'pw')
        self.client.force_authenticate(self.user)
        self.ring = Product.objects.create(name='Lotus Ring', price=Decimal('1000.00'))

    def test_add_list_remove(self):
        response = self.client.post('/api/wishlist/', {'product_id': self.ring.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.post('/api/wishlist/', {'product_id': self.ring.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get('/api/wishlist/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['items'][0]['product_name'], 'Lotus Ring')
        self.assertEqual(response.data['items'][0]['product_price'], '1000.00')

        self.assertTrue(self.client.get(f'/api/wishlist/{self.ring.pk}/').data['in_wishlist'])
        response = self.client.delete(f'/api/wishlist/{self.ring.pk}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        response = self.client.delete(f'/api/wishlist/{self.ring.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_bad_product(self):
        response = self.client.post('/api/wishlist/', {'product_id': 9999}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Wishlist Error')

        response = self.client.post('/api/wishlist/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_check_and_migrate(self):
        response = self.client.post('/api/wishlist/migrate/', {'product_ids': [self.ring.pk]}, format='json')
        self.assertEqual(response.data, {'migrated': 1, 'skipped': 0})

        response = self.client.post('/api/wishlist/check/', {'product_ids': [self.ring.pk, 9999]}, format='json')
        self.assertEqual(response.data, {str(self.ring.pk): True, '9999': False})

    def test_requires_sign_in(self):
        self.client.force_authenticate(None)
        response = self.client.get('/api/wishlist/')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
