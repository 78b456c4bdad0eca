"""
Tests for shared helpers.

Test Cases:
1. Totals: tax, free-shipping threshold, discount floor
2. Customer identity and phone normalisation
3. Query builder whitelist and value conversion
4. Namespaced TTL cache
5. Rate limiting (Redis mocked)
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import redis
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.response import Response
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from core.cache import TTLCache
from core.identity import (
    contact_matches,
    guest_customer_id,
    is_guest_customer_id,
    is_valid_phone,
    normalize_phone,
)
from core.pricing import calculate_totals, line_total, to_money
from core.query import Op, Query, QueryError, to_bool, to_decimal
from core.rate_limiting import get_client_ip, rate_limit
from inventory.models import Product


class PricingTestCase(SimpleTestCase):

    def test_below_free_shipping_threshold(self):
        totals = calculate_totals([(1, Decimal('1500.00'))])

        self.assertEqual(totals.subtotal, Decimal('1500.00'))
        self.assertEqual(totals.tax, Decimal('270.00'))
        self.assertEqual(totals.shipping, Decimal('100.00'))
        self.assertEqual(totals.total, Decimal('1870.00'))

    def test_free_shipping_at_threshold(self):
        totals = calculate_totals([(2, Decimal('1000.00'))])
        self.assertEqual(totals.shipping, Decimal('0.00'))
        self.assertEqual(totals.total, Decimal('2360.00'))

    def test_discount_never_makes_total_negative(self):
        totals = calculate_totals([(1, Decimal('100.00'))], discount=Decimal('500'))
        self.assertEqual(totals.total, Decimal('0.00'))

    def test_empty_cart(self):
        totals = calculate_totals([])
        self.assertEqual(totals.as_dict()['total'], '0.00')

    def test_rounding_to_paise(self):
        self.assertEqual(to_money('10.005'), Decimal('10.01'))
        self.assertEqual(line_total(3, Decimal('333.333')), Decimal('999.99'))
        self.assertEqual(calculate_totals([(1, Decimal('99.99'))]).tax, Decimal('18.00'))

    def test_invalid_input(self):
        with self.assertRaises(ValueError):
            calculate_totals([(-1, Decimal('10'))])
        with self.assertRaises(ValueError):
            calculate_totals([(1, Decimal('10'))], discount=Decimal('-1'))


class IdentityTestCase(SimpleTestCase):

    def test_phone_normalisation(self):
        self.assertEqual(normalize_phone('+91 98765-43210'), '9876543210')
        self.assertEqual(normalize_phone('09876543210'), '9876543210')
        self.assertTrue(is_valid_phone('9876543210'))
        self.assertFalse(is_valid_phone('5876543210'))
        self.assertFalse(is_valid_phone('98765'))

    def test_guest_id_is_stable(self):
        first = guest_customer_id('Asha@Example.com', '+919876543210')
        second = guest_customer_id(' asha@example.com', '9876543210')

        self.assertEqual(first, second)
        self.assertTrue(is_guest_customer_id(first))
        self.assertEqual(len(first), len('guest_') + 20)
        self.assertNotEqual(first, guest_customer_id('asha@example.com', '9123456780'))

    def test_contact_matches(self):
        self.assertTrue(contact_matches('A@x.com', '9876543210', 'a@x.com', '+91 9876543210'))
        self.assertFalse(contact_matches('a@x.com', '9876543210', 'b@x.com', '9876543210'))


class QueryTestCase(TestCase):

    def setUp(self):
        for name, price in (('Ring', '500'), ('Bangle', '1500'), ('Chain', '2500')):
            Product.objects.create(name=name, price=Decimal(price))
        self.fields = {'name': str, 'price': to_decimal, 'is_active': to_bool}

    def test_filters_from_params(self):
        query = Query.from_params({'price__gte': '1000', 'ordering': '-price', 'page': '2'}, self.fields)
        names = list(query.apply(Product.objects.all()).values_list('name', flat=True))
        self.assertEqual(names, ['Chain', 'Bangle'])

    def test_in_and_not_equal(self):
        query = Query(self.fields).where('name', Op.IN, 'Ring,Chain').where('name', Op.NE, 'Ring')
        self.assertEqual(query.apply(Product.objects.all()).get().name, 'Chain')

    def test_unknown_field_and_bad_value(self):
        with self.assertRaises(QueryError):
            Query(self.fields).where('description', Op.EQ, 'x')
        with self.assertRaises(QueryError):
            Query(self.fields).where('price', Op.LT, 'cheap')
        with self.assertRaises(QueryError):
            Query.from_params({'ordering': 'created_at'}, self.fields)

    def test_unrelated_params_ignored(self):
        query = Query.from_params({'format': 'json'}, self.fields)
        self.assertEqual(query.filters, [])


class TTLCacheTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()
        self.cache = TTLCache('tests:ttl', ttl=30)

    def test_get_or_set_calls_loader_once(self):
        loader = MagicMock(return_value=['WELCOME10'])

        self.assertEqual(self.cache.get_or_set('guest', loader), ['WELCOME10'])
        self.assertEqual(self.cache.get_or_set('guest', loader), ['WELCOME10'])
        loader.assert_called_once_with()

    def test_invalidate_all_bumps_version(self):
        self.cache.set('a', 1)
        self.cache.set('b', 2)

        self.cache.invalidate_all()

        self.assertIsNone(self.cache.get('a'))
        self.assertEqual(self.cache.get('b', 'gone'), 'gone')

    def test_cached_none_is_a_hit(self):
        loader = MagicMock(return_value=None)
        self.cache.get_or_set('k', loader)
        self.cache.get_or_set('k', loader)
        loader.assert_called_once_with()

    def test_ttl_must_be_positive(self):
        with self.assertRaises(ValueError):
            TTLCache('tests:bad', ttl=0)


class LimitedView(APIView):
    authentication_classes = []

    @rate_limit(max_requests=2, window_seconds=60)
    def post(self, request):
        return Response({'ok': True})


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(SimpleTestCase):
    """Test cases for the rate limiting decorator with a mocked Redis client."""

    def setUp(self):
        self.factory = APIRequestFactory()
        self.redis = MagicMock()
        self.redis.ttl.return_value = 42
        patcher = patch('core.rate_limiting.get_redis_client', return_value=self.redis)
        patcher.start()
        self.addCleanup(patcher.stop)

    def call(self, **extra):
        return LimitedView.as_view()(self.factory.post('/limited/', {}, format='json', **extra))

    def test_allows_until_limit_then_429(self):
        self.redis.incr.side_effect = [1, 2, 3]

        first = self.call()
        second = self.call()
        third = self.call()

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first['X-RateLimit-Remaining'], '1')
        self.assertEqual(second.status_code, 200)
        self.assertEqual(third.status_code, 429)
        self.assertEqual(third['Retry-After'], '42')
        self.redis.expire.assert_called_once_with('rate_limit:LimitedView.post:127.0.0.1', 60)

    def test_keyed_by_forwarded_ip(self):
        self.redis.incr.return_value = 1
        self.call(HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1')
        self.redis.incr.assert_called_once_with('rate_limit:LimitedView.post:203.0.113.7')

    def test_fails_open_on_redis_error(self):
        self.redis.incr.side_effect = redis.ConnectionError('gone')
        self.assertEqual(self.call().status_code, 200)

    @override_settings(RATE_LIMIT_ENABLED=False)
    def test_disabled(self):
        response = self.call()
        self.assertEqual(response.status_code, 200)
        self.redis.incr.assert_not_called()
        self.assertNotIn('X-RateLimit-Limit', response)

    def test_client_ip_fallback(self):
        request = self.factory.get('/', REMOTE_ADDR='198.51.100.4')
        self.assertEqual(get_client_ip(request), '198.51.100.4')
