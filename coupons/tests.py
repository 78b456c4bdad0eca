"""
Tests for coupon validation, discounts and redemption.
"""
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from coupons.models import Coupon, CouponRedemption
from coupons.services import (
    CouponError,
    available_coupons,
    calculate_discount,
    record_redemption,
    validate_coupon,
)


def make_coupon(code='SAVE10', **overrides):
    now = timezone.now()
    fields = dict(
        code=code,
        discount_type=Coupon.DiscountType.PERCENTAGE,
        discount_value=Decimal('10'),
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
    )
    fields.update(overrides)
    return Coupon.objects.create(**fields)


class CouponDiscountTestCase(TestCase):

    def test_percentage_discount_capped(self):
        coupon = make_coupon(maximum_discount_amount=Decimal('150'))
        self.assertEqual(calculate_discount(coupon, Decimal('1000')), Decimal('100.00'))
        self.assertEqual(calculate_discount(coupon, Decimal('5000')), Decimal('150.00'))

    def test_fixed_discount_never_exceeds_subtotal(self):
        coupon = make_coupon(discount_type=Coupon.DiscountType.FIXED, discount_value=Decimal('500'))
        self.assertEqual(calculate_discount(coupon, Decimal('2000')), Decimal('500.00'))
        self.assertEqual(calculate_discount(coupon, Decimal('320.50')), Decimal('320.50'))

    def test_percentage_rounds_to_paise(self):
        coupon = make_coupon(discount_value=Decimal('12.5'))
        self.assertEqual(calculate_discount(coupon, Decimal('999.99')), Decimal('125.00'))


class CouponValidationTestCase(TestCase):

    def setUp(self):
        cache.clear()

    def test_code_is_case_insensitive(self):
        make_coupon('festive15', discount_value=Decimal('15'))
        coupon, discount = validate_coupon(' Festive15 ', Decimal('1000'))
        self.assertEqual(coupon.code, 'FESTIVE15')
        self.assertEqual(discount, Decimal('150.00'))

    def test_rejections_carry_user_messages(self):
        now = timezone.now()
        make_coupon('OFF', is_active=False)
        make_coupon('LATER', valid_from=now + timedelta(days=1))
        make_coupon('OLD', valid_from=now - timedelta(days=10), valid_until=now - timedelta(days=1))
        make_coupon('BIG', minimum_order_amount=Decimal('1999'))
        make_coupon('GONE', usage_limit=1, usage_count=1)

        cases = {
            'NOPE': 'Invalid coupon code',
            'OFF': 'This coupon is no longer active',
            'LATER': 'This coupon is not yet valid',
            'OLD': 'This coupon has expired',
            'BIG': 'Minimum order amount of ₹1999.00 required',
            'GONE': 'This coupon has reached its usage limit',
        }
        for code, message in cases.items():
            with self.assertRaises(CouponError) as context:
                validate_coupon(code, Decimal('1000'))
            self.assertEqual(str(context.exception), message, code)

    def test_customer_restrictions(self):
        make_coupon('VIP', allowed_customer_ids=['user_1'])

        with self.assertRaisesMessage(CouponError, 'Please sign in to use this coupon'):
            validate_coupon('VIP', Decimal('1000'))
        with self.assertRaisesMessage(CouponError, 'not available for your account'):
            validate_coupon('VIP', Decimal('1000'), customer_id='user_2')

        coupon, _ = validate_coupon('VIP', Decimal('1000'), customer_id='user_1')
        self.assertEqual(coupon.code, 'VIP')

    def test_product_restrictions(self):
        make_coupon('RINGS', applicable_product_ids=['7'])
        make_coupon('NOSALE', excluded_product_ids=[9])

        with self.assertRaisesMessage(CouponError, 'not applicable to items in your cart'):
            validate_coupon('RINGS', Decimal('1000'), product_ids=[3])
        validate_coupon('RINGS', Decimal('1000'), product_ids=[3, 7])
        with self.assertRaisesMessage(CouponError, 'cannot be applied to some items'):
            validate_coupon('NOSALE', Decimal('1000'), product_ids=[9])

    def test_per_customer_limit_ignores_guests(self):
        coupon = make_coupon('ONCE', per_customer_limit=1)
        record_redemption(coupon, 'user_5', Decimal('100'))
        record_redemption(coupon, 'guest_abc', Decimal('100'))

        with self.assertRaisesMessage(CouponError, 'maximum number of times'):
            validate_coupon('ONCE', Decimal('1000'), customer_id='user_5')
        validate_coupon('ONCE', Decimal('1000'), customer_id='guest_abc')


class CouponRedemptionTestCase(TestCase):

    def test_usage_limit_guard(self):
        coupon = make_coupon('LAST', usage_limit=1)

        record_redemption(coupon, 'user_1', Decimal('50'), order_id=10)
        with self.assertRaises(CouponError):
            record_redemption(coupon, 'user_2', Decimal('50'), order_id=11)

        coupon.refresh_from_db()
        self.assertEqual(coupon.usage_count, 1)
        self.assertEqual(CouponRedemption.objects.filter(coupon=coupon).count(), 1)

    def test_available_coupons_cached_and_invalidated(self):
        cache.clear()
        make_coupon('FIRST')
        codes = [c['code'] for c in available_coupons()]
        self.assertEqual(codes, ['FIRST'])

        # Creating a coupon invalidates the cached listing
        make_coupon('SECOND', valid_until=timezone.now() + timedelta(days=60))
        codes = [c['code'] for c in available_coupons()]
        self.assertEqual(codes, ['FIRST', 'SECOND'])

    def test_available_coupons_filters_restricted_for_guests(self):
        cache.clear()
        make_coupon('OPEN')
        make_coupon('MEMBERS', allowed_customer_ids=['user_3'])

        self.assertEqual([c['code'] for c in available_coupons()], ['OPEN'])
        self.assertEqual(
            sorted(c['code'] for c in available_coupons('user_3')),
            ['MEMBERS', 'OPEN']
        )


class CouponApiTestCase(APITestCase):

    def setUp(self):
        cache.clear()
        make_coupon('WELCOME10', maximum_discount_amount=Decimal('500'))

    def test_validate_endpoint(self):
        response = self.client.post(
            '/api/coupons/validate/', {'code': 'welcome10', 'subtotal': '2499.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['discount_amount'], '249.90')

    def test_validate_endpoint_rejects(self):
        response = self.client.post(
            '/api/coupons/validate/', {'code': 'MISSING', 'subtotal': '100'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid')

    def test_admin_creates_coupon(self):
        admin = get_user_model().objects.create_superuser('boss', 'boss@example.com', 'pw12345!')
        self.client.force_authenticate(admin)
        now = timezone.now()
        response = self.client.post('/api/coupons/', {
            'code': 'diwali',
            'discount_type': 'fixed_amount',
            'discount_value': '300.00',
            'valid_from': now.isoformat(),
            'valid_until': (now + timedelta(days=5)).isoformat(),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(Coupon.objects.filter(code='DIWALI').exists())
