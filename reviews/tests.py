"""
Tests for product reviews and moderation.

Test Cases:
1. Only customers with a delivered order may review, once per product
2. New and edited reviews stay hidden until approved
3. Approved listing is cached and refreshed when a review changes
4. Helpful votes are counted once per customer
5. Admin filters, bulk moderation and statistics
6. Review endpoints
"""
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.query import QueryError
from inventory.models import Product
from orders.models import Order, OrderItem
from reviews import services
from reviews.models import ProductReview
from reviews.services import ReviewError, ReviewNotFound, ReviewPermissionDenied


def make_order(customer_id, product, order_status=Order.Status.DELIVERED):
    address = {
        'first_name': 'Asha',
        'address_line1': '12 MG Road',
        'city': 'Bengaluru',
        'state': 'Karnataka',
        'postal_code': '560001',
    }
    order = Order.objects.create(
        customer_id=customer_id,
        email='asha@example.com',
        phone='9876543210',
        status=order_status,
        total_amount=product.price,
        **{f"{prefix}_{name}": value for prefix in ('shipping', 'billing') for name, value in address.items()}
    )
    OrderItem.objects.create(
        order=order,
        product=product,
        product_name=product.name,
        quantity=1,
        unit_price=product.price,
        total_price=product.price,
    )
    return order


class ReviewTestMixin:

    def setUp(self):
        cache.clear()
        self.ring = Product.objects.create(name='Lotus Ring', price=Decimal('1000.00'))
        self.chain = Product.objects.create(name='Box Chain', price=Decimal('1800.00'))
        self.order = make_order('user_1', self.ring)

    def review(self, customer_id='user_1', rating=5, approve=False, product=None, order=None):
        product = product or self.ring
        order = order or self.order
        review = services.create_review(customer_id, product.pk, order.pk, rating, title='Lovely')
        if approve:
            review = services.moderate_review(review.pk, True, 'admin')
        return review


class ReviewEligibilityTestCase(ReviewTestMixin, TestCase):

    def test_delivered_purchase_can_review(self):
        eligibility = services.review_eligibility('user_1', self.ring.pk)

        self.assertTrue(eligibility['can_review'])
        self.assertEqual(eligibility['order_ids'], [self.order.pk])
        self.assertIsNone(eligibility['existing_review'])

    def test_undelivered_order_cannot_review(self):
        order = make_order('user_2', self.ring, order_status=Order.Status.SHIPPED)

        with self.assertRaises(ReviewPermissionDenied):
            services.create_review('user_2', self.ring.pk, order.pk, 4)
        self.assertFalse(ProductReview.objects.exists())

    def test_review_starts_unapproved(self):
        review = self.review(rating=4)

        self.assertFalse(review.is_approved)
        self.assertTrue(review.is_verified_purchase)
        self.assertEqual(review.order_id, self.order.pk)

    def test_one_review_per_product(self):
        self.review()

        with self.assertRaises(ReviewError):
            self.review(rating=1)
        self.assertFalse(services.review_eligibility('user_1', self.ring.pk)['can_review'])

    def test_order_must_hold_the_product(self):
        other = make_order('user_1', self.chain)

        with self.assertRaises(ReviewError):
            services.create_review('user_1', self.ring.pk, other.pk, 5)

    def test_rating_out_of_range(self):
        with self.assertRaises(ReviewError):
            services.create_review('user_1', self.ring.pk, self.order.pk, 6)

    def test_only_author_edits_and_edit_needs_reapproval(self):
        review = self.review(approve=True)

        with self.assertRaises(ReviewPermissionDenied):
            services.update_review('user_2', review.pk, rating=1)

        review = services.update_review('user_1', review.pk, rating=3, comment='Tarnished a little')
        self.assertEqual(review.rating, 3)
        self.assertFalse(review.is_approved)

    def test_delete_own_review(self):
        review = self.review()
        with self.assertRaises(ReviewPermissionDenied):
            services.delete_review('user_2', review.pk)

        services.delete_review('user_1', review.pk)
        self.assertFalse(ProductReview.objects.exists())


class ProductReviewListingTestCase(ReviewTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.first = self.review(rating=5, approve=True)
        self.second = self.review(
            customer_id='user_2', rating=3, approve=True, order=make_order('user_2', self.ring)
        )
        self.hidden = self.review(
            customer_id='user_3', rating=1, order=make_order('user_3', self.ring)
        )

    def test_only_approved_reviews_listed(self):
        """
        Test: Unapproved reviews are neither shown nor counted.

        Given: Approved 5 and 3 star reviews, and an unapproved 1 star review
        When: Listing the product's reviews
        Then: Two reviews; average 4.0
        """
        listing = services.product_reviews(self.ring.pk)

        self.assertEqual([r['id'] for r in listing['reviews']], [self.second.pk, self.first.pk])
        self.assertEqual(listing['stats']['total_reviews'], 2)
        self.assertEqual(listing['stats']['average_rating'], 4.0)
        self.assertEqual(listing['stats']['rating_distribution'][5], 1)
        self.assertEqual(listing['stats']['rating_distribution'][1], 0)

    def test_rating_filter_and_sort(self):
        listing = services.product_reviews(self.ring.pk, rating=3)
        self.assertEqual([r['id'] for r in listing['reviews']], [self.second.pk])
        self.assertEqual(listing['stats']['total_reviews'], 2)

        listing = services.product_reviews(self.ring.pk, sort_by='rating-high')
        self.assertEqual([r['rating'] for r in listing['reviews']], [5, 3])

        listing = services.product_reviews(self.ring.pk, sort_by='no-such-sort')
        self.assertEqual(listing['reviews'][0]['id'], self.second.pk)

    def test_listing_is_cached_until_a_review_changes(self):
        services.product_reviews(self.ring.pk)

        ProductReview.objects.filter(pk=self.hidden.pk).update(is_approved=True)
        self.assertEqual(services.product_reviews(self.ring.pk)['stats']['total_reviews'], 2)

        services.moderate_review(self.hidden.pk, True, 'admin')
        self.assertEqual(services.product_reviews(self.ring.pk)['stats']['total_reviews'], 3)

    def test_rejecting_hides_review(self):
        services.product_reviews(self.ring.pk)

        services.moderate_review(self.first.pk, False, 'admin', notes='Off-topic')

        listing = services.product_reviews(self.ring.pk)
        self.assertEqual([r['id'] for r in listing['reviews']], [self.second.pk])
        self.first.refresh_from_db()
        self.assertEqual(self.first.moderated_by, 'admin')
        self.assertEqual(self.first.admin_notes, 'Off-topic')

    def test_helpful_votes_counted_once_per_customer(self):
        services.vote_helpful('user_7', self.first.pk, True)
        services.vote_helpful('user_8', self.first.pk, True)
        review = services.vote_helpful('user_7', self.first.pk, False)

        self.assertEqual(review.helpful_count, 1)
        self.assertEqual(self.first.votes.count(), 2)
        listing = services.product_reviews(self.ring.pk, sort_by='helpful')
        self.assertEqual(listing['reviews'][0]['helpful_count'], 1)

    def test_vote_on_missing_review(self):
        with self.assertRaises(ReviewNotFound):
            services.vote_helpful('user_7', 9999, True)


class ReviewModerationTestCase(ReviewTestMixin, TestCase):

    def test_admin_filters(self):
        pending = self.review(rating=2)
        approved = self.review(
            customer_id='user_2', rating=5, approve=True, order=make_order('user_2', self.ring)
        )

        queryset = services.admin_reviews({'is_approved': 'false'})
        self.assertEqual(list(queryset), [pending])

        queryset = services.admin_reviews({'rating__gte': '4', 'product_id': str(self.ring.pk)})
        self.assertEqual(list(queryset), [approved])

        with self.assertRaises(QueryError):
            services.admin_reviews({'rating': 'five'})

    def test_bulk_moderate_reports_missing(self):
        review = self.review()

        result = services.bulk_moderate([review.pk, 9999], True, 'admin')

        self.assertEqual(result, {'moderated': 1, 'missing': [9999]})
        review.refresh_from_db()
        self.assertTrue(review.is_approved)

    def test_statistics(self):
        self.review(rating=4, approve=True)
        self.review(customer_id='user_2', rating=2, order=make_order('user_2', self.ring))

        stats = services.review_statistics()

        self.assertEqual(stats['total_reviews'], 2)
        self.assertEqual(stats['approved_reviews'], 1)
        self.assertEqual(stats['pending_reviews'], 1)
        self.assertEqual(stats['average_rating'], 4.0)
        self.assertEqual(stats['reviews_this_month'], 2)


class ReviewApiTestCase(APITestCase):

    def setUp(self):
        cache.clear()
        User = get_user_model()
        self.customer = User.objects.create_user('asha', 'asha@example.com', 'pw')
        self.admin = User.objects.create_superuser('admin', 'admin@example.com', 'pw')
        self.ring = Product.objects.create(name='Lotus Ring', price=Decimal('1000.00'))
        self.order = make_order(f'user_{self.customer.pk}', self.ring)
        self.url = f'/api/products/{self.ring.pk}/reviews/'

    def post_review(self, **overrides):
        payload = {'order_id': self.order.pk, 'rating': 5, 'title': 'Lovely', 'comment': 'Shines well'}
        payload.update(overrides)
        return self.client.post(self.url, payload, format='json')

    def test_review_moderate_then_listed(self):
        self.client.force_authenticate(self.customer)
        response = self.post_review()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['is_approved'])
        review_id = response.data['id']

        self.client.force_authenticate(None)
        self.assertEqual(self.client.get(self.url).data['stats']['total_reviews'], 0)

        self.client.force_authenticate(self.admin)
        response = self.client.post(
            f'/api/reviews/moderation/{review_id}/', {'action': 'approve'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['moderated_by'], 'admin')

        self.client.force_authenticate(None)
        listing = self.client.get(self.url).data
        self.assertEqual(listing['stats']['total_reviews'], 1)
        self.assertEqual(listing['reviews'][0]['title'], 'Lovely')

    def test_anonymous_cannot_review(self):
        response = self.post_review()
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_second_review_rejected(self):
        self.client.force_authenticate(self.customer)
        self.post_review()

        response = self.post_review(rating=1)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid Review')

    def test_customer_without_purchase_forbidden(self):
        other = get_user_model().objects.create_user('ravi', 'ravi@example.com', 'pw')
        self.client.force_authenticate(other)

        response = self.post_review()

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_eligibility_and_my_reviews(self):
        self.client.force_authenticate(self.customer)
        response = self.client.get(f'{self.url}eligibility/')
        self.assertTrue(response.data['can_review'])

        self.post_review()
        response = self.client.get('/api/reviews/mine/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['product_name'], 'Lotus Ring')

    def test_helpful_vote_endpoint(self):
        self.client.force_authenticate(self.customer)
        review_id = self.post_review().data['id']

        response = self.client.post(f'/api/reviews/{review_id}/helpful/', {'is_helpful': True}, format='json')
        self.assertEqual(response.data['helpful_count'], 1)

        response = self.client.post(f'/api/reviews/{review_id}/helpful/', {'is_helpful': 'yes'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_moderation_requires_admin(self):
        self.client.force_authenticate(self.customer)
        self.assertEqual(self.client.get('/api/reviews/moderation/').status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_list_bulk_and_delete(self):
        self.client.force_authenticate(self.customer)
        review_id = self.post_review().data['id']
        self.client.force_authenticate(self.admin)

        response = self.client.get('/api/reviews/moderation/', {'is_approved': 'false'})
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['customer_id'], f'user_{self.customer.pk}')

        response = self.client.get('/api/reviews/moderation/', {'rating': 'five'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(
            '/api/reviews/moderation/bulk/', {'action': 'approve', 'review_ids': [review_id]}, format='json'
        )
        self.assertEqual(response.data, {'moderated': 1, 'missing': []})

        response = self.client.delete(f'/api/reviews/moderation/{review_id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get('/api/reviews/moderation/stats/').data['total_reviews'], 0)
