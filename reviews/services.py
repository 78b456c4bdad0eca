"""
Review service: verified-purchase reviews, helpful votes and moderation.

A customer may review a product once, and only after an order holding
that product has been delivered. Reviews stay hidden until an admin
approves them; editing a review sends it back for approval.

The storefront listing of approved reviews is cached per product and
dropped whenever a review of that product is saved or deleted.
"""
import logging
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Avg, Count, Q
from django.utils import timezone

from core.cache import TTLCache
from core.query import Query, to_bool
from orders.models import Order
from .models import ProductReview, ReviewHelpfulVote

logger = logging.getLogger(__name__)

approved_review_cache = TTLCache(
    'reviews:approved',
    ttl=getattr(settings, 'REVIEW_CACHE_TTL_SECONDS', 300)
)

ADMIN_FILTER_FIELDS = {
    'product_id': int,
    'customer_id': str,
    'rating': int,
    'is_approved': to_bool,
    'helpful_count': int,
    'created_at': str,
}

SORTS = {
    'newest': ('created_at', True),
    'oldest': ('created_at', False),
    'rating-high': ('rating', True),
    'rating-low': ('rating', False),
    'helpful': ('helpful_count', True),
}


class ReviewError(Exception):
    """Raised for review operations that cannot go ahead; the message is user-facing."""
    pass


class ReviewNotFound(ReviewError):
    def __init__(self, review_id):
        self.review_id = review_id
        super().__init__(f"Review {review_id} not found")


class ReviewPermissionDenied(ReviewError):
    pass


def _check_rating(rating) -> int:
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ReviewError("Rating must be a whole number from 1 to 5")
    if not 1 <= rating <= 5:
        raise ReviewError("Rating must be a whole number from 1 to 5")
    return rating


def get_review(review_id) -> ProductReview:
    try:
        return ProductReview.objects.select_related('product').get(pk=review_id)
    except (ProductReview.DoesNotExist, ValueError):
        raise ReviewNotFound(review_id)


def _own_review(customer_id: str, review_id) -> ProductReview:
    review = get_review(review_id)
    if review.customer_id != customer_id:
        raise ReviewPermissionDenied("You can only change your own reviews")
    return review


# =============================================================================
# Customer side
# =============================================================================

def review_eligibility(customer_id: str, product_id) -> Dict:
    """
    Delivered orders of the customer that contain the product, and the
    customer's existing review of it if there is one.
    """
    order_ids = list(
        Order.objects.filter(
            customer_id=customer_id,
            status=Order.Status.DELIVERED,
            items__product_id=product_id
        ).order_by('-created_at').values_list('pk', flat=True).distinct()
    )
    existing = ProductReview.objects.filter(customer_id=customer_id, product_id=product_id).first()
    return {
        'can_review': bool(order_ids) and existing is None,
        'order_ids': order_ids,
        'existing_review': existing,
    }


def create_review(customer_id: str, product_id, order_id, rating,
                  title: str = '', comment: str = '') -> ProductReview:
    """
    Raises:
        ReviewError: Bad rating, already reviewed, or the order does not
            match a delivered purchase of the product
        ReviewPermissionDenied: The customer has not received the product
    """
    rating = _check_rating(rating)
    eligibility = review_eligibility(customer_id, product_id)
    if eligibility['existing_review'] is not None:
        raise ReviewError("You have already reviewed this product")
    if not eligibility['order_ids']:
        raise ReviewPermissionDenied("You can only review products you have purchased and received")
    try:
        order_id = int(order_id)
    except (TypeError, ValueError):
        raise ReviewError("Invalid order information")
    if order_id not in eligibility['order_ids']:
        raise ReviewError("Invalid order information")

    try:
        with transaction.atomic():
            review = ProductReview.objects.create(
                product_id=product_id,
                customer_id=customer_id,
                order_id=order_id,
                rating=rating,
                title=(title or '').strip(),
                comment=(comment or '').strip(),
            )
    except IntegrityError:
        raise ReviewError("You have already reviewed this product")

    logger.info(f"Review #{review.pk} ({rating}/5) for product {product_id} by {customer_id} awaits approval")
    return review


def update_review(customer_id: str, review_id, rating=None,
                  title: Optional[str] = None, comment: Optional[str] = None) -> ProductReview:
    """Edit an own review; the edit hides it again until re-approved."""
    review = _own_review(customer_id, review_id)
    if rating is not None:
        review.rating = _check_rating(rating)
    if title is not None:
        review.title = title.strip()
    if comment is not None:
        review.comment = comment.strip()
    review.is_approved = False
    review.save()
    return review


def delete_review(customer_id: str, review_id) -> None:
    review = _own_review(customer_id, review_id)
    review.delete()
    logger.info(f"Review #{review_id} deleted by its author {customer_id}")


def customer_reviews(customer_id: str):
    return ProductReview.objects.select_related('product').filter(customer_id=customer_id)


def vote_helpful(customer_id: str, review_id, is_helpful: bool) -> ProductReview:
    """Record or change a vote, then recount the review's helpful votes."""
    review = get_review(review_id)
    with transaction.atomic():
        ReviewHelpfulVote.objects.update_or_create(
            review=review,
            customer_id=customer_id,
            defaults={'is_helpful': bool(is_helpful)}
        )
        review.helpful_count = review.votes.filter(is_helpful=True).count()
        ProductReview.objects.filter(pk=review.pk).update(helpful_count=review.helpful_count)
    approved_review_cache.invalidate(review.product_id)
    return review


# =============================================================================
# Storefront listing
# =============================================================================

def _approved(product_id) -> List[Dict]:
    reviews = ProductReview.objects.filter(product_id=product_id, is_approved=True)
    return [
        {
            'id': review.pk,
            'rating': review.rating,
            'title': review.title,
            'comment': review.comment,
            'is_verified_purchase': review.is_verified_purchase,
            'helpful_count': review.helpful_count,
            'created_at': review.created_at,
        }
        for review in reviews
    ]


def approved_reviews(product_id) -> List[Dict]:
    return approved_review_cache.get_or_set(int(product_id), lambda: _approved(product_id))


def review_stats(reviews: Iterable[Dict]) -> Dict:
    reviews = list(reviews)
    distribution = {rating: 0 for rating in range(1, 6)}
    for review in reviews:
        distribution[review['rating']] += 1
    average = sum(r['rating'] for r in reviews) / len(reviews) if reviews else 0
    return {
        'average_rating': round(average, 1),
        'total_reviews': len(reviews),
        'rating_distribution': distribution,
    }


def product_reviews(product_id, rating=None, sort_by: str = 'newest') -> Dict:
    """
    Approved reviews of a product with its rating summary.

    The summary always covers every approved review; ``rating`` only
    narrows the returned list. Unknown sort keys fall back to newest.
    """
    reviews = approved_reviews(product_id)
    stats = review_stats(reviews)
    if rating is not None:
        rating = _check_rating(rating)
        reviews = [r for r in reviews if r['rating'] == rating]
    key, descending = SORTS.get(sort_by, SORTS['newest'])
    reviews = sorted(reviews, key=lambda r: (r[key], r['id']), reverse=descending)
    return {'reviews': reviews, 'stats': stats}


# =============================================================================
# Moderation
# =============================================================================

def admin_reviews(params):
    """
    Every review, approved or not, filtered with ``field__op=value``
    parameters (see ADMIN_FILTER_FIELDS). Raises QueryError on bad filters.
    """
    query = Query.from_params(params, ADMIN_FILTER_FIELDS)
    queryset = ProductReview.objects.select_related('product')
    return query.apply(queryset).order_by(query.ordering or '-created_at')


def moderate_review(review_id, approve: bool, admin_id: str, notes: str = '') -> ProductReview:
    review = get_review(review_id)
    review.is_approved = bool(approve)
    review.moderated_by = admin_id
    review.moderated_at = timezone.now()
    if notes:
        review.admin_notes = notes
    review.save()
    logger.info(f"Review #{review.pk} {'approved' if approve else 'rejected'} by {admin_id}")
    return review


def bulk_moderate(review_ids, approve: bool, admin_id: str) -> Dict:
    """Moderate several reviews; ids that do not exist are reported back."""
    moderated, missing = 0, []
    for review_id in review_ids:
        try:
            moderate_review(review_id, approve, admin_id)
        except ReviewNotFound:
            missing.append(review_id)
            continue
        moderated += 1
    return {'moderated': moderated, 'missing': missing}


def admin_delete_review(review_id, admin_id: str) -> None:
    review = get_review(review_id)
    review.delete()
    logger.info(f"Review #{review_id} deleted by admin {admin_id}")


def review_statistics(now=None) -> Dict:
    now = now or timezone.now()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    stats = ProductReview.objects.aggregate(
        total_reviews=Count('id'),
        approved_reviews=Count('id', filter=Q(is_approved=True)),
        pending_reviews=Count('id', filter=Q(is_approved=False)),
        average_rating=Avg('rating', filter=Q(is_approved=True)),
        reviews_this_month=Count('id', filter=Q(created_at__gte=month_start)),
    )
    stats['average_rating'] = round(stats['average_rating'] or 0, 1)
    return stats
