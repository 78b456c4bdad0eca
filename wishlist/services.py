"""
Wishlist service for signed-in customers.

"Is this product saved?" is asked once per product card, so answers are
cached per customer for a short time. Every change to a customer's
wishlist drops that customer's cached answers.
"""
import logging
from typing import Dict, Iterable

from django.conf import settings
from django.db import IntegrityError, transaction

from core.cache import TTLCache
from core.identity import is_guest_customer_id
from inventory.models import Product
from .models import WishlistItem

logger = logging.getLogger(__name__)


class WishlistError(Exception):
    """Raised for wishlist operations that cannot go ahead; the message is user-facing."""
    pass


def status_cache(customer_id: str) -> TTLCache:
    return TTLCache(
        f'wishlist:{customer_id}',
        ttl=getattr(settings, 'WISHLIST_CACHE_TTL_SECONDS', 30)
    )


def _require_customer(customer_id: str) -> None:
    if not customer_id or is_guest_customer_id(customer_id):
        raise WishlistError("Sign in to save products to your wishlist")


def wishlist_items(customer_id: str):
    _require_customer(customer_id)
    return WishlistItem.objects.select_related('product').filter(
        customer_id=customer_id, product__is_active=True
    )


def add_to_wishlist(customer_id: str, product_id) -> bool:
    """Save a product; returns False when it was already saved."""
    _require_customer(customer_id)
    if not Product.objects.filter(pk=product_id, is_active=True).exists():
        raise WishlistError(f"Product {product_id} is not available")
    try:
        with transaction.atomic():
            _, created = WishlistItem.objects.get_or_create(customer_id=customer_id, product_id=product_id)
    except IntegrityError:
        created = False
    if created:
        status_cache(customer_id).invalidate_all()
    return created


def remove_from_wishlist(customer_id: str, product_id) -> bool:
    _require_customer(customer_id)
    deleted, _ = WishlistItem.objects.filter(customer_id=customer_id, product_id=product_id).delete()
    if deleted:
        status_cache(customer_id).invalidate_all()
    return bool(deleted)


def is_in_wishlist(customer_id: str, product_id) -> bool:
    if not customer_id or is_guest_customer_id(customer_id):
        return False
    return status_cache(customer_id).get_or_set(
        int(product_id),
        lambda: WishlistItem.objects.filter(customer_id=customer_id, product_id=product_id).exists()
    )


def batch_check(customer_id: str, product_ids: Iterable[int]) -> Dict[int, bool]:
    """Answer for many products with one query and warm the cache with the answers."""
    product_ids = [int(pid) for pid in product_ids]
    if not customer_id or is_guest_customer_id(customer_id):
        return {pid: False for pid in product_ids}
    saved = set(
        WishlistItem.objects.filter(
            customer_id=customer_id, product_id__in=product_ids
        ).values_list('product_id', flat=True)
    )
    cache = status_cache(customer_id)
    result = {}
    for pid in product_ids:
        result[pid] = pid in saved
        cache.set(pid, result[pid])
    return result


def migrate_guest_wishlist(customer_id: str, product_ids: Iterable[int]) -> Dict[str, int]:
    """
    Save the products a guest collected before signing in.

    Products already saved or no longer sold are skipped.
    """
    _require_customer(customer_id)
    migrated = skipped = 0
    for product_id in product_ids:
        try:
            added = add_to_wishlist(customer_id, product_id)
        except WishlistError:
            added = False
        if added:
            migrated += 1
        else:
            skipped += 1
    logger.info(f"Migrated {migrated} guest wishlist item(s) to {customer_id}; skipped {skipped}")
    return {'migrated': migrated, 'skipped': skipped}
