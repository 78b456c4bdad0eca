"""
Coupon validation, discount calculation and redemption.

Validation order (first failure wins):
    exists -> active -> validity window -> minimum order -> global usage
    -> per-customer usage -> customer eligibility -> product eligibility

Redemption increments usage_count with a conditional UPDATE so two
checkouts cannot both take the last use of a limited coupon.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.cache import TTLCache
from core.identity import is_guest_customer_id
from core.pricing import ZERO, to_money
from .models import Coupon, CouponRedemption

logger = logging.getLogger(__name__)

available_coupon_cache = TTLCache(
    'coupons:available',
    ttl=getattr(settings, 'COUPON_CACHE_TTL_SECONDS', 30)
)


class CouponError(Exception):
    """Raised when a coupon cannot be applied; the message is user-facing."""
    def __init__(self, message: str, code: str = None):
        self.code = code
        super().__init__(message)


def calculate_discount(coupon: Coupon, subtotal) -> Decimal:
    """
    Percentage discounts are capped at maximum_discount_amount; fixed
    discounts never exceed the subtotal.
    """
    subtotal = to_money(subtotal)
    if coupon.discount_type == Coupon.DiscountType.PERCENTAGE:
        discount = subtotal * coupon.discount_value / Decimal('100')
        if coupon.maximum_discount_amount and discount > coupon.maximum_discount_amount:
            discount = coupon.maximum_discount_amount
    else:
        discount = min(coupon.discount_value, subtotal)
    return Decimal(discount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _customer_usage(coupon: Coupon, customer_id: str) -> int:
    return CouponRedemption.objects.filter(coupon=coupon, customer_id=customer_id).count()


def _check_customer(coupon: Coupon, customer_id: Optional[str]) -> None:
    if not customer_id or is_guest_customer_id(customer_id):
        if coupon.has_customer_restrictions:
            raise CouponError('Please sign in to use this coupon', 'sign_in_required')
        return
    if coupon.allowed_customer_ids and customer_id not in coupon.allowed_customer_ids:
        raise CouponError('This coupon is not available for your account', 'not_eligible')
    if customer_id in coupon.excluded_customer_ids:
        raise CouponError('This coupon is not available for your account', 'not_eligible')


def _check_products(coupon: Coupon, product_ids: Iterable) -> None:
    product_ids = {str(pid) for pid in product_ids}
    applicable = {str(pid) for pid in coupon.applicable_product_ids}
    excluded = {str(pid) for pid in coupon.excluded_product_ids}
    if applicable and not product_ids & applicable:
        raise CouponError('This coupon is not applicable to items in your cart', 'not_applicable')
    if excluded and product_ids & excluded:
        raise CouponError('This coupon cannot be applied to some items in your cart', 'excluded_product')


def validate_coupon(
    code: str,
    subtotal,
    product_ids: Iterable = (),
    customer_id: Optional[str] = None,
    now=None,
) -> Tuple[Coupon, Decimal]:
    """
    Check a coupon code against a cart.

    Returns:
        (coupon, discount_amount)

    Raises:
        CouponError: With the reason the coupon cannot be used
    """
    now = now or timezone.now()
    normalized = (code or '').strip().upper()
    if not normalized:
        raise CouponError('Invalid coupon code', 'invalid')

    try:
        coupon = Coupon.objects.get(code=normalized)
    except Coupon.DoesNotExist:
        raise CouponError('Invalid coupon code', 'invalid')

    if not coupon.is_active:
        raise CouponError('This coupon is no longer active', 'inactive')
    if now < coupon.valid_from:
        raise CouponError('This coupon is not yet valid', 'not_started')
    if now > coupon.valid_until:
        raise CouponError('This coupon has expired', 'expired')

    subtotal = to_money(subtotal)
    if coupon.minimum_order_amount and subtotal < coupon.minimum_order_amount:
        raise CouponError(
            f'Minimum order amount of ₹{coupon.minimum_order_amount} required',
            'minimum_not_met'
        )
    if coupon.is_exhausted:
        raise CouponError('This coupon has reached its usage limit', 'exhausted')

    if (customer_id and not is_guest_customer_id(customer_id)
            and coupon.per_customer_limit
            and _customer_usage(coupon, customer_id) >= coupon.per_customer_limit):
        raise CouponError(
            'You have already used this coupon the maximum number of times',
            'customer_limit'
        )

    _check_customer(coupon, customer_id)
    _check_products(coupon, product_ids)

    return coupon, calculate_discount(coupon, subtotal)


def record_redemption(coupon: Coupon, customer_id: str, discount_amount, order_id=None) -> CouponRedemption:
    """
    Take one use of the coupon for an order.

    Must run inside the checkout transaction so a failed checkout gives
    the use back.

    Raises:
        CouponError: If the global usage limit was reached in the meantime
    """
    with transaction.atomic():
        updated = Coupon.objects.filter(pk=coupon.pk).filter(
            Q(usage_limit__isnull=True) | Q(usage_count__lt=F('usage_limit'))
        ).update(usage_count=F('usage_count') + 1, updated_at=timezone.now())
        if not updated:
            raise CouponError('This coupon has reached its usage limit', 'exhausted')

        redemption = CouponRedemption.objects.create(
            coupon=coupon,
            customer_id=customer_id,
            order_id=order_id,
            discount_amount=to_money(discount_amount)
        )

    transaction.on_commit(available_coupon_cache.invalidate_all)
    logger.info(f"Coupon {coupon.code} redeemed by {customer_id}")
    return redemption


def _load_available(customer_id: Optional[str]) -> List[dict]:
    now = timezone.now()
    coupons = Coupon.objects.filter(
        is_active=True, valid_from__lte=now, valid_until__gte=now
    ).filter(
        Q(usage_limit__isnull=True) | Q(usage_count__lt=F('usage_limit'))
    ).order_by('valid_until')

    available = []
    for coupon in coupons:
        try:
            _check_customer(coupon, customer_id)
        except CouponError:
            continue
        if (customer_id and not is_guest_customer_id(customer_id)
                and coupon.per_customer_limit
                and _customer_usage(coupon, customer_id) >= coupon.per_customer_limit):
            continue
        available.append({
            'code': coupon.code,
            'description': coupon.description,
            'discount_type': coupon.discount_type,
            'discount_value': str(coupon.discount_value),
            'minimum_order_amount': str(coupon.minimum_order_amount or ZERO),
            'maximum_discount_amount': (
                str(coupon.maximum_discount_amount) if coupon.maximum_discount_amount else None
            ),
            'valid_until': coupon.valid_until.isoformat(),
        })
    return available


def available_coupons(customer_id: Optional[str] = None) -> List[dict]:
    """Coupons the customer could apply right now, cached briefly per customer."""
    return available_coupon_cache.get_or_set(
        customer_id or 'anonymous',
        lambda: _load_available(customer_id)
    )
