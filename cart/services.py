"""
Cart Store - mutations on a cart and its derived totals.

Every mutating function:
    1. Opens a transaction and locks the cart row (select_for_update)
    2. Changes the items
    3. Calls recalculate() so the stored totals match the items

Unit prices are snapshots: add_item() captures the price at add time and
update_quantity() refreshes it from the live product. recalculate() never
touches unit prices.
"""
import logging
import uuid
from datetime import timedelta
from typing import List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.identity import request_customer_id
from core.pricing import ZERO, Totals, calculate_totals, line_total, to_money
from coupons.services import CouponError, validate_coupon
from inventory.models import Product
from .models import Cart, CartItem

logger = logging.getLogger(__name__)


class CartError(Exception):
    """Raised for invalid cart operations; the message is user-facing."""
    pass


class CartItemNotFound(CartError):
    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in the cart")


def _expiry():
    return timezone.now() + timedelta(days=getattr(settings, 'CART_LIFETIME_DAYS', 30))


def _lock(cart: Cart) -> Cart:
    return Cart.objects.select_for_update().get(pk=cart.pk)


def get_cart(session_id: Optional[str] = None, customer_id: Optional[str] = None) -> Optional[Cart]:
    """Return the live cart for a session or customer, or None."""
    if customer_id:
        lookup = {'customer_id': customer_id}
    elif session_id:
        lookup = {'session_id': session_id}
    else:
        raise CartError("A session id or customer id is required")
    cart = Cart.objects.filter(**lookup).first()
    if cart is not None and cart.is_expired:
        return None
    return cart


def get_or_create_cart(session_id: Optional[str] = None, customer_id: Optional[str] = None) -> Cart:
    """
    Fetch the cart for a customer (preferred) or guest session, replacing
    it with an empty one if it has expired.
    """
    if not session_id and not customer_id:
        raise CartError("A session id or customer id is required")
    lookup = {'customer_id': customer_id} if customer_id else {'session_id': session_id}

    with transaction.atomic():
        cart = Cart.objects.select_for_update().filter(**lookup).first()
        if cart is not None and cart.is_expired:
            logger.info(f"Cart {cart.pk} expired; starting a new one")
            cart.delete()
            cart = None
        if cart is None:
            cart = Cart.objects.create(expires_at=_expiry(), **lookup)
    return cart


def pricing_lines(cart: Cart) -> List[Tuple[int, object]]:
    return [(item.quantity, item.unit_price) for item in cart.items.all()]


def reservation_lines(cart: Cart) -> List[Tuple[int, int]]:
    return [(item.product_id, item.quantity) for item in cart.items.all()]


def recalculate(cart: Cart, customer_id: Optional[str] = None) -> Totals:
    """
    Recompute and persist the cart totals from its items.

    A coupon that no longer validates against the new subtotal is dropped
    from the cart.
    """
    items = list(cart.items.all())
    lines = [(item.quantity, item.unit_price) for item in items]
    subtotal = calculate_totals(lines).subtotal

    discount = ZERO
    if cart.coupon_code:
        try:
            _, discount = validate_coupon(
                cart.coupon_code,
                subtotal,
                product_ids=[item.product_id for item in items],
                customer_id=customer_id or cart.customer_id
            )
        except CouponError as e:
            logger.info(f"Dropping coupon {cart.coupon_code} from cart {cart.pk}: {e}")
            cart.coupon_code = ''

    totals = calculate_totals(
        lines,
        discount=discount,
        tax_rate=settings.TAX_RATE,
        free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
        shipping_fee=settings.FLAT_SHIPPING_FEE,
    )
    cart.subtotal = totals.subtotal
    cart.estimated_tax = totals.tax
    cart.estimated_shipping = totals.shipping
    cart.discount_amount = totals.discount
    cart.estimated_total = totals.total
    cart.expires_at = _expiry()
    cart.save(update_fields=[
        'subtotal', 'estimated_tax', 'estimated_shipping', 'discount_amount',
        'estimated_total', 'coupon_code', 'expires_at', 'updated_at'
    ])
    return totals


def _active_product(product_id) -> Product:
    try:
        return Product.objects.select_related('inventory').get(pk=product_id, is_active=True)
    except Product.DoesNotExist:
        raise CartError(f"Product {product_id} is not available")


def _available(product: Product) -> int:
    record = getattr(product, 'inventory', None)
    if record is None or not product.is_active:
        return 0
    return max(0, record.available_quantity)


def _check_available(product: Product, quantity: int) -> None:
    available = _available(product)
    if quantity > available:
        raise CartError(f"Only {available} of {product.name} left in stock")


def add_item(cart: Cart, product_id: int, quantity: int = 1, unit_price=None) -> Cart:
    """
    Add a product to the cart, merging with an existing line.

    unit_price defaults to the product's current price; merging into an
    existing line takes the new snapshot for the whole line.
    """
    if quantity < 1:
        raise CartError("Quantity must be at least 1")
    product = _active_product(product_id)
    price = to_money(product.price if unit_price is None else unit_price)

    with transaction.atomic():
        cart = _lock(cart)
        item = CartItem.objects.filter(cart=cart, product=product).first()
        new_quantity = quantity + (item.quantity if item else 0)
        _check_available(product, new_quantity)

        if item is None:
            CartItem.objects.create(
                cart=cart,
                product=product,
                quantity=new_quantity,
                unit_price=price,
                total_price=line_total(new_quantity, price)
            )
        else:
            item.quantity = new_quantity
            item.unit_price = price
            item.total_price = line_total(new_quantity, price)
            item.save(update_fields=['quantity', 'unit_price', 'total_price', 'updated_at'])
        recalculate(cart)
    return cart


def update_quantity(cart: Cart, product_id: int, quantity: int) -> Cart:
    """Set a line's quantity; zero or less removes the line."""
    if quantity <= 0:
        return remove_item(cart, product_id)

    with transaction.atomic():
        cart = _lock(cart)
        try:
            item = CartItem.objects.select_related('product__inventory').get(
                cart=cart, product_id=product_id
            )
        except CartItem.DoesNotExist:
            raise CartItemNotFound(product_id)
        _check_available(item.product, quantity)

        item.quantity = quantity
        item.unit_price = to_money(item.product.price)
        item.total_price = line_total(quantity, item.unit_price)
        item.save(update_fields=['quantity', 'unit_price', 'total_price', 'updated_at'])
        recalculate(cart)
    return cart


def remove_item(cart: Cart, product_id: int) -> Cart:
    with transaction.atomic():
        cart = _lock(cart)
        deleted, _ = CartItem.objects.filter(cart=cart, product_id=product_id).delete()
        if not deleted:
            raise CartItemNotFound(product_id)
        recalculate(cart)
    return cart


def clear_cart(cart: Cart) -> Cart:
    with transaction.atomic():
        cart = _lock(cart)
        cart.items.all().delete()
        cart.coupon_code = ''
        recalculate(cart)
    return cart


def take_checkout_items(cart: Cart) -> List[CartItem]:
    """
    Empty the cart for checkout and return the lines it held.

    Call inside the checkout transaction. The cart row is written before
    anything is read, so a second checkout of the same cart waits for the
    first to finish and then finds it empty; a rollback puts the lines back.
    """
    Cart.objects.filter(pk=cart.pk).update(updated_at=timezone.now())
    cart = _lock(cart)
    items = list(cart.items.select_related('product').order_by('product_id'))
    cart.items.all().delete()
    cart.coupon_code = ''
    recalculate(cart)
    return items


def apply_coupon(cart: Cart, code: str, customer_id: Optional[str] = None) -> Cart:
    """
    Attach a coupon to the cart.

    Raises:
        CouponError: If the code does not validate against the cart
    """
    with transaction.atomic():
        cart = _lock(cart)
        items = list(cart.items.all())
        subtotal = calculate_totals([(i.quantity, i.unit_price) for i in items]).subtotal
        coupon, _ = validate_coupon(
            code,
            subtotal,
            product_ids=[i.product_id for i in items],
            customer_id=customer_id or cart.customer_id
        )
        cart.coupon_code = coupon.code
        recalculate(cart, customer_id=customer_id)
    return cart


def remove_coupon(cart: Cart) -> Cart:
    with transaction.atomic():
        cart = _lock(cart)
        cart.coupon_code = ''
        recalculate(cart)
    return cart


def merge_guest_cart(session_id: str, customer_id: str) -> Cart:
    """
    Move a guest cart's lines into the customer's cart on sign-in.

    Quantities for products already in the customer cart are summed and
    take the guest line's price snapshot. A merged line is capped at the
    units still available and dropped when none are. The guest cart is
    deleted.
    """
    customer_cart = get_or_create_cart(customer_id=customer_id)
    guest_cart = Cart.objects.filter(session_id=session_id, customer_id__isnull=True).first()
    if guest_cart is None:
        return customer_cart
    if guest_cart.is_expired:
        guest_cart.delete()
        return customer_cart

    with transaction.atomic():
        customer_cart = _lock(customer_cart)
        guest_items = list(guest_cart.items.select_related('product__inventory'))
        existing = {item.product_id: item for item in customer_cart.items.all()}

        for guest_item in guest_items:
            item = existing.get(guest_item.product_id)
            wanted = guest_item.quantity + (item.quantity if item else 0)
            quantity = min(wanted, _available(guest_item.product))
            if quantity < wanted:
                logger.info(
                    f"Capped {guest_item.product.name} at {quantity} (wanted {wanted}) "
                    f"while merging into cart {customer_cart.pk}"
                )
            if quantity < 1:
                if item is not None:
                    item.delete()
                continue
            if item is None:
                CartItem.objects.create(
                    cart=customer_cart,
                    product_id=guest_item.product_id,
                    quantity=quantity,
                    unit_price=guest_item.unit_price,
                    total_price=line_total(quantity, guest_item.unit_price)
                )
            else:
                item.quantity = quantity
                item.unit_price = guest_item.unit_price
                item.total_price = line_total(item.quantity, item.unit_price)
                item.save(update_fields=['quantity', 'unit_price', 'total_price', 'updated_at'])

        if not customer_cart.coupon_code and guest_cart.coupon_code:
            customer_cart.coupon_code = guest_cart.coupon_code
        guest_cart.delete()
        recalculate(customer_cart)

    logger.info(
        f"Merged {len(guest_items)} guest cart line(s) from session {session_id} "
        f"into cart {customer_cart.pk}"
    )
    return customer_cart


def purge_expired_carts() -> int:
    _, per_model = Cart.objects.filter(expires_at__lte=timezone.now()).delete()
    return per_model.get(Cart._meta.label, 0)


SESSION_HEADER = 'X-Cart-Session'


def cart_for_request(request, create: bool = True) -> Optional[Cart]:
    """
    Resolve the caller's cart: the customer cart when signed in, else the
    guest cart named by the X-Cart-Session header. Guests without a
    session get a fresh one when create is set.
    """
    customer_id = request_customer_id(request)
    if customer_id:
        return get_or_create_cart(customer_id=customer_id) if create else get_cart(customer_id=customer_id)

    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        if not create:
            return None
        session_id = uuid.uuid4().hex
    return get_or_create_cart(session_id=session_id) if create else get_cart(session_id=session_id)
