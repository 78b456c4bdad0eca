"""
Order Lifecycle Manager - checkout, payment settlement and status changes.

Checkout sequence:
1. Validate contact, addresses and cart (nothing reserved yet)
2. Freeze totals from the cart's price snapshots and validate the coupon
3. Create the gateway payment intent (skipped for cash on delivery)
4. In one transaction: take the lines out of the locked cart, reserve
   every line, write the pending Order with its items and address
   snapshot, redeem the coupon

If anything in step 4 fails the transaction rolls back, reservations
and cart lines included, so no order means no hold on stock. A second
submit of the same cart waits on the cart lock and then finds it empty.

Every status change is a compare-and-set on the persisted status:

    UPDATE order SET status = <to> WHERE id = <id> AND status = <from>

A transition whose precondition no longer holds (a cancel racing a payment
callback) matches no row and raises StaleOrderState instead of overwriting.
Ledger side effects run in the same transaction as the status write, so a
replayed callback that loses the compare-and-set never touches inventory.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, Optional, Tuple
from uuid import uuid4

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from cart import services as cart_services
from core.identity import contact_matches, guest_customer_id, is_valid_phone, normalize_email
from core.pricing import ZERO, calculate_totals, to_money
from coupons.services import record_redemption, validate_coupon
from inventory import services as ledger
from inventory.models import Product
from notifications.dispatcher import queue_notification, queue_support_email
from notifications.models import NotificationLog
from payments.gateway import PaymentIntent, get_gateway

from . import policy
from .addresses import Address
from .confirmation import generate_confirmation_number
from .delivery import estimate_delivery
from .exceptions import (
    InvalidStatusTransition,
    ModificationWindowExpired,
    OrderAccessDenied,
    OrderNotCancellable,
    OrderNotFound,
    OrderNotModifiable,
    OrderValidationError,
    PaymentOrderMismatch,
    StaleOrderState,
)
from .models import ModificationRequest, Order, OrderItem, OrderStatusHistory

logger = logging.getLogger(__name__)

Status = Order.Status
Actor = OrderStatusHistory.Actor
Event = NotificationLog.Event

# (from, to) -> actors allowed to make the move
TRANSITIONS = {
    (Status.PENDING, Status.PROCESSING): frozenset({Actor.SYSTEM}),
    (Status.PENDING, Status.CANCELLED): frozenset({Actor.CUSTOMER, Actor.ADMIN, Actor.SYSTEM}),
    (Status.PROCESSING, Status.SHIPPED): frozenset({Actor.ADMIN}),
    (Status.PROCESSING, Status.CANCELLED): frozenset({Actor.CUSTOMER, Actor.ADMIN}),
    (Status.SHIPPED, Status.DELIVERED): frozenset({Actor.ADMIN, Actor.SYSTEM}),
}

CANCELLED_MESSAGE = "Order cancelled successfully."
CANCELLED_WITH_REFUND_MESSAGE = (
    "Order cancelled successfully. Refund will be processed within 5-7 business days."
)
PAYMENT_FAILED_NOTE = "Payment could not be verified"


@dataclass(frozen=True)
class Checkout:
    order: Order
    payment_intent: Optional[PaymentIntent] = None


@dataclass(frozen=True)
class PaymentResult:
    order: Order
    verified: bool
    duplicate: bool = False


def can_transition(from_status: str, to_status: str, actor: str) -> bool:
    return actor in TRANSITIONS.get((from_status, to_status), ())


def _transition(order: Order, to_status: str, actor: str, note: str = '', **changes) -> Order:
    """
    Compare-and-set the order from its current status to `to_status`.

    Must run inside transaction.atomic together with the transition's
    side effects.

    Raises:
        InvalidStatusTransition: If the move is not allowed for the actor
        StaleOrderState: If the persisted status changed since `order` was read
    """
    from_status = order.status
    if not can_transition(from_status, to_status, actor):
        raise InvalidStatusTransition(from_status, to_status, actor)

    now = timezone.now()
    updated = Order.objects.filter(pk=order.pk, status=from_status).update(
        status=to_status, updated_at=now, **changes
    )
    if not updated:
        logger.warning(f"Order #{order.pk} left {from_status} before {to_status} could be applied")
        raise StaleOrderState(order.pk, from_status)

    order.status = to_status
    order.updated_at = now
    for name, value in changes.items():
        setattr(order, name, value)

    OrderStatusHistory.objects.create(
        order=order,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        note=note
    )
    logger.info(f"Order #{order.pk}: {from_status} -> {to_status} by {actor}")
    return order


# =============================================================================
# Lookups
# =============================================================================

def _orders():
    return Order.objects.prefetch_related('items')


def get_order(order_id) -> Order:
    try:
        return _orders().get(pk=order_id)
    except (Order.DoesNotExist, ValueError):
        raise OrderNotFound(order_id)


def get_order_by_confirmation_number(confirmation_number: str) -> Order:
    try:
        return _orders().get(confirmation_number=(confirmation_number or '').strip().upper())
    except Order.DoesNotExist:
        raise OrderNotFound(confirmation_number)


def get_order_by_payment_order_id(payment_order_id: str) -> Order:
    try:
        return _orders().get(payment_order_id=payment_order_id)
    except Order.DoesNotExist:
        raise OrderNotFound(payment_order_id)


def find_order(reference: str) -> Order:
    """Resolve a system id, confirmation number or gateway order id."""
    reference = str(reference).strip()
    if reference.isdigit():
        return get_order(int(reference))
    if reference.upper().startswith('ORD-'):
        return get_order_by_confirmation_number(reference)
    return get_order_by_payment_order_id(reference)


def customer_orders(customer_id: str):
    return _orders().filter(customer_id=customer_id).order_by('-created_at')


def guest_orders(email: str, phone: str):
    return customer_orders(guest_customer_id(email, phone))


def guest_order_lookup(confirmation_number: str, email: str, phone: str) -> Order:
    """
    Find an order from the details on the confirmation email.

    A contact mismatch reports the order as not found.
    """
    order = get_order_by_confirmation_number(confirmation_number)
    if not contact_matches(order.email, order.phone, email, phone):
        logger.warning(f"Guest lookup for {confirmation_number} with mismatched contact")
        raise OrderNotFound(confirmation_number)
    return order


def check_access(order: Order, customer_id: Optional[str] = None,
                 email: Optional[str] = None, phone: Optional[str] = None) -> None:
    """
    Raises:
        OrderAccessDenied: Unless the caller owns the order by customer id
            or presents the order's email and phone
    """
    if customer_id and order.customer_id == customer_id:
        return
    if email and phone and contact_matches(order.email, order.phone, email, phone):
        return
    raise OrderAccessDenied()


# =============================================================================
# Checkout
# =============================================================================

def _validate_contact(email: str, phone: str) -> Tuple[str, str]:
    email = normalize_email(email)
    if not email:
        raise OrderValidationError("Email is required")
    try:
        validate_email(email)
    except ValidationError:
        raise OrderValidationError(f"Invalid email address: {email}")
    if not is_valid_phone(phone):
        raise OrderValidationError("Please enter a valid 10-digit Indian mobile number")
    return email, (phone or '').strip()


def _line_key(items):
    return [(item.product_id, item.quantity, item.unit_price) for item in items]


def create_order_from_cart(
    cart,
    email: str,
    phone: str,
    shipping_address: Dict,
    billing_address: Optional[Dict] = None,
    payment_method: str = Order.PaymentMethod.RAZORPAY,
    customer_id: Optional[str] = None,
) -> Checkout:
    """
    Turn a cart into a pending order holding a reservation for every line.

    Cash-on-delivery orders skip the payment intent and move straight to
    processing, which spends the reservation.

    Raises:
        OrderValidationError: Bad contact, address, payment method or empty cart
        CouponError: The cart's coupon no longer applies
        PaymentGatewayError: The payment intent could not be created
        InsufficientStockError: A line could not be reserved
    """
    if payment_method not in Order.PaymentMethod.values:
        raise OrderValidationError(f"Unsupported payment method: {payment_method}")
    email, phone = _validate_contact(email, phone)
    shipping = Address.from_dict(shipping_address, 'shipping')
    billing = Address.from_dict(billing_address, 'billing') if billing_address else shipping
    customer_id = customer_id or guest_customer_id(email, phone)

    items = list(cart.items.select_related('product').order_by('product_id'))
    if not items:
        raise OrderValidationError("Cart is empty")
    inactive = [item.product.name for item in items if not item.product.is_active]
    if inactive:
        raise OrderValidationError(f"No longer available: {', '.join(inactive)}")

    price_lines = [(item.quantity, item.unit_price) for item in items]
    stock_lines = [(item.product_id, item.quantity) for item in items]

    coupon, discount = None, ZERO
    if cart.coupon_code:
        coupon, discount = validate_coupon(
            cart.coupon_code,
            calculate_totals(price_lines).subtotal,
            product_ids=[item.product_id for item in items],
            customer_id=customer_id
        )
    totals = calculate_totals(
        price_lines,
        discount=discount,
        tax_rate=settings.TAX_RATE,
        free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
        shipping_fee=settings.FLAT_SHIPPING_FEE,
    )

    intent = None
    if payment_method == Order.PaymentMethod.RAZORPAY:
        intent = get_gateway().create_payment_intent(
            amount=totals.total,
            customer_ref=customer_id,
            item_count=sum(item.quantity for item in items),
            receipt=f"rcpt_{uuid4().hex[:16]}",
        )

    with transaction.atomic():
        claimed = cart_services.take_checkout_items(cart)
        if not claimed:
            raise OrderValidationError("Cart is empty")
        if _line_key(claimed) != _line_key(items):
            raise OrderValidationError("Cart changed during checkout; review it and try again")
        ledger.reserve_lines(stock_lines)

        order = Order.objects.create(
            customer_id=customer_id,
            email=email,
            phone=phone,
            payment_method=payment_method,
            subtotal=totals.subtotal,
            tax_amount=totals.tax,
            shipping_amount=totals.shipping,
            discount_amount=totals.discount,
            total_amount=totals.total,
            coupon_code=coupon.code if coupon else '',
            payment_order_id=intent.gateway_order_id if intent else None,
            **shipping.as_order_fields('shipping'),
            **billing.as_order_fields('billing'),
        )
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=item.product,
                product_name=item.product.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in items
        ])
        if coupon:
            record_redemption(coupon, customer_id, totals.discount, order_id=order.pk)
        OrderStatusHistory.objects.create(
            order=order,
            to_status=Status.PENDING,
            actor=Actor.CUSTOMER,
            note=f"Checkout ({order.get_payment_method_display()})"
        )

        if payment_method == Order.PaymentMethod.CASH_ON_DELIVERY:
            _transition(
                order, Status.PROCESSING, Actor.SYSTEM, 'Cash on delivery',
                confirmation_number=generate_confirmation_number()
            )
            ledger.confirm_lines(stock_lines)
            queue_notification(order, Event.ORDER_CONFIRMED)

    logger.info(
        f"Order #{order.pk} created for {customer_id}: {len(items)} line(s), "
        f"total ₹{order.total_amount}, status {order.status}"
    )
    return Checkout(order=get_order(order.pk), payment_intent=intent)


# =============================================================================
# Payment settlement
# =============================================================================

def _confirm_payment(order: Order, payment_id: str, note: str) -> Order:
    with transaction.atomic():
        _transition(
            order, Status.PROCESSING, Actor.SYSTEM, note,
            confirmation_number=generate_confirmation_number(),
            payment_status=Order.PaymentStatus.PAID,
            payment_id=payment_id or '',
        )
        ledger.confirm_lines(order.lines())
        queue_notification(order, Event.ORDER_CONFIRMED)
    logger.info(f"Payment {payment_id} confirmed order #{order.pk} as {order.confirmation_number}")
    return order


def _fail_payment(order: Order, payment_id: str, note: str) -> Order:
    with transaction.atomic():
        _transition(
            order, Status.CANCELLED, Actor.SYSTEM, note,
            payment_status=Order.PaymentStatus.FAILED,
            payment_id=payment_id or '',
            cancellation_reason=note,
        )
        skipped = ledger.release_lines(order.lines())
        queue_notification(order, Event.PAYMENT_FAILED)
    if skipped:
        logger.warning(f"Order #{order.pk}: {skipped} release(s) skipped after failed payment")
    return order


def _already_settled(order: Order, payment_id: str) -> PaymentResult:
    if order.status == Status.CANCELLED and payment_id and not order.is_paid:
        logger.warning(
            f"Payment {payment_id} arrived for cancelled order #{order.pk}; refund manually"
        )
    else:
        logger.info(f"Order #{order.pk} already {order.status}; ignoring repeated payment result")
    return PaymentResult(order=order, verified=order.is_paid, duplicate=True)


def _settle(order: Order, payment_id: str, verified: bool, note: str) -> PaymentResult:
    if order.status != Status.PENDING:
        return _already_settled(order, payment_id)
    try:
        if verified:
            order = _confirm_payment(order, payment_id, note)
        else:
            order = _fail_payment(order, payment_id, note)
    except StaleOrderState:
        return _already_settled(get_order(order.pk), payment_id)
    return PaymentResult(order=order, verified=verified)


def process_payment_result(order_id, gateway_order_id: str, payment_id: str, signature: str) -> PaymentResult:
    """
    Apply the checkout callback for a pending order.

    A valid signature confirms the order (confirmation number, inventory
    spent); an invalid one cancels it and releases its reservation. Both
    are returned outcomes. Repeats for an order that already left pending
    change nothing.

    Raises:
        OrderNotFound: Unknown order id
        PaymentOrderMismatch: gateway_order_id belongs to a different order
    """
    order = get_order(order_id)
    if order.payment_order_id != gateway_order_id:
        raise PaymentOrderMismatch(order.pk, gateway_order_id)
    if order.status != Status.PENDING:
        return _already_settled(order, payment_id)

    verified = get_gateway().verify_payment(gateway_order_id, payment_id, signature)
    if not verified:
        logger.warning(f"Payment signature mismatch for order #{order.pk} ({payment_id})")
    return _settle(order, payment_id, verified, 'Payment verified' if verified else PAYMENT_FAILED_NOTE)


def record_captured_payment(gateway_order_id: str, payment_id: str) -> PaymentResult:
    """Gateway webhook: the payment for this gateway order was captured."""
    order = get_order_by_payment_order_id(gateway_order_id)
    return _settle(order, payment_id, True, 'Payment captured (webhook)')


def record_failed_payment(gateway_order_id: str, payment_id: str, reason: str = '') -> PaymentResult:
    """Gateway webhook: the payment attempt for this gateway order failed."""
    order = get_order_by_payment_order_id(gateway_order_id)
    note = f"Payment failed: {reason}" if reason else "Payment failed"
    return _settle(order, payment_id, False, note)


# =============================================================================
# Cancellation and status updates
# =============================================================================

def cancel_order(order_id, actor: str = Actor.CUSTOMER, reason: str = '',
                 customer_id: Optional[str] = None, email: Optional[str] = None,
                 phone: Optional[str] = None) -> Tuple[Order, str]:
    """
    Cancel a pending or processing order.

    A pending order only holds a reservation, which is released. A
    processing order has already spent its stock, so the units are
    restocked. Paid orders are marked refunded.

    Returns:
        (order, message for the customer)

    Raises:
        OrderAccessDenied: A customer cancelling someone else's order
        OrderNotCancellable: Status is not pending or processing
        StaleOrderState: The status changed while cancelling
    """
    order = get_order(order_id)
    if actor == Actor.CUSTOMER:
        check_access(order, customer_id, email, phone)
    if not policy.is_cancellable(order):
        raise OrderNotCancellable(policy.cancellation_refusal_message(order.status))

    from_status = order.status
    refunded = order.is_paid
    changes = {'cancellation_reason': reason or f"Cancelled by {actor}"}
    if refunded:
        changes['payment_status'] = Order.PaymentStatus.REFUNDED

    with transaction.atomic():
        _transition(order, Status.CANCELLED, actor, reason, **changes)
        if from_status == Status.PENDING:
            ledger.release_lines(order.lines())
        else:
            ledger.restock_lines(order.lines())
        queue_notification(order, Event.ORDER_CANCELLED)

    return order, CANCELLED_WITH_REFUND_MESSAGE if refunded else CANCELLED_MESSAGE


def update_status(order_id, new_status: str, actor: str = Actor.ADMIN,
                  tracking_number: str = '', estimated_delivery=None, note: str = '') -> Order:
    """
    Move an order along the fulfilment path.

    Shipping needs a tracking number; the delivery estimate defaults to
    business days from today for the shipping state.

    Raises:
        OrderValidationError: Unknown status or missing tracking number
        InvalidStatusTransition: Move not allowed from the current status
    """
    if new_status not in Status.values:
        raise OrderValidationError(f"Unknown order status: {new_status}")
    if new_status == Status.CANCELLED:
        order, _ = cancel_order(order_id, actor=actor, reason=note)
        return order

    order = get_order(order_id)
    changes = {}
    if new_status == Status.SHIPPED:
        tracking_number = (tracking_number or '').strip()
        if not tracking_number:
            raise OrderValidationError("Tracking number is required to mark an order as shipped")
        changes['tracking_number'] = tracking_number
        changes['estimated_delivery'] = estimated_delivery or estimate_delivery(
            order.shipping_state, timezone.localdate()
        )

    with transaction.atomic():
        _transition(order, new_status, actor, note, **changes)
        if new_status == Status.SHIPPED:
            queue_notification(order, Event.ORDER_SHIPPED)
        elif new_status == Status.DELIVERED:
            queue_notification(order, Event.ORDER_DELIVERED)
    return order


# =============================================================================
# Modification requests
# =============================================================================

def _positive_int(value, name: str, minimum: int = 1) -> int:
    if isinstance(value, bool):
        raise OrderValidationError(f"{name} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise OrderValidationError(f"{name} must be a whole number")
    if number < minimum:
        raise OrderValidationError(f"{name} must be at least {minimum}")
    return number


def _clean_details(order: Order, request_type: str, details) -> Dict:
    if not isinstance(details, dict):
        raise OrderValidationError("Modification details must be an object")

    if request_type == ModificationRequest.Type.ADDRESS_CHANGE:
        address = Address.from_dict(details.get('address', details), 'new')
        return {'address': address.as_order_fields('shipping')}

    product_id = _positive_int(details.get('product_id'), 'product_id')
    if request_type == ModificationRequest.Type.ITEM_QUANTITY:
        if product_id not in {item.product_id for item in order.items.all()}:
            raise OrderValidationError(f"Product {product_id} is not part of this order")
        return {'product_id': product_id, 'quantity': _positive_int(details.get('quantity'), 'quantity', 0)}

    if not Product.objects.filter(pk=product_id, is_active=True).exists():
        raise OrderValidationError(f"Product {product_id} not found")
    return {'product_id': product_id, 'quantity': _positive_int(details.get('quantity', 1), 'quantity')}


def request_modification(order_id, request_type: str, details: Dict,
                         customer_id: Optional[str] = None, email: Optional[str] = None,
                         phone: Optional[str] = None) -> ModificationRequest:
    """
    Record a change request for support to action.

    Eligibility is decided here against the server clock, whatever the
    client showed.

    Raises:
        OrderNotModifiable: Status is not pending or processing
        ModificationWindowExpired: 12 hours have passed since the order
        OrderValidationError: Bad request type or details
    """
    order = get_order(order_id)
    check_access(order, customer_id, email, phone)

    if not policy.is_cancellable(order):
        raise OrderNotModifiable(policy.modification_refusal_message(order))
    if not policy.is_within_modification_window(order, timezone.now()):
        raise ModificationWindowExpired(policy.MODIFICATION_EXPIRED_MESSAGE)
    if request_type not in ModificationRequest.Type.values:
        raise OrderValidationError(f"Unknown modification type: {request_type}")

    with transaction.atomic():
        request = ModificationRequest.objects.create(
            order=order,
            request_type=request_type,
            details=_clean_details(order, request_type, details),
            requested_by=customer_id or order.customer_id,
        )
        queue_support_email(request)

    logger.info(f"Modification request #{request.pk} ({request_type}) for order #{order.pk}")
    return request


# =============================================================================
# Maintenance and reporting
# =============================================================================

def _cancel_each(orders: Iterable[Order], actor: str, reason: str) -> int:
    cancelled = 0
    for order in orders:
        try:
            cancel_order(order.pk, actor=actor, reason=reason)
            cancelled += 1
        except (StaleOrderState, OrderNotCancellable):
            logger.info(f"Order #{order.pk} changed status while expiring; skipped")
    return cancelled


def expire_stale_pending_orders(now=None, timeout_minutes: Optional[int] = None) -> int:
    """Cancel online-payment orders still pending after the timeout."""
    now = now or timezone.now()
    timeout = timeout_minutes if timeout_minutes is not None else settings.PENDING_ORDER_TIMEOUT_MINUTES
    stale = list(Order.objects.filter(
        status=Status.PENDING,
        payment_method=Order.PaymentMethod.RAZORPAY,
        created_at__lt=now - timedelta(minutes=timeout)
    ).only('pk'))
    if stale:
        logger.warning(f"Expiring {len(stale)} pending order(s) older than {timeout} minutes")
    return _cancel_each(stale, Actor.SYSTEM, 'Payment not completed in time')


def mark_overdue_deliveries(today=None) -> int:
    """Mark shipped orders delivered once their estimated delivery date has passed."""
    today = today or timezone.localdate()
    delivered = 0
    overdue = Order.objects.filter(
        status=Status.SHIPPED,
        estimated_delivery__lt=today
    ).values_list('pk', flat=True)
    for order_id in list(overdue):
        try:
            update_status(order_id, Status.DELIVERED, actor=Actor.SYSTEM, note='Delivery date passed')
            delivered += 1
        except (StaleOrderState, InvalidStatusTransition):
            logger.info(f"Order #{order_id} changed status before delivery could be recorded")
    return delivered


REVENUE_STATUSES = (Status.PROCESSING, Status.SHIPPED, Status.DELIVERED)


def order_stats(queryset=None) -> Dict:
    queryset = Order.objects.all() if queryset is None else queryset
    revenue = Q(status__in=REVENUE_STATUSES)
    stats = queryset.aggregate(
        total_orders=Count('id'),
        total_revenue=Sum('total_amount', filter=revenue),
        avg_order_value=Avg('total_amount', filter=revenue),
        **{
            f"{value}_orders": Count('id', filter=Q(status=value))
            for value in Status.values
        }
    )
    stats['total_revenue'] = str(to_money(stats['total_revenue'] or 0))
    stats['avg_order_value'] = str(to_money(stats['avg_order_value'] or 0))
    return stats
