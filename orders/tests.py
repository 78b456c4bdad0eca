"""
Tests for the order lifecycle.

Test Cases:
1. Checkout reserves stock and freezes totals, addresses and prices
2. Checkout fails atomically (stock, validation, gateway errors)
3. Payment verification: valid, invalid, repeated, for another order
4. Cash on delivery skips the gateway and spends stock at once
5. Cancellation releases or restocks, and refunds paid orders
6. Status changes are compare-and-set and follow the transition table
7. Modification window enforced against the server clock
8. Notifications never block a transition and never double-send
9. Two checkouts for the last unit, and a double-submitted cart (threaded)
10. Maintenance tasks and order endpoints
"""
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.cache import cache
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from cart import services as cart_services
from core.identity import guest_customer_id
from coupons.models import Coupon, CouponRedemption
from coupons.services import CouponError
from inventory.models import InventoryRecord, Product
from inventory.services import InsufficientStockError
from notifications.channels import sms
from notifications.models import NotificationLog
from orders import policy, services
from orders.confirmation import format_confirmation_number, generate_confirmation_number
from orders.delivery import add_business_days, estimate_delivery
from orders.exceptions import (
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
from orders.models import ModificationRequest, Order, OrderStatusHistory
from orders.tasks import expire_stale_pending_orders, generate_daily_order_report, mark_overdue_deliveries
from payments.gateway import PaymentConfigurationError, PaymentNetworkError, reset_gateway, set_gateway
from payments.gateway.fake import FakeGateway

EMAIL = 'asha@example.com'
PHONE = '9876543210'
ADDRESS = {
    'first_name': 'Asha',
    'last_name': 'Rao',
    'address_line1': '12 MG Road',
    'city': 'Bengaluru',
    'state': 'Karnataka',
    'postal_code': '560001',
}


def make_product(name, price='1000.00', stock=10):
    product = Product.objects.create(name=name, price=Decimal(price))
    InventoryRecord.objects.create(product=product, stock_quantity=stock)
    return product


def make_cart(session_id, *lines):
    cart = cart_services.get_or_create_cart(session_id=session_id)
    for product, quantity in lines:
        cart = cart_services.add_item(cart, product.id, quantity)
    return cart


def stock_of(product):
    record = InventoryRecord.objects.get(product=product)
    return record.stock_quantity, record.reserved_quantity


class OrderTestMixin:

    def setUp(self):
        cache.clear()
        sms.outbox.clear()
        self.gateway = FakeGateway()
        set_gateway(self.gateway)
        self.addCleanup(reset_gateway)
        self.ring = make_product('Lotus Ring', '1000.00', stock=5)
        self.anklet = make_product('Payal Anklet', '500.00', stock=10)

    def checkout(self, cart=None, **kwargs):
        cart = cart or make_cart('sess-1', (self.ring, 2))
        params = {'email': EMAIL, 'phone': PHONE, 'shipping_address': ADDRESS}
        params.update(kwargs)
        return services.create_order_from_cart(cart, **params)

    def pay(self, order, payment_id='pay_001'):
        signature = self.gateway.sign_payment(order.payment_order_id, payment_id)
        return services.process_payment_result(order.pk, order.payment_order_id, payment_id, signature)


class CheckoutTestCase(OrderTestMixin, TestCase):
    """Test cases for turning a cart into a pending order."""

    def test_checkout_creates_pending_order_with_reservation(self):
        """
        Test: Checkout reserves stock and freezes the cart totals.

        Given: Cart with 2 x ₹1000 (stock 5)
        When: Checking out with online payment
        Then: Pending order for ₹2360 with a gateway order id; 2 units reserved
        """
        checkout = self.checkout()
        order = checkout.order

        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.subtotal, Decimal('2000.00'))
        self.assertEqual(order.tax_amount, Decimal('360.00'))
        self.assertEqual(order.shipping_amount, Decimal('0.00'))
        self.assertEqual(order.total_amount, Decimal('2360.00'))
        self.assertEqual(order.payment_order_id, checkout.payment_intent.gateway_order_id)
        self.assertEqual(checkout.payment_intent.amount, Decimal('2360.00'))
        self.assertIsNone(order.confirmation_number)
        self.assertEqual(stock_of(self.ring), (5, 2))
        self.assertEqual(order.status_history.count(), 1)

    def test_checkout_snapshots_prices_and_address(self):
        cart = make_cart('sess-1', (self.anklet, 1))
        Product.objects.filter(pk=self.anklet.pk).update(price=Decimal('750.00'))

        order = self.checkout(cart).order
        item = order.items.get()

        self.assertEqual(item.unit_price, Decimal('500.00'))
        self.assertEqual(item.product_name, 'Payal Anklet')
        self.assertEqual(order.total_amount, Decimal('690.00'))
        self.assertEqual(order.shipping_city, 'Bengaluru')
        self.assertEqual(order.billing_postal_code, '560001')

    def test_guest_checkout_gets_stable_customer_id(self):
        first = self.checkout(make_cart('sess-1', (self.anklet, 1))).order
        second = self.checkout(make_cart('sess-2', (self.anklet, 1)), email='ASHA@example.com ').order

        self.assertEqual(first.customer_id, guest_customer_id(EMAIL, PHONE))
        self.assertEqual(first.customer_id, second.customer_id)
        self.assertTrue(first.is_guest)

    def test_checkout_empties_cart(self):
        cart = make_cart('sess-1', (self.ring, 1))
        self.checkout(cart)

        cart.refresh_from_db()
        self.assertEqual(cart.items.count(), 0)
        self.assertEqual(cart.estimated_total, Decimal('0.00'))

    def test_resubmitted_cart_rejected(self):
        """
        Test: A cart that already became an order cannot be checked out again.

        Given: Cart with 2 rings checked out once
        When: The same cart is submitted again
        Then: OrderValidationError; still one order and 2 units reserved
        """
        cart = make_cart('sess-1', (self.ring, 2))
        self.checkout(cart)

        with self.assertRaises(OrderValidationError):
            self.checkout(cart)

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(stock_of(self.ring), (5, 2))

    def test_cart_changed_after_pricing_rejected(self):
        cart = make_cart('sess-1', (self.ring, 1))
        real_take = cart_services.take_checkout_items

        def take_after_edit(locked_cart):
            cart_services.add_item(locked_cart, self.anklet.id, 1)
            return real_take(locked_cart)

        with patch('orders.services.cart_services.take_checkout_items', side_effect=take_after_edit):
            with self.assertRaises(OrderValidationError):
                self.checkout(cart)

        self.assertFalse(Order.objects.exists())
        self.assertEqual(cart.items.count(), 1)
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_empty_cart_rejected(self):
        cart = cart_services.get_or_create_cart(session_id='empty')
        with self.assertRaises(OrderValidationError):
            self.checkout(cart)
        self.assertEqual(self.gateway.calls, [])

    def test_invalid_contact_or_address_rejected_before_payment(self):
        """
        Test: Validation happens before any payment or reservation step.
        """
        cart = make_cart('sess-1', (self.ring, 1))
        with self.assertRaises(OrderValidationError):
            self.checkout(cart, phone='12345')
        with self.assertRaises(OrderValidationError):
            self.checkout(cart, email='not-an-email')
        with self.assertRaises(OrderValidationError):
            self.checkout(cart, shipping_address=dict(ADDRESS, postal_code='0123'))

        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(stock_of(self.ring), (5, 0))
        self.assertFalse(Order.objects.exists())

    def test_insufficient_stock_leaves_nothing_behind(self):
        """
        Test: One line short of stock fails the whole checkout.

        Given: Cart with 1 anklet and 2 rings; ring stock drops to 1
        When: Checking out
        Then: InsufficientStockError, no order, no reservation on either product
        """
        cart = make_cart('sess-1', (self.anklet, 1), (self.ring, 2))
        InventoryRecord.objects.filter(product=self.ring).update(stock_quantity=1)

        with self.assertRaises(InsufficientStockError):
            self.checkout(cart)

        self.assertFalse(Order.objects.exists())
        self.assertEqual(stock_of(self.anklet), (10, 0))
        self.assertEqual(stock_of(self.ring), (1, 0))
        self.assertEqual(cart.items.count(), 2)

    def test_gateway_failure_reserves_nothing(self):
        self.gateway.configure(fail_with=PaymentConfigurationError("Razorpay configuration error: bad key"))

        with self.assertRaises(PaymentConfigurationError):
            self.checkout()

        self.assertFalse(Order.objects.exists())
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_order_write_failure_rolls_back_reservation(self):
        with patch('orders.services.OrderItem.objects.bulk_create', side_effect=RuntimeError('db down')):
            with self.assertRaises(RuntimeError):
                self.checkout()

        self.assertEqual(stock_of(self.ring), (5, 0))
        self.assertFalse(Order.objects.exists())

    def test_coupon_discount_frozen_and_redeemed(self):
        now = timezone.now()
        Coupon.objects.create(
            code='WELCOME10',
            discount_type=Coupon.DiscountType.PERCENTAGE,
            discount_value=Decimal('10'),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        )
        cart = make_cart('sess-1', (self.ring, 2))
        cart = cart_services.apply_coupon(cart, 'welcome10')

        order = self.checkout(cart).order

        self.assertEqual(order.coupon_code, 'WELCOME10')
        self.assertEqual(order.discount_amount, Decimal('200.00'))
        self.assertEqual(order.total_amount, Decimal('2160.00'))
        redemption = CouponRedemption.objects.get()
        self.assertEqual(redemption.order_id, order.pk)
        self.assertEqual(Coupon.objects.get().usage_count, 1)

    def test_exhausted_coupon_fails_checkout(self):
        now = timezone.now()
        coupon = Coupon.objects.create(
            code='FLAT250',
            discount_type=Coupon.DiscountType.FIXED,
            discount_value=Decimal('250'),
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
            usage_limit=1,
        )
        cart = cart_services.apply_coupon(make_cart('sess-1', (self.ring, 1)), 'FLAT250')
        Coupon.objects.filter(pk=coupon.pk).update(usage_count=1)

        with self.assertRaises(CouponError):
            self.checkout(cart)
        self.assertEqual(stock_of(self.ring), (5, 0))


class PaymentResultTestCase(OrderTestMixin, TestCase):
    """Test cases for settling a pending order from the payment callback."""

    def setUp(self):
        super().setUp()
        self.order = self.checkout().order

    def test_valid_signature_confirms_order(self):
        """
        Test: A verified payment moves the order to processing.

        Then: confirmation number assigned, reserved units leave stock
        """
        result = self.pay(self.order)
        order = result.order

        self.assertTrue(result.verified)
        self.assertFalse(result.duplicate)
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(order.payment_id, 'pay_001')
        self.assertRegex(order.confirmation_number, r'^ORD-\d{8}-\d{6}-\d{4}$')
        self.assertEqual(stock_of(self.ring), (3, 0))

    def test_repeated_callback_is_idempotent(self):
        """
        Test: Verifying the same payment twice changes nothing the second time.
        """
        first = self.pay(self.order)
        second = self.pay(self.order)

        self.assertTrue(second.verified)
        self.assertTrue(second.duplicate)
        self.assertEqual(second.order.confirmation_number, first.order.confirmation_number)
        self.assertEqual(stock_of(self.ring), (3, 0))
        self.assertEqual(
            OrderStatusHistory.objects.filter(order=self.order, to_status=Order.Status.PROCESSING).count(),
            1
        )

    def test_invalid_signature_cancels_and_releases(self):
        """
        Test: A bad signature is a failed payment, not an exception.

        Given: Pending order holding 2 reserved rings
        When: Callback arrives with a forged signature
        Then: Order cancelled, payment failed, reservation released
        """
        result = services.process_payment_result(
            self.order.pk, self.order.payment_order_id, 'pay_001', 'forged'
        )

        self.assertFalse(result.verified)
        self.assertEqual(result.order.status, Order.Status.CANCELLED)
        self.assertEqual(result.order.payment_status, Order.PaymentStatus.FAILED)
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_valid_callback_after_failure_does_not_revive_order(self):
        services.process_payment_result(self.order.pk, self.order.payment_order_id, 'pay_001', 'forged')

        result = self.pay(self.order, 'pay_002')

        self.assertTrue(result.duplicate)
        self.assertFalse(result.verified)
        self.assertEqual(result.order.status, Order.Status.CANCELLED)
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_callback_for_another_gateway_order_rejected(self):
        with self.assertRaises(PaymentOrderMismatch):
            services.process_payment_result(self.order.pk, 'order_other', 'pay_001', 'sig')
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PENDING)

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            services.process_payment_result(999999, 'order_x', 'pay_x', 'sig')

    def test_webhook_capture_and_failure_helpers(self):
        result = services.record_captured_payment(self.order.payment_order_id, 'pay_web')
        self.assertEqual(result.order.status, Order.Status.PROCESSING)

        repeat = services.record_failed_payment(self.order.payment_order_id, 'pay_web', 'declined')
        self.assertTrue(repeat.duplicate)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PROCESSING)

    def test_three_identifiers_resolve_to_same_order(self):
        order = self.pay(self.order).order

        self.assertEqual(services.find_order(str(order.pk)).pk, order.pk)
        self.assertEqual(services.find_order(order.confirmation_number).pk, order.pk)
        self.assertEqual(services.find_order(order.payment_order_id).pk, order.pk)


class CashOnDeliveryTestCase(OrderTestMixin, TestCase):

    def test_cod_order_processing_immediately(self):
        checkout = self.checkout(payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        order = checkout.order

        self.assertIsNone(checkout.payment_intent)
        self.assertIsNone(order.payment_order_id)
        self.assertEqual(order.status, Order.Status.PROCESSING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertIsNotNone(order.confirmation_number)
        self.assertEqual(stock_of(self.ring), (3, 0))
        self.assertEqual(self.gateway.calls, [])

    def test_cancelling_cod_order_restocks(self):
        order = self.checkout(payment_method=Order.PaymentMethod.CASH_ON_DELIVERY).order

        order, message = services.cancel_order(order.pk, customer_id=order.customer_id)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(message, services.CANCELLED_MESSAGE)
        self.assertEqual(order.payment_status, Order.PaymentStatus.PENDING)
        self.assertEqual(stock_of(self.ring), (5, 0))


class CancellationTestCase(OrderTestMixin, TestCase):
    """Test cases for customer and admin cancellation."""

    def setUp(self):
        super().setUp()
        self.order = self.checkout().order

    def test_cancel_pending_releases_reservation(self):
        order, message = services.cancel_order(self.order.pk, email=EMAIL, phone=PHONE, reason='Changed mind')

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(order.cancellation_reason, 'Changed mind')
        self.assertEqual(message, "Order cancelled successfully.")
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_cancel_paid_order_restocks_and_refunds(self):
        """
        Test: Cancelling after payment puts confirmed units back into stock.

        Given: Paid order (2 rings spent, stock 3)
        When: Customer cancels
        Then: Stock back to 5, payment refunded, refund message shown
        """
        self.pay(self.order)

        order, message = services.cancel_order(self.order.pk, customer_id=self.order.customer_id)

        self.assertEqual(order.payment_status, Order.PaymentStatus.REFUNDED)
        self.assertEqual(
            message,
            "Order cancelled successfully. Refund will be processed within 5-7 business days."
        )
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_cancel_requires_ownership(self):
        with self.assertRaises(OrderAccessDenied):
            services.cancel_order(self.order.pk, customer_id='user_999')
        with self.assertRaises(OrderAccessDenied):
            services.cancel_order(self.order.pk, email=EMAIL, phone='9123456780')

    def test_admin_cancels_without_contact(self):
        order, _ = services.cancel_order(self.order.pk, actor=OrderStatusHistory.Actor.ADMIN)
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(order.status_history.last().actor, OrderStatusHistory.Actor.ADMIN)

    def test_shipped_order_not_cancellable(self):
        self.pay(self.order)
        services.update_status(self.order.pk, Order.Status.SHIPPED, tracking_number='BD123')

        with self.assertRaises(OrderNotCancellable) as context:
            services.cancel_order(self.order.pk, customer_id=self.order.customer_id)

        self.assertIn('already been shipped', str(context.exception))
        self.assertEqual(stock_of(self.ring), (3, 0))

    def test_cancel_twice(self):
        services.cancel_order(self.order.pk, customer_id=self.order.customer_id)
        with self.assertRaises(OrderNotCancellable):
            services.cancel_order(self.order.pk, customer_id=self.order.customer_id)
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_cancel_racing_payment_rejected(self):
        """
        Test: A cancel based on a stale read loses to the payment that landed first.

        Given: Cancel reads the order while pending
        When: Payment confirms it before the cancel writes
        Then: StaleOrderState; order stays processing; stock untouched by the cancel
        """
        stale = services.get_order(self.order.pk)
        self.pay(self.order)

        with patch('orders.services.get_order', return_value=stale):
            with self.assertRaises(StaleOrderState):
                services.cancel_order(self.order.pk, customer_id=self.order.customer_id)

        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PROCESSING)
        self.assertEqual(stock_of(self.ring), (3, 0))


class StatusUpdateTestCase(OrderTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.pay(self.checkout().order).order

    def test_ship_requires_tracking_number(self):
        with self.assertRaises(OrderValidationError):
            services.update_status(self.order.pk, Order.Status.SHIPPED)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PROCESSING)

    def test_ship_sets_tracking_and_estimate(self):
        order = services.update_status(self.order.pk, Order.Status.SHIPPED, tracking_number='BD123')

        self.assertEqual(order.status, Order.Status.SHIPPED)
        self.assertEqual(order.tracking_number, 'BD123')
        self.assertEqual(order.estimated_delivery, estimate_delivery('Karnataka', timezone.localdate()))

    def test_deliver_after_ship(self):
        services.update_status(self.order.pk, Order.Status.SHIPPED, tracking_number='BD123')
        order = services.update_status(self.order.pk, Order.Status.DELIVERED)

        self.assertEqual(order.status, Order.Status.DELIVERED)
        self.assertEqual(
            list(order.status_history.values_list('to_status', flat=True)),
            ['pending', 'processing', 'shipped', 'delivered']
        )

    def test_transition_table_enforced(self):
        with self.assertRaises(InvalidStatusTransition):
            services.update_status(self.order.pk, Order.Status.DELIVERED)
        with self.assertRaises(InvalidStatusTransition):
            services.update_status(self.order.pk, Order.Status.PENDING)

    def test_only_system_confirms_payment(self):
        pending = self.checkout(make_cart('sess-2', (self.anklet, 1))).order
        with self.assertRaises(InvalidStatusTransition):
            services.update_status(pending.pk, Order.Status.PROCESSING)

    def test_can_transition(self):
        Actor = OrderStatusHistory.Actor
        self.assertTrue(services.can_transition('processing', 'shipped', Actor.ADMIN))
        self.assertFalse(services.can_transition('processing', 'shipped', Actor.CUSTOMER))
        self.assertFalse(services.can_transition('delivered', 'cancelled', Actor.ADMIN))


class PolicyTestCase(TestCase):
    """Test cases for the pure cancellation / modification predicates."""

    def make_order(self, status, age):
        order = Order(status=status)
        order.created_at = timezone.now() - age
        return order

    def test_eligibility_by_status(self):
        for value in Order.Status.values:
            order = self.make_order(value, timedelta(hours=1))
            expected = value in ('pending', 'processing')
            self.assertEqual(policy.is_cancellable(order), expected, value)
            self.assertEqual(policy.is_modifiable(order), expected, value)

    def test_modification_window_boundary(self):
        now = timezone.now()
        order = Order(status=Order.Status.PENDING)
        order.created_at = now - timedelta(hours=12)

        self.assertFalse(policy.is_modifiable(order, now))
        self.assertTrue(policy.is_modifiable(order, now - timedelta(seconds=1)))
        self.assertEqual(policy.time_remaining(order, now), timedelta(0))

    def test_refusal_messages(self):
        self.assertIn('shipped', policy.cancellation_refusal_message(Order.Status.SHIPPED))
        self.assertEqual(
            policy.cancellation_refusal_message(Order.Status.CANCELLED),
            "Order has already been cancelled."
        )


class ModificationRequestTestCase(OrderTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.order = self.checkout().order

    def age_order(self, age):
        Order.objects.filter(pk=self.order.pk).update(created_at=timezone.now() - age)

    def test_scenario_window_boundaries(self):
        """
        Test: Order placed at T0 can be changed at T0+11h59m but not at T0+12h01m.

        Given: Pending order
        When: 11h59m old, request an address change; then age to 12h01m and retry
        Then: First is stored; second raises ModificationWindowExpired even though pending
        """
        self.age_order(timedelta(hours=11, minutes=59))
        request = services.request_modification(
            self.order.pk,
            ModificationRequest.Type.ADDRESS_CHANGE,
            {'address': dict(ADDRESS, address_line1='44 Brigade Road')},
            email=EMAIL, phone=PHONE,
        )
        self.assertEqual(request.details['address']['shipping_address_line1'], '44 Brigade Road')

        self.age_order(timedelta(hours=12, minutes=1))
        with self.assertRaises(ModificationWindowExpired) as context:
            services.request_modification(
                self.order.pk,
                ModificationRequest.Type.ITEM_QUANTITY,
                {'product_id': self.ring.pk, 'quantity': 1},
                email=EMAIL, phone=PHONE,
            )
        self.assertEqual(
            str(context.exception),
            "Modification period has expired. Please contact customer support."
        )
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PENDING)

    def test_cancellation_still_allowed_at_11h59(self):
        self.age_order(timedelta(hours=11, minutes=59))
        order, _ = services.cancel_order(self.order.pk, email=EMAIL, phone=PHONE)
        self.assertEqual(order.status, Order.Status.CANCELLED)

    def test_cancelled_order_not_modifiable(self):
        services.cancel_order(self.order.pk, email=EMAIL, phone=PHONE)
        with self.assertRaises(OrderNotModifiable):
            services.request_modification(
                self.order.pk, ModificationRequest.Type.ADD_ITEM,
                {'product_id': self.anklet.pk}, email=EMAIL, phone=PHONE,
            )

    def test_details_validated(self):
        with self.assertRaises(OrderValidationError):
            services.request_modification(
                self.order.pk, ModificationRequest.Type.ITEM_QUANTITY,
                {'product_id': self.anklet.pk, 'quantity': 1}, email=EMAIL, phone=PHONE,
            )
        with self.assertRaises(OrderValidationError):
            services.request_modification(
                self.order.pk, 'resize', {}, email=EMAIL, phone=PHONE,
            )

    def test_support_emailed_for_each_request(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.request_modification(
                self.order.pk, ModificationRequest.Type.ADD_ITEM,
                {'product_id': self.anklet.pk, 'quantity': 2}, email=EMAIL, phone=PHONE,
            )
        with self.captureOnCommitCallbacks(execute=True):
            services.request_modification(
                self.order.pk, ModificationRequest.Type.ITEM_QUANTITY,
                {'product_id': self.ring.pk, 'quantity': 1}, email=EMAIL, phone=PHONE,
            )

        support = [m for m in mail.outbox if m.to == ['support@prayanjewels.example']]
        self.assertEqual(len(support), 2)
        self.assertTrue(support[0].subject.startswith('Order Modification Request - '))


class NotificationTestCase(OrderTestMixin, TestCase):
    """Test cases for notifications triggered by lifecycle transitions."""

    def setUp(self):
        super().setUp()
        self.order = self.checkout().order

    def test_confirmation_email_and_sms(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = self.pay(self.order).order

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, f"Order Confirmation - {order.confirmation_number}")
        self.assertEqual(len(sms.outbox), 1)
        self.assertEqual(sms.outbox[0]['to'], '919876543210')
        self.assertIn('₹2360.00', sms.outbox[0]['body'])

    def test_replayed_transition_not_sent_twice(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.pay(self.order)
        with self.captureOnCommitCallbacks(execute=True):
            self.pay(self.order)

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(
            NotificationLog.objects.filter(order=self.order, event='order_confirmed').count(),
            2
        )

    def test_broker_failure_does_not_block_payment(self):
        """
        Test: A notification queueing failure never fails the transition.
        """
        with patch('notifications.tasks.send_order_notification.delay', side_effect=ConnectionError('broker down')):
            with self.assertLogs('notifications.dispatcher', level='ERROR'):
                with self.captureOnCommitCallbacks(execute=True):
                    result = self.pay(self.order)

        self.assertEqual(result.order.status, Order.Status.PROCESSING)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.Status.PROCESSING)
        self.assertEqual(len(mail.outbox), 0)

    def test_sms_failure_recorded_not_raised(self):
        with patch('notifications.dispatcher.get_sms_backend', side_effect=RuntimeError('no backend')):
            with self.captureOnCommitCallbacks(execute=True):
                result = self.pay(self.order)

        self.assertEqual(result.order.status, Order.Status.PROCESSING)
        log = NotificationLog.objects.get(order=self.order, channel='sms')
        self.assertEqual(log.status, NotificationLog.Status.FAILED)
        self.assertEqual(NotificationLog.objects.get(order=self.order, channel='email').status, 'sent')

    def test_shipped_sms_carries_tracking(self):
        self.pay(self.order)
        with self.captureOnCommitCallbacks(execute=True):
            services.update_status(self.order.pk, Order.Status.SHIPPED, tracking_number='BD123')

        self.assertIn('Track your package with BD123', sms.outbox[-1]['body'])
        self.assertTrue(mail.outbox[-1].subject.endswith(' - Shipped'))


class ConfirmationNumberTestCase(TestCase):

    def test_format(self):
        moment = datetime(2024, 3, 9, 7, 5, 2)
        self.assertEqual(format_confirmation_number(moment, 42), 'ORD-20240309-070502-0042')

    def test_collision_retried(self):
        moment = timezone.now()
        taken = format_confirmation_number(timezone.localtime(moment), 1)
        Order.objects.create(
            customer_id='user_1', email=EMAIL, phone=PHONE, confirmation_number=taken,
            shipping_first_name='A', shipping_address_line1='x', shipping_city='c',
            shipping_state='s', shipping_postal_code='560001',
            billing_first_name='A', billing_address_line1='x', billing_city='c',
            billing_state='s', billing_postal_code='560001',
        )
        with patch('orders.confirmation.secrets.randbelow', side_effect=[1, 2]):
            number = generate_confirmation_number(moment)
        self.assertTrue(number.endswith('-0002'))


class DeliveryEstimateTestCase(TestCase):

    def test_weekends_skipped(self):
        friday = date(2024, 3, 8)
        self.assertEqual(add_business_days(friday, 1), date(2024, 3, 11))

    def test_remote_states_take_longer(self):
        monday = date(2024, 3, 4)
        self.assertEqual(estimate_delivery('Karnataka', monday), date(2024, 3, 13))
        self.assertEqual(estimate_delivery('Assam', monday), date(2024, 3, 15))


class LastUnitRaceTestCase(OrderTestMixin, TestCase):

    def test_two_checkouts_for_last_unit(self):
        """
        Test: Only one of two checkouts for the last unit gets an order.

        Given: Ring stock is 1; two carts each hold 1 ring
        When: Both check out
        Then: First gets a pending order; second fails with no order or reservation
        """
        InventoryRecord.objects.filter(product=self.ring).update(stock_quantity=1)
        first_cart = make_cart('sess-a', (self.ring, 1))
        second_cart = make_cart('sess-b', (self.ring, 1))

        first = self.checkout(first_cart).order
        with self.assertRaises(InsufficientStockError):
            self.checkout(second_cart, email='ravi@example.com', phone='9123456780')

        self.assertEqual(first.status, Order.Status.PENDING)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(stock_of(self.ring), (1, 1))


class ConcurrentCheckoutTestCase(TransactionTestCase):
    """Concurrent checkouts against a real database."""

    def setUp(self):
        self.gateway = FakeGateway()
        set_gateway(self.gateway)
        self.addCleanup(reset_gateway)
        self.ring = make_product('Lotus Ring', stock=1)
        self.carts = [make_cart(f'sess-{i}', (self.ring, 1)) for i in range(2)]

    def test_exactly_one_checkout_wins(self):
        results = []
        barrier = threading.Barrier(len(self.carts))

        def attempt(cart, index):
            barrier.wait()
            try:
                services.create_order_from_cart(
                    cart,
                    email=f'buyer{index}@example.com',
                    phone=f'98765432{index:02d}',
                    shipping_address=ADDRESS,
                )
                results.append('ok')
            except InsufficientStockError:
                results.append('sold out')
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt, args=(cart, i)) for i, cart in enumerate(self.carts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ['ok', 'sold out'])
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(stock_of(self.ring), (1, 1))

    def test_double_submitted_cart_makes_one_order(self):
        """
        Test: Two simultaneous submits of one cart create a single order.

        Given: One cart with 2 bracelets (stock 5)
        When: The cart is submitted twice at the same moment
        Then: One pending order holding 2 units; the other submit finds the cart empty
        """
        bracelet = make_product('Kada Bracelet', stock=5)
        cart = make_cart('sess-double', (bracelet, 2))
        results = []
        barrier = threading.Barrier(2)

        def attempt():
            barrier.wait()
            try:
                services.create_order_from_cart(
                    cart,
                    email=EMAIL,
                    phone=PHONE,
                    shipping_address=ADDRESS,
                )
                results.append('ok')
            except OrderValidationError:
                results.append('empty')
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ['empty', 'ok'])
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(stock_of(bracelet), (5, 2))


class MaintenanceTaskTestCase(OrderTestMixin, TestCase):

    def test_stale_pending_orders_expired(self):
        order = self.checkout().order
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(minutes=31))
        fresh = self.checkout(make_cart('sess-2', (self.anklet, 1))).order

        result = expire_stale_pending_orders.apply().get()

        self.assertEqual(result, {'expired': 1})
        self.assertEqual(Order.objects.get(pk=order.pk).status, Order.Status.CANCELLED)
        self.assertEqual(Order.objects.get(pk=fresh.pk).status, Order.Status.PENDING)
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_overdue_deliveries_marked(self):
        order = self.pay(self.checkout().order).order
        services.update_status(
            order.pk, Order.Status.SHIPPED, tracking_number='BD1',
            estimated_delivery=timezone.localdate() - timedelta(days=1)
        )

        result = mark_overdue_deliveries.apply().get()

        self.assertEqual(result, {'delivered': 1})
        history = Order.objects.get(pk=order.pk).status_history.last()
        self.assertEqual(history.to_status, Order.Status.DELIVERED)
        self.assertEqual(history.actor, OrderStatusHistory.Actor.SYSTEM)

    def test_daily_report(self):
        order = self.pay(self.checkout().order).order
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(days=1))

        stats = generate_daily_order_report.apply().get()

        self.assertEqual(stats['total_orders'], 1)
        self.assertEqual(stats['processing_orders'], 1)
        self.assertEqual(stats['total_revenue'], '2360.00')
        self.assertEqual(stats['avg_order_value'], '2360.00')

    def test_order_stats_money_keeps_paise(self):
        self.pay(self.checkout().order)
        self.pay(self.checkout(make_cart('sess-2', (self.anklet, 1))).order, payment_id='pay_002')

        stats = services.order_stats()

        self.assertEqual(stats['total_revenue'], '3050.00')
        self.assertEqual(stats['avg_order_value'], '1525.00')
        self.assertEqual(services.order_stats(Order.objects.none())['total_revenue'], '0.00')


class OrderApiTestCase(APITestCase):
    """Test cases for the order endpoints."""

    def setUp(self):
        cache.clear()
        self.gateway = FakeGateway()
        set_gateway(self.gateway)
        self.addCleanup(reset_gateway)
        self.ring = make_product('Lotus Ring', '1000.00', stock=5)
        self.admin = get_user_model().objects.create_superuser('admin', 'admin@example.com', 'pw')
        self.customer = get_user_model().objects.create_user('asha', EMAIL, 'pw')

    def checkout_payload(self, **overrides):
        payload = {'email': EMAIL, 'phone': PHONE, 'shipping_address': ADDRESS}
        payload.update(overrides)
        return payload

    def guest_checkout(self):
        make_cart('sess-api', (self.ring, 2))
        return self.client.post(
            '/api/orders/checkout/', self.checkout_payload(), format='json',
            HTTP_X_CART_SESSION='sess-api'
        )

    def test_guest_checkout_returns_payment_details(self):
        response = self.guest_checkout()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order']['status'], 'pending')
        self.assertEqual(response.data['order']['total_amount'], '2360.00')
        self.assertTrue(response.data['order']['can_cancel'])
        self.assertTrue(response.data['payment']['gateway_order_id'].startswith('order_fake_'))
        self.assertEqual(response.data['payment']['amount'], '2360.00')

    def test_checkout_without_cart(self):
        response = self.client.post('/api/orders/checkout/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_checkout_sold_out_is_409(self):
        make_cart('sess-api', (self.ring, 2))
        InventoryRecord.objects.filter(product=self.ring).update(stock_quantity=1)

        response = self.client.post(
            '/api/orders/checkout/', self.checkout_payload(), format='json',
            HTTP_X_CART_SESSION='sess-api'
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Insufficient Stock')

    def test_gateway_network_error_is_502(self):
        self.gateway.configure(fail_with=PaymentNetworkError("Network error: Unable to connect to Razorpay servers"))

        response = self.guest_checkout()

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error'], 'Payment Network Error')

    def test_customer_checkout_and_listing(self):
        cart = cart_services.get_or_create_cart(customer_id=f'user_{self.customer.pk}')
        cart_services.add_item(cart, self.ring.id, 1)
        self.client.force_authenticate(self.customer)

        response = self.client.post('/api/orders/checkout/', self.checkout_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        listing = self.client.get('/api/orders/')
        self.assertEqual(listing.status_code, status.HTTP_200_OK)
        self.assertEqual(listing.data['count'], 1)

        detail = self.client.get(f"/api/orders/{response.data['order']['id']}/")
        self.assertEqual(detail.status_code, status.HTTP_200_OK)
        self.assertEqual(detail.data['history'][0]['to_status'], 'pending')

    def test_detail_hidden_from_other_customers(self):
        order_id = self.guest_checkout().data['order']['id']
        self.client.force_authenticate(self.customer)

        response = self.client.get(f'/api/orders/{order_id}/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_guest_cancel_with_contact(self):
        order_id = self.guest_checkout().data['order']['id']

        denied = self.client.post(f'/api/orders/{order_id}/cancel/', {}, format='json')
        self.assertEqual(denied.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(
            f'/api/orders/{order_id}/cancel/', {'email': EMAIL, 'phone': PHONE}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Order cancelled successfully.')
        self.assertEqual(stock_of(self.ring), (5, 0))

    def test_expired_modification_is_400_with_support_message(self):
        order_id = self.guest_checkout().data['order']['id']
        Order.objects.filter(pk=order_id).update(created_at=timezone.now() - timedelta(hours=13))

        response = self.client.post(
            f'/api/orders/{order_id}/modifications/',
            {
                'request_type': 'item_quantity',
                'details': {'product_id': self.ring.pk, 'quantity': 1},
                'email': EMAIL,
                'phone': PHONE,
            },
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Cannot Modify')
        self.assertIn('contact customer support', response.data['detail'])

    def test_admin_ships_and_bad_transition_is_409(self):
        order_id = self.guest_checkout().data['order']['id']
        self.client.force_authenticate(self.admin)

        conflict = self.client.post(
            f'/api/orders/{order_id}/status/', {'status': 'shipped', 'tracking_number': 'BD1'}, format='json'
        )
        self.assertEqual(conflict.status_code, status.HTTP_409_CONFLICT)

        order = Order.objects.get(pk=order_id)
        signature = self.gateway.sign_payment(order.payment_order_id, 'pay_1')
        services.process_payment_result(order_id, order.payment_order_id, 'pay_1', signature)

        missing = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'shipped'}, format='json')
        self.assertEqual(missing.status_code, status.HTTP_400_BAD_REQUEST)

        shipped = self.client.post(
            f'/api/orders/{order_id}/status/', {'status': 'shipped', 'tracking_number': 'BD1'}, format='json'
        )
        self.assertEqual(shipped.status_code, status.HTTP_200_OK)
        self.assertEqual(shipped.data['tracking_number'], 'BD1')

    def test_status_update_requires_admin(self):
        order_id = self.guest_checkout().data['order']['id']
        self.client.force_authenticate(self.customer)
        response = self.client.post(f'/api/orders/{order_id}/status/', {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_guest_lookup_and_history(self):
        order_id = self.guest_checkout().data['order']['id']
        order = Order.objects.get(pk=order_id)
        signature = self.gateway.sign_payment(order.payment_order_id, 'pay_1')
        order = services.process_payment_result(order_id, order.payment_order_id, 'pay_1', signature).order

        found = self.client.post('/api/orders/lookup/', {
            'confirmation_number': order.confirmation_number.lower(),
            'email': EMAIL.upper(),
            'phone': f'+91 {PHONE}',
        }, format='json')
        self.assertEqual(found.status_code, status.HTTP_200_OK)
        self.assertEqual(found.data['id'], order_id)

        wrong = self.client.post('/api/orders/lookup/', {
            'confirmation_number': order.confirmation_number,
            'email': 'someone@example.com',
            'phone': PHONE,
        }, format='json')
        self.assertEqual(wrong.status_code, status.HTTP_404_NOT_FOUND)

        history = self.client.post('/api/orders/guest/', {'email': EMAIL, 'phone': PHONE}, format='json')
        self.assertEqual([o['id'] for o in history.data], [order_id])

    def test_admin_list_filters_and_stats(self):
        self.guest_checkout()
        self.client.force_authenticate(self.admin)

        pending = self.client.get('/api/orders/', {'status': 'pending'})
        self.assertEqual(pending.data['count'], 1)

        bad = self.client.get('/api/orders/', {'ordering': 'phone'})
        self.assertEqual(bad.status_code, status.HTTP_400_BAD_REQUEST)

        stats = self.client.get('/api/orders/stats/')
        self.assertEqual(stats.data['total_orders'], 1)
        self.assertEqual(stats.data['pending_orders'], 1)
        self.assertEqual(stats.data['total_revenue'], '0.00')

    def test_resolve_by_gateway_order_id(self):
        data = self.guest_checkout().data
        self.client.force_authenticate(self.admin)

        response = self.client.get(f"/api/orders/resolve/{data['payment']['gateway_order_id']}/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], data['order']['id'])
