"""
Tests for customer and support notifications.

Test Cases:
1. Email and SMS copy per lifecycle event
2. Each (order, event, channel) is sent at most once
3. Channel failures are recorded on the log row, never raised
4. MSG91 backend request format and error handling
5. Support emails for modification requests
"""
import json
from decimal import Decimal
from unittest.mock import patch

import httpx
from django.core import mail
from django.test import TestCase, override_settings

from notifications import dispatcher
from notifications.channels import sms
from notifications.channels.sms import MSG91SMSBackend, format_indian_phone
from notifications.messages import build_email, build_sms, order_reference
from notifications.models import NotificationLog
from notifications.tasks import send_modification_request_email, send_order_notification
from orders.models import ModificationRequest, Order, OrderItem
from inventory.models import Product

Event = NotificationLog.Event


def make_order(**overrides):
    product = Product.objects.create(name='Jhumka Earrings', price=Decimal('1500.00'))
    fields = dict(
        customer_id='guest_abc',
        email='asha@example.com',
        phone='9876543210',
        status=Order.Status.PROCESSING,
        payment_status=Order.PaymentStatus.PAID,
        subtotal=Decimal('1500.00'),
        tax_amount=Decimal('270.00'),
        shipping_amount=Decimal('100.00'),
        total_amount=Decimal('1870.00'),
        confirmation_number='ORD-20240309-101500-0042',
        shipping_first_name='Asha',
        shipping_address_line1='12 MG Road',
        shipping_city='Bengaluru',
        shipping_state='Karnataka',
        shipping_postal_code='560001',
        billing_first_name='Asha',
        billing_address_line1='12 MG Road',
        billing_city='Bengaluru',
        billing_state='Karnataka',
        billing_postal_code='560001',
    )
    fields.update(overrides)
    order = Order.objects.create(**fields)
    OrderItem.objects.create(
        order=order, product=product, product_name=product.name,
        quantity=1, unit_price=product.price, total_price=product.price
    )
    return order


class MessageTestCase(TestCase):
    """Test cases for notification copy."""

    def setUp(self):
        self.order = make_order()

    def test_confirmation_email_lists_items_and_totals(self):
        subject, body = build_email(Event.ORDER_CONFIRMED, self.order)

        self.assertEqual(subject, 'Order Confirmation - ORD-20240309-101500-0042')
        self.assertIn('1 x Jhumka Earrings @ ₹1500.00', body)
        self.assertIn('Total: ₹1870.00', body)
        self.assertIn('Dear Asha,', body)

    def test_reference_falls_back_to_id(self):
        self.order.confirmation_number = None
        self.assertEqual(order_reference(self.order), f"#{self.order.pk}")

    def test_cancellation_mentions_refund_only_when_refunded(self):
        self.order.payment_status = Order.PaymentStatus.REFUNDED
        _, refunded = build_email(Event.ORDER_CANCELLED, self.order)
        self.order.payment_status = Order.PaymentStatus.PENDING
        _, unpaid = build_email(Event.ORDER_CANCELLED, self.order)

        self.assertIn('5-7 business days', refunded)
        self.assertNotIn('refund', unpaid.lower())

    def test_shipped_copy(self):
        self.order.tracking_number = 'BD123'
        subject, body = build_email(Event.ORDER_SHIPPED, self.order)

        self.assertEqual(subject, 'Order Update - ORD-20240309-101500-0042 - Shipped')
        self.assertIn('Tracking number: BD123', body)
        self.assertIn('Estimated delivery: soon', body)
        self.assertIn('BD123', build_sms(Event.ORDER_SHIPPED, self.order))

    def test_payment_failed_has_no_sms(self):
        subject, _ = build_email(Event.PAYMENT_FAILED, self.order)
        self.assertTrue(subject.startswith('Payment Unsuccessful'))
        self.assertIsNone(build_sms(Event.PAYMENT_FAILED, self.order))

    def test_unknown_event(self):
        with self.assertRaises(ValueError):
            build_email('order_lost', self.order)


class DispatcherTestCase(TestCase):
    """Test cases for notify() and its once-per-channel claim."""

    def setUp(self):
        sms.outbox.clear()
        self.order = make_order()

    def test_sends_email_and_sms(self):
        results = dispatcher.notify(self.order.pk, Event.ORDER_CONFIRMED)

        self.assertEqual(results, {'email': 'sent', 'sms': 'sent'})
        self.assertEqual(mail.outbox[0].to, ['asha@example.com'])
        self.assertEqual(sms.outbox[0]['to'], '919876543210')
        logs = NotificationLog.objects.filter(order=self.order)
        self.assertEqual({log.status for log in logs}, {'sent'})
        self.assertTrue(all(log.sent_at for log in logs))

    def test_second_notify_is_duplicate(self):
        """
        Test: Notifying the same event twice sends once.

        Given: Confirmation already sent
        When: notify() runs again for the same event
        Then: Both channels report duplicate; one email and one SMS in total
        """
        dispatcher.notify(self.order.pk, Event.ORDER_CONFIRMED)
        results = dispatcher.notify(self.order.pk, Event.ORDER_CONFIRMED)

        self.assertEqual(results, {'email': 'duplicate', 'sms': 'duplicate'})
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(len(sms.outbox), 1)

    def test_events_are_independent(self):
        dispatcher.notify(self.order.pk, Event.ORDER_CONFIRMED)
        dispatcher.notify(self.order.pk, Event.ORDER_CANCELLED)

        self.assertEqual(len(mail.outbox), 2)
        self.assertEqual(NotificationLog.objects.filter(order=self.order).count(), 4)

    def test_email_failure_recorded(self):
        with patch('notifications.channels.email.send_mail', side_effect=OSError('smtp down')):
            results = dispatcher.notify(self.order.pk, Event.ORDER_DELIVERED)

        self.assertEqual(results['email'], 'failed')
        self.assertEqual(results['sms'], 'sent')
        log = NotificationLog.objects.get(order=self.order, channel='email')
        self.assertEqual(log.error, 'smtp down')
        self.assertIsNone(log.sent_at)

    def test_failed_channel_not_retried(self):
        with patch('notifications.channels.email.send_mail', side_effect=OSError('smtp down')):
            dispatcher.notify(self.order.pk, Event.ORDER_DELIVERED)
        results = dispatcher.notify(self.order.pk, Event.ORDER_DELIVERED)

        self.assertEqual(results['email'], 'duplicate')
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_phone_skipped(self):
        Order.objects.filter(pk=self.order.pk).update(phone='')
        results = dispatcher.notify(self.order.pk, Event.ORDER_CONFIRMED)

        self.assertEqual(results['sms'], 'skipped')
        self.assertEqual(sms.outbox, [])

    def test_task_reports_missing_order(self):
        result = send_order_notification.apply(args=[999999, Event.ORDER_CONFIRMED]).get()
        self.assertEqual(result['status'], 'error')

    def test_queue_failure_logged(self):
        with patch('notifications.tasks.send_order_notification.delay', side_effect=ConnectionError('no broker')):
            with self.assertLogs('notifications.dispatcher', level='ERROR') as logs:
                with self.captureOnCommitCallbacks(execute=True):
                    dispatcher.queue_notification(self.order, Event.ORDER_SHIPPED)

        self.assertIn('no broker', logs.output[0])


class SupportEmailTestCase(TestCase):

    def setUp(self):
        self.order = make_order()

    def make_request(self):
        return ModificationRequest.objects.create(
            order=self.order,
            request_type=ModificationRequest.Type.ITEM_QUANTITY,
            details={'product_id': 1, 'quantity': 2},
            requested_by=self.order.customer_id,
        )

    @override_settings(SUPPORT_EMAIL='care@prayan.example')
    def test_each_request_emailed(self):
        first = send_modification_request_email.apply(args=[self.make_request().pk]).get()
        send_modification_request_email.apply(args=[self.make_request().pk]).get()

        self.assertEqual(first['status'], 'sent')
        self.assertEqual(len(mail.outbox), 2)
        self.assertEqual(mail.outbox[0].to, ['care@prayan.example'])
        self.assertIn('Type: Item quantity', mail.outbox[0].body)
        self.assertFalse(NotificationLog.objects.exists())

    def test_unknown_request(self):
        result = send_modification_request_email.apply(args=[424242]).get()
        self.assertEqual(result['status'], 'error')


def msg91_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@override_settings(MSG91_AUTH_KEY='msg91-key', MSG91_SENDER_ID='PRAYAN')
class MSG91BackendTestCase(TestCase):
    """Test cases for the MSG91 adapter, with httpx.MockTransport standing in for the API."""

    def test_request_format(self):
        seen = {}

        def handler(request):
            seen['headers'] = request.headers
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json={'type': 'success', 'request_id': 'req-1'})

        result = MSG91SMSBackend(client=msg91_client(handler)).send('+91 98765 43210', 'Hello')

        self.assertEqual(result, {'message_id': 'req-1', 'status': 'sent'})
        self.assertEqual(seen['headers']['authkey'], 'msg91-key')
        self.assertEqual(seen['body'], {
            'sender': 'PRAYAN', 'message': 'Hello', 'mobiles': '919876543210', 'route': 4
        })

    def test_api_error(self):
        def handler(request):
            return httpx.Response(400, json={'type': 'error', 'message': 'Invalid mobile'})

        result = MSG91SMSBackend(client=msg91_client(handler)).send('9876543210', 'Hello')

        self.assertEqual(result['status'], 'failed')
        self.assertEqual(result['error'], 'Invalid mobile')

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        result = MSG91SMSBackend(client=msg91_client(handler)).send('9876543210', 'Hello')

        self.assertEqual(result['error'], 'Network error while sending SMS')

    def test_non_json_response(self):
        def handler(request):
            return httpx.Response(502, text='<html>Bad Gateway</html>')

        result = MSG91SMSBackend(client=msg91_client(handler)).send('9876543210', 'Hello')

        self.assertEqual(result['error'], 'Unexpected MSG91 response (502)')

    @override_settings(MSG91_AUTH_KEY='')
    def test_unconfigured(self):
        def handler(request):
            raise AssertionError('no request expected')

        result = MSG91SMSBackend(client=msg91_client(handler)).send('9876543210', 'Hello')
        self.assertEqual(result['status'], 'failed')

    def test_phone_formatting(self):
        self.assertEqual(format_indian_phone('9876543210'), '919876543210')
        self.assertEqual(format_indian_phone('+91-98765-43210'), '919876543210')
        self.assertEqual(format_indian_phone('09876543210'), '919876543210')
