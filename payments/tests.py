"""
Tests for the payment gateway adapters and payment callbacks.

Test Cases:
1. HMAC signatures for checkout callbacks and webhooks
2. Razorpay adapter: paise conversion, error classification
3. Fake gateway behaviour used by the rest of the suite
4. POST /api/payments/verify/ (valid, forged, repeated)
5. POST /api/payments/webhook/ (captured, failed, ignored, forged, unknown order)
"""
import json
from decimal import Decimal

import httpx
from django.core.cache import cache
from django.test import SimpleTestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from cart import services as cart_services
from inventory.models import InventoryRecord, Product
from orders import services as order_services
from orders.models import Order
from payments.gateway import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentNetworkError,
    get_gateway,
    reset_gateway,
    set_gateway,
)
from payments.gateway.fake import FakeGateway
from payments.gateway.razorpay import RazorpayGateway, from_paise, to_paise
from payments.signatures import payment_message, sign, verify_signature

API_BASE = 'https://api.razorpay.test/v1'


class SignatureTestCase(SimpleTestCase):

    def test_known_vector(self):
        signature = sign('secret', 'order_1|pay_1')
        self.assertEqual(len(signature), 64)
        self.assertTrue(verify_signature('secret', payment_message('order_1', 'pay_1'), signature))

    def test_tampered_message_or_secret(self):
        signature = sign('secret', 'order_1|pay_1')
        self.assertFalse(verify_signature('secret', 'order_1|pay_2', signature))
        self.assertFalse(verify_signature('other', 'order_1|pay_1', signature))

    def test_missing_secret_or_signature_never_verifies(self):
        self.assertFalse(verify_signature('', 'order_1|pay_1', sign('', 'order_1|pay_1')))
        self.assertFalse(verify_signature('secret', 'order_1|pay_1', ''))

    def test_bytes_and_str_agree(self):
        self.assertEqual(sign('s', b'{"a": 1}'), sign('s', '{"a": 1}'))


def razorpay(handler, **kwargs):
    client = httpx.Client(base_url=API_BASE, transport=httpx.MockTransport(handler))
    params = {'key_id': 'rzp_test_key', 'key_secret': 'rzp_test_secret', 'client': client}
    params.update(kwargs)
    return RazorpayGateway(**params)


class RazorpayGatewayTestCase(SimpleTestCase):
    """Test cases for RazorpayGateway against httpx.MockTransport."""

    def test_paise_conversion(self):
        self.assertEqual(to_paise(Decimal('2360.00')), 236000)
        self.assertEqual(to_paise(Decimal('0.50')), 50)
        self.assertEqual(from_paise(236000), Decimal('2360.00'))

    def test_create_payment_intent(self):
        seen = {}

        def handler(request):
            seen['path'] = request.url.path
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json={
                'id': 'order_ABC', 'amount': 236000, 'currency': 'INR',
                'receipt': 'rcpt_1', 'status': 'created'
            })

        intent = razorpay(handler).create_payment_intent(
            Decimal('2360.00'), 'guest_abc', 2, 'rcpt_1'
        )

        self.assertEqual(seen['path'], '/v1/orders')
        self.assertEqual(seen['body']['amount'], 236000)
        self.assertEqual(seen['body']['notes']['item_count'], '2')
        self.assertEqual(intent.gateway_order_id, 'order_ABC')
        self.assertEqual(intent.amount, Decimal('2360.00'))

    def test_missing_keys(self):
        def handler(request):
            raise AssertionError('no request expected')

        with self.assertRaises(PaymentConfigurationError) as context:
            razorpay(handler, key_secret='').create_payment_intent(Decimal('100'), 'c', 1, 'r')
        self.assertIn('RAZORPAY_KEY_SECRET', str(context.exception))

    def test_rejected_credentials(self):
        def handler(request):
            return httpx.Response(401, json={'error': {'description': 'Authentication failed'}})

        with self.assertRaises(PaymentConfigurationError) as context:
            razorpay(handler).create_payment_intent(Decimal('100'), 'c', 1, 'r')
        self.assertEqual(
            str(context.exception), "Razorpay configuration error: Invalid key ID or key secret"
        )

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout('timed out', request=request)

        with self.assertRaises(PaymentNetworkError):
            razorpay(handler).create_payment_intent(Decimal('100'), 'c', 1, 'r')

    def test_bad_request(self):
        def handler(request):
            return httpx.Response(400, json={'error': {'description': 'amount exceeds maximum'}})

        with self.assertRaises(PaymentGatewayError) as context:
            razorpay(handler).create_payment_intent(Decimal('100'), 'c', 1, 'r')
        self.assertNotIsInstance(context.exception, PaymentNetworkError)
        self.assertEqual(str(context.exception), 'Razorpay error: amount exceeds maximum')

    def test_fetch_payment(self):
        def handler(request):
            self.assertEqual(request.url.path, '/v1/payments/pay_1')
            return httpx.Response(200, json={
                'id': 'pay_1', 'order_id': 'order_ABC', 'status': 'captured',
                'amount': 50000, 'method': 'upi'
            })

        payment = razorpay(handler).fetch_payment('pay_1')

        self.assertEqual(payment.amount, Decimal('500.00'))
        self.assertEqual(payment.method, 'upi')

    def test_verify_payment(self):
        gateway = razorpay(lambda request: httpx.Response(500))
        good = sign('rzp_test_secret', 'order_ABC|pay_1')

        self.assertTrue(gateway.verify_payment('order_ABC', 'pay_1', good))
        self.assertFalse(gateway.verify_payment('order_ABC', 'pay_2', good))

    @override_settings(RAZORPAY_TEST_MODE=False)
    def test_webhook_without_secret_rejected_outside_test_mode(self):
        gateway = razorpay(lambda request: httpx.Response(500), webhook_secret='')
        self.assertFalse(gateway.verify_webhook(b'{}', 'anything'))

    @override_settings(RAZORPAY_TEST_MODE=True)
    def test_webhook_without_secret_accepted_in_test_mode(self):
        gateway = razorpay(lambda request: httpx.Response(500), webhook_secret='')
        self.assertTrue(gateway.verify_webhook(b'{}', ''))


class FakeGatewayTestCase(SimpleTestCase):

    def setUp(self):
        self.gateway = FakeGateway()

    def test_intent_and_signature(self):
        intent = self.gateway.create_payment_intent(Decimal('999.5'), 'guest_abc', 1, 'rcpt_1')
        signature = self.gateway.sign_payment(intent.gateway_order_id, 'pay_1')

        self.assertEqual(intent.amount, Decimal('999.50'))
        self.assertTrue(self.gateway.verify_payment(intent.gateway_order_id, 'pay_1', signature))
        self.assertFalse(self.gateway.verify_payment(intent.gateway_order_id, 'pay_1', 'nope'))
        self.assertEqual(self.gateway.fetch_payment('pay_1').amount, Decimal('999.50'))

    def test_configured_failure(self):
        self.gateway.configure(fail_with=PaymentNetworkError('down'))
        with self.assertRaises(PaymentNetworkError):
            self.gateway.create_payment_intent(Decimal('1'), 'c', 1, 'r')
        self.assertEqual(self.gateway.calls[0]['method'], 'create_payment_intent')

    def test_unknown_payment(self):
        with self.assertRaises(PaymentGatewayError):
            self.gateway.fetch_payment('pay_missing')

    def test_factory_builds_configured_backend(self):
        reset_gateway()
        self.addCleanup(reset_gateway)
        self.assertIsInstance(get_gateway(), FakeGateway)
        self.assertIs(get_gateway(), get_gateway())


class PaymentCallbackTestCase(APITestCase):
    """Test cases for the verify and webhook endpoints."""

    def setUp(self):
        cache.clear()
        self.gateway = FakeGateway()
        set_gateway(self.gateway)
        self.addCleanup(reset_gateway)

        self.product = Product.objects.create(name='Temple Necklace', price=Decimal('3000.00'))
        InventoryRecord.objects.create(product=self.product, stock_quantity=4)
        cart = cart_services.get_or_create_cart(session_id='pay-sess')
        cart_services.add_item(cart, self.product.id, 1)
        self.order = order_services.create_order_from_cart(
            cart,
            email='meera@example.com',
            phone='9123456780',
            shipping_address={
                'first_name': 'Meera',
                'address_line1': '7 Anna Salai',
                'city': 'Chennai',
                'state': 'Tamil Nadu',
                'postal_code': '600002',
            },
        ).order

    def inventory(self):
        record = InventoryRecord.objects.get(product=self.product)
        return record.stock_quantity, record.reserved_quantity

    def verify(self, payment_id='pay_1', signature=None, gateway_order_id=None):
        gateway_order_id = gateway_order_id or self.order.payment_order_id
        if signature is None:
            signature = self.gateway.sign_payment(gateway_order_id, payment_id)
        return self.client.post('/api/payments/verify/', {
            'order_id': self.order.pk,
            'razorpay_order_id': gateway_order_id,
            'razorpay_payment_id': payment_id,
            'razorpay_signature': signature,
        }, format='json')

    def webhook(self, payload, signature=None):
        body = json.dumps(payload).encode('utf-8')
        if signature is None:
            signature = self.gateway.sign_webhook(body)
        return self.client.generic(
            'POST', '/api/payments/webhook/', body,
            content_type='application/json', HTTP_X_RAZORPAY_SIGNATURE=signature
        )

    def payment_event(self, event, gateway_order_id=None, **entity):
        entity.setdefault('id', 'pay_web')
        entity['order_id'] = gateway_order_id or self.order.payment_order_id
        return {'event': event, 'payload': {'payment': {'entity': entity}}}

    def test_verify_confirms_order(self):
        response = self.verify()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['verified'])
        self.assertFalse(response.data['duplicate'])
        self.assertEqual(response.data['order']['status'], 'processing')
        self.assertIsNotNone(response.data['order']['confirmation_number'])
        self.assertEqual(self.inventory(), (3, 0))

    def test_verify_forged_signature(self):
        """
        Test: A forged callback cancels the order and frees the stock.
        """
        response = self.verify(signature='0' * 64)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['verified'])
        self.assertEqual(response.data['detail'], 'Payment could not be verified')
        self.assertEqual(response.data['order']['status'], 'cancelled')
        self.assertEqual(self.inventory(), (4, 0))

    def test_verify_repeated(self):
        first = self.verify()
        second = self.verify()

        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertTrue(second.data['duplicate'])
        self.assertEqual(
            second.data['order']['confirmation_number'],
            first.data['order']['confirmation_number']
        )
        self.assertEqual(self.inventory(), (3, 0))

    def test_verify_other_gateway_order(self):
        response = self.verify(gateway_order_id='order_someone_else')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Payment Mismatch')

    def test_verify_missing_fields(self):
        response = self.client.post('/api/payments/verify/', {'order_id': self.order.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_webhook_capture(self):
        response = self.webhook(self.payment_event('payment.captured'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'processed')
        self.assertEqual(response.data['order_status'], 'processing')
        self.assertEqual(Order.objects.get(pk=self.order.pk).payment_id, 'pay_web')

    def test_webhook_after_verify_is_duplicate(self):
        self.verify()
        response = self.webhook(self.payment_event('payment.captured'))

        self.assertEqual(response.data['status'], 'duplicate')
        self.assertEqual(self.inventory(), (3, 0))

    def test_webhook_order_paid(self):
        payload = {
            'event': 'order.paid',
            'payload': {'order': {'entity': {'id': self.order.payment_order_id}}},
        }
        response = self.webhook(payload)
        self.assertEqual(response.data['order_status'], 'processing')

    def test_webhook_failure_releases_stock(self):
        response = self.webhook(
            self.payment_event('payment.failed', error_description='Card declined')
        )

        self.assertEqual(response.data['order_status'], 'cancelled')
        order = Order.objects.get(pk=self.order.pk)
        self.assertEqual(order.payment_status, 'failed')
        self.assertIn('Card declined', order.cancellation_reason)
        self.assertEqual(self.inventory(), (4, 0))

    def test_webhook_other_event_ignored(self):
        response = self.webhook({'event': 'refund.created', 'payload': {}})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'status': 'ignored', 'event': 'refund.created'})

    def test_webhook_forged(self):
        response = self.webhook(self.payment_event('payment.captured'), signature='forged')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Invalid Webhook')
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, 'pending')

    def test_webhook_unknown_order(self):
        response = self.webhook(self.payment_event('payment.captured', gateway_order_id='order_nobody'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'unknown_order')
