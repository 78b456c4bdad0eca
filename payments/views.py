"""
Payment API Views.

Implements:
- POST /payments/verify/ - Checkout callback from the payment widget
- POST /payments/webhook/ - Gateway server-to-server notifications
"""
import logging

from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import rate_limit
from orders import services as order_services
from orders.exceptions import OrderNotFound, PaymentOrderMismatch
from orders.serializers import OrderSerializer
from orders.views import order_error_response

from .webhooks import WebhookError, handle_webhook

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Razorpay-Signature'


class PaymentVerifySerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)
    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64)
    razorpay_signature = serializers.CharField(max_length=128)


class PaymentVerifyView(APIView):
    """
    POST: Settle a pending order from the checkout callback.

    Request Body:
    {
        "order_id": 42,
        "razorpay_order_id": "order_...",
        "razorpay_payment_id": "pay_...",
        "razorpay_signature": "<hex hmac>"
    }

    A signature that does not verify cancels the order and returns 400
    with verified=false. Repeating a callback returns the order as it is.
    """
    authentication_classes = []

    @rate_limit(max_requests=20, window_seconds=60)
    def post(self, request):
        serializer = PaymentVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = order_services.process_payment_result(
                data['order_id'],
                data['razorpay_order_id'],
                data['razorpay_payment_id'],
                data['razorpay_signature'],
            )
        except (OrderNotFound, PaymentOrderMismatch) as e:
            return order_error_response(e)

        body = {
            'verified': result.verified,
            'duplicate': result.duplicate,
            'order': OrderSerializer(result.order).data,
        }
        if not result.verified:
            body['detail'] = 'Payment could not be verified'
            return Response(body, status=status.HTTP_400_BAD_REQUEST)
        return Response(body)


class PaymentWebhookView(APIView):
    """
    POST: Gateway webhook; the signature covers the raw body.
    """
    authentication_classes = []

    def post(self, request):
        body = request.body
        try:
            outcome = handle_webhook(body, request.headers.get(SIGNATURE_HEADER, ''))
        except WebhookError as e:
            return Response(
                {'error': 'Invalid Webhook', 'detail': str(e)},
                status=status.HTTP_400_BAD_REQUEST
            )
        logger.info(f"Webhook {outcome['event']}: {outcome['status']}")
        return Response(outcome)
