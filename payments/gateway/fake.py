"""Configurable fake payment gateway for development and testing.

No network calls. Payment intents get ids of the form
``order_fake_<hex>``; signatures are real HMACs over the configured key
secret, so sign_payment() produces a callback that verifies and any
other string does not.

Failure modes can be switched on at runtime:
    gateway.configure(fail_with=PaymentNetworkError("down"))
"""
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from django.conf import settings

from core.pricing import to_money
from payments.gateway.base import PaymentDetails, PaymentGateway, PaymentGatewayError, PaymentIntent
from payments.signatures import payment_message, sign, verify_signature


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, key_secret: Optional[str] = None, webhook_secret: Optional[str] = None) -> None:
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET or 'fake_secret'
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET or 'fake_webhook_secret'
        self.fail_with: Optional[PaymentGatewayError] = None
        self.calls: list = []
        self.intents: dict = {}
        self.payments: dict = {}

    def configure(self, fail_with: Optional[PaymentGatewayError] = None) -> None:
        """Make create_payment_intent raise the given error (None to succeed)."""
        self.fail_with = fail_with

    def create_payment_intent(
        self,
        amount: Decimal,
        customer_ref: str,
        item_count: int,
        receipt: str,
    ) -> PaymentIntent:
        self.calls.append({
            'method': 'create_payment_intent',
            'amount': amount,
            'customer_ref': customer_ref,
            'item_count': item_count,
            'receipt': receipt,
        })
        if self.fail_with is not None:
            raise self.fail_with

        intent = PaymentIntent(
            gateway_order_id=f"order_fake_{uuid4().hex[:14]}",
            amount=to_money(amount),
            currency=getattr(settings, 'PAYMENT_CURRENCY', 'INR'),
            receipt=receipt,
        )
        self.intents[intent.gateway_order_id] = intent
        return intent

    def sign_payment(self, gateway_order_id: str, payment_id: str) -> str:
        """Signature a real checkout would send for this payment."""
        return sign(self.key_secret, payment_message(gateway_order_id, payment_id))

    def sign_webhook(self, body: bytes) -> str:
        return sign(self.webhook_secret, body)

    def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        self.calls.append({
            'method': 'verify_payment',
            'gateway_order_id': gateway_order_id,
            'payment_id': payment_id,
        })
        verified = verify_signature(
            self.key_secret, payment_message(gateway_order_id, payment_id), signature
        )
        if verified:
            intent = self.intents.get(gateway_order_id)
            self.payments[payment_id] = PaymentDetails(
                payment_id=payment_id,
                gateway_order_id=gateway_order_id,
                status='captured',
                amount=intent.amount if intent else Decimal('0.00'),
                method='card',
            )
        return verified

    def verify_webhook(self, body: bytes, signature: str) -> bool:
        return verify_signature(self.webhook_secret, body, signature)

    def fetch_payment(self, payment_id: str) -> PaymentDetails:
        try:
            return self.payments[payment_id]
        except KeyError:
            raise PaymentGatewayError(f"Razorpay error: payment {payment_id} does not exist")
