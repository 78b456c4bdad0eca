"""Razorpay payment gateway adapter.

Talks to the Razorpay REST API over httpx with HTTP basic auth
(key id / key secret). Amounts cross the wire in paise.

Failures are classified for operators:
    - missing keys, 401/403 from Razorpay -> PaymentConfigurationError
    - DNS, connect, timeout and other transport errors -> PaymentNetworkError
    - any other non-2xx response -> PaymentGatewayError
"""
import logging
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings

from core.pricing import PAISE
from payments.gateway.base import (
    PaymentConfigurationError,
    PaymentDetails,
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntent,
    PaymentNetworkError,
)
from payments.signatures import payment_message, verify_signature

logger = logging.getLogger(__name__)


def to_paise(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal('1')))


def from_paise(amount) -> Decimal:
    return (Decimal(amount or 0) / 100).quantize(PAISE)


class RazorpayGateway(PaymentGateway):
    """Production Razorpay adapter."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        )
        self.api_base = (api_base or settings.RAZORPAY_API_BASE).rstrip('/')
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT_SECONDS
        self.currency = getattr(settings, 'PAYMENT_CURRENCY', 'INR')
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.api_base,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        return self._client

    def _check_configured(self) -> None:
        missing = [
            name for name, value in (
                ('RAZORPAY_KEY_ID', self.key_id),
                ('RAZORPAY_KEY_SECRET', self.key_secret),
            ) if not value
        ]
        if missing:
            raise PaymentConfigurationError(
                f"Razorpay configuration error: {', '.join(missing)} not configured"
            )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        self._check_configured()
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"Razorpay {method} {path} failed: {e}")
            raise PaymentNetworkError(
                "Network error: Unable to connect to Razorpay servers"
            ) from e

        if response.status_code in (401, 403):
            logger.error(f"Razorpay rejected credentials ({response.status_code})")
            raise PaymentConfigurationError(
                "Razorpay configuration error: Invalid key ID or key secret"
            )
        if response.is_error:
            description = _error_description(response)
            logger.error(f"Razorpay {method} {path} returned {response.status_code}: {description}")
            raise PaymentGatewayError(f"Razorpay error: {description}")
        return response.json()

    def create_payment_intent(
        self,
        amount: Decimal,
        customer_ref: str,
        item_count: int,
        receipt: str,
    ) -> PaymentIntent:
        payload = {
            'amount': to_paise(amount),
            'currency': self.currency,
            'receipt': receipt,
            'notes': {
                'customer_ref': customer_ref,
                'item_count': str(item_count),
                'total_amount': str(amount),
            },
        }
        data = self._request('POST', '/orders', json=payload)
        logger.info(f"Created Razorpay order {data['id']} for {amount} {self.currency}")
        return PaymentIntent(
            gateway_order_id=data['id'],
            amount=from_paise(data.get('amount')),
            currency=data.get('currency', self.currency),
            receipt=data.get('receipt', receipt),
            status=data.get('status', 'created'),
        )

    def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error("Cannot verify payment: RAZORPAY_KEY_SECRET not configured")
            return False
        return verify_signature(
            self.key_secret, payment_message(gateway_order_id, payment_id), signature
        )

    def verify_webhook(self, body: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            if settings.RAZORPAY_TEST_MODE:
                logger.warning("Test mode: accepting webhook without signature verification")
                return True
            logger.error("Webhook secret not configured for production mode")
            return False
        return verify_signature(self.webhook_secret, body, signature)

    def fetch_payment(self, payment_id: str) -> PaymentDetails:
        data = self._request('GET', f'/payments/{payment_id}')
        return PaymentDetails(
            payment_id=data['id'],
            gateway_order_id=data.get('order_id'),
            status=data.get('status', 'unknown'),
            amount=from_paise(data.get('amount')),
            method=data.get('method'),
            raw=data,
        )


def _error_description(response: httpx.Response) -> str:
    try:
        return response.json()['error']['description']
    except (ValueError, KeyError, TypeError):
        return response.text[:200] or f"HTTP {response.status_code}"
