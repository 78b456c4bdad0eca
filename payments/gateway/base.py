"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements, so checkout code
works the same against RazorpayGateway in production and FakeGateway in
development and tests.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


class PaymentGatewayError(Exception):
    """The gateway could not complete a request."""
    pass


class PaymentConfigurationError(PaymentGatewayError):
    """Credentials are missing or rejected by the gateway."""
    pass


class PaymentNetworkError(PaymentGatewayError):
    """The gateway could not be reached."""
    pass


@dataclass(frozen=True)
class PaymentIntent:
    """A gateway-side order the customer pays against."""

    gateway_order_id: str
    amount: Decimal
    currency: str
    receipt: str
    status: str = 'created'


@dataclass(frozen=True)
class PaymentDetails:
    payment_id: str
    gateway_order_id: Optional[str]
    status: str
    amount: Decimal
    method: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount: Decimal,
        customer_ref: str,
        item_count: int,
        receipt: str,
    ) -> PaymentIntent:
        """Create the remote order. Raises PaymentGatewayError subclasses."""
        ...

    @abstractmethod
    def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        """Check a checkout callback signature. Never raises on mismatch."""
        ...

    @abstractmethod
    def verify_webhook(self, body: bytes, signature: str) -> bool:
        """Check that a webhook body was sent by the gateway."""
        ...

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> PaymentDetails:
        ...
