"""Payment gateway factory.

get_gateway() builds the adapter named by settings.PAYMENT_GATEWAY_BACKEND
once per process; set_gateway() / reset_gateway() swap it in tests.
"""
from typing import Optional

from django.conf import settings
from django.utils.module_loading import import_string

from payments.gateway.base import (  # noqa: F401
    PaymentConfigurationError,
    PaymentDetails,
    PaymentGateway,
    PaymentGatewayError,
    PaymentIntent,
    PaymentNetworkError,
)

_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = import_string(settings.PAYMENT_GATEWAY_BACKEND)()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured gateway."""
    global _current_gateway
    _current_gateway = None
