"""
HMAC-SHA256 helpers for gateway callbacks.

Razorpay signs a checkout callback as
    hex(hmac_sha256(key_secret, "<gateway_order_id>|<payment_id>"))
and a webhook as
    hex(hmac_sha256(webhook_secret, <raw request body>))
"""
import hashlib
import hmac
from typing import Union


def sign(secret: str, message: Union[str, bytes]) -> str:
    if isinstance(message, str):
        message = message.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, message: Union[str, bytes], signature: str) -> bool:
    """Constant-time comparison; a missing secret or signature never verifies."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign(secret, message), signature)


def payment_message(gateway_order_id: str, payment_id: str) -> str:
    return f"{gateway_order_id}|{payment_id}"
