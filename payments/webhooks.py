"""
Gateway webhook handling.

The body is authenticated with the webhook secret before it is parsed.
Handled events:

    payment.captured, order.paid  -> confirm the order
    payment.failed                -> cancel the order, release stock

Anything else is acknowledged and ignored so the gateway stops retrying.
"""
import json
import logging

from orders import services as order_services
from orders.exceptions import OrderNotFound
from payments.gateway import get_gateway

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = frozenset({'payment.captured', 'order.paid'})
FAILURE_EVENTS = frozenset({'payment.failed'})


class WebhookError(Exception):
    """The webhook could not be authenticated or parsed."""
    pass


def _entity(payload: dict, name: str) -> dict:
    return (payload.get('payload', {}).get(name) or {}).get('entity') or {}


def handle_webhook(body: bytes, signature: str) -> dict:
    """
    Verify and apply a gateway webhook.

    Returns:
        Dict describing what was done, for the response body and logs

    Raises:
        WebhookError: Bad signature or malformed JSON
    """
    if not get_gateway().verify_webhook(body, signature):
        logger.warning("Rejected webhook with invalid signature")
        raise WebhookError("Invalid webhook signature")

    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise WebhookError(f"Malformed webhook payload: {e}")
    if not isinstance(payload, dict):
        raise WebhookError("Malformed webhook payload")

    event = payload.get('event', '')
    if event not in CAPTURE_EVENTS | FAILURE_EVENTS:
        logger.info(f"Ignoring webhook event {event!r}")
        return {'status': 'ignored', 'event': event}

    payment = _entity(payload, 'payment')
    gateway_order_id = payment.get('order_id') or _entity(payload, 'order').get('id')
    payment_id = payment.get('id', '')
    if not gateway_order_id:
        raise WebhookError(f"{event} webhook carries no order id")

    try:
        if event in CAPTURE_EVENTS:
            result = order_services.record_captured_payment(gateway_order_id, payment_id)
        else:
            result = order_services.record_failed_payment(
                gateway_order_id, payment_id, payment.get('error_description', '')
            )
    except OrderNotFound:
        logger.warning(f"{event} webhook for unknown gateway order {gateway_order_id}")
        return {'status': 'unknown_order', 'event': event}

    return {
        'status': 'duplicate' if result.duplicate else 'processed',
        'event': event,
        'order_id': result.order.pk,
        'order_status': result.order.status,
    }
