"""
Celery tasks for customer notifications.

Tasks:
    - send_order_notification: Email/SMS for one order lifecycle event
    - send_modification_request_email: Support email for a change request
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def send_order_notification(order_id: int, event: str, context: dict = None):
    """
    Send the notifications for an order event.

    Not retried: NotificationLog already holds the claim for each channel,
    so a retry would be skipped as a duplicate anyway.
    """
    from orders.models import Order
    from .dispatcher import notify

    try:
        results = notify(order_id, event, context)
    except Order.DoesNotExist:
        logger.error(f"Order #{order_id} not found for {event} notification")
        return {'status': 'error', 'message': f'Order {order_id} not found'}

    return {'status': 'success', 'order_id': order_id, 'event': event, 'channels': results}


@shared_task
def send_modification_request_email(request_id: int):
    """Email support about a customer's modification request."""
    from orders.models import ModificationRequest
    from .dispatcher import notify_support

    try:
        result = notify_support(request_id)
    except ModificationRequest.DoesNotExist:
        logger.error(f"Modification request #{request_id} not found")
        return {'status': 'error', 'message': f'Modification request {request_id} not found'}

    return {'status': result['status'], 'request_id': request_id}
