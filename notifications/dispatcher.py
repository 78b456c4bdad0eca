"""
Notification Dispatcher.

Lifecycle code calls queue_notification() inside its transaction; the
Celery task is queued only after commit, and a broker failure is logged
and swallowed so it can never undo the transition that triggered it.

notify() does the sending. Each (order, event, channel) is claimed by
creating its NotificationLog row first, so a replayed transition finds
the row and sends nothing: at most one attempt per channel.
"""
import logging
from typing import Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .channels import email as email_channel
from .channels.sms import get_sms_backend
from .messages import build_email, build_sms
from .models import NotificationLog

logger = logging.getLogger(__name__)

Channel = NotificationLog.Channel
Status = NotificationLog.Status


def _enqueue(order_id: int, event: str, context: Optional[dict]) -> None:
    try:
        from .tasks import send_order_notification
        send_order_notification.delay(order_id, event, context)
        logger.info(f"Queued {event} notification for order #{order_id}")
    except Exception as e:
        logger.error(f"Failed to queue {event} notification for order #{order_id}: {e}")


def queue_notification(order, event: str, context: Optional[dict] = None) -> None:
    """Send the event's notifications once the current transaction commits."""
    order_id = order.pk
    transaction.on_commit(lambda: _enqueue(order_id, event, context))


def _enqueue_support(request_id: int) -> None:
    try:
        from .tasks import send_modification_request_email
        send_modification_request_email.delay(request_id)
    except Exception as e:
        logger.error(f"Failed to queue support email for modification request #{request_id}: {e}")


def queue_support_email(modification_request) -> None:
    """Tell support about a modification request once it is committed."""
    request_id = modification_request.pk
    transaction.on_commit(lambda: _enqueue_support(request_id))


def _claim(order, event: str, channel: str, recipient: str):
    log, created = NotificationLog.objects.get_or_create(
        order=order,
        event=event,
        channel=channel,
        defaults={'recipient': recipient}
    )
    return log if created else None


def _record(log: NotificationLog, result: dict) -> str:
    log.status = Status.SENT if result.get('status') == 'sent' else Status.FAILED
    log.provider_message_id = result.get('message_id') or ''
    log.error = result.get('error') or ''
    if log.status == Status.SENT:
        log.sent_at = timezone.now()
    log.save(update_fields=['status', 'provider_message_id', 'error', 'sent_at'])
    return log.status


def _skip(log: NotificationLog, reason: str) -> str:
    log.status = Status.SKIPPED
    log.error = reason
    log.save(update_fields=['status', 'error'])
    return log.status


def notify(order_id: int, event: str, context: Optional[dict] = None) -> Dict[str, str]:
    """
    Send every channel for an order event.

    Returns:
        {channel: status} for the channels attempted in this call;
        channels already claimed by an earlier call are reported as
        "duplicate".
    """
    from orders.models import Order

    order = Order.objects.prefetch_related('items').get(pk=order_id)
    results = {}
    recipient = order.email

    log = _claim(order, event, Channel.EMAIL, recipient)
    if log is None:
        results[Channel.EMAIL] = 'duplicate'
    elif not recipient:
        results[Channel.EMAIL] = _skip(log, 'No email address')
    else:
        subject, body = build_email(event, order, context)
        results[Channel.EMAIL] = _record(log, email_channel.send(recipient, subject, body))

    text = build_sms(event, order)
    if text is not None:
        log = _claim(order, event, Channel.SMS, order.phone)
        if log is None:
            results[Channel.SMS] = 'duplicate'
        elif not order.phone:
            results[Channel.SMS] = _skip(log, 'No phone number')
        else:
            try:
                result = get_sms_backend().send(order.phone, text)
            except Exception as e:
                logger.exception(f"SMS backend raised for order #{order_id}")
                result = {'message_id': None, 'status': 'failed', 'error': str(e)}
            results[Channel.SMS] = _record(log, result)

    for channel, status in results.items():
        if status == Status.FAILED:
            logger.error(f"{event} {channel} notification failed for order #{order_id}")
        elif status == Status.SENT:
            logger.info(f"{event} {channel} notification sent for order #{order_id}")
    return results


def notify_support(request_id: int) -> dict:
    """
    Email support about one modification request.

    Requests are not logged in NotificationLog: an order can carry several
    and each one is mailed once, when it is created.
    """
    from orders.models import ModificationRequest

    request = ModificationRequest.objects.select_related('order').get(pk=request_id)
    subject, body = build_email(
        NotificationLog.Event.MODIFICATION_REQUESTED,
        request.order,
        {'request_type': request.get_request_type_display(), 'details': request.details},
    )
    result = email_channel.send(settings.SUPPORT_EMAIL, subject, body)
    if result['status'] == 'sent':
        logger.info(f"Support notified of modification request #{request_id}")
    return result
