"""Email channel backed by django.core.mail."""
import logging
from uuid import uuid4

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def send(to: str, subject: str, body: str) -> dict:
    if not to:
        return {'message_id': None, 'status': 'failed', 'error': 'No email address'}
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [to], fail_silently=False)
    except Exception as e:
        logger.error(f"Email to {to} failed: {e}")
        return {'message_id': None, 'status': 'failed', 'error': str(e)}
    return {'message_id': f"email-{uuid4().hex[:12]}", 'status': 'sent'}
