"""SMS channel backends.

    ConsoleSMSBackend  - logs the message (development default)
    LocMemSMSBackend   - appends to the module-level ``outbox`` list (tests)
    MSG91SMSBackend    - MSG91 transactional route over httpx

Indian numbers are sent as 91XXXXXXXXXX.
"""
import logging
from abc import ABC, abstractmethod
from uuid import uuid4

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from core.identity import normalize_phone

logger = logging.getLogger(__name__)

outbox = []


def format_indian_phone(phone: str) -> str:
    digits = normalize_phone(phone)
    return digits if digits.startswith('91') and len(digits) == 12 else f"91{digits}"


class BaseSMSBackend(ABC):
    """Abstract interface for SMS dispatch adapters."""

    @abstractmethod
    def send(self, to: str, body: str) -> dict:
        """Send an SMS message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class ConsoleSMSBackend(BaseSMSBackend):

    def send(self, to: str, body: str) -> dict:
        logger.info(f"[SMS] to {format_indian_phone(to)}: {body}")
        return {'message_id': f"sms-{uuid4().hex[:12]}", 'status': 'sent'}


class LocMemSMSBackend(BaseSMSBackend):
    """Records messages in ``outbox`` for test assertions."""

    def send(self, to: str, body: str) -> dict:
        message_id = f"sms-{uuid4().hex[:12]}"
        outbox.append({'message_id': message_id, 'to': format_indian_phone(to), 'body': body})
        return {'message_id': message_id, 'status': 'sent'}


class MSG91SMSBackend(BaseSMSBackend):

    def __init__(self, client: httpx.Client = None):
        self.auth_key = settings.MSG91_AUTH_KEY
        self.sender_id = settings.MSG91_SENDER_ID
        self.api_url = settings.MSG91_API_URL
        self.client = client or httpx.Client(timeout=10.0)

    def send(self, to: str, body: str) -> dict:
        if not self.auth_key:
            return {'message_id': None, 'status': 'failed', 'error': 'MSG91_AUTH_KEY not configured'}
        try:
            response = self.client.post(
                self.api_url,
                headers={'authkey': self.auth_key},
                json={
                    'sender': self.sender_id,
                    'message': body,
                    'mobiles': format_indian_phone(to),
                    'route': 4,
                },
            )
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"MSG91 request failed: {e}")
            return {'message_id': None, 'status': 'failed', 'error': 'Network error while sending SMS'}
        except ValueError:
            return {
                'message_id': None,
                'status': 'failed',
                'error': f"Unexpected MSG91 response ({response.status_code})",
            }

        if response.is_success and data.get('type') == 'success':
            return {'message_id': data.get('request_id'), 'status': 'sent'}
        return {'message_id': None, 'status': 'failed', 'error': data.get('message') or 'Failed to send SMS'}


def get_sms_backend() -> BaseSMSBackend:
    return import_string(settings.SMS_BACKEND)()
