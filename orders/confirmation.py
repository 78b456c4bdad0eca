"""
Customer-facing confirmation numbers: ORD-YYYYMMDD-HHMMSS-RRRR.

The random suffix is 4 digits, so a number is checked against existing
orders before use; the column's unique constraint backs that check.
"""
import logging
import secrets

from django.utils import timezone

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 10


class ConfirmationNumberExhausted(Exception):
    pass


def format_confirmation_number(moment, suffix: int) -> str:
    return f"ORD-{moment:%Y%m%d}-{moment:%H%M%S}-{suffix:04d}"


def generate_confirmation_number(now=None) -> str:
    from .models import Order

    moment = timezone.localtime(now or timezone.now())
    for attempt in range(MAX_ATTEMPTS):
        candidate = format_confirmation_number(moment, secrets.randbelow(10000))
        if not Order.objects.filter(confirmation_number=candidate).exists():
            return candidate
        logger.warning(f"Confirmation number collision on {candidate} (attempt {attempt + 1})")
    raise ConfirmationNumberExhausted(
        f"Could not find a free confirmation number after {MAX_ATTEMPTS} attempts"
    )
