"""
Celery tasks for cart housekeeping.

Tasks:
    - purge_expired_carts: Periodic removal of carts past their expiry
"""
import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def purge_expired_carts():
    """Delete carts (and their items) whose expiry has passed."""
    from cart.services import purge_expired_carts as purge

    deleted = purge()
    if deleted:
        logger.info(f"Purged {deleted} expired cart(s)")
    return {'deleted': deleted}
