"""
Celery tasks for order maintenance.

Tasks:
    - expire_stale_pending_orders: Cancel unpaid orders and release their stock
    - mark_overdue_deliveries: Close out shipments past their delivery date
    - generate_daily_order_report: Yesterday's order statistics
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task
def expire_stale_pending_orders():
    """
    Periodic task to cancel orders whose payment never completed.

    Their reservations are released so the stock becomes available again.
    """
    from orders import services

    count = services.expire_stale_pending_orders()
    if count:
        logger.info(f"Expired {count} stale pending order(s)")
    return {'expired': count}


@shared_task
def mark_overdue_deliveries():
    from orders import services

    count = services.mark_overdue_deliveries()
    if count:
        logger.info(f"Marked {count} overdue shipment(s) as delivered")
    return {'delivered': count}


@shared_task
def generate_daily_order_report():
    """
    Generate daily order statistics report.

    Scheduled via Celery Beat shortly after midnight.
    """
    from orders.models import Order
    from orders.services import order_stats

    yesterday = timezone.localdate() - timedelta(days=1)
    stats = order_stats(Order.objects.filter(created_at__date=yesterday))

    report = f"""
    ===============================================
    DAILY ORDER REPORT - {yesterday}
    ===============================================
    Total Orders: {stats['total_orders']}
    Pending: {stats['pending_orders']}
    Processing: {stats['processing_orders']}
    Shipped: {stats['shipped_orders']}
    Delivered: {stats['delivered_orders']}
    Cancelled: {stats['cancelled_orders']}
    Total Revenue: ₹{stats['total_revenue']}
    ===============================================
    """

    logger.info(report)

    return {'date': yesterday.isoformat(), **stats}
