"""
Modification / cancellation policy.

Pure predicates over an order and a clock; no database access. The API
and every server-side mutation consult these, with `now` taken from the
server clock.

    is_cancellable(order)      status in {pending, processing}
    is_modifiable(order, now)  is_cancellable(order) and now - created_at < 12h
"""
from datetime import timedelta

from django.utils import timezone

from .models import Order

CANCELLABLE_STATUSES = frozenset({Order.Status.PENDING, Order.Status.PROCESSING})
MODIFICATION_WINDOW = timedelta(hours=12)

MODIFICATION_EXPIRED_MESSAGE = "Modification period has expired. Please contact customer support."

_NOT_CANCELLABLE_MESSAGES = {
    Order.Status.SHIPPED: (
        "Order has already been shipped and cannot be cancelled. "
        "Please contact customer support for returns."
    ),
    Order.Status.DELIVERED: (
        "Order has been delivered and cannot be cancelled. "
        "Please contact customer support for returns."
    ),
    Order.Status.CANCELLED: "Order has already been cancelled.",
}


def is_cancellable(order) -> bool:
    return order.status in CANCELLABLE_STATUSES


def modification_deadline(order):
    return order.created_at + MODIFICATION_WINDOW


def is_within_modification_window(order, now=None) -> bool:
    now = now or timezone.now()
    return now - order.created_at < MODIFICATION_WINDOW


def is_modifiable(order, now=None) -> bool:
    return is_cancellable(order) and is_within_modification_window(order, now)


def cancellation_refusal_message(status: str) -> str:
    return _NOT_CANCELLABLE_MESSAGES.get(status, "Order cannot be cancelled at this stage.")


def modification_refusal_message(order, now=None) -> str:
    if not is_cancellable(order):
        return f"Orders that are {order.status} cannot be modified. Please contact customer support."
    return MODIFICATION_EXPIRED_MESSAGE


def time_remaining(order, now=None) -> timedelta:
    """Time left in the modification window (zero once it has closed)."""
    now = now or timezone.now()
    return max(timedelta(0), modification_deadline(order) - now)
