"""
Delivery date estimates for shipped orders.

Standard shipping is 7 business days; remote states get 2 more.
Weekends are skipped.
"""
from datetime import date, timedelta

STANDARD_DELIVERY_DAYS = 7
REMOTE_EXTRA_DAYS = 2

REMOTE_STATES = frozenset({
    'Arunachal Pradesh', 'Assam', 'Manipur', 'Meghalaya', 'Mizoram',
    'Nagaland', 'Sikkim', 'Tripura', 'Andaman and Nicobar Islands',
    'Lakshadweep', 'Ladakh',
})


def add_business_days(start: date, days: int) -> date:
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


def delivery_days_for(state: str) -> int:
    days = STANDARD_DELIVERY_DAYS
    if (state or '').strip() in REMOTE_STATES:
        days += REMOTE_EXTRA_DAYS
    return days


def estimate_delivery(state: str, start: date) -> date:
    return add_business_days(start, delivery_days_for(state))
