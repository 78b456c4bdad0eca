"""
Inventory Ledger - reserve / confirm / release against InventoryRecord.

Every write is a single conditional UPDATE built from F() expressions,
so the check and the change happen atomically in the database:

    reserve(p, n):  reserved += n   WHERE stock - reserved >= n
    confirm(p, n):  stock -= n, reserved -= n   WHERE reserved >= n
    release(p, n):  reserved -= n   WHERE reserved >= n
    restock(p, n):  stock += n

Two checkouts racing for the last unit both issue the reserve UPDATE;
the database serialises them on the row and only one matches the WHERE
clause. No read-modify-write happens in Python.

Multi-line helpers work in ascending product_id order to keep lock
acquisition consistent across concurrent requests.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Tuple

from django.db.models import F
from django.utils import timezone

from .models import InventoryRecord

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base class for ledger failures."""
    pass


class InsufficientStockError(InventoryError):
    """Raised when there's not enough available stock for a reservation."""
    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class ReservationMismatchError(InventoryError):
    """Raised when confirming more units than are currently reserved."""
    def __init__(self, product_id: int, requested: int, reserved: int):
        self.product_id = product_id
        self.requested = requested
        self.reserved = reserved
        super().__init__(
            f"Cannot confirm {requested} units of product {product_id}: "
            f"only {reserved} reserved"
        )


class InventoryRecordNotFound(InventoryError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"No inventory record for product {product_id}")


def _check_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValueError(f"Quantity must be a positive integer, got {quantity!r}")


def _records(product_id: int):
    return InventoryRecord.objects.filter(product_id=product_id)


def get_record(product_id: int) -> InventoryRecord:
    try:
        return InventoryRecord.objects.select_related('product').get(product_id=product_id)
    except InventoryRecord.DoesNotExist:
        raise InventoryRecordNotFound(product_id)


def get_availability(product_id: int) -> Dict:
    record = get_record(product_id)
    return {
        'product_id': product_id,
        'stock_quantity': record.stock_quantity,
        'reserved_quantity': record.reserved_quantity,
        'available_quantity': record.available_quantity,
        'is_low_stock': record.is_low_stock,
    }


def reserve(product_id: int, quantity: int) -> None:
    """
    Hold `quantity` units against an unpaid order.

    Raises:
        InsufficientStockError: If fewer than `quantity` units are available
        InventoryRecordNotFound: If the product has no inventory record
    """
    _check_quantity(quantity)
    updated = _records(product_id).filter(
        stock_quantity__gte=F('reserved_quantity') + quantity
    ).update(
        reserved_quantity=F('reserved_quantity') + quantity,
        updated_at=timezone.now()
    )
    if updated:
        logger.debug(f"Reserved {quantity} of product {product_id}")
        return

    record = get_record(product_id)
    raise InsufficientStockError(product_id, quantity, max(0, record.available_quantity))


def confirm(product_id: int, quantity: int) -> None:
    """
    Spend a reservation after successful payment: the units leave both
    stock and reserved.

    Raises:
        ReservationMismatchError: If fewer than `quantity` units are reserved
    """
    _check_quantity(quantity)
    updated = _records(product_id).filter(
        reserved_quantity__gte=quantity,
        stock_quantity__gte=quantity
    ).update(
        stock_quantity=F('stock_quantity') - quantity,
        reserved_quantity=F('reserved_quantity') - quantity,
        updated_at=timezone.now()
    )
    if updated:
        logger.debug(f"Confirmed {quantity} of product {product_id}")
        return

    record = get_record(product_id)
    logger.error(
        f"Reservation mismatch confirming product {product_id}: "
        f"requested {quantity}, reserved {record.reserved_quantity}"
    )
    raise ReservationMismatchError(product_id, quantity, record.reserved_quantity)


def release(product_id: int, quantity: int) -> bool:
    """
    Return held units to the available pool without touching stock.

    Best effort: a release that would push reserved below zero changes
    nothing, is logged, and returns False. The order record stays
    canonical.
    """
    _check_quantity(quantity)
    updated = _records(product_id).filter(
        reserved_quantity__gte=quantity
    ).update(
        reserved_quantity=F('reserved_quantity') - quantity,
        updated_at=timezone.now()
    )
    if updated:
        logger.debug(f"Released {quantity} of product {product_id}")
        return True

    reserved = _records(product_id).values_list('reserved_quantity', flat=True).first()
    logger.warning(
        f"Skipped release of {quantity} units for product {product_id}: "
        f"reserved quantity is {reserved}"
    )
    return False


def restock(product_id: int, quantity: int) -> None:
    """
    Add physical stock. Also the compensating action for cancelling an
    order whose reservation was already confirmed.
    """
    _check_quantity(quantity)
    updated = _records(product_id).update(
        stock_quantity=F('stock_quantity') + quantity,
        last_restocked_at=timezone.now(),
        updated_at=timezone.now()
    )
    if not updated:
        raise InventoryRecordNotFound(product_id)
    logger.info(f"Restocked {quantity} of product {product_id}")


def set_stock(product_id: int, stock_quantity: int) -> InventoryRecord:
    """
    Overwrite the physical count (stock take). Refuses to go below what
    is currently reserved.
    """
    if not isinstance(stock_quantity, int) or stock_quantity < 0:
        raise ValueError(f"Stock quantity must be a non-negative integer, got {stock_quantity!r}")
    updated = _records(product_id).filter(
        reserved_quantity__lte=stock_quantity
    ).update(
        stock_quantity=stock_quantity,
        last_restocked_at=timezone.now(),
        updated_at=timezone.now()
    )
    record = get_record(product_id)
    if not updated:
        raise InventoryError(
            f"Cannot set stock of product {product_id} to {stock_quantity}: "
            f"{record.reserved_quantity} units are reserved"
        )
    logger.info(f"Stock of product {product_id} set to {stock_quantity}")
    return record


def _aggregate(lines: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    totals = OrderedDict()
    for product_id, quantity in sorted(lines, key=lambda line: line[0]):
        _check_quantity(quantity)
        totals[product_id] = totals.get(product_id, 0) + quantity
    return list(totals.items())


def reserve_lines(lines: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """
    Reserve every (product_id, quantity) line or none of them.

    If any line fails, lines already reserved in this call are released
    before the error propagates.
    """
    reserved = []
    try:
        for product_id, quantity in _aggregate(lines):
            reserve(product_id, quantity)
            reserved.append((product_id, quantity))
    except InventoryError:
        for product_id, quantity in reserved:
            release(product_id, quantity)
        if reserved:
            logger.info(f"Rolled back {len(reserved)} reservation(s) after failed checkout")
        raise
    return reserved


def confirm_lines(lines: Iterable[Tuple[int, int]]) -> None:
    for product_id, quantity in _aggregate(lines):
        confirm(product_id, quantity)


def release_lines(lines: Iterable[Tuple[int, int]]) -> int:
    """Release every line; returns how many releases were skipped."""
    skipped = 0
    for product_id, quantity in _aggregate(lines):
        if not release(product_id, quantity):
            skipped += 1
    return skipped


def restock_lines(lines: Iterable[Tuple[int, int]]) -> None:
    for product_id, quantity in _aggregate(lines):
        try:
            restock(product_id, quantity)
        except InventoryRecordNotFound:
            logger.error(f"Cannot restock product {product_id}: inventory record missing")


def low_stock_records():
    return InventoryRecord.objects.select_related('product').filter(
        stock_quantity__lte=F('reserved_quantity') + F('reorder_point')
    ).order_by('product__name')
