"""
Pricing & totals calculator.

Pure functions only: the same line items, discount and rates always
produce the same Totals, so a cart estimate can be reconciled against
the totals frozen on an order.

    subtotal = sum(quantity * unit_price)
    tax      = subtotal * 18%
    shipping = 0 if subtotal >= 2000 else 100
    total    = max(0, subtotal + tax + shipping - discount)
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

PAISE = Decimal('0.01')
ZERO = Decimal('0.00')

TAX_RATE = Decimal('0.18')
FREE_SHIPPING_THRESHOLD = Decimal('2000.00')
FLAT_SHIPPING_FEE = Decimal('100.00')


def to_money(value) -> Decimal:
    """Coerce a number to a Decimal rounded to paise."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal

    def as_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'shipping': str(self.shipping),
            'discount': str(self.discount),
            'total': str(self.total),
        }


def line_total(quantity: int, unit_price) -> Decimal:
    return to_money(Decimal(quantity) * to_money(unit_price))


def calculate_totals(
    lines: Iterable[Tuple[int, Decimal]],
    discount=ZERO,
    tax_rate: Decimal = TAX_RATE,
    free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD,
    shipping_fee: Decimal = FLAT_SHIPPING_FEE,
) -> Totals:
    """
    Compute subtotal, tax, shipping and total for (quantity, unit_price) lines.

    An empty cart has no shipping charge. The discount is applied after
    tax and shipping and the total never goes below zero.
    """
    subtotal = ZERO
    for quantity, unit_price in lines:
        if quantity < 0:
            raise ValueError(f"Line quantity cannot be negative: {quantity}")
        subtotal += line_total(quantity, unit_price)
    subtotal = to_money(subtotal)

    discount = to_money(discount)
    if discount < ZERO:
        raise ValueError(f"Discount cannot be negative: {discount}")

    tax = to_money(subtotal * tax_rate)
    if subtotal == ZERO or subtotal >= free_shipping_threshold:
        shipping = ZERO
    else:
        shipping = to_money(shipping_fee)

    total = max(ZERO, subtotal + tax + shipping - discount)

    return Totals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=to_money(total),
    )
