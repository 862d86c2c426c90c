"""Order pricing.

Cart display and checkout both price through :func:`price_lines`, so the
total a customer sees before paying is the total recorded on the order.
All arithmetic is ``Decimal``; floats are converted through ``str`` first.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

CENT = Decimal("0.01")
TAX_RATE = Decimal("0.08")
FREE_SHIPPING_THRESHOLD = Decimal("100.00")
FLAT_SHIPPING = Decimal("15.00")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Coerce to a 2-place Decimal with half-up rounding."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceLine:
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return to_money(Decimal(str(self.unit_price)) * self.quantity)


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "total": str(self.total),
        }


def quote_subtotal(subtotal: Number) -> PriceBreakdown:
    subtotal = to_money(subtotal)
    tax = to_money(subtotal * TAX_RATE)
    shipping = ZERO if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING
    return PriceBreakdown(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        total=subtotal + tax + shipping,
    )


def price_lines(lines: Iterable[PriceLine]) -> PriceBreakdown:
    subtotal = sum((line.line_total for line in lines), ZERO)
    return quote_subtotal(subtotal)
