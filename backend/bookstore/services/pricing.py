from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Iterable, Literal


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def to_minor_units(value: Decimal) -> int:
    """Whole-unit integer amount as payment providers expect it (VND has no minor unit)."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_subtotal(items: Iterable) -> Decimal:
    subtotal = sum(
        (Decimal(str(item.unit_price_at_add)) * int(item.quantity or 0) for item in items),
        start=ZERO,
    )
    return quantize_money(subtotal)


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    discount_total: Decimal
    total: Decimal


def compute_totals(*, subtotal: Decimal, discount: Decimal) -> CartTotals:
    subtotal_q = quantize_money(subtotal) if subtotal > 0 else ZERO
    discount_q = quantize_money(discount) if discount > 0 else ZERO
    if discount_q > subtotal_q:
        discount_q = subtotal_q
    total = subtotal_q - discount_q
    if total < 0:
        total = ZERO
    return CartTotals(subtotal=subtotal_q, discount_total=discount_q, total=quantize_money(total))
