from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: object) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: object) -> Decimal:
    return to_money(value)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    return to_money(Decimal(amount) * Decimal(rate) / HUNDRED)


def apply_discount(amount: Decimal, discount_percentage: Decimal) -> Decimal:
    return to_money(Decimal(amount) * (HUNDRED - Decimal(discount_percentage)) / HUNDRED)


def money_sum(values: Iterable[object]) -> Decimal:
    total = Decimal("0")
    for value in values:
        total += Decimal(str(value)) if value is not None else Decimal("0")
    return to_money(total)


def safe_divide(numerator: Decimal, denominator: object) -> Decimal:
    if not denominator:
        return ZERO
    return to_money(Decimal(numerator) / Decimal(str(denominator)))


def optional_money(value: object) -> Optional[Decimal]:
    if value is None:
        return None
    return to_money(value)
