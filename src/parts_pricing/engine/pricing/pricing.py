from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class AdjustmentType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


@dataclass(frozen=True)
class RoundingRule:
    mode: str = "nearest"
    increment: Decimal = Decimal("0.01")


def round_price(value: Decimal, rounding: RoundingRule) -> Decimal:
    if rounding.increment <= 0:
        return value
    increments = (value / rounding.increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return increments * rounding.increment


def markup_price(cost: Decimal, percentage: Decimal, rounding: RoundingRule) -> Decimal:
    return round_price(cost * (Decimal("1") + percentage / HUNDRED), rounding)


def discounted_price(base: Decimal, discount_percent: Decimal, rounding: RoundingRule) -> Decimal:
    return round_price(base * (Decimal("1") - discount_percent / HUNDRED), rounding)


def apply_adjustment(
    current: Decimal,
    adjustment_type: AdjustmentType,
    value: Decimal,
    rounding: RoundingRule,
) -> Decimal:
    if adjustment_type == AdjustmentType.PERCENTAGE:
        candidate = current * (Decimal("1") + value / HUNDRED)
    else:
        candidate = current + value
    candidate = round_price(candidate, rounding)
    if candidate < ZERO:
        return ZERO
    return candidate
