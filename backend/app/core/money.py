"""
Денежные суммы.

Все суммы - Decimal, округлённые half-up до минимальной единицы валюты
(settings.MONEY_UNIT). float сюда попадает только через str(), чтобы не тащить
двоичную погрешность.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from app.core.config import settings
from app.core.errors import ValidationError

MoneyLike = Union[Decimal, int, str, float]

ZERO = Decimal("0")


def money_unit() -> Decimal:
    return Decimal(settings.MONEY_UNIT)


def to_money(value: MoneyLike) -> Decimal:
    """Привести значение к сумме, округлённой до единицы валюты"""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(money_unit(), rounding=ROUND_HALF_UP)


def percent_of(amount: MoneyLike, percent: MoneyLike) -> Decimal:
    """percent% от amount с округлением half-up"""
    return to_money(Decimal(amount) * Decimal(percent) / Decimal(100))


def clamp_zero(amount: Decimal) -> Decimal:
    return amount if amount > ZERO else to_money(ZERO)


def to_minor_units(amount: Decimal, factor: int = 1) -> int:
    """Целое представление суммы для шлюзов (VNPay передаёт сумму * 100)"""
    return int((to_money(amount) * factor).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: Union[int, str], factor: int = 1) -> Decimal:
    """Сумма шлюза (целое в минимальных единицах) -> Decimal; нечисловое - ValidationError"""
    try:
        amount = to_money(Decimal(value) / Decimal(factor))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount
