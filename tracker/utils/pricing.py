"""Арифметика процентных изменений на Decimal."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

_HUNDRED = Decimal(100)


def to_decimal(value: object) -> Decimal | None:
    """Аккуратно превращает число/строку провайдера в Decimal (через str, без float-шума)."""

    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def percent_change(old_price: Decimal, new_price: Decimal) -> Decimal | None:
    """(new - old) / old * 100; при old == 0 сравнение пропускается."""

    if old_price is None or new_price is None or old_price == 0:
        return None
    return (Decimal(new_price) - Decimal(old_price)) / Decimal(old_price) * _HUNDRED


def is_significant(change: Decimal | None, threshold: float | Decimal) -> bool:
    if change is None:
        return False
    return abs(change) >= to_decimal(threshold)


__all__ = ["is_significant", "percent_change", "to_decimal"]
