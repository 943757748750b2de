"""Пользовательские и системные алерты.

Алерты ссылаются на токен по значению (адрес + сеть), а не внешним ключом:
алерт можно завести раньше, чем появится строка в tokens.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import Field

from .base import TimeStampedModel, utcnow


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class UserPriceAlert(TimeStampedModel, table=True):
    __tablename__ = "user_price_alerts"

    id: Optional[int] = Field(default=None, primary_key=True)
    token_address: str = Field(max_length=64, index=True)
    chain: str = Field(max_length=32, index=True)
    target_price: Decimal = Field(max_digits=28, decimal_places=10)
    condition: str = Field(default=AlertCondition.ABOVE.value, max_length=8)
    user_email: str = Field(max_length=254, index=True)
    is_active: bool = Field(default=True, index=True)

    def is_triggered(self, current_price: Decimal) -> bool:
        """Граница включительная: above срабатывает на >=, below на <=."""

        if self.condition == AlertCondition.ABOVE.value:
            return current_price >= self.target_price
        if self.condition == AlertCondition.BELOW.value:
            return current_price <= self.target_price
        return False


class SignificantPriceAlert(TimeStampedModel, table=True):
    """Одна запись на сеть: порог, окно и получатель сводки."""

    __tablename__ = "significant_price_alerts"

    id: Optional[int] = Field(default=None, primary_key=True)
    chain: str = Field(max_length=32, unique=True, index=True)
    threshold_percentage: Decimal = Field(max_digits=7, decimal_places=2)
    time_frame: int = Field(description="Окно сравнения в минутах")
    recipient_email: str = Field(max_length=254)
    is_active: bool = Field(default=True)
    last_checked_at: datetime = Field(default_factory=utcnow, nullable=False)


__all__ = ["AlertCondition", "SignificantPriceAlert", "UserPriceAlert"]
