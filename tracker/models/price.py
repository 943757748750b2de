"""Временной ряд цен: только добавление, без правок прошлого."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, ForeignKey, Index, Integer
from sqlmodel import Field, SQLModel

from .base import utcnow


class Price(SQLModel, table=True):
    """Одно наблюдение цены токена в USD на момент котировки провайдера."""

    __tablename__ = "prices"
    __table_args__ = (Index("ix_prices_token_timestamp", "token_id", "timestamp"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    token_id: int = Field(
        sa_column=Column(Integer, ForeignKey("tokens.id", ondelete="CASCADE"), nullable=False)
    )
    usd_price: Decimal = Field(max_digits=28, decimal_places=10)
    timestamp: datetime = Field(nullable=False, index=True)
    percent_change_1h: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=4)
    percent_change_24h: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=4)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


__all__ = ["Price"]
