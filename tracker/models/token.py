"""Отслеживаемый токен (уникален по паре адрес + сеть)."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel


class Token(TimeStampedModel, table=True):
    """Метаданные заполняются асинхронно, поэтому до резолва они пустые."""

    __tablename__ = "tokens"
    __table_args__ = (UniqueConstraint("address", "chain", name="uq_tokens_address_chain"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    address: str = Field(max_length=64, index=True)
    chain: str = Field(max_length=32, index=True)
    symbol: Optional[str] = Field(default=None, max_length=64)
    name: Optional[str] = Field(default=None, max_length=128)
    decimals: Optional[int] = Field(default=None)

    @property
    def has_metadata(self) -> bool:
        return self.symbol is not None and self.decimals is not None


__all__ = ["Token"]
