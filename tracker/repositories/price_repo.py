"""Чтение и дозапись временного ряда цен."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, Sequence, TypeVar

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tracker.models import Price

T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    """Страница результатов с общим количеством."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


async def save_price(session: AsyncSession, price: Price) -> Price:
    """Только INSERT: прошлые наблюдения не правятся."""

    price.id = None
    session.add(price)
    await session.commit()
    await session.refresh(price)
    return price


async def find_latest_price(session: AsyncSession, token_id: int) -> Optional[Price]:
    stmt = (
        select(Price)
        .where(Price.token_id == token_id)
        .order_by(Price.timestamp.desc(), Price.id.desc())
        .limit(1)
    )
    result = await session.exec(stmt)
    return result.first()


async def find_price_at_or_before(session: AsyncSession, token_id: int, moment: datetime) -> Optional[Price]:
    """Последнее наблюдение строго раньше moment (timestamp < moment)."""

    stmt = (
        select(Price)
        .where(Price.token_id == token_id, Price.timestamp < moment)
        .order_by(Price.timestamp.desc(), Price.id.desc())
        .limit(1)
    )
    result = await session.exec(stmt)
    return result.first()


async def find_prices_in_range(
    session: AsyncSession,
    token_id: int,
    start: datetime,
    end: datetime,
) -> Sequence[Price]:
    stmt = (
        select(Price)
        .where(Price.token_id == token_id, Price.timestamp >= start, Price.timestamp <= end)
        .order_by(Price.timestamp.asc(), Price.id.asc())
    )
    result = await session.exec(stmt)
    return result.all()


async def find_hourly_prices(
    session: AsyncSession,
    token_id: int,
    start: datetime,
    end: datetime,
    page: int = 1,
    limit: int = 24,
) -> Page[Price]:
    """Последнее наблюдение каждого часа в диапазоне, новые часы первыми."""

    page = max(page, 1)
    limit = max(limit, 1)
    rows = await find_prices_in_range(session, token_id, start, end)
    by_hour: dict[datetime, Price] = {}
    for price in rows:
        bucket = price.timestamp.replace(minute=0, second=0, microsecond=0)
        by_hour[bucket] = price
    hourly = [by_hour[bucket] for bucket in sorted(by_hour, reverse=True)]
    offset = (page - 1) * limit
    return Page(items=hourly[offset : offset + limit], total=len(hourly), page=page, limit=limit)


async def find_price_change(
    session: AsyncSession,
    token_id: int,
    start: datetime,
    end: datetime,
) -> Optional[tuple[Price, Price]]:
    """Первое наблюдение с start и последнее до end."""

    first_stmt = (
        select(Price)
        .where(Price.token_id == token_id, Price.timestamp >= start)
        .order_by(Price.timestamp.asc(), Price.id.asc())
        .limit(1)
    )
    first = (await session.exec(first_stmt)).first()
    last = await find_price_at_or_before(session, token_id, end)
    if first is None or last is None:
        return None
    return first, last


__all__ = [
    "Page",
    "find_hourly_prices",
    "find_latest_price",
    "find_price_at_or_before",
    "find_price_change",
    "find_prices_in_range",
    "save_price",
]
