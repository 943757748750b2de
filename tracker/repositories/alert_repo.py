"""Работа с пользовательскими и системными алертами."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tracker.models import SignificantPriceAlert, UserPriceAlert
from tracker.models.base import utcnow
from .price_repo import Page


async def create_user_alert(
    session: AsyncSession,
    *,
    token_address: str,
    chain: str,
    target_price: Decimal,
    condition: str,
    user_email: str,
) -> UserPriceAlert:
    alert = UserPriceAlert(
        token_address=token_address,
        chain=chain,
        target_price=target_price,
        condition=condition,
        user_email=user_email,
        is_active=True,
    )
    session.add(alert)
    await session.commit()
    await session.refresh(alert)
    return alert


async def find_alert(session: AsyncSession, alert_id: int) -> Optional[UserPriceAlert]:
    return await session.get(UserPriceAlert, alert_id)


async def find_active_alerts(session: AsyncSession) -> list[UserPriceAlert]:
    stmt = select(UserPriceAlert).where(UserPriceAlert.is_active == True).order_by(UserPriceAlert.id)  # noqa: E712
    result = await session.exec(stmt)
    return list(result.all())


async def find_alerts_by_user(
    session: AsyncSession,
    user_email: str,
    page: int = 1,
    limit: int = 20,
) -> Page[UserPriceAlert]:
    page = max(page, 1)
    limit = max(limit, 1)
    conditions = (UserPriceAlert.user_email == user_email, UserPriceAlert.is_active == True)  # noqa: E712
    total = (await session.exec(select(func.count()).select_from(UserPriceAlert).where(*conditions))).one()
    stmt = (
        select(UserPriceAlert)
        .where(*conditions)
        .order_by(UserPriceAlert.created_at.desc(), UserPriceAlert.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await session.exec(stmt)).all())
    return Page(items=items, total=int(total), page=page, limit=limit)


async def count_active_alerts_by_user(session: AsyncSession, user_email: str) -> int:
    stmt = (
        select(func.count())
        .select_from(UserPriceAlert)
        .where(UserPriceAlert.user_email == user_email, UserPriceAlert.is_active == True)  # noqa: E712
    )
    return int((await session.exec(stmt)).one())


async def deactivate_alert_if_active(session: AsyncSession, alert_id: int) -> bool:
    """Атомарный переход active -> inactive.

    Возвращает True только тому вызывающему, чей UPDATE реально снял флаг.
    """

    stmt = (
        update(UserPriceAlert)
        .where(UserPriceAlert.id == alert_id, UserPriceAlert.is_active == True)  # noqa: E712
        .values(is_active=False, updated_at=utcnow())
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    await session.commit()
    return result.rowcount == 1


async def find_active_significant_alerts(session: AsyncSession) -> list[SignificantPriceAlert]:
    stmt = (
        select(SignificantPriceAlert)
        .where(SignificantPriceAlert.is_active == True)  # noqa: E712
        .order_by(SignificantPriceAlert.chain)
    )
    result = await session.exec(stmt)
    return list(result.all())


async def find_significant_alert_by_chain(session: AsyncSession, chain: str) -> Optional[SignificantPriceAlert]:
    stmt = select(SignificantPriceAlert).where(SignificantPriceAlert.chain == chain)
    result = await session.exec(stmt)
    return result.one_or_none()


async def get_or_create_significant_alert(
    session: AsyncSession,
    chain: str,
    *,
    threshold_percentage: Decimal,
    time_frame: int,
    recipient_email: str,
) -> SignificantPriceAlert:
    alert = await find_significant_alert_by_chain(session, chain)
    if alert is not None:
        return alert
    alert = SignificantPriceAlert(
        chain=chain,
        threshold_percentage=threshold_percentage,
        time_frame=time_frame,
        recipient_email=recipient_email,
        last_checked_at=utcnow(),
    )
    session.add(alert)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await find_significant_alert_by_chain(session, chain)
        if existing is None:
            raise
        return existing
    await session.refresh(alert)
    return alert


async def update_last_checked_time(session: AsyncSession, alert_id: int, checked_at: datetime) -> None:
    """last_checked_at только растёт: более старое значение игнорируется."""

    stmt = (
        update(SignificantPriceAlert)
        .where(
            SignificantPriceAlert.id == alert_id,
            SignificantPriceAlert.last_checked_at < checked_at,
        )
        .values(last_checked_at=checked_at, updated_at=utcnow())
    )
    await session.exec(stmt)  # type: ignore[call-overload]
    await session.commit()


__all__ = [
    "count_active_alerts_by_user",
    "create_user_alert",
    "deactivate_alert_if_active",
    "find_active_alerts",
    "find_active_significant_alerts",
    "find_alert",
    "find_alerts_by_user",
    "find_significant_alert_by_chain",
    "get_or_create_significant_alert",
    "update_last_checked_time",
]
