"""Два независимых цикла проверки алертов.

Пользовательские алерты проверяются часто и срабатывают не более одного
раза. Значимые изменения по сетям проверяются реже и уходят одной сводкой.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Iterable

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AlertSettings, get_settings
from tracker.errors import NoPriceData
from tracker.models import SignificantPriceAlert, UserPriceAlert
from tracker.models.base import utcnow
from tracker.repositories import (
    deactivate_alert_if_active,
    find_active_alerts,
    find_active_significant_alerts,
    get_or_create_significant_alert,
    update_last_checked_time,
)
from tracker.services.prices.price_tracker import PriceTrackerService
from tracker.utils.pricing import is_significant, percent_change
from .notifier import NotificationSender, SignificantChange

_TRIGGERED = "triggered"
_IDLE = "idle"
_NO_PRICE = "no_price"
_FAILED = "failed"


@dataclass(slots=True)
class UserAlertCheckSummary:
    checked: int = 0
    triggered: int = 0
    no_price: int = 0
    failed: int = 0


@dataclass(slots=True)
class SignificantCheckResult:
    """Результат проверки одной сети."""

    chain: str
    changes: list[SignificantChange] = field(default_factory=list)
    notified: bool = False
    advanced: bool = False
    error: str | None = None


def calculate_significant_changes(
    current_prices: dict[str, Decimal],
    old_prices: dict[str, Decimal],
    threshold: Decimal | float,
) -> list[SignificantChange]:
    """Токены, у которых |изменение| >= threshold; без старой цены не сравниваем."""

    changes: list[SignificantChange] = []
    for address, current in sorted(current_prices.items()):
        old = old_prices.get(address)
        if old is None:
            continue
        change = percent_change(old, current)
        if is_significant(change, threshold):
            changes.append(
                SignificantChange(
                    token_address=address,
                    old_price=old,
                    current_price=current,
                    percent_change=change,
                )
            )
    return changes


class AlertChecker:
    def __init__(
        self,
        tracker: PriceTrackerService,
        sender: NotificationSender,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        chains: Iterable[str] = (),
        settings: AlertSettings | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._tracker = tracker
        self._sender = sender
        self._session_maker = session_maker
        self._chains = list(dict.fromkeys(chains))
        self._settings = settings or get_settings().alerts
        self._now = now
        self._tasks: list[asyncio.Task[None]] = []
        self._stop = asyncio.Event()

    async def start(self) -> None:
        if any(not task.done() for task in self._tasks):
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(
                self._loop("user", self._settings.user_check_interval_sec, self.check_user_price_alerts),
                name="user-alert-loop",
            ),
            asyncio.create_task(
                self._loop(
                    "significant",
                    self._settings.significant_check_interval_sec,
                    self.check_significant_price_changes,
                ),
                name="significant-alert-loop",
            ),
        ]
        logger.info(
            "AlertChecker запущен (user каждые {user} c, significant каждые {significant} c)",
            user=self._settings.user_check_interval_sec,
            significant=self._settings.significant_check_interval_sec,
        )

    async def stop(self) -> None:
        self._stop.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def check_user_price_alerts(self) -> UserAlertCheckSummary:
        async with self._session_maker() as session:
            alerts = await find_active_alerts(session)
        outcomes = await asyncio.gather(*(self._process_user_alert(alert) for alert in alerts))
        summary = UserAlertCheckSummary(checked=len(alerts))
        summary.triggered = outcomes.count(_TRIGGERED)
        summary.no_price = outcomes.count(_NO_PRICE)
        summary.failed = outcomes.count(_FAILED)
        logger.debug(
            "Проверка пользовательских алертов: {checked} активных, сработало {triggered}",
            checked=summary.checked,
            triggered=summary.triggered,
        )
        return summary

    async def check_significant_price_changes(self) -> list[SignificantCheckResult]:
        async with self._session_maker() as session:
            for chain in self._chains:
                await get_or_create_significant_alert(
                    session,
                    chain,
                    threshold_percentage=Decimal(str(self._settings.default_threshold_percent)),
                    time_frame=self._settings.default_time_frame_minutes,
                    recipient_email=self._settings.default_recipient_email,
                )
            configs = await find_active_significant_alerts(session)
        results = [await self._process_significant_alert(config) for config in configs]
        logger.debug(
            "Проверка значимых изменений завершена: {chains} сетей",
            chains=len(results),
        )
        return results

    async def _process_user_alert(self, alert: UserPriceAlert) -> str:
        try:
            try:
                latest = await self._tracker.get_latest_price(alert.token_address, alert.chain)
            except NoPriceData:
                logger.warning(
                    "Нет цены для {address} ({chain}), алерт #{id} ждёт",
                    address=alert.token_address,
                    chain=alert.chain,
                    id=alert.id,
                )
                return _NO_PRICE
            if not alert.is_triggered(latest.usd_price):
                return _IDLE
            async with self._session_maker() as session:
                claimed = await deactivate_alert_if_active(session, alert.id)
            if not claimed:
                return _IDLE
        except Exception as exc:  # noqa: BLE001
            logger.opt(exception=exc).error(
                "Ошибка проверки алерта #{id} ({address}, {chain}): {error}",
                id=alert.id,
                address=alert.token_address,
                chain=alert.chain,
                error=exc,
            )
            return _FAILED

        try:
            await self._sender.send_user_price_alert(
                alert.user_email,
                alert.token_address,
                alert.chain,
                latest.usd_price,
                alert.target_price,
                alert.condition,
            )
        except Exception as exc:  # noqa: BLE001
            logger.opt(exception=exc).error(
                "Алерт #{id} снят, но уведомление {email} не отправлено: {error}",
                id=alert.id,
                email=alert.user_email,
                error=exc,
            )
        else:
            logger.info(
                "Алерт #{id} сработал: {address} ({chain}) {price} {condition} {target}",
                id=alert.id,
                address=alert.token_address,
                chain=alert.chain,
                price=latest.usd_price,
                condition=alert.condition,
                target=alert.target_price,
            )
        return _TRIGGERED

    async def _process_significant_alert(self, config: SignificantPriceAlert) -> SignificantCheckResult:
        result = SignificantCheckResult(chain=config.chain)
        checked_at = self._now()
        try:
            current = await self._tracker.get_chain_prices(config.chain)
            old = await self._tracker.get_chain_prices_at_time(
                config.chain,
                checked_at - timedelta(minutes=config.time_frame),
            )
        except Exception as exc:  # noqa: BLE001
            logger.opt(exception=exc).error(
                "Проверка значимых изменений {chain} не удалась: {error}",
                chain=config.chain,
                error=exc,
            )
            result.error = str(exc)
            return result

        result.changes = calculate_significant_changes(current, old, config.threshold_percentage)
        if result.changes:
            try:
                await self._sender.send_significant_price_change_alert(
                    config.recipient_email,
                    config.chain,
                    result.changes,
                )
                result.notified = True
                logger.info(
                    "Сводка значимых изменений {chain}: {count} токенов -> {to}",
                    chain=config.chain,
                    count=len(result.changes),
                    to=config.recipient_email,
                )
            except Exception as exc:  # noqa: BLE001
                logger.opt(exception=exc).error(
                    "Сводку {chain} не удалось отправить: {error}",
                    chain=config.chain,
                    error=exc,
                )

        if result.changes or self._settings.advance_last_checked_on_empty:
            try:
                async with self._session_maker() as session:
                    await update_last_checked_time(session, config.id, checked_at)
                result.advanced = True
            except Exception as exc:  # noqa: BLE001
                logger.opt(exception=exc).error(
                    "Не удалось сдвинуть last_checked_at для {chain}: {error}",
                    chain=config.chain,
                    error=exc,
                )
        return result

    async def _loop(self, name: str, interval: int, check: Callable[[], Awaitable[object]]) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await check()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Цикл алертов {name} упал на проходе: {error}", name=name, error=exc)


__all__ = [
    "AlertChecker",
    "SignificantCheckResult",
    "UserAlertCheckSummary",
    "calculate_significant_changes",
]
