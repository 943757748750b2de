"""Пользовательские алерты: создание, чтение, деактивация."""

from __future__ import annotations

from decimal import Decimal

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AlertSettings, get_settings
from tracker.errors import AlertLimitReached, AlertNotFound, InvalidAlert
from tracker.models import AlertCondition, SignificantPriceAlert, UserPriceAlert
from tracker.repositories import (
    Page,
    count_active_alerts_by_user,
    create_user_alert,
    deactivate_alert_if_active,
    find_alert,
    find_alerts_by_user,
    find_latest_price,
    find_token,
    get_or_create_significant_alert,
)
from tracker.services.prices.price_tracker import PriceTrackerService
from tracker.utils.chains import normalize_address, normalize_chain
from tracker.utils.pricing import to_decimal


class AlertsService:
    def __init__(
        self,
        tracker: PriceTrackerService,
        session_maker: async_sessionmaker[AsyncSession],
        settings: AlertSettings | None = None,
    ) -> None:
        self._tracker = tracker
        self._session_maker = session_maker
        self._settings = settings or get_settings().alerts

    async def create_user_alert(
        self,
        *,
        token_address: str,
        chain: str,
        target_price: Decimal | str | float,
        condition: str,
        user_email: str,
    ) -> UserPriceAlert:
        """Создаёт алерт после проверки лимита и того, что токен отслеживаем.

        Токен без истории цен заводится явно через create_token; если
        провайдер его не знает, наружу уходит TokenNotFound, а строка токена
        не создаётся.
        """

        address = normalize_address(token_address)
        chain = normalize_chain(chain)
        price = to_decimal(target_price)
        if price is None or price <= 0:
            raise InvalidAlert("Целевая цена должна быть положительным числом", target_price=target_price)
        try:
            condition = AlertCondition(str(condition).strip().lower()).value
        except ValueError:
            raise InvalidAlert(f"Неизвестное условие алерта: {condition}", condition=condition) from None
        email = (user_email or "").strip().lower()
        if "@" not in email:
            raise InvalidAlert("Некорректный email владельца", user_email=user_email)

        async with self._session_maker() as session:
            active = await count_active_alerts_by_user(session, email)
        if active >= self._settings.max_alerts_per_user:
            logger.warning("Лимит алертов достигнут для {email}", email=email)
            raise AlertLimitReached(
                "Достигнуто максимальное число активных алертов",
                user_email=email,
                limit=self._settings.max_alerts_per_user,
            )

        async with self._session_maker() as session:
            token = await find_token(session, address, chain)
            latest = await find_latest_price(session, token.id) if token is not None else None
        if latest is None:
            await self._tracker.create_token(address, chain)
            logger.info("Токен {address} ({chain}) заведён под алерт", address=address, chain=chain)

        async with self._session_maker() as session:
            alert = await create_user_alert(
                session,
                token_address=address,
                chain=chain,
                target_price=price,
                condition=condition,
                user_email=email,
            )
        logger.info(
            "Создан алерт #{id}: {address} ({chain}) {condition} {target} для {email}",
            id=alert.id,
            address=address,
            chain=chain,
            condition=condition,
            target=price,
            email=email,
        )
        return alert

    async def get_user_alerts(self, user_email: str, page: int = 1, limit: int = 20) -> Page[UserPriceAlert]:
        async with self._session_maker() as session:
            return await find_alerts_by_user(session, user_email.strip().lower(), page=page, limit=limit)

    async def get_user_alert(self, alert_id: int) -> UserPriceAlert:
        async with self._session_maker() as session:
            alert = await find_alert(session, alert_id)
        if alert is None:
            raise AlertNotFound("Алерт не найден", alert_id=alert_id)
        return alert

    async def deactivate_user_alert(self, alert_id: int) -> bool:
        """True, если алерт был активен и снят именно этим вызовом."""

        async with self._session_maker() as session:
            if await find_alert(session, alert_id) is None:
                raise AlertNotFound("Алерт не найден", alert_id=alert_id)
            changed = await deactivate_alert_if_active(session, alert_id)
        logger.info("Алерт #{id} деактивирован (изменён: {changed})", id=alert_id, changed=changed)
        return changed

    async def get_significant_price_alert(self, chain: str) -> SignificantPriceAlert:
        """Конфиг значимых изменений сети; при отсутствии создаётся с дефолтами."""

        async with self._session_maker() as session:
            return await get_or_create_significant_alert(
                session,
                normalize_chain(chain),
                threshold_percentage=Decimal(str(self._settings.default_threshold_percent)),
                time_frame=self._settings.default_time_frame_minutes,
                recipient_email=self._settings.default_recipient_email,
            )


__all__ = ["AlertsService"]
