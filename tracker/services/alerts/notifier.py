"""Отправка уведомлений об алертах.

Транспорт писем живёт снаружи: здесь либо лог, либо POST на webhook-шлюз.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence

import aiohttp
from loguru import logger

from config.settings import NotificationSettings, get_settings


@dataclass(slots=True)
class SignificantChange:
    """Строка сводки значимых изменений по сети."""

    token_address: str
    old_price: Decimal
    current_price: Decimal
    percent_change: Decimal

    def as_dict(self) -> dict[str, str | float]:
        return {
            "token_address": self.token_address,
            "old_price": str(self.old_price),
            "current_price": str(self.current_price),
            "percent_change": round(float(self.percent_change), 4),
        }


class NotificationSender(Protocol):
    async def send_user_price_alert(
        self,
        to: str,
        token_address: str,
        chain: str,
        current_price: Decimal,
        target_price: Decimal,
        condition: str,
    ) -> None: ...

    async def send_significant_price_change_alert(
        self,
        to: str,
        chain: str,
        changes: Sequence[SignificantChange],
    ) -> None: ...


class LogNotificationSender:
    """Пишет уведомления в лог (dev-окружение)."""

    async def send_user_price_alert(
        self,
        to: str,
        token_address: str,
        chain: str,
        current_price: Decimal,
        target_price: Decimal,
        condition: str,
    ) -> None:
        logger.info(
            "[notify {to}] {address} ({chain}) цена {price} {condition} {target}",
            to=to,
            address=token_address,
            chain=chain,
            price=current_price,
            condition=condition,
            target=target_price,
        )

    async def send_significant_price_change_alert(
        self,
        to: str,
        chain: str,
        changes: Sequence[SignificantChange],
    ) -> None:
        lines = ", ".join(
            f"{change.token_address}: {float(change.percent_change):+.2f}%" for change in changes
        )
        logger.info(
            "[notify {to}] значимые изменения в {chain}: {lines}",
            to=to,
            chain=chain,
            lines=lines,
        )


class WebhookNotificationSender:
    """POST JSON-пейлоада на релей (например, почтовый шлюз).

    Ошибки доставки поднимаются наверх: решение, логировать ли их, за вызывающим.
    """

    def __init__(self, url: str, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def send_user_price_alert(
        self,
        to: str,
        token_address: str,
        chain: str,
        current_price: Decimal,
        target_price: Decimal,
        condition: str,
    ) -> None:
        await self._post(
            {
                "type": "user_price_alert",
                "to": to,
                "token_address": token_address,
                "chain": chain,
                "current_price": str(current_price),
                "target_price": str(target_price),
                "condition": condition,
            }
        )

    async def send_significant_price_change_alert(
        self,
        to: str,
        chain: str,
        changes: Sequence[SignificantChange],
    ) -> None:
        await self._post(
            {
                "type": "significant_price_change",
                "to": to,
                "chain": chain,
                "changes": [change.as_dict() for change in changes],
            }
        )

    async def _post(self, payload: dict) -> None:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.post(self._url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise RuntimeError(f"Webhook {self._url} ответил {resp.status}: {body[:200]}")
        logger.debug("Уведомление {kind} доставлено на webhook", kind=payload["type"])


def build_notification_sender(settings: NotificationSettings | None = None) -> NotificationSender:
    settings = settings or get_settings().notifications
    if settings.backend == "webhook":
        if settings.webhook_url is None:
            raise ValueError("NOTIFICATIONS__BACKEND=webhook, но webhook_url не указан")
        return WebhookNotificationSender(str(settings.webhook_url), timeout=settings.timeout)
    return LogNotificationSender()


__all__ = [
    "LogNotificationSender",
    "NotificationSender",
    "SignificantChange",
    "WebhookNotificationSender",
    "build_notification_sender",
]
