"""Loader PriceWatch: запуск и остановка фоновых сервисов."""

from __future__ import annotations

from loguru import logger

from .context import (
    alert_checker,
    moralis_client,
    price_scheduler,
    price_tracker,
    settings,
)
from .db import dispose_engine
from .services.prices.price_tracker import SignificantChangeEvent


async def on_startup() -> None:
    """Проверка провайдера, стартовый проход цен, запуск циклов алертов."""

    logger.info("PriceWatch стартует в окружении {env}", env=settings.environment)
    logger.debug("on_startup: start moralis client")
    await moralis_client.start()
    await moralis_client.check_connection()
    logger.debug("on_startup: subscribe significant change logger")
    price_tracker.subscribe(_log_significant_change)
    logger.debug("on_startup: start price scheduler")
    await price_scheduler.start()
    logger.debug("on_startup: start alert checker")
    await alert_checker.start()
    logger.info("on_startup завершён, трекинг цен запущен")


async def on_shutdown() -> None:
    """Мягкое выключение сервиса."""

    await alert_checker.stop()
    await price_scheduler.stop()
    await price_tracker.drain()
    await moralis_client.close()
    await dispose_engine()
    logger.info("PriceWatch корректно остановлен")


async def _log_significant_change(event: SignificantChangeEvent) -> None:
    """Простейший подписчик событий (логирует, пока нет другого потребителя)."""

    logger.debug(
        "Событие изменения цены: token #{token_id} {chain} {change:+.2f}% ({old} -> {new})",
        token_id=event.token_id,
        chain=event.chain,
        change=float(event.percent_change),
        old=event.old_price,
        new=event.new_price,
    )


__all__ = ["on_shutdown", "on_startup"]
