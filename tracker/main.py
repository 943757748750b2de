"""Entry point for PriceWatch tracker."""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from config.settings import get_settings
from .logging_config import setup_logging


async def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.log_json, level=settings.log_level)

    from .db import init_db
    from .loader import on_shutdown, on_startup

    if settings.database.create_tables:
        await init_db()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Сигнал {sig} не поддерживается этой платформой", sig=sig.name)

    logger.info("Запуск PriceWatch...")
    await on_startup()
    try:
        await stop.wait()
    finally:
        await on_shutdown()
    logger.info("PriceWatch завершён")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
