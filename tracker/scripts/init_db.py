"""Утилита для первичной инициализации базы данных."""

from __future__ import annotations

import asyncio

from tracker.db import dispose_engine, init_db
from tracker.logging_config import setup_logging


async def _run() -> None:
    await init_db()
    await dispose_engine()


def main() -> None:
    setup_logging()
    asyncio.run(_run())


if __name__ == "__main__":
    main()
