"""Единый stdout-sink loguru для сервиса и утилит."""

from __future__ import annotations

import sys

from loguru import logger

_PLAIN_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function}:{line} | {message}"
)


def setup_logging(json: bool = False, level: str = "DEBUG") -> None:
    """Сбрасывает sinks по умолчанию и ставит один stdout.

    В json-режиме loguru сериализует запись целиком (message, extra, exception),
    что удобно для сборщиков логов.
    """

    logger.remove()
    if json:
        logger.add(sys.stdout, level=level.upper(), serialize=True, backtrace=False, enqueue=True)
        return
    logger.add(
        sys.stdout,
        format=_PLAIN_FORMAT,
        level=level.upper(),
        colorize=True,
        backtrace=False,
        enqueue=True,
    )


__all__ = ["setup_logging"]
