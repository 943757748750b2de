"""Иерархия исключений PriceWatch.

Классы разбиты по природе ошибки, чтобы вызывающий код мог ветвиться
на «данных нет», «временный сбой» и «запрос некорректен» без разбора текста.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp


class TrackerError(RuntimeError):
    """Базовое исключение движка трекинга цен."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def with_context(self, **context: Any) -> "TrackerError":
        """Дописывает контекст операции (токен, сеть, фаза), не меняя класс."""

        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if not self.context:
            return message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{message} [{details}]"


# --- Ожидаемое отсутствие данных -------------------------------------------


class AbsentError(TrackerError):
    """Данных нет, и это нормальный бизнес-исход."""


class NoPriceData(AbsentError):
    """По токену ещё не сохранено ни одного наблюдения."""


class TokenNotFound(AbsentError):
    """Токен не найден ни в БД, ни у провайдера."""


class AlertNotFound(AbsentError):
    """Алерт с таким идентификатором не существует."""


class ProviderNotFound(AbsentError):
    """Провайдер не знает такой токен (нет метаданных)."""


class NoLiquidity(AbsentError):
    """У пары нет ликвидности, провайдер не может посчитать цену."""


# --- Временные сбои внешнего API -------------------------------------------


class TransientError(TrackerError):
    """Сбой, который имеет смысл повторить позже."""


class RateLimitExceeded(TransientError):
    """Лимит запросов в текущем окне исчерпан (аналог HTTP 429)."""

    status = 429


class ProviderHTTPError(TrackerError):
    """Провайдер ответил HTTP-ошибкой."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        retry_after: float | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, status=status, **context)
        self.status = status
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


# --- Ошибки конфигурации и валидации запроса -------------------------------


class InvalidRequest(TrackerError):
    """Запрос некорректен; повторять бессмысленно."""


class UnsupportedChain(InvalidRequest):
    """Сеть отсутствует в таблице кодов провайдера."""


class InvalidAddress(InvalidRequest):
    """Адрес токена не похож на EVM-адрес."""


class InvalidAlert(InvalidRequest):
    """Параметры алерта некорректны."""


class AlertLimitReached(InvalidRequest):
    """У пользователя уже максимум активных алертов."""


class ConfigurationError(TrackerError):
    """Фатальная ошибка конфигурации: запускаться нельзя."""


def is_transient(exc: BaseException) -> bool:
    """True, если ошибку стоит повторить по политике backoff."""

    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, ProviderHTTPError):
        return exc.retryable
    return isinstance(exc, (aiohttp.ClientConnectionError, aiohttp.ServerTimeoutError, asyncio.TimeoutError))


__all__ = [
    "AbsentError",
    "AlertLimitReached",
    "AlertNotFound",
    "ConfigurationError",
    "InvalidAddress",
    "InvalidAlert",
    "InvalidRequest",
    "NoLiquidity",
    "NoPriceData",
    "ProviderHTTPError",
    "ProviderNotFound",
    "RateLimitExceeded",
    "TokenNotFound",
    "TrackerError",
    "TransientError",
    "UnsupportedChain",
    "is_transient",
]
