"""Слой устойчивости для внешних вызовов: лимит частоты и повтор с backoff."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from config.settings import RateLimitSettings, RetrySettings
from tracker.errors import ProviderHTTPError, RateLimitExceeded, is_transient

T = TypeVar("T")


class RateLimiter:
    """Счётчик фиксированного окна.

    Состояние принадлежит экземпляру, а не модулю: у каждого клиента своё окно.
    Очереди нет, при исчерпании лимита вызов сразу отклоняется.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._window_start = clock()
        self._count = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "RateLimiter":
        return cls(settings.max_requests, settings.window_seconds)

    @property
    def count(self) -> int:
        return self._count

    async def acquire(self) -> None:
        """Занимает слот в текущем окне или бросает RateLimitExceeded."""

        async with self._lock:
            now = self._clock()
            if now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._count = 0
            if self._count >= self.max_requests:
                raise RateLimitExceeded(
                    "Превышен лимит запросов к провайдеру",
                    max_requests=self.max_requests,
                    window_seconds=self.window_seconds,
                )
            self._count += 1


class RetryPolicy:
    """Экспоненциальный backoff без jitter: min(base * 2^attempt, max).

    Всего выполняется max_retries + 1 попыток, после чего наружу уходит
    исходное исключение без обёртки.
    """

    def __init__(
        self,
        max_retries: int,
        base_delay: float,
        max_delay: float,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        retry_if: Callable[[BaseException], bool] = is_transient,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._retry_if = retry_if

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(settings.max_retries, settings.base_delay, settings.max_delay)

    def compute_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Задержка перед повтором номер attempt (с нуля).

        Для HTTP 429 с Retry-After берём значение провайдера вместо расписания.
        """

        if isinstance(error, ProviderHTTPError) and error.status == 429 and error.retry_after is not None:
            return float(error.retry_after)
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str = "call") -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self._retry_if(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.warning(
                        "{op}: попытки исчерпаны ({total}), последняя ошибка {error_type}: {error}",
                        op=description,
                        total=attempt + 1,
                        error_type=type(exc).__name__,
                        error=exc,
                    )
                    raise
                delay = self.compute_delay(attempt, exc)
                logger.debug(
                    "{op}: попытка {attempt} упала ({error_type}: {error}), повтор через {delay:.2f} c",
                    op=description,
                    attempt=attempt + 1,
                    error_type=type(exc).__name__,
                    error=exc,
                    delay=delay,
                )
                await self._sleep(delay)
                attempt += 1


__all__ = ["RateLimiter", "RetryPolicy"]
