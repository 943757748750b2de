"""Периодический запуск ingestion по всей вселенной токенов."""

from __future__ import annotations

import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import TrackingSettings, get_settings
from tracker.errors import ConfigurationError
from tracker.repositories import ensure_token
from tracker.utils.chains import normalize_address
from .price_tracker import PriceTrackerService, TrackingResult


def build_token_universe(tracking: TrackingSettings) -> dict[str, list[str]]:
    """Явные tracked-токены плюс wrapped native токен каждой сети."""

    universe: dict[str, list[str]] = {}
    for chain, addresses in tracking.tracked_tokens.items():
        universe.setdefault(chain, []).extend(addresses)
    for chain, address in tracking.native_tokens.items():
        universe.setdefault(chain, []).append(address)
    return {chain: list(dict.fromkeys(addresses)) for chain, addresses in universe.items() if addresses}


class PriceScheduler:
    """Стартовый проход и затем цикл каждые interval_sec."""

    def __init__(
        self,
        tracker: PriceTrackerService,
        session_maker: async_sessionmaker[AsyncSession],
        tracking: TrackingSettings | None = None,
    ) -> None:
        self._tracker = tracker
        self._session_maker = session_maker
        self._tracking = tracking or get_settings().tracking
        self._universe = build_token_universe(self._tracking)
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    @property
    def universe(self) -> dict[str, list[str]]:
        return {chain: list(addresses) for chain, addresses in self._universe.items()}

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        if not self._universe:
            raise ConfigurationError("Не настроено ни одного токена для отслеживания")
        await self.ensure_tokens()
        await self.run_once()
        self._stop.clear()
        self._task = asyncio.create_task(self._run_loop(), name="price-ingestion-loop")
        logger.info(
            "PriceScheduler запущен: {chains} сетей, интервал {interval} c",
            chains=len(self._universe),
            interval=self._tracking.interval_sec,
        )

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def ensure_tokens(self) -> int:
        """Гарантирует строку в tokens для каждого сконфигурированного токена."""

        created = 0
        async with self._session_maker() as session:
            for chain, addresses in self._universe.items():
                for address in addresses:
                    await ensure_token(session, normalize_address(address), chain)
                    created += 1
        logger.debug("Токены вселенной подготовлены: {count}", count=created)
        return created

    async def run_once(self) -> dict[str, TrackingResult | None]:
        """Все сети параллельно; сбой одной сети не мешает остальным."""

        chains = list(self._universe)
        results = await asyncio.gather(
            *(self._tracker.track_prices(self._universe[chain], chain) for chain in chains),
            return_exceptions=True,
        )
        summary: dict[str, TrackingResult | None] = {}
        for chain, result in zip(chains, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(
                    "Проход цен по сети {chain} упал: {error}",
                    chain=chain,
                    error=result,
                )
                summary[chain] = None
            else:
                summary[chain] = result
        return summary

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._tracking.interval_sec)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()


__all__ = ["PriceScheduler", "build_token_universe"]
