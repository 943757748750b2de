"""Сервис трекинга цен: загрузка котировок, хранение ряда и выдача чтений.

Каждый токен в проходе обрабатывается независимо и в своей транзакции:
падение одного не откатывает соседей, а попадает в счётчик failed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Iterable

from aiocache.base import BaseCache
from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import CacheSettings, TrackingSettings, get_settings
from tracker.errors import NoPriceData, ProviderNotFound, TokenNotFound, TrackerError
from tracker.models import Price, Token
from tracker.models.base import as_utc, utcnow
from tracker.repositories import (
    Page,
    apply_token_metadata,
    ensure_token,
    find_hourly_prices,
    find_latest_price,
    find_price_at_or_before,
    find_price_change,
    list_tokens_by_chain,
    save_price,
)
from tracker.services.provider.moralis_client import MoralisClient, PriceQuote, TokenMetadata
from tracker.utils.cache import cache_key, cached_call, get_cache, safe_set
from tracker.utils.chains import normalize_address, normalize_chain, truncate_address
from tracker.utils.pricing import is_significant, percent_change


@dataclass(slots=True)
class TrackingResult:
    """Итог одного прохода по сети."""

    success: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed + self.skipped


@dataclass(slots=True)
class SignificantChangeEvent:
    token_id: int
    chain: str
    address: str
    old_price: Decimal
    new_price: Decimal
    percent_change: Decimal
    timestamp: datetime


@dataclass(slots=True)
class PriceChange:
    """Изменение цены между первым и последним наблюдением окна."""

    address: str
    chain: str
    old_price: Decimal
    new_price: Decimal
    percent_change: Decimal | None
    start: datetime
    end: datetime


ChangeCallback = Callable[[SignificantChangeEvent], Awaitable[None]]

_SUCCESS = "success"
_SKIPPED = "skipped"
_FAILED = "failed"


class PriceTrackerService:
    """Оркестрация ingestion и публичные чтения по ценам."""

    def __init__(
        self,
        provider: MoralisClient,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        tracking: TrackingSettings | None = None,
        cache_settings: CacheSettings | None = None,
        cache: BaseCache | None = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        if tracking is None or cache_settings is None:
            settings = get_settings()
            tracking = tracking or settings.tracking
            cache_settings = cache_settings or settings.cache
        self._provider = provider
        self._session_maker = session_maker
        self._tracking = tracking
        self._price_ttl = cache_settings.ttl_seconds
        self._metadata_ttl = cache_settings.metadata_ttl_seconds
        self._cache = cache if cache is not None else get_cache()
        self._now = now
        self._subscribers: set[ChangeCallback] = set()
        self._background: set[asyncio.Task[None]] = set()

    def subscribe(self, callback: ChangeCallback) -> None:
        """Подписка на события значимого изменения цены."""

        self._subscribers.add(callback)

    async def track_prices(self, addresses: Iterable[str], chain: str) -> TrackingResult:
        """Один проход ingestion по списку адресов одной сети."""

        chain = normalize_chain(chain)
        self._provider.resolve_chain(chain)
        unique = list(dict.fromkeys(address.strip().lower() for address in addresses if address))
        result = TrackingResult()
        if not unique:
            return result

        quotes = await self._prefetch_quotes(chain, unique)
        outcomes = await asyncio.gather(
            *(self._track_one(address, chain, quotes.get(address)) for address in unique)
        )
        for outcome in outcomes:
            if outcome == _SUCCESS:
                result.success += 1
            elif outcome == _SKIPPED:
                result.skipped += 1
            else:
                result.failed += 1
        logger.info(
            "Проход цен {chain}: успешно {success}, пропущено {skipped}, ошибок {failed}",
            chain=chain,
            success=result.success,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def get_latest_price(self, address: str, chain: str) -> Price:
        """Последнее сохранённое наблюдение; NoPriceData, если его ещё нет."""

        address, chain = normalize_address(address), normalize_chain(chain)
        self._provider.resolve_chain(chain)

        async def load() -> Price:
            async with self._session_maker() as session:
                token = await ensure_token(session, address, chain)
                price = await find_latest_price(session, token.id)
            if price is None:
                raise NoPriceData(
                    "Для токена ещё нет сохранённых цен",
                    address=address,
                    chain=chain,
                )
            return price

        return await cached_call(cache_key("price", chain, address), self._price_ttl, load, self._cache)

    async def get_hourly_prices(
        self,
        address: str,
        chain: str,
        page: int = 1,
        limit: int = 24,
    ) -> Page[Price]:
        address, chain = normalize_address(address), normalize_chain(chain)
        self._provider.resolve_chain(chain)

        async def load() -> Page[Price]:
            end = self._now()
            start = end - timedelta(hours=self._tracking.hourly_window_hours)
            async with self._session_maker() as session:
                token = await ensure_token(session, address, chain)
                return await find_hourly_prices(session, token.id, start, end, page=page, limit=limit)

        key = cache_key("hourly", chain, address, page, limit)
        return await cached_call(key, self._price_ttl, load, self._cache)

    async def create_token(self, address: str, chain: str) -> Token:
        """Явно заводит токен с метаданными провайдера.

        Если провайдер токен не знает, бросает TokenNotFound и строку не создаёт.
        """

        address, chain = normalize_address(address), normalize_chain(chain)
        self._provider.resolve_chain(chain)
        try:
            metadata = await self._fetch_metadata(address, chain)
        except ProviderNotFound as exc:
            raise TokenNotFound(
                "Токен не найден у провайдера",
                address=address,
                chain=chain,
            ) from exc
        async with self._session_maker() as session:
            token = await ensure_token(session, address, chain)
            updated = await apply_token_metadata(
                session,
                token.id,
                symbol=metadata.symbol,
                name=metadata.name,
                decimals=metadata.decimals,
            )
        return updated or token

    async def get_chain_prices(self, chain: str) -> dict[str, Decimal]:
        """Живые цены провайдера по всем известным токенам сети.

        Любой сбой пакетного запроса пробрасывается: пустой словарь означает
        только отсутствие токенов или котировок, а не недоступность провайдера.
        """

        chain = normalize_chain(chain)
        async with self._session_maker() as session:
            tokens = await list_tokens_by_chain(session, chain)
        if not tokens:
            return {}
        quotes = await self._provider.get_multiple_token_prices(
            chain,
            [token.address for token in tokens],
            strict=True,
        )
        return {quote.address: quote.usd_price for quote in quotes}

    async def get_chain_prices_at_time(self, chain: str, moment: datetime) -> dict[str, Decimal]:
        """Цены из хранилища на момент строго раньше moment; токены без истории опускаются."""

        chain = normalize_chain(chain)
        moment = as_utc(moment)
        prices: dict[str, Decimal] = {}
        async with self._session_maker() as session:
            tokens = await list_tokens_by_chain(session, chain)
            for token in tokens:
                price = await find_price_at_or_before(session, token.id, moment)
                if price is not None:
                    prices[token.address] = price.usd_price
        return prices

    async def get_price_change(self, address: str, chain: str, minutes: int) -> PriceChange:
        address, chain = normalize_address(address), normalize_chain(chain)
        self._provider.resolve_chain(chain)
        end = self._now()
        start = end - timedelta(minutes=minutes)
        async with self._session_maker() as session:
            token = await ensure_token(session, address, chain)
            pair = await find_price_change(session, token.id, start, end)
        if pair is None:
            raise NoPriceData(
                "Недостаточно наблюдений для расчёта изменения",
                address=address,
                chain=chain,
                minutes=minutes,
            )
        first, last = pair
        return PriceChange(
            address=address,
            chain=chain,
            old_price=first.usd_price,
            new_price=last.usd_price,
            percent_change=percent_change(first.usd_price, last.usd_price),
            start=first.timestamp,
            end=last.timestamp,
        )

    async def drain(self) -> None:
        """Дожидается фоновых обновлений метаданных (shutdown, тесты)."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _prefetch_quotes(self, chain: str, addresses: list[str]) -> dict[str, PriceQuote]:
        try:
            quotes = await self._provider.get_multiple_token_prices(chain, addresses)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Пакетный запрос цен {chain} не удался, переходим на поштучные: {error}",
                chain=chain,
                error=exc,
            )
            return {}
        return {quote.address: quote for quote in quotes}

    async def _track_one(self, address: str, chain: str, quote: PriceQuote | None) -> str:
        phase = "validate"
        try:
            address = normalize_address(address)
            async with self._session_maker() as session:
                phase = "ensure_token"
                token = await ensure_token(session, address, chain)
                if quote is None:
                    phase = "fetch"
                    quote = await self._provider.get_token_price(chain, address)
                if quote is None:
                    logger.info(
                        "{address} ({chain}): нет ликвидности, наблюдение пропущено",
                        address=truncate_address(address),
                        chain=chain,
                    )
                    return _SKIPPED
                phase = "persist"
                price = await save_price(
                    session,
                    Price(
                        token_id=token.id,
                        usd_price=quote.usd_price,
                        timestamp=as_utc(quote.timestamp),
                        percent_change_1h=quote.percent_change_1h,
                        percent_change_24h=quote.percent_change_24h,
                    ),
                )
                await safe_set(self._cache, cache_key("price", chain, address), price, self._price_ttl)
                phase = "compare"
                lookback = self._now() - timedelta(minutes=self._tracking.lookback_minutes)
                previous = await find_price_at_or_before(session, token.id, lookback)
            if previous is not None:
                await self._check_significant(token, previous, price)
            if self._tracking.refresh_metadata and not token.has_metadata:
                self._schedule_metadata_refresh(token, quote)
            return _SUCCESS
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, TrackerError):
                exc.with_context(address=address, chain=chain, phase=phase)
            logger.opt(exception=exc).error(
                "Ошибка трекинга {address} ({chain}) на этапе {phase}: {error}",
                address=address,
                chain=chain,
                phase=phase,
                error=exc,
            )
            return _FAILED

    async def _check_significant(self, token: Token, previous: Price, current: Price) -> None:
        change = percent_change(previous.usd_price, current.usd_price)
        if not is_significant(change, self._tracking.significant_change_threshold):
            return
        event = SignificantChangeEvent(
            token_id=token.id,
            chain=token.chain,
            address=token.address,
            old_price=previous.usd_price,
            new_price=current.usd_price,
            percent_change=change,
            timestamp=current.timestamp,
        )
        logger.info(
            "Значимое изменение {address} ({chain}): {old} -> {new} ({change:+.2f}%)",
            address=truncate_address(token.address),
            chain=token.chain,
            old=event.old_price,
            new=event.new_price,
            change=float(change),
        )
        if self._subscribers:
            await asyncio.gather(*(self._safe_emit(cb, event) for cb in list(self._subscribers)))

    async def _safe_emit(self, callback: ChangeCallback, event: SignificantChangeEvent) -> None:
        try:
            await callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Подписчик PriceTrackerService упал: {error}", error=exc)

    def _schedule_metadata_refresh(self, token: Token, quote: PriceQuote) -> None:
        task = asyncio.create_task(
            self._refresh_metadata(token, quote),
            name=f"metadata-{token.chain}-{token.address}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_metadata(self, token: Token, quote: PriceQuote) -> None:
        try:
            if quote.symbol and quote.decimals is not None:
                metadata = TokenMetadata(
                    address=token.address,
                    name=quote.name,
                    symbol=quote.symbol,
                    decimals=quote.decimals,
                )
            else:
                metadata = await self._fetch_metadata(token.address, token.chain)
            async with self._session_maker() as session:
                await apply_token_metadata(
                    session,
                    token.id,
                    symbol=metadata.symbol,
                    name=metadata.name,
                    decimals=metadata.decimals,
                )
            logger.debug(
                "Метаданные {address} ({chain}) обновлены: {symbol}",
                address=truncate_address(token.address),
                chain=token.chain,
                symbol=metadata.symbol,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Не удалось обновить метаданные {address} ({chain}): {error}",
                address=token.address,
                chain=token.chain,
                error=exc,
            )

    async def _fetch_metadata(self, address: str, chain: str) -> TokenMetadata:
        return await cached_call(
            cache_key("metadata", chain, address),
            self._metadata_ttl,
            lambda: self._provider.get_token_metadata(chain, address),
            self._cache,
        )


__all__ = [
    "ChangeCallback",
    "PriceChange",
    "PriceTrackerService",
    "SignificantChangeEvent",
    "TrackingResult",
]
