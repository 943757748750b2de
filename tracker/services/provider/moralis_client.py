"""Клиент Moralis EVM API: цены и метаданные ERC20.

Каждый запрос проходит через RateLimiter и RetryPolicy. «Нет ликвидности»
у провайдера считается нормальным исходом и превращается в None.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import aiohttp
from loguru import logger

from config.settings import ProviderSettings, RateLimitSettings, RetrySettings, get_settings
from tracker.errors import NoLiquidity, ProviderHTTPError, ProviderNotFound, TrackerError
from tracker.models.base import as_utc, utcnow
from tracker.utils.chains import resolve_chain_code, truncate_address
from tracker.utils.pricing import to_decimal
from tracker.utils.resilience import RateLimiter, RetryPolicy

BATCH_SIZE = 25
# WMATIC на Ethereum: живой токен с ликвидностью для проверки соединения.
CONNECTION_PROBE = ("ethereum", "0x7d1afa7b718fb893db30a3abc0cfc608aacfebb0")
_NO_LIQUIDITY_MARKERS = ("liquidity", "no pools found")


@dataclass(slots=True)
class PriceQuote:
    """Котировка провайдера для одного токена."""

    address: str
    usd_price: Decimal
    timestamp: datetime
    percent_change_1h: Decimal | None = None
    percent_change_24h: Decimal | None = None
    symbol: str | None = None
    name: str | None = None
    decimals: int | None = None


@dataclass(slots=True)
class TokenMetadata:
    address: str
    name: str | None
    symbol: str | None
    decimals: int | None


class MoralisClient:
    """Тонкий aiohttp-клиент поверх REST API Moralis."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        rate_limit_settings: RateLimitSettings | None = None,
        retry_settings: RetrySettings | None = None,
    ) -> None:
        if settings is None:
            app_settings = get_settings()
            settings = app_settings.provider
            rate_limit_settings = rate_limit_settings or app_settings.rate_limit
            retry_settings = retry_settings or app_settings.retry
        self._settings = settings
        self._base_url = str(settings.base_url).rstrip("/")
        self._chains = dict(settings.chains)
        self._timeout = aiohttp.ClientTimeout(total=settings.request_timeout)
        self._rate_limiter = rate_limiter or RateLimiter.from_settings(rate_limit_settings or RateLimitSettings())
        self._retry = retry_policy or RetryPolicy.from_settings(retry_settings or RetrySettings())
        self._session: aiohttp.ClientSession | None = None

    @property
    def chains(self) -> dict[str, str]:
        return dict(self._chains)

    def resolve_chain(self, chain: str) -> str:
        return resolve_chain_code(self._chains, chain)

    async def start(self) -> aiohttp.ClientSession:
        """Инициализирует HTTP-сессию (повторный вызов возвращает текущую)."""

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "Accept": "application/json",
                    "X-API-Key": self._settings.api_key.get_secret_value(),
                },
            )
            logger.info(
                "MoralisClient готов: {url}, сети {chains}",
                url=self._base_url,
                chains=", ".join(sorted(self._chains)),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "MoralisClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    async def get_token_price(self, chain: str, address: str) -> PriceQuote | None:
        """Текущая цена токена или None, если у пары нет ликвидности."""

        code = self.resolve_chain(chain)
        try:
            data = await self._request(
                "GET",
                f"/erc20/{address}/price",
                params={"chain": code, "include": "percent_change"},
                description=f"getTokenPrice {chain}:{truncate_address(address)}",
            )
        except NoLiquidity:
            logger.debug(
                "Нет ликвидности для {address} ({chain})",
                address=address,
                chain=chain,
            )
            return None
        return parse_price_quote(data, fallback_address=address)

    async def get_multiple_token_prices(
        self,
        chain: str,
        addresses: Iterable[str],
        *,
        strict: bool = False,
    ) -> list[PriceQuote]:
        """Пакетный запрос цен.

        По умолчанию сбой отдельного чанка логируется и пропускается: недостающие
        адреса вызывающий код добирает поштучно. С strict=True ошибка чанка
        пробрасывается наружу, частичный результат не возвращается.
        """

        code = self.resolve_chain(chain)
        unique = list(dict.fromkeys(addresses))
        quotes: list[PriceQuote] = []
        for offset in range(0, len(unique), BATCH_SIZE):
            chunk = unique[offset : offset + BATCH_SIZE]
            try:
                data = await self._request(
                    "POST",
                    "/erc20/prices",
                    params={"chain": code, "include": "percent_change"},
                    json={"tokens": [{"token_address": address} for address in chunk]},
                    description=f"getMultipleTokenPrices {chain} x{len(chunk)}",
                )
            except (TrackerError, aiohttp.ClientError, TimeoutError) as exc:
                logger.warning(
                    "Пакет цен {chain} ({count} токенов) не получен: {error}",
                    chain=chain,
                    count=len(chunk),
                    error=exc,
                )
                if strict:
                    raise
                continue
            for item in data if isinstance(data, list) else []:
                quote = parse_price_quote(item)
                if quote is not None:
                    quotes.append(quote)
        return quotes

    async def get_token_metadata(self, chain: str, address: str) -> TokenMetadata:
        code = self.resolve_chain(chain)
        data = await self._request(
            "GET",
            "/erc20/metadata",
            params=[("chain", code), ("addresses[0]", address)],
            description=f"getTokenMetadata {chain}:{truncate_address(address)}",
        )
        items = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
        for item in items:
            if not isinstance(item, dict):
                continue
            metadata = parse_metadata(item, fallback_address=address)
            if metadata.symbol or metadata.name:
                return metadata
        raise ProviderNotFound(
            f"Метаданные токена не найдены: {address}",
            address=address,
            chain=chain,
        )

    async def check_connection(self) -> bool:
        """Пробный запрос при старте; не бросает, только логирует."""

        chain, address = CONNECTION_PROBE
        if chain not in self._chains:
            return False
        try:
            quote = await self.get_token_price(chain, address)
        except Exception as exc:  # noqa: BLE001
            logger.error("Проверка соединения с Moralis не прошла: {error}", error=exc)
            return False
        logger.info(
            "Соединение с Moralis в порядке (probe цена {price})",
            price=quote.usd_price if quote else "n/a",
        )
        return True

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        description: str,
    ) -> Any:
        async def attempt() -> Any:
            await self._rate_limiter.acquire()
            return await self._send(method, path, params=params, json=json)

        return await self._retry.run(attempt, description=description)

    async def _send(self, method: str, path: str, *, params: Any, json: Any) -> Any:
        session = await self.start()
        async with session.request(method, f"{self._base_url}{path}", params=params, json=json) as resp:
            if resp.status < 400:
                return await resp.json(content_type=None)
            text = await resp.text()
            if resp.status in (400, 404) and _mentions_no_liquidity(text):
                raise NoLiquidity(text[:200], status=resp.status)
            raise ProviderHTTPError(
                f"Moralis {method} {path} завершился с HTTP {resp.status}: {text[:200]}",
                status=resp.status,
                retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
            )


def _mentions_no_liquidity(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _NO_LIQUIDITY_MARKERS)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def parse_timestamp(value: Any) -> datetime:
    """blockTimestamp приходит строкой в миллисекундах либо ISO-датой."""

    if value is None or value == "":
        return utcnow()
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        number = float(value)
        if number > 1e11:
            number /= 1000
        return datetime.fromtimestamp(number, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return utcnow()
    return as_utc(parsed)


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_price_quote(data: Any, fallback_address: str | None = None) -> PriceQuote | None:
    """Разбирает ответ /price или элемент /prices; без usdPrice возвращает None."""

    if not isinstance(data, dict):
        return None
    price = to_decimal(data.get("usdPrice"))
    address = (data.get("tokenAddress") or fallback_address or "").lower()
    if price is None or not address:
        return None
    return PriceQuote(
        address=address,
        usd_price=price,
        timestamp=parse_timestamp(data.get("blockTimestamp")),
        percent_change_1h=to_decimal(data.get("1hrPercentChange")),
        percent_change_24h=to_decimal(data.get("24hrPercentChange")),
        symbol=data.get("tokenSymbol") or None,
        name=data.get("tokenName") or None,
        decimals=_to_int(data.get("tokenDecimals")),
    )


def parse_metadata(data: dict[str, Any], fallback_address: str) -> TokenMetadata:
    return TokenMetadata(
        address=(data.get("address") or fallback_address).lower(),
        name=data.get("name") or None,
        symbol=data.get("symbol") or None,
        decimals=_to_int(data.get("decimals")),
    )


__all__ = [
    "MoralisClient",
    "PriceQuote",
    "TokenMetadata",
    "parse_metadata",
    "parse_price_quote",
    "parse_timestamp",
]
