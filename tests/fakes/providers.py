"""Тестовые двойники провайдера цен и отправителя уведомлений."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from tracker.errors import ProviderNotFound, UnsupportedChain
from tracker.services.provider.moralis_client import PriceQuote, TokenMetadata
from tracker.utils.chains import normalize_chain

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
LINK = "0x514910771af9ca656af840dff83e8264ecf986ca"
WMATIC = "0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270"


class FakeClock:
    """Управляемые часы: время двигает только тест."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class FakeProvider:
    """Провайдер в памяти: цены задаются тестом, вызовы считаются."""

    def __init__(self, clock: FakeClock, chains: Iterable[str] = ("ethereum", "polygon")) -> None:
        self._clock = clock
        self.chains = {chain: f"code-{chain}" for chain in chains}
        self.prices: dict[tuple[str, str], Decimal | None] = {}
        self.metadata: dict[tuple[str, str], TokenMetadata] = {}
        self.failing: set[str] = set()
        self.batch_error: Exception | None = None
        self.batch_calls = 0
        self.single_calls: list[str] = []
        self.metadata_calls: list[str] = []

    def set_price(self, chain: str, address: str, price: str | None) -> None:
        self.prices[(chain, address)] = Decimal(price) if price is not None else None

    def resolve_chain(self, chain: str) -> str:
        code = self.chains.get(normalize_chain(chain))
        if code is None:
            raise UnsupportedChain(f"Неподдерживаемая сеть: {chain}", chain=chain)
        return code

    def _quote(self, address: str, price: Decimal) -> PriceQuote:
        return PriceQuote(address=address, usd_price=price, timestamp=self._clock())

    async def get_multiple_token_prices(
        self,
        chain: str,
        addresses: Iterable[str],
        *,
        strict: bool = False,
    ) -> list[PriceQuote]:
        """Как и MoralisClient: сбой пакета пробрасывается только при strict=True."""

        self.resolve_chain(chain)
        self.batch_calls += 1
        if self.batch_error is not None:
            if strict:
                raise self.batch_error
            return []
        quotes = []
        for address in addresses:
            price = self.prices.get((chain, address))
            if price is not None and address not in self.failing:
                quotes.append(self._quote(address, price))
        return quotes

    async def get_token_price(self, chain: str, address: str) -> PriceQuote | None:
        self.resolve_chain(chain)
        self.single_calls.append(address)
        if address in self.failing:
            raise RuntimeError(f"provider exploded for {address}")
        price = self.prices.get((chain, address))
        if price is None:
            return None
        return self._quote(address, price)

    async def get_token_metadata(self, chain: str, address: str) -> TokenMetadata:
        self.metadata_calls.append(address)
        metadata = self.metadata.get((chain, address))
        if metadata is None:
            raise ProviderNotFound("нет метаданных", address=address, chain=chain)
        return metadata


class RecordingSender:
    """Запоминает отправленные уведомления вместо доставки."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.user_alerts: list[dict] = []
        self.significant: list[dict] = []

    async def send_user_price_alert(self, to, token_address, chain, current_price, target_price, condition) -> None:
        if self.fail:
            raise RuntimeError("smtp relay is down")
        self.user_alerts.append(
            {
                "to": to,
                "token_address": token_address,
                "chain": chain,
                "current_price": current_price,
                "target_price": target_price,
                "condition": condition,
            }
        )

    async def send_significant_price_change_alert(self, to, chain, changes) -> None:
        if self.fail:
            raise RuntimeError("smtp relay is down")
        self.significant.append({"to": to, "chain": chain, "changes": list(changes)})


