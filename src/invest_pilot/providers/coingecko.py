"""Crypto spot prices from the CoinGecko simple-price endpoint."""

from __future__ import annotations

import json
from typing import ClassVar

import httpx

from invest_pilot.core.exceptions import ProviderError
from invest_pilot.providers.base import BatchQuoteProvider
from invest_pilot.quotes.normalize import parse_price

_BASE_URL = "https://api.coingecko.com/api/v3"
QUOTE_CURRENCY = "usd"


class CoinGeckoProvider(BatchQuoteProvider):
    """Batch lookup by coin id (``bitcoin``, ``ethereum``), priced in USD."""

    name: ClassVar[str] = "coingecko"

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 3.0,
        max_batch_size: int = 40,
        base_url: str = _BASE_URL,
    ) -> None:
        super().__init__(client, timeout_seconds, max_batch_size)
        self._base_url = base_url.rstrip("/")

    async def _request(self, group: list[str]) -> httpx.Response:
        return await self._client.get(
            f"{self._base_url}/simple/price",
            params={"ids": ",".join(group), "vs_currencies": QUOTE_CURRENCY},
        )

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ProviderError(
                "CoinGecko response is not an object",
                context={"provider": self.name},
            )
        prices: dict[str, float] = {}
        for coin in group:
            quote = data.get(coin)
            if not isinstance(quote, dict):
                continue
            value = parse_price(quote.get(QUOTE_CURRENCY))
            if value is not None:
                prices[coin] = value
        return prices
