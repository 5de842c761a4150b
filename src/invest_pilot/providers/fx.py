"""Currency exchange rates from ExchangeRate-API's open endpoint.

Codes are pairs written ``BASE/QUOTE``. One request is made per distinct
base currency and the rate is read from ``rates[QUOTE]``.
"""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Sequence
from typing import ClassVar

import httpx

from invest_pilot.core.exceptions import ProviderError
from invest_pilot.providers.base import BatchQuoteProvider
from invest_pilot.quotes.normalize import parse_price

_BASE_URL = "https://open.er-api.com/v6/latest"


def split_pair(code: str) -> tuple[str, str]:
    """``"usd/cny"`` -> ``("USD", "CNY")``."""
    base, sep, quote = code.partition("/")
    if not sep or not base or not quote:
        raise ValueError(f"FX code must look like BASE/QUOTE, got {code!r}")
    return base.strip().upper(), quote.strip().upper()


class ExchangeRateProvider(BatchQuoteProvider):
    """Forex pairs from open.er-api.com."""

    name: ClassVar[str] = "fx"

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 3.0,
        max_batch_size: int = 40,
        base_url: str = _BASE_URL,
    ) -> None:
        super().__init__(client, timeout_seconds, max_batch_size)
        self._base_url = base_url.rstrip("/")

    def _group(self, codes: Sequence[str]) -> list[list[str]]:
        by_base: dict[str, list[str]] = defaultdict(list)
        for code in codes:
            try:
                base, _ = split_pair(code)
            except ValueError:
                continue
            by_base[base].append(code)
        return list(by_base.values())

    async def _request(self, group: list[str]) -> httpx.Response:
        base, _ = split_pair(group[0])
        return await self._client.get(f"{self._base_url}/{base}")

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ProviderError(
                "Rate response is not an object", context={"provider": self.name}
            )
        if data.get("result", "success") != "success":
            raise ProviderError(
                f"Rate lookup failed: {data.get('error-type', 'unknown')}",
                context={"provider": self.name, "base": data.get("base_code")},
            )
        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ProviderError(
                "Rate response has no rates table", context={"provider": self.name}
            )
        prices: dict[str, float] = {}
        for code in group:
            _, quote = split_pair(code)
            value = parse_price(rates.get(quote))
            if value is not None:
                prices[code] = value
        return prices
