"""NetEase Finance quote feed (api.money.126.net).

The body is a callback invocation wrapping a JSON object::

    _ntes_quote_callback({"0000001": {"price": 3268.11, ...}});
"""

from __future__ import annotations

import json
import re
from typing import ClassVar

import httpx

from invest_pilot.core.exceptions import ProviderError
from invest_pilot.providers.base import BatchQuoteProvider
from invest_pilot.quotes.normalize import parse_price

_BASE_URL = "https://api.money.126.net/data/feed"
_CALLBACK = re.compile(r"^\s*\w+\s*\((.*)\)\s*;?\s*$", re.DOTALL)


def parse_netease_body(body: str) -> dict[str, float]:
    match = _CALLBACK.match(body)
    if match is None:
        raise ProviderError(
            "NetEase response is not a callback invocation",
            context={"provider": "netease", "response_body": body[:200]},
        )
    data = json.loads(match.group(1))
    if not isinstance(data, dict):
        raise ProviderError(
            f"Expected JSON object, got {type(data).__name__}",
            context={"provider": "netease"},
        )
    prices: dict[str, float] = {}
    for code, quote in data.items():
        if not isinstance(quote, dict):
            continue
        value = parse_price(quote.get("price"))
        if value is not None:
            prices[code] = value
    return prices


class NetEaseQuoteProvider(BatchQuoteProvider):
    """A-share index quotes from NetEase, used to cross-check Sina."""

    name: ClassVar[str] = "netease"

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
            f"{self._base_url}/{','.join(group)},money.api"
        )

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        wanted = set(group)
        return {c: v for c, v in parse_netease_body(body).items() if c in wanted}
