"""Tencent Finance quote feed (qt.gtimg.cn).

Body lines look like ``v_sh000001="1~上证指数~000001~3268.11~...";`` and
the last price is field 3 for every market.
"""

from __future__ import annotations

import re
from typing import ClassVar

import httpx

from invest_pilot.providers.base import BatchQuoteProvider
from invest_pilot.quotes.normalize import parse_price

_BASE_URL = "https://qt.gtimg.cn"
_LINE = re.compile(r'v_(\w+)\s*=\s*"([^"]*)"')
PRICE_FIELD = 3


def parse_tencent_body(body: str) -> dict[str, float]:
    prices: dict[str, float] = {}
    for code, payload in _LINE.findall(body):
        fields = payload.split("~")
        if len(fields) <= PRICE_FIELD:
            continue
        value = parse_price(fields[PRICE_FIELD])
        if value is not None:
            prices[code] = value
    return prices


class TencentQuoteProvider(BatchQuoteProvider):
    """A-share, HK and US quotes from Tencent."""

    name: ClassVar[str] = "tencent"
    encoding: ClassVar[str] = "gbk"

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
        return await self._client.get(f"{self._base_url}/q={','.join(group)}")

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        wanted = set(group)
        return {c: v for c, v in parse_tencent_body(body).items() if c in wanted}
