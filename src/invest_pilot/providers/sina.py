"""Sina Finance quote feed (hq.sinajs.cn).

The feed answers with script text defining one variable per code::

    var hq_str_nf_AU0="黄金连续,145958,612.30,...";

Fields are comma-separated and the position of the last price depends on
the market, keyed by code prefix.
"""

from __future__ import annotations

import logging
import re
from typing import ClassVar

import httpx

from invest_pilot.providers.base import BatchQuoteProvider
from invest_pilot.quotes.normalize import parse_price

logger = logging.getLogger(__name__)

_BASE_URL = "https://hq.sinajs.cn"
_REFERER = "https://finance.sina.com.cn"

_LINE = re.compile(r'var\s+hq_str_([\w$.]+)\s*=\s*"([^"]*)"')

# Code prefix -> index of the last price field. Longest prefix wins.
FIELD_POSITIONS: dict[str, int] = {
    "nf_": 8,
    "hf_": 0,
    "gb_": 1,
    "rt_hk": 6,
    "fx_s": 1,
    "sh": 3,
    "sz": 3,
}

# Prefix -> field read when the primary position is blank or unparseable
FALLBACK_POSITIONS: dict[str, int] = {
    "nf_": 0,
}


def price_field(code: str) -> int | None:
    """Index of the last-price field for ``code``, or None if unknown."""
    best: str | None = None
    for prefix in FIELD_POSITIONS:
        if code.startswith(prefix) and (best is None or len(prefix) > len(best)):
            best = prefix
    return FIELD_POSITIONS[best] if best is not None else None


def _fallback_field(code: str) -> int | None:
    for prefix, index in FALLBACK_POSITIONS.items():
        if code.startswith(prefix):
            return index
    return None


def _plain_price(raw: str) -> float | None:
    """Strict read for fallback fields, which may hold a contract name."""
    try:
        return parse_price(float(raw.strip()))
    except ValueError:
        return None


def parse_sina_body(body: str) -> dict[str, float]:
    """Extract ``{code: price}`` from a Sina response body."""
    prices: dict[str, float] = {}
    for code, payload in _LINE.findall(body):
        if not payload:
            continue
        index = price_field(code)
        if index is None:
            logger.debug("No field table entry for Sina code %s", code)
            continue
        fields = payload.split(",")
        value = parse_price(fields[index]) if index < len(fields) else None
        if value is None:
            fallback = _fallback_field(code)
            if fallback is not None and fallback < len(fields):
                value = _plain_price(fields[fallback])
        if value is not None:
            prices[code] = value
    return prices


class SinaQuoteProvider(BatchQuoteProvider):
    """Domestic futures, A-share, HK, US and forex quotes from Sina."""

    name: ClassVar[str] = "sina"
    encoding: ClassVar[str] = "gb18030"

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
            f"{self._base_url}/list={','.join(group)}",
            headers={"Referer": _REFERER},
        )

    def _parse(self, body: str, group: list[str]) -> dict[str, float]:
        wanted = set(group)
        return {c: v for c, v in parse_sina_body(body).items() if c in wanted}
