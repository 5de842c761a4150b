"""AI web-search fallback for assets no structured feed could price."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import httpx
from aiolimiter import AsyncLimiter

from invest_pilot.ai.llm import LLMProviderBackend, create_provider, parse_json_object
from invest_pilot.core.config import AIConfig
from invest_pilot.core.exceptions import LLMError
from invest_pilot.core.models import Asset, AssetCategory
from invest_pilot.quotes.normalize import parse_price

logger = logging.getLogger(__name__)

PRICE_PROMPT_TEMPLATE = """Current date/time: {now}.

Task: use web search to find the LIVE, real-time market price of each asset
below. Do not answer from memory and do not use a previous close or a
cached quote. Prefer exchange data, Sina Finance, or Google Finance.

Units (mandatory):
{unit_rules}

Assets:
{asset_lines}

Respond with ONLY a JSON object whose keys are exactly the IDs above and
whose values are plain numbers (no units, no commas, no strings).
Example: {example}"""

_CATEGORY_RULES: dict[AssetCategory, str] = {
    AssetCategory.BOND: "Bonds: output the YIELD in percent (e.g. 4.25), never the bond price.",
    AssetCategory.METAL: (
        "Metals: output the price in the listed unit. For CNY/g, quote per GRAM; "
        "if you find a per-kilogram price, divide it by 1000."
    ),
    AssetCategory.ENERGY: "Energy: output the price per barrel in the listed currency.",
    AssetCategory.CURRENCY: "Currencies: output the exchange rate as quote units per base unit.",
    AssetCategory.INDEX: "Indices: output the index level in points.",
    AssetCategory.CRYPTO: "Crypto: output the spot price in USD.",
    AssetCategory.STOCK: "Stocks: output the last trade price in the listed currency.",
}


@dataclass(frozen=True)
class AssetRef:
    """What the fallback needs to know about an unresolved asset."""

    id: str
    display_name: str
    symbol: str
    category: AssetCategory | None = None
    unit: str = ""

    @classmethod
    def from_asset(cls, asset: Asset) -> AssetRef:
        return cls(
            id=asset.id,
            display_name=asset.name_cn,
            symbol=asset.symbol,
            category=asset.category,
            unit=asset.unit,
        )


def build_price_prompt(refs: Sequence[AssetRef], now: datetime | None = None) -> str:
    """Prompt for one chunk of assets."""
    now = now or datetime.now()
    categories = [r.category for r in refs if r.category is not None]
    rules = [_CATEGORY_RULES[c] for c in dict.fromkeys(categories)]
    if not rules:
        rules = ["Output each price in the unit listed next to the asset."]
    lines = [
        f'ID: "{r.id}", Name: "{r.display_name}" ({r.symbol})'
        + (f", unit: {r.unit}" if r.unit else "")
        for r in refs
    ]
    example = "{" + ", ".join(f'"{r.id}": 123.45' for r in refs[:2]) + "}"
    return PRICE_PROMPT_TEMPLATE.format(
        now=now.strftime("%Y-%m-%d %H:%M"),
        unit_rules="\n".join(f"- {rule}" for rule in rules),
        asset_lines="\n".join(lines),
        example=example,
    )


def parse_price_reply(text: str, wanted: set[str]) -> dict[str, float]:
    """Extract ``{id: price}`` for the requested ids from a model reply."""
    data = parse_json_object(text)
    prices: dict[str, float] = {}
    for key, raw in data.items():
        if key not in wanted:
            continue
        value = parse_price(raw)
        if value is not None:
            prices[key] = value
    return prices


class AIPriceSearch:
    """Chunked, rate-limited price lookup through a grounded LLM.

    Without a usable credential every call returns ``{}`` immediately and
    no request is made.
    """

    def __init__(
        self,
        config: AIConfig,
        provider: LLMProviderBackend | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._provider = provider
        if self._provider is None and config.is_configured:
            try:
                self._provider = create_provider(config, client)
            except LLMError as e:
                logger.warning("AI price search disabled: %s", e)
        self._semaphore = asyncio.Semaphore(config.max_concurrent)
        self._limiter = AsyncLimiter(max_rate=config.requests_per_minute, time_period=60)

    @property
    def available(self) -> bool:
        return self._provider is not None

    async def search(self, refs: Sequence[AssetRef]) -> dict[str, float]:
        """Best-effort prices for ``refs``. Never raises."""
        if not refs or self._provider is None:
            return {}
        size = self._config.chunk_size
        chunks = [list(refs[i : i + size]) for i in range(0, len(refs), size)]
        raw_results = await asyncio.gather(
            *(self._search_chunk(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        results: dict[str, float] = {}
        for chunk, result in zip(chunks, raw_results):
            if isinstance(result, BaseException):
                logger.warning(
                    "AI price search failed for %s: %s",
                    ", ".join(r.id for r in chunk), result,
                )
                continue
            results.update(result)
        logger.info("AI search resolved %d of %d assets", len(results), len(refs))
        return results

    async def _search_chunk(self, chunk: list[AssetRef]) -> dict[str, float]:
        assert self._provider is not None
        prompt = build_price_prompt(chunk)
        async with self._semaphore:
            async with self._limiter:
                reply = await self._provider.query(prompt, max_tokens=512)
        return parse_price_reply(reply.text, {r.id for r in chunk})
