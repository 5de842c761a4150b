"""Shared pytest fixtures for invest-pilot."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence

import pytest

from invest_pilot.ai.llm import LLMReply
from invest_pilot.core.config import (
    AIConfig,
    CacheConfig,
    DashboardConfig,
    PilotConfig,
)
from invest_pilot.core.models import Asset, AssetCategory, CacheBackend, PricePoint


def make_asset(
    asset_id: str = "btc",
    price: float = 68500.0,
    history: Sequence[float] | None = None,
    category: AssetCategory = AssetCategory.CRYPTO,
    sources: list[str] | None = None,
    unit: str = "USD",
) -> Asset:
    values = list(history) if history is not None else [price - 500, price - 250, price]
    return Asset(
        id=asset_id,
        symbol=asset_id.upper(),
        name=asset_id.upper(),
        name_cn=asset_id,
        category=category,
        unit=unit,
        price=price,
        history=[PricePoint(time=f"{i}:00", value=v) for i, v in enumerate(values)],
        sources=sources or [],
    )


class FakeProvider:
    """Quote feed returning canned values keyed by provider code."""

    def __init__(self, name: str, quotes: Mapping[str, float] | None = None):
        self._name = name
        self.quotes = dict(quotes or {})
        self.calls: list[dict[str, str]] = []

    @property
    def name(self) -> str:
        return self._name

    async def fetch(self, codes: Mapping[str, str]) -> dict[str, float]:
        self.calls.append(dict(codes))
        return {k: self.quotes[c] for k, c in codes.items() if c in self.quotes}


class FailingProvider(FakeProvider):
    """Feed that breaks its contract and raises."""

    async def fetch(self, codes: Mapping[str, str]) -> dict[str, float]:
        self.calls.append(dict(codes))
        raise RuntimeError("feed exploded")


class BlockingProvider(FakeProvider):
    """Feed that holds its fetch open until ``release`` is set."""

    def __init__(self, name: str, quotes: Mapping[str, float] | None = None):
        super().__init__(name, quotes)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, codes: Mapping[str, str]) -> dict[str, float]:
        self.started.set()
        await self.release.wait()
        return await super().fetch(codes)


class MemoryCacheStore:
    """In-memory cache store with the same merge semantics as the real ones."""

    def __init__(self, prices: Mapping[str, float] | None = None):
        self.prices = dict(prices or {})
        self.snapshot: list[Asset] | None = None
        self.save_calls: list[dict[str, float]] = []

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def load(self) -> dict[str, float]:
        return dict(self.prices)

    async def save(self, prices: Mapping[str, float]) -> None:
        self.save_calls.append(dict(prices))
        self.prices.update(prices)

    async def load_snapshot(self) -> list[Asset] | None:
        return list(self.snapshot) if self.snapshot is not None else None

    async def save_snapshot(self, assets: Sequence[Asset]) -> None:
        self.snapshot = list(assets)


class MockLLM:
    """LLM backend returning a fixed reply and recording prompts."""

    def __init__(self, text: str = "{}", citations: tuple[str, ...] = ()):
        self.text = text
        self.citations = citations
        self.prompts: list[str] = []

    @property
    def name(self) -> str:
        return "mock"

    async def query(
        self, prompt: str, max_tokens: int = 1024, web_search: bool = True
    ) -> LLMReply:
        self.prompts.append(prompt)
        return LLMReply(text=self.text, citations=self.citations)


@pytest.fixture
def btc_asset() -> Asset:
    return make_asset("btc", 68500.0, [68000.0, 68250.0, 68500.0])


@pytest.fixture
def memory_cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def pilot_config(tmp_path) -> PilotConfig:
    """Config with file-backed cache under tmp_path, AI and auto-refresh off."""
    return PilotConfig(
        ai=AIConfig(enabled=False),
        cache=CacheConfig(backend=CacheBackend.JSON, cache_dir=str(tmp_path / "cache")),
        dashboard=DashboardConfig(
            visible_assets=["btc", "sh_gold", "usd_cny"], auto_refresh=False
        ),
    )
