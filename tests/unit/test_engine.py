"""Tests for the reconciliation engine."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import pytest

from invest_pilot.ai.price_search import AIPriceSearch
from invest_pilot.core.config import AIConfig
from invest_pilot.core.models import AssetCategory
from invest_pilot.quotes.normalize import GRAMS_PER_TROY_OUNCE
from invest_pilot.reconcile.engine import ReconciliationEngine

from conftest import (
    BlockingProvider,
    FailingProvider,
    FakeProvider,
    MemoryCacheStore,
    MockLLM,
    make_asset,
)


def providers(**quotes: Mapping[str, float]) -> dict[str, FakeProvider]:
    names = ["sina", "tencent", "netease", "fx", "coingecko"]
    return {n: FakeProvider(n, quotes.get(n, {})) for n in names}


def gold(price: float = 620.0):
    return make_asset(
        "sh_gold", price, [price - 2, price - 1, price],
        category=AssetCategory.METAL, unit="CNY/g",
    )


def silver(price: float = 7.5):
    return make_asset(
        "sh_silver", price, [price, price],
        category=AssetCategory.METAL, unit="CNY/g",
    )


def composite(price: float = 3290.0):
    return make_asset("sh_composite", price, [price], category=AssetCategory.INDEX)


class BrokenCache(MemoryCacheStore):
    async def load(self):
        raise RuntimeError("disk on fire")


class TestLivePrices:
    async def test_crypto_end_to_end(self, btc_asset, memory_cache):
        engine = ReconciliationEngine(
            providers(coingecko={"bitcoin": 69000.0}), memory_cache
        )
        [btc] = await engine.refresh([btc_asset])

        assert btc.price == 69000.0
        assert btc.sources == ["CoinGecko"]
        assert [p.value for p in btc.history] == [68500.0, 68750.0, 69000.0]
        assert btc.change == 500.0
        assert btc.change_percent == pytest.approx(0.7299)
        assert btc.last_checked is not None
        assert memory_cache.prices == {"btc": 69000.0}
        assert engine.last_report.live == ["btc"]

    async def test_only_needed_providers_queried(self, btc_asset, memory_cache):
        feeds = providers(coingecko={"bitcoin": 69000.0})
        await ReconciliationEngine(feeds, memory_cache).refresh([btc_asset])
        assert feeds["coingecko"].calls == [{"bitcoin": "bitcoin"}]
        assert feeds["sina"].calls == []

    async def test_domestic_commodity_preferred(self, memory_cache):
        feeds = providers(sina={"nf_AU0": 612.3, "hf_GC": 2745.3})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([gold()])
        assert asset.price == 612.3
        assert asset.sources == ["SHFE"]

    async def test_international_backup_converted(self, memory_cache):
        feeds = providers(sina={"hf_GC": 2745.3}, fx={"USD/CNY": 7.1})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([gold()])
        assert asset.price == pytest.approx(
            round(2745.3 * 7.1 / GRAMS_PER_TROY_OUNCE, 4)
        )
        assert asset.sources == ["COMEX"]

    async def test_backup_uses_catalog_rate_when_no_fx_quote(self, memory_cache):
        feeds = providers(sina={"hf_GC": 2745.3})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([gold()])
        assert asset.price == pytest.approx(
            round(2745.3 * 7.12 / GRAMS_PER_TROY_OUNCE, 4)
        )

    async def test_per_kg_silver_normalized(self, memory_cache):
        feeds = providers(sina={"nf_AG0": 7150.0})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([silver()])
        assert asset.price == pytest.approx(7.15)
        assert asset.sources == ["SHFE"]

    async def test_per_kg_gold_normalized(self, memory_cache):
        feeds = providers(sina={"nf_AU0": 612300.0})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([gold()])
        assert asset.price == pytest.approx(612.3)
        assert asset.sources == ["SHFE"]

    async def test_redundant_pair_averaged(self, memory_cache):
        feeds = providers(sina={"sh000001": 3300.0}, netease={"0000001": 3301.5})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([composite()])
        assert asset.price == pytest.approx(3300.75)
        assert asset.sources == ["Sina Finance", "NetEase Finance"]

    async def test_redundant_pair_disagreement(self, memory_cache):
        feeds = providers(sina={"sh000001": 3300.0}, netease={"0000001": 3450.0})
        [asset] = await ReconciliationEngine(feeds, memory_cache).refresh([composite()])
        assert asset.price == 3300.0
        assert asset.sources == ["Sina Finance"]


class TestFallbacks:
    async def test_cache_used_when_no_feed_answers(self, memory_cache):
        memory_cache.prices = {"btc": 67000.0}
        original = make_asset("btc", 68500.0)
        [asset] = await ReconciliationEngine(providers(), memory_cache).refresh([original])
        assert asset.price == 67000.0
        assert asset.sources == ["Cache"]
        assert asset.history == original.history
        assert asset.is_stale

    async def test_offline_keeps_in_memory_price(self, memory_cache):
        original = make_asset("btc", 68500.0)
        engine = ReconciliationEngine(providers(), memory_cache)
        [asset] = await engine.refresh([original])
        assert asset.price == 68500.0
        assert asset.sources == ["Offline"]
        assert engine.last_report.offline == ["btc"]

    async def test_offline_uses_base_price_for_zero(self, memory_cache):
        [asset] = await ReconciliationEngine(providers(), memory_cache).refresh(
            [make_asset("eth", 0.0, [1.0])]
        )
        assert asset.price == 2600.0
        assert asset.sources == ["Offline"]

    async def test_stale_prices_not_written_to_cache(self, memory_cache):
        memory_cache.prices = {"btc": 67000.0}
        await ReconciliationEngine(providers(), memory_cache).refresh([make_asset()])
        assert memory_cache.save_calls == []
        assert memory_cache.snapshot is not None

    async def test_failing_provider_isolated(self, btc_asset, memory_cache):
        feeds = providers(sina={"sh000001": 3300.0})
        feeds["coingecko"] = FailingProvider("coingecko")
        updated = await ReconciliationEngine(feeds, memory_cache).refresh(
            [btc_asset, composite()]
        )
        assert updated[0].sources == ["Offline"]
        assert updated[1].price == 3300.0
        assert updated[1].sources == ["Sina Finance"]

    async def test_ai_fallback_for_unmapped_asset(self, memory_cache):
        llm = MockLLM('{"us10y": 4.31}')
        search = AIPriceSearch(AIConfig(), provider=llm)
        bond = make_asset("us10y", 4.2, [4.2], category=AssetCategory.BOND, unit="%")
        engine = ReconciliationEngine(providers(), memory_cache, ai_search=search)
        [asset] = await engine.refresh([bond])
        assert asset.price == 4.31
        assert asset.sources == ["AI Search"]
        assert engine.last_report.ai == ["us10y"]
        assert memory_cache.prices == {"us10y": 4.31}

    async def test_ai_answer_gets_kg_heuristic(self, memory_cache):
        search = AIPriceSearch(AIConfig(), provider=MockLLM('{"sh_silver": 7150}'))
        engine = ReconciliationEngine(providers(), memory_cache, ai_search=search)
        [asset] = await engine.refresh([silver()])
        assert asset.price == pytest.approx(7.15)

    async def test_ai_gold_answer_per_kg_scaled(self, memory_cache):
        search = AIPriceSearch(AIConfig(), provider=MockLLM('{"sh_gold": 612300}'))
        engine = ReconciliationEngine(providers(), memory_cache, ai_search=search)
        [asset] = await engine.refresh([gold()])
        assert asset.price == pytest.approx(612.3)
        assert asset.sources == ["AI Search"]

    async def test_ai_not_asked_for_resolved_assets(self, btc_asset, memory_cache):
        llm = MockLLM("{}")
        search = AIPriceSearch(AIConfig(), provider=llm)
        engine = ReconciliationEngine(
            providers(coingecko={"bitcoin": 69000.0}), memory_cache, ai_search=search
        )
        await engine.refresh([btc_asset])
        assert llm.prompts == []


class TestCycleGuarantees:
    async def test_input_not_mutated_and_order_kept(self, btc_asset, memory_cache):
        assets = [composite(), btc_asset, gold()]
        snapshot = [a.model_copy() for a in assets]
        feeds = providers(coingecko={"bitcoin": 69000.0})
        updated = await ReconciliationEngine(feeds, memory_cache).refresh(assets)
        assert assets == snapshot
        assert [a.id for a in updated] == ["sh_composite", "btc", "sh_gold"]
        assert all(len(u.history) == len(a.history) for u, a in zip(updated, assets))

    async def test_scope_leaves_other_assets_untouched(self, btc_asset, memory_cache):
        other = composite()
        engine = ReconciliationEngine(
            providers(coingecko={"bitcoin": 69000.0}, sina={"sh000001": 3300.0}),
            memory_cache,
        )
        updated = await engine.refresh([btc_asset, other], scope={"btc"})
        assert updated[0].price == 69000.0
        assert updated[1] is other
        assert engine.last_report.untouched == ["sh_composite"]
        assert [a.id for a in memory_cache.snapshot] == ["btc", "sh_composite"]

    async def test_back_to_back_refresh_is_stable(self, btc_asset, memory_cache):
        engine = ReconciliationEngine(
            providers(coingecko={"bitcoin": 69000.0}), memory_cache
        )
        [first] = await engine.refresh([btc_asset])
        [second] = await engine.refresh([first])
        assert second.price == first.price == 69000.0
        assert second.sources == first.sources == ["CoinGecko"]
        assert second.history == first.history
        assert second.change == first.change

    async def test_overlapping_refresh_suppressed(self, btc_asset, memory_cache):
        blocking = BlockingProvider("coingecko", {"bitcoin": 69000.0})
        feeds = providers()
        feeds["coingecko"] = blocking
        engine = ReconciliationEngine(feeds, memory_cache)

        first = asyncio.create_task(engine.refresh([btc_asset]))
        await blocking.started.wait()
        assert engine.is_refreshing

        second = await engine.refresh([btc_asset])
        assert second == [btc_asset]
        assert engine.last_report.skipped

        blocking.release.set()
        [btc] = await first
        assert btc.price == 69000.0
        assert not engine.is_refreshing
        assert len(blocking.calls) == 1

    async def test_unexpected_failure_returns_input(self, btc_asset):
        engine = ReconciliationEngine(providers(), BrokenCache())
        result = await engine.refresh([btc_asset])
        assert result == [btc_asset]
        assert engine.last_report.failed
        assert not engine.is_refreshing

    async def test_empty_collection(self, memory_cache):
        assert await ReconciliationEngine(providers(), memory_cache).refresh([]) == []
