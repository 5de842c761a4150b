"""Tests for invest_pilot.core.models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from invest_pilot.core.models import (
    Asset,
    AssetCategory,
    CatalogEntry,
    Language,
    MarketAnalysis,
    PricePoint,
    Sentiment,
    Source,
    Timeframe,
)

from conftest import make_asset


class TestAsset:
    def test_construction(self, btc_asset):
        assert btc_asset.price == 68500.0
        assert btc_asset.open_price == 68000.0
        assert btc_asset.sources == []

    def test_empty_history_rejected(self):
        with pytest.raises(ValidationError, match="history must not be empty"):
            make_asset(history=[])

    def test_nan_price_rejected(self):
        with pytest.raises(ValidationError, match="finite"):
            make_asset(price=float("nan"))

    def test_frozen(self, btc_asset):
        with pytest.raises(ValidationError):
            btc_asset.price = 1.0  # type: ignore[misc]

    @pytest.mark.parametrize(
        "sources, stale",
        [
            (["Cache"], True),
            (["Offline"], True),
            (["CoinGecko"], False),
            (["AI Search"], False),
            ([], False),
        ],
    )
    def test_is_stale(self, sources, stale):
        assert make_asset(sources=sources).is_stale is stale

    def test_display_name(self):
        asset = Asset(
            id="sh_gold",
            symbol="SHFE.AU",
            name="Shanghai Gold",
            name_cn="上海黄金",
            category=AssetCategory.METAL,
            unit="CNY/g",
            price=625.0,
            history=[PricePoint(time="9:00", value=625.0)],
        )
        assert asset.display_name(Language.ZH) == "上海黄金"
        assert asset.display_name(Language.EN) == "Shanghai Gold"

    def test_json_round_trip_keeps_provenance(self):
        asset = make_asset(sources=["Sina Finance", "NetEase Finance"])
        restored = Asset.model_validate(asset.model_dump(mode="json"))
        assert restored == asset


class TestCatalogEntry:
    def test_base_price_must_be_positive(self):
        with pytest.raises(ValidationError, match="base_price"):
            CatalogEntry(
                id="x",
                symbol="X",
                name="X",
                name_cn="X",
                category=AssetCategory.STOCK,
                unit="USD",
                base_price=0,
            )


class TestEnums:
    def test_timeframe_values(self):
        assert [t.value for t in Timeframe] == ["1H", "1D", "1W", "1M", "1Y"]

    def test_source_labels(self):
        assert Source.CACHE == "Cache"
        assert Source.OFFLINE == "Offline"
        assert Source.AI_SEARCH == "AI Search"

    def test_sentiment_values(self):
        assert {s.value for s in Sentiment} == {"Bullish", "Bearish", "Neutral"}


class TestMarketAnalysis:
    def test_defaults(self):
        analysis = MarketAnalysis(summary="ok", timestamp=datetime.now(UTC))
        assert analysis.sentiment == Sentiment.NEUTRAL
        assert analysis.key_levels == "N/A"
        assert analysis.fallback is False
