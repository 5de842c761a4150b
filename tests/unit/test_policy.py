"""Tests for the provider-priority table and rule resolution."""

import pytest
from pydantic import ValidationError

from invest_pilot.core.exceptions import ConfigError
from invest_pilot.quotes.normalize import GRAMS_PER_TROY_OUNCE, ConversionRule
from invest_pilot.reconcile.policy import (
    DEFAULT_PRIORITY_TABLE,
    CommodityRule,
    CryptoRule,
    DirectRule,
    PriorityTable,
    QuoteBook,
    QuoteRef,
    RedundantRule,
    load_priority_table,
)


def ref(provider: str, code: str) -> QuoteRef:
    return QuoteRef(provider=provider, code=code)


GOLD = CommodityRule(
    asset_id="sh_gold",
    domestic=ref("sina", "nf_AU0"),
    domestic_label="SHFE",
    international=ref("sina", "hf_GC"),
    international_label="COMEX",
    conversion=ConversionRule.OUNCE_TO_GRAM_FX,
)

COMPOSITE = RedundantRule(
    asset_id="sh_composite",
    primary=ref("sina", "sh000001"),
    secondary=ref("netease", "0000001"),
)


class TestQuoteRef:
    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError, match="unknown provider"):
            ref("bloomberg", "XAU")

    def test_label(self):
        assert ref("netease", "0000001").label == "NetEase Finance"


class TestQuoteBook:
    def test_missing_and_non_positive_are_none(self):
        book = QuoteBook({"sina": {"a": 1.5, "b": 0.0, "c": -2.0}})
        assert book.get(ref("sina", "a")) == 1.5
        assert book.get(ref("sina", "b")) is None
        assert book.get(ref("sina", "c")) is None
        assert book.get(ref("tencent", "a")) is None
        assert book.count() == 3


class TestCommodityRule:
    def test_domestic_wins_even_when_international_present(self):
        book = QuoteBook({"sina": {"nf_AU0": 612.3, "hf_GC": 2745.3}})
        result = GOLD.resolve(book, fx_rate=7.1)
        assert result.price == 612.3
        assert result.sources == ("SHFE",)

    def test_international_converted_when_domestic_missing(self):
        book = QuoteBook({"sina": {"hf_GC": 2745.3}})
        result = GOLD.resolve(book, fx_rate=7.1)
        assert result.price == pytest.approx(2745.3 * 7.1 / GRAMS_PER_TROY_OUNCE)
        assert result.sources == ("COMEX",)

    def test_no_fx_rate_means_unresolved(self):
        book = QuoteBook({"sina": {"hf_GC": 2745.3}})
        assert GOLD.resolve(book, fx_rate=None) is None

    def test_per_kg_silver_scaled(self):
        silver = DEFAULT_PRIORITY_TABLE.rule_for("sh_silver")
        book = QuoteBook({"sina": {"nf_AG0": 7150.0}})
        result = silver.resolve(book, fx_rate=7.1)
        assert result.price == pytest.approx(7.15)

    def test_per_gram_silver_untouched(self):
        silver = DEFAULT_PRIORITY_TABLE.rule_for("sh_silver")
        book = QuoteBook({"sina": {"nf_AG0": 7.6}})
        assert silver.resolve(book, fx_rate=7.1).price == 7.6

    def test_nothing_available(self):
        assert GOLD.resolve(QuoteBook(), fx_rate=7.1) is None


class TestRedundantRule:
    def test_within_tolerance_averages(self):
        book = QuoteBook({"sina": {"sh000001": 3300.0}, "netease": {"0000001": 3301.5}})
        result = COMPOSITE.resolve(book, default_tolerance=0.01)
        assert result.price == pytest.approx(3300.75)
        assert result.sources == ("Sina Finance", "NetEase Finance")

    def test_disagreement_keeps_primary(self):
        book = QuoteBook({"sina": {"sh000001": 3300.0}, "netease": {"0000001": 3450.0}})
        result = COMPOSITE.resolve(book, default_tolerance=0.01)
        assert result.price == 3300.0
        assert result.sources == ("Sina Finance",)

    def test_rule_tolerance_overrides_default(self):
        rule = COMPOSITE.model_copy(update={"tolerance": 0.1})
        book = QuoteBook({"sina": {"sh000001": 3300.0}, "netease": {"0000001": 3450.0}})
        assert rule.resolve(book, default_tolerance=0.01).price == pytest.approx(3375.0)

    def test_single_side_used_alone(self):
        book = QuoteBook({"netease": {"0000001": 3301.5}})
        result = COMPOSITE.resolve(book, default_tolerance=0.01)
        assert result.price == 3301.5
        assert result.sources == ("NetEase Finance",)

    def test_neither_side(self):
        assert COMPOSITE.resolve(QuoteBook(), default_tolerance=0.01) is None


class TestDirectAndCrypto:
    def test_direct(self):
        rule = DirectRule(asset_id="aapl", quote=ref("tencent", "usAAPL"))
        result = rule.resolve(QuoteBook({"tencent": {"usAAPL": 231.4}}))
        assert result.price == 231.4
        assert result.sources == ("Tencent Finance",)

    def test_crypto(self):
        rule = CryptoRule(asset_id="btc", coin_id="bitcoin")
        result = rule.resolve(QuoteBook({"coingecko": {"bitcoin": 69000.0}}))
        assert result.price == 69000.0
        assert result.sources == ("CoinGecko",)


class TestPriorityTable:
    def test_duplicate_asset_rejected(self):
        with pytest.raises(ValidationError, match="more than one rule"):
            PriorityTable(
                direct=[DirectRule(asset_id="btc", quote=ref("sina", "x"))],
                crypto=[CryptoRule(asset_id="btc", coin_id="bitcoin")],
            )

    def test_requests_for_crypto_only(self):
        assert DEFAULT_PRIORITY_TABLE.requests_for(["btc", "eth"]) == {
            "coingecko": {"bitcoin": "bitcoin", "ethereum": "ethereum"}
        }

    def test_requests_for_commodity_adds_fx(self):
        requests = DEFAULT_PRIORITY_TABLE.requests_for(["sh_gold"])
        assert set(requests["sina"]) == {"nf_AU0", "hf_GC", "fx_susdcny"}
        assert set(requests["fx"]) == {"USD/CNY"}

    def test_unmapped_asset_requests_nothing(self):
        assert DEFAULT_PRIORITY_TABLE.requests_for(["us10y"]) == {}

    def test_fx_rate_order(self):
        table = DEFAULT_PRIORITY_TABLE
        assert table.fx_rate(QuoteBook({"sina": {"fx_susdcny": 7.2}})) == 7.2
        both = QuoteBook({"fx": {"USD/CNY": 7.1}, "sina": {"fx_susdcny": 7.2}})
        assert table.fx_rate(both) == 7.1
        assert table.fx_rate(QuoteBook()) is None


class TestLoadPriorityTable:
    def test_none_is_default(self):
        assert load_priority_table(None) is DEFAULT_PRIORITY_TABLE

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "table.yml"
        path.write_text(
            "commodities:\n"
            "  - asset_id: sh_gold\n"
            "    domestic: {provider: sina, code: nf_AU0}\n"
            "    domestic_label: SHFE\n"
            "    international: {provider: sina, code: hf_GC}\n"
            "    conversion: ounce_to_gram_fx\n"
            "crypto:\n"
            "  - {asset_id: btc, coin_id: bitcoin}\n"
        )
        table = load_priority_table(str(path))
        assert table.mapped_ids() == {"sh_gold", "btc"}
        assert table.commodities[0].conversion == ConversionRule.OUNCE_TO_GRAM_FX

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="priority table"):
            load_priority_table(str(tmp_path / "nope.yml"))

    def test_invalid_table(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("direct:\n  - asset_id: x\n    quote: {provider: nowhere, code: y}\n")
        with pytest.raises(ConfigError):
            load_priority_table(str(path))
