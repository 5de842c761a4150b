"""Provider-priority table: which feed answers for which asset, and how.

Every asset id belongs to at most one rule class. Resolution order inside a
cycle is commodity -> redundant pair -> direct -> crypto; anything left
unresolved goes to the AI fallback.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from invest_pilot.core.exceptions import ConfigError
from invest_pilot.core.models import Source
from invest_pilot.quotes.normalize import (
    GOLD_KG_THRESHOLD,
    SILVER_KG_THRESHOLD,
    ConversionRule,
    convert,
    kg_to_gram_if_needed,
)

logger = logging.getLogger(__name__)

# Provider name -> provenance label
PROVIDER_LABELS: dict[str, str] = {
    "sina": Source.SINA.value,
    "tencent": Source.TENCENT.value,
    "netease": Source.NETEASE.value,
    "fx": Source.FX.value,
    "coingecko": Source.COINGECKO.value,
}


class QuoteRef(BaseModel):
    """A provider code on a named feed."""

    model_config = ConfigDict(frozen=True)

    provider: str
    code: str

    @field_validator("provider")
    @classmethod
    def provider_known(cls, v: str) -> str:
        if v not in PROVIDER_LABELS:
            raise ValueError(f"unknown provider {v!r}")
        return v

    @property
    def label(self) -> str:
        return PROVIDER_LABELS[self.provider]


class QuoteBook:
    """Fan-in of one cycle's provider results: provider -> code -> value."""

    def __init__(self, results: Mapping[str, Mapping[str, float]] | None = None):
        self._results = {name: dict(values) for name, values in (results or {}).items()}

    def get(self, ref: QuoteRef) -> float | None:
        value = self._results.get(ref.provider, {}).get(ref.code)
        if value is None or not value > 0:
            return None
        return value

    def providers(self) -> list[str]:
        return sorted(self._results)

    def count(self) -> int:
        return sum(len(v) for v in self._results.values())


@dataclass(frozen=True)
class Resolution:
    """An accepted price with its provenance labels."""

    price: float
    sources: tuple[str, ...]


class CommodityRule(BaseModel):
    """Domestic contract first, converted international contract as backup."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    domestic: QuoteRef
    domestic_label: str
    kg_threshold: float | None = None
    international: QuoteRef | None = None
    international_label: str | None = None
    conversion: ConversionRule = ConversionRule.NONE

    def resolve(self, book: QuoteBook, fx_rate: float | None) -> Resolution | None:
        local = book.get(self.domestic)
        if local is not None:
            if self.kg_threshold is not None:
                local = kg_to_gram_if_needed(local, self.kg_threshold)
            return Resolution(local, (self.domestic_label,))

        if self.international is None:
            return None
        foreign = book.get(self.international)
        if foreign is None:
            return None
        converted = convert(foreign, self.conversion, fx_rate=fx_rate)
        if converted is None:
            logger.debug("No FX rate to convert %s backup quote", self.asset_id)
            return None
        label = self.international_label or self.international.label
        return Resolution(converted, (label,))


class RedundantRule(BaseModel):
    """Two feeds for one index, cross-validated.

    Within ``tolerance`` (relative to the primary) the values are averaged.
    Beyond it the primary wins: it is the more authoritative feed and a
    large gap usually means the secondary is stale.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    primary: QuoteRef
    secondary: QuoteRef
    tolerance: float | None = None

    def resolve(self, book: QuoteBook, default_tolerance: float) -> Resolution | None:
        first = book.get(self.primary)
        second = book.get(self.secondary)
        if first is not None and second is not None:
            tolerance = self.tolerance if self.tolerance is not None else default_tolerance
            if abs(first - second) / first <= tolerance:
                return Resolution(
                    (first + second) / 2, (self.primary.label, self.secondary.label)
                )
            logger.info(
                "%s: %s=%.4f and %s=%.4f disagree beyond %.2f%%, keeping primary",
                self.asset_id, self.primary.provider, first,
                self.secondary.provider, second, tolerance * 100,
            )
            return Resolution(first, (self.primary.label,))
        if first is not None:
            return Resolution(first, (self.primary.label,))
        if second is not None:
            return Resolution(second, (self.secondary.label,))
        return None


class DirectRule(BaseModel):
    """A single canonical feed."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    quote: QuoteRef
    kg_threshold: float | None = None

    def resolve(self, book: QuoteBook) -> Resolution | None:
        value = book.get(self.quote)
        if value is None:
            return None
        if self.kg_threshold is not None:
            value = kg_to_gram_if_needed(value, self.kg_threshold)
        return Resolution(value, (self.quote.label,))


class CryptoRule(BaseModel):
    """Batch crypto feed keyed by coin id."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    coin_id: str

    @property
    def quote(self) -> QuoteRef:
        return QuoteRef(provider="coingecko", code=self.coin_id)

    def resolve(self, book: QuoteBook) -> Resolution | None:
        value = book.get(self.quote)
        if value is None:
            return None
        return Resolution(value, (Source.COINGECKO.value,))


class PriorityTable(BaseModel):
    """The full source-priority configuration."""

    model_config = ConfigDict(frozen=True)

    commodities: list[CommodityRule] = Field(default_factory=list)
    redundant: list[RedundantRule] = Field(default_factory=list)
    direct: list[DirectRule] = Field(default_factory=list)
    crypto: list[CryptoRule] = Field(default_factory=list)
    # Local-currency rate used to convert international commodity backups,
    # tried in order; the fx_asset_id asset's own price is the last resort.
    fx_quotes: list[QuoteRef] = Field(default_factory=list)
    fx_asset_id: str = "usd_cny"
    # Per-kg heuristic applied to AI answers, keyed by asset id
    ai_kg_thresholds: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def asset_ids_unique(self) -> PriorityTable:
        seen: set[str] = set()
        for rule in self._all_rules():
            if rule.asset_id in seen:
                raise ValueError(f"asset {rule.asset_id!r} has more than one rule")
            seen.add(rule.asset_id)
        return self

    def _all_rules(
        self,
    ) -> list[CommodityRule | RedundantRule | DirectRule | CryptoRule]:
        return [*self.commodities, *self.redundant, *self.direct, *self.crypto]

    def mapped_ids(self) -> set[str]:
        return {rule.asset_id for rule in self._all_rules()}

    def rule_for(
        self, asset_id: str
    ) -> CommodityRule | RedundantRule | DirectRule | CryptoRule | None:
        for rule in self._all_rules():
            if rule.asset_id == asset_id:
                return rule
        return None

    def requests_for(self, asset_ids: Iterable[str]) -> dict[str, dict[str, str]]:
        """Provider codes to fetch for ``asset_ids``: provider -> {code: code}."""
        wanted = set(asset_ids)
        refs: list[QuoteRef] = []
        needs_fx = False
        for rule in self.commodities:
            if rule.asset_id in wanted:
                refs.append(rule.domestic)
                if rule.international is not None:
                    refs.append(rule.international)
                    needs_fx = needs_fx or rule.conversion != ConversionRule.NONE
        for rule in self.redundant:
            if rule.asset_id in wanted:
                refs.extend((rule.primary, rule.secondary))
        for rule in self.direct:
            if rule.asset_id in wanted:
                refs.append(rule.quote)
        for rule in self.crypto:
            if rule.asset_id in wanted:
                refs.append(rule.quote)
        if needs_fx:
            refs.extend(self.fx_quotes)

        requests: dict[str, dict[str, str]] = {}
        for ref in refs:
            requests.setdefault(ref.provider, {})[ref.code] = ref.code
        return requests

    def fx_rate(self, book: QuoteBook) -> float | None:
        for ref in self.fx_quotes:
            value = book.get(ref)
            if value is not None:
                return value
        return None


def _ref(provider: str, code: str) -> QuoteRef:
    return QuoteRef(provider=provider, code=code)


DEFAULT_PRIORITY_TABLE = PriorityTable(
    commodities=[
        CommodityRule(
            asset_id="sh_gold",
            domestic=_ref("sina", "nf_AU0"),
            domestic_label="SHFE",
            kg_threshold=GOLD_KG_THRESHOLD,
            international=_ref("sina", "hf_GC"),
            international_label="COMEX",
            conversion=ConversionRule.OUNCE_TO_GRAM_FX,
        ),
        CommodityRule(
            asset_id="sh_silver",
            domestic=_ref("sina", "nf_AG0"),
            domestic_label="SHFE",
            kg_threshold=SILVER_KG_THRESHOLD,
            international=_ref("sina", "hf_SI"),
            international_label="COMEX",
            conversion=ConversionRule.OUNCE_TO_GRAM_FX,
        ),
        CommodityRule(
            asset_id="sh_copper",
            domestic=_ref("sina", "nf_CU0"),
            domestic_label="SHFE",
            international=_ref("sina", "hf_HG"),
            international_label="COMEX",
            conversion=ConversionRule.POUND_TO_TON_FX,
        ),
        CommodityRule(
            asset_id="sh_oil",
            domestic=_ref("sina", "nf_SC0"),
            domestic_label="INE",
            international=_ref("sina", "hf_CL"),
            international_label="NYMEX",
            conversion=ConversionRule.FX_ONLY,
        ),
    ],
    redundant=[
        RedundantRule(
            asset_id="sh_composite",
            primary=_ref("sina", "sh000001"),
            secondary=_ref("netease", "0000001"),
        ),
        RedundantRule(
            asset_id="sz_component",
            primary=_ref("sina", "sz399001"),
            secondary=_ref("tencent", "sz399001"),
        ),
        RedundantRule(
            asset_id="hsi",
            primary=_ref("sina", "rt_hkHSI"),
            secondary=_ref("tencent", "hkHSI"),
        ),
    ],
    direct=[
        DirectRule(asset_id="nasdaq", quote=_ref("sina", "gb_ixic")),
        DirectRule(asset_id="dow", quote=_ref("sina", "gb_dji")),
        DirectRule(asset_id="sp500", quote=_ref("sina", "gb_inx")),
        DirectRule(asset_id="gold_comex", quote=_ref("sina", "hf_GC")),
        DirectRule(asset_id="silver_comex", quote=_ref("sina", "hf_SI")),
        DirectRule(asset_id="aapl", quote=_ref("tencent", "usAAPL")),
        DirectRule(asset_id="nvda", quote=_ref("tencent", "usNVDA")),
        DirectRule(asset_id="tsla", quote=_ref("tencent", "usTSLA")),
        DirectRule(asset_id="msft", quote=_ref("tencent", "usMSFT")),
        DirectRule(asset_id="hk_tencent", quote=_ref("tencent", "hk00700")),
        DirectRule(asset_id="usd_cny", quote=_ref("fx", "USD/CNY")),
        DirectRule(asset_id="eur_usd", quote=_ref("fx", "EUR/USD")),
        DirectRule(asset_id="gbp_usd", quote=_ref("fx", "GBP/USD")),
        DirectRule(asset_id="usd_jpy", quote=_ref("fx", "USD/JPY")),
    ],
    crypto=[
        CryptoRule(asset_id="btc", coin_id="bitcoin"),
        CryptoRule(asset_id="eth", coin_id="ethereum"),
        CryptoRule(asset_id="sol", coin_id="solana"),
    ],
    fx_quotes=[_ref("fx", "USD/CNY"), _ref("sina", "fx_susdcny")],
    fx_asset_id="usd_cny",
    ai_kg_thresholds={
        "sh_gold": GOLD_KG_THRESHOLD,
        "sh_silver": SILVER_KG_THRESHOLD,
    },
)


def load_priority_table(path: str | None) -> PriorityTable:
    """Load a YAML priority table, or the built-in default when ``path`` is None."""
    if path is None:
        return DEFAULT_PRIORITY_TABLE
    p = Path(path)
    try:
        with open(p, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return PriorityTable.model_validate(data)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(
            f"Failed to load priority table: {e}",
            context={"field": "reconcile.priority_table_path", "value": str(p)},
        ) from e
