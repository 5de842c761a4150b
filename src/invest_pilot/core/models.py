"""Pydantic data models shared by every layer."""

from __future__ import annotations

import math
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Type Aliases ---

AssetId = str
ProviderCode = str

# --- Enumerations ---


class AssetCategory(StrEnum):
    """Instrument classes shown on the dashboard."""

    METAL = "metal"
    CURRENCY = "currency"
    CRYPTO = "crypto"
    ENERGY = "energy"
    INDEX = "index"
    BOND = "bond"
    STOCK = "stock"


class Timeframe(StrEnum):
    """Chart periods supported by period history generation."""

    HOUR = "1H"
    DAY = "1D"
    WEEK = "1W"
    MONTH = "1M"
    YEAR = "1Y"


class LLMProvider(StrEnum):
    """Supported generative-AI backends."""

    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class CacheBackend(StrEnum):
    """Supported persistence backends for the price cache."""

    JSON = "json"
    SQLITE = "sqlite"


class RefreshScope(StrEnum):
    """Which assets a refresh cycle reconciles."""

    ALL = "all"
    VISIBLE = "visible"


class Language(StrEnum):
    """Output language for AI text."""

    ZH = "zh"
    EN = "en"


class Sentiment(StrEnum):
    """Market sentiment of an asset analysis."""

    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"


class Source(StrEnum):
    """Provenance labels attached to reconciled prices."""

    SINA = "Sina Finance"
    TENCENT = "Tencent Finance"
    NETEASE = "NetEase Finance"
    FX = "ExchangeRate-API"
    COINGECKO = "CoinGecko"
    AI_SEARCH = "AI Search"
    CACHE = "Cache"
    OFFLINE = "Offline"


# Labels that mean "no new observation this cycle"
STALE_SOURCES = frozenset({Source.CACHE.value, Source.OFFLINE.value})


# --- Catalog & Asset Models ---


class CatalogEntry(BaseModel):
    """A static catalog definition. The base price is only a last-resort seed."""

    model_config = ConfigDict(frozen=True)

    id: AssetId
    symbol: str
    name: str
    name_cn: str
    category: AssetCategory
    unit: str
    base_price: float

    @field_validator("base_price")
    @classmethod
    def base_price_positive(cls, v: float) -> float:
        if not v > 0:
            raise ValueError(f"base_price must be > 0, got {v}")
        return v


class PricePoint(BaseModel):
    """A single chart point. `time` is a display label, not a timestamp."""

    model_config = ConfigDict(frozen=True)

    time: str
    value: float


class Asset(BaseModel):
    """Market state of one tracked instrument.

    Instances are immutable. A refresh cycle produces a new Asset per id and
    the previous value is discarded.
    """

    model_config = ConfigDict(frozen=True)

    id: AssetId
    symbol: str
    name: str
    name_cn: str
    category: AssetCategory
    unit: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    history: list[PricePoint]
    sources: list[str] = Field(default_factory=list)
    last_checked: str | None = None

    @field_validator("history")
    @classmethod
    def history_not_empty(cls, v: list[PricePoint]) -> list[PricePoint]:
        if not v:
            raise ValueError("history must not be empty")
        return v

    @field_validator("price")
    @classmethod
    def price_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"price must be finite, got {v}")
        return v

    @property
    def open_price(self) -> float:
        """First history point, treated as the session open."""
        return self.history[0].value

    @property
    def is_stale(self) -> bool:
        """True when the current price came from cache or offline fallback."""
        return any(s in STALE_SOURCES for s in self.sources)

    def display_name(self, language: Language = Language.ZH) -> str:
        return self.name_cn if language == Language.ZH else self.name


# --- AI Models ---


class MarketAnalysis(BaseModel):
    """Structured AI commentary on a single asset."""

    model_config = ConfigDict(frozen=True)

    summary: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    key_levels: str = "N/A"
    advice: str = ""
    timestamp: datetime
    fallback: bool = False
