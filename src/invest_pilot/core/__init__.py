"""invest_pilot.core: foundation types, config, and exceptions."""

from invest_pilot.core.config import (
    AIConfig,
    APIConfig,
    CacheConfig,
    DashboardConfig,
    PilotConfig,
    ProvidersConfig,
    ReconcileConfig,
    load_config,
)
from invest_pilot.core.exceptions import (
    CacheError,
    ConfigError,
    InvestPilotError,
    LLMError,
    ProviderError,
    ReconciliationError,
)
from invest_pilot.core.models import (
    Asset,
    AssetCategory,
    AssetId,
    CacheBackend,
    CatalogEntry,
    Language,
    LLMProvider,
    MarketAnalysis,
    PricePoint,
    ProviderCode,
    RefreshScope,
    Sentiment,
    Source,
    Timeframe,
)

__all__ = [
    # Type aliases
    "AssetId",
    "ProviderCode",
    # Enums
    "AssetCategory",
    "Timeframe",
    "LLMProvider",
    "CacheBackend",
    "RefreshScope",
    "Language",
    "Sentiment",
    "Source",
    # Models
    "CatalogEntry",
    "PricePoint",
    "Asset",
    "MarketAnalysis",
    # Config
    "PilotConfig",
    "ProvidersConfig",
    "AIConfig",
    "CacheConfig",
    "ReconcileConfig",
    "DashboardConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "InvestPilotError",
    "ConfigError",
    "ProviderError",
    "LLMError",
    "CacheError",
    "ReconciliationError",
]
