"""invest_pilot.providers: independent quote feed adapters."""

from __future__ import annotations

import httpx

from invest_pilot.core.config import ProvidersConfig
from invest_pilot.providers.base import BatchQuoteProvider, QuoteProvider
from invest_pilot.providers.coingecko import CoinGeckoProvider
from invest_pilot.providers.fx import ExchangeRateProvider
from invest_pilot.providers.netease import NetEaseQuoteProvider
from invest_pilot.providers.sina import SinaQuoteProvider
from invest_pilot.providers.tencent import TencentQuoteProvider

PROVIDER_CLASSES: dict[str, type[BatchQuoteProvider]] = {
    SinaQuoteProvider.name: SinaQuoteProvider,
    TencentQuoteProvider.name: TencentQuoteProvider,
    NetEaseQuoteProvider.name: NetEaseQuoteProvider,
    ExchangeRateProvider.name: ExchangeRateProvider,
    CoinGeckoProvider.name: CoinGeckoProvider,
}


def create_http_client(config: ProvidersConfig) -> httpx.AsyncClient:
    """Shared client for every feed. The caller owns and closes it."""
    return httpx.AsyncClient(
        headers={"User-Agent": config.user_agent},
        timeout=httpx.Timeout(config.timeout_seconds),
        follow_redirects=True,
    )


def create_providers(
    config: ProvidersConfig,
    client: httpx.AsyncClient,
) -> dict[str, QuoteProvider]:
    """Instantiate every known feed, keyed by provider name."""
    return {
        name: cls(
            client,
            timeout_seconds=config.timeout_seconds,
            max_batch_size=config.max_batch_size,
        )
        for name, cls in PROVIDER_CLASSES.items()
    }


__all__ = [
    "BatchQuoteProvider",
    "CoinGeckoProvider",
    "ExchangeRateProvider",
    "NetEaseQuoteProvider",
    "PROVIDER_CLASSES",
    "QuoteProvider",
    "SinaQuoteProvider",
    "TencentQuoteProvider",
    "create_http_client",
    "create_providers",
]
