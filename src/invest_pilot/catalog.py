"""Static asset catalog and initial-collection construction."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from datetime import datetime

from invest_pilot.core.models import Asset, AssetCategory, CatalogEntry
from invest_pilot.quotes.history import generate_history

logger = logging.getLogger(__name__)

_M = AssetCategory

# id, symbol, name, name_cn, category, unit, base price
_DEFINITIONS: list[tuple[str, str, str, str, AssetCategory, str, float]] = [
    # China
    ("sh_composite", "000001.SS", "SSE Composite", "上证指数", _M.INDEX, "Points", 3260.00),
    ("sz_component", "399001.SZ", "SZSE Component", "深证成指", _M.INDEX, "Points", 10500.00),
    ("hsi", "HSI", "Hang Seng Index", "恒生指数", _M.INDEX, "Points", 20500.00),
    ("sh_gold", "SHFE.AU", "Shanghai Gold", "上海黄金", _M.METAL, "CNY/g", 625.00),
    ("sh_silver", "SHFE.AG", "Shanghai Silver", "上海白银", _M.METAL, "CNY/g", 7.85),
    ("sh_copper", "SHFE.CU", "Shanghai Copper", "上海铜", _M.METAL, "CNY/t", 74000.00),
    ("sh_oil", "INE.SC", "Shanghai Crude", "上海原油", _M.ENERGY, "CNY/bbl", 540.00),
    # Forex
    ("usd_cny", "USDCNY", "USD/CNY", "美元/人民币", _M.CURRENCY, "CNY", 7.12),
    ("eur_usd", "EURUSD", "EUR/USD", "欧元/美元", _M.CURRENCY, "USD", 1.08),
    ("gbp_usd", "GBPUSD", "GBP/USD", "英镑/美元", _M.CURRENCY, "USD", 1.29),
    ("usd_jpy", "USDJPY", "USD/JPY", "美元/日元", _M.CURRENCY, "JPY", 152.00),
    # US
    ("nasdaq", "IXIC", "Nasdaq", "纳斯达克", _M.INDEX, "Points", 18500.00),
    ("dow", "DJI", "Dow Jones", "道琼斯", _M.INDEX, "Points", 42000.00),
    ("sp500", "SPX", "S&P 500", "标普500", _M.INDEX, "Points", 5800.00),
    ("us10y", "US10Y", "US 10Y Treasury", "美国十年期国债", _M.BOND, "%", 4.20),
    ("gold_comex", "GC=F", "COMEX Gold", "COMEX黄金", _M.METAL, "USD/oz", 2750.00),
    ("silver_comex", "SI=F", "COMEX Silver", "COMEX白银", _M.METAL, "USD/oz", 34.00),
    # Crypto
    ("btc", "BTC/USD", "Bitcoin", "比特币", _M.CRYPTO, "USD", 71500.00),
    ("eth", "ETH/USD", "Ethereum", "以太坊", _M.CRYPTO, "USD", 2600.00),
    ("sol", "SOL/USD", "Solana", "Solana", _M.CRYPTO, "USD", 170.00),
    # Stocks
    ("aapl", "AAPL", "Apple", "苹果", _M.STOCK, "USD", 235.00),
    ("nvda", "NVDA", "NVIDIA", "英伟达", _M.STOCK, "USD", 145.00),
    ("tsla", "TSLA", "Tesla", "特斯拉", _M.STOCK, "USD", 250.00),
    ("msft", "MSFT", "Microsoft", "微软", _M.STOCK, "USD", 430.00),
    ("hk_tencent", "0700.HK", "Tencent", "腾讯控股", _M.STOCK, "HKD", 420.00),
]

CATALOG: tuple[CatalogEntry, ...] = tuple(
    CatalogEntry(
        id=id_,
        symbol=symbol,
        name=name,
        name_cn=name_cn,
        category=category,
        unit=unit,
        base_price=base,
    )
    for id_, symbol, name, name_cn, category, unit, base in _DEFINITIONS
)

_BY_ID: dict[str, CatalogEntry] = {entry.id: entry for entry in CATALOG}


def get_catalog() -> tuple[CatalogEntry, ...]:
    """All assets the dashboard can track, in display order."""
    return CATALOG


def get_entry(asset_id: str) -> CatalogEntry | None:
    return _BY_ID.get(asset_id)


def base_price(asset_id: str) -> float | None:
    entry = _BY_ID.get(asset_id)
    return entry.base_price if entry is not None else None


def asset_from_entry(
    entry: CatalogEntry,
    points: int = 24,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> Asset:
    """Fresh asset at its base price with a generated seed history."""
    return Asset(
        id=entry.id,
        symbol=entry.symbol,
        name=entry.name,
        name_cn=entry.name_cn,
        category=entry.category,
        unit=entry.unit,
        price=entry.base_price,
        history=generate_history(entry.base_price, points, now=now, rng=rng),
    )


def initial_assets(
    snapshot: Iterable[Asset] | None = None,
    points: int = 24,
    rng: random.Random | None = None,
) -> list[Asset]:
    """Build the cold-start collection for the whole catalog.

    A snapshot asset with a matching id overrides price, change fields and
    sources; its history is used only when non-empty. Snapshot ids that are no
    longer in the catalog are dropped.
    """
    now = datetime.now()
    cached = {a.id: a for a in snapshot} if snapshot else {}
    assets: list[Asset] = []
    for entry in CATALOG:
        fresh = asset_from_entry(entry, points, now=now, rng=rng)
        prior = cached.get(entry.id)
        if prior is None or not prior.price > 0:
            assets.append(fresh)
            continue
        assets.append(
            fresh.model_copy(
                update={
                    "price": prior.price,
                    "change": prior.change,
                    "change_percent": prior.change_percent,
                    "history": prior.history or fresh.history,
                    "sources": list(prior.sources),
                    "last_checked": prior.last_checked,
                }
            )
        )
    if cached:
        logger.debug(
            "Seeded %d assets, %d from snapshot",
            len(assets),
            sum(1 for a in assets if a.id in cached),
        )
    return assets
