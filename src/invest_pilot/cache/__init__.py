"""invest_pilot.cache: flat price cache and asset snapshot persistence."""

from invest_pilot.cache.store import (
    CacheStore,
    JsonFileCacheStore,
    SqliteCacheStore,
    create_cache_store,
)

__all__ = [
    "CacheStore",
    "JsonFileCacheStore",
    "SqliteCacheStore",
    "create_cache_store",
]
