"""Tests for the JSON and SQLite cache stores."""

import json

import pytest

from invest_pilot.cache.store import (
    CacheStore,
    JsonFileCacheStore,
    SqliteCacheStore,
    create_cache_store,
)
from invest_pilot.core.config import CacheConfig
from invest_pilot.core.models import CacheBackend

from conftest import make_asset


@pytest.fixture
async def json_store(tmp_path):
    store = JsonFileCacheStore(CacheConfig(cache_dir=str(tmp_path / "cache")))
    await store.initialize()
    return store


@pytest.fixture
async def sqlite_store():
    store = SqliteCacheStore(CacheConfig(sqlite_path=":memory:"))
    await store.initialize()
    yield store
    await store.close()


class TestJsonFileCacheStore:
    async def test_empty_cache(self, json_store):
        assert await json_store.load() == {}
        assert await json_store.load_snapshot() is None

    async def test_save_merges(self, json_store):
        await json_store.save({"btc": 69000.0, "eth": 2500.0})
        await json_store.save({"btc": 69500.0})
        assert await json_store.load() == {"btc": 69500.0, "eth": 2500.0}

    async def test_invalid_values_dropped(self, json_store):
        await json_store.save({"btc": 69000.0, "bad": 0.0, "nan": float("nan")})
        assert await json_store.load() == {"btc": 69000.0}

    async def test_corrupt_file_reads_as_empty(self, json_store):
        json_store.prices_path.write_text("{not json", encoding="utf-8")
        assert await json_store.load() == {}

    async def test_non_numeric_entries_ignored(self, json_store):
        json_store.prices_path.write_text(
            json.dumps({"btc": 69000, "eth": "2500", "flag": True}), encoding="utf-8"
        )
        assert await json_store.load() == {"btc": 69000.0}

    async def test_snapshot_round_trip(self, json_store):
        assets = [
            make_asset("btc", 69000.0, sources=["CoinGecko"]),
            make_asset("eth", 2500.0, sources=["Cache"]),
        ]
        await json_store.save_snapshot(assets)
        assert await json_store.load_snapshot() == assets

    async def test_snapshot_overwrites(self, json_store):
        await json_store.save_snapshot([make_asset("btc")])
        await json_store.save_snapshot([make_asset("eth")])
        assert [a.id for a in await json_store.load_snapshot()] == ["eth"]

    async def test_invalid_snapshot_entries_skipped(self, json_store):
        good = make_asset("btc").model_dump(mode="json")
        json_store.snapshot_path.write_text(
            json.dumps([good, {"id": "broken", "history": []}]), encoding="utf-8"
        )
        assert [a.id for a in await json_store.load_snapshot()] == ["btc"]

    async def test_snapshot_not_a_list(self, json_store):
        json_store.snapshot_path.write_text('{"btc": 1}', encoding="utf-8")
        assert await json_store.load_snapshot() is None

    async def test_no_temp_files_left(self, json_store):
        await json_store.save({"btc": 1.0})
        await json_store.save_snapshot([make_asset()])
        names = sorted(p.name for p in json_store.prices_path.parent.iterdir())
        assert names == ["assets_snapshot.json", "prices.json"]


class TestSqliteCacheStore:
    async def test_save_merges(self, sqlite_store):
        await sqlite_store.save({"btc": 69000.0, "eth": 2500.0})
        await sqlite_store.save({"btc": 69500.0})
        assert await sqlite_store.load() == {"btc": 69500.0, "eth": 2500.0}

    async def test_snapshot_round_trip(self, sqlite_store):
        assert await sqlite_store.load_snapshot() is None
        assets = [make_asset("btc"), make_asset("sol", 170.0)]
        await sqlite_store.save_snapshot(assets)
        await sqlite_store.save_snapshot(assets[:1])
        assert await sqlite_store.load_snapshot() == assets[:1]

    async def test_migrations_idempotent(self, tmp_path):
        config = CacheConfig(sqlite_path=str(tmp_path / "db" / "cache.db"))
        first = SqliteCacheStore(config)
        await first.initialize()
        await first.save({"btc": 1.0})
        await first.close()

        second = SqliteCacheStore(config)
        await second.initialize()
        assert await second.load() == {"btc": 1.0}
        await second.close()

    async def test_uninitialized_is_noop(self):
        store = SqliteCacheStore(CacheConfig(sqlite_path=":memory:"))
        await store.save({"btc": 1.0})
        assert await store.load() == {}
        assert await store.load_snapshot() is None


class TestFactory:
    async def test_json_backend(self, tmp_path):
        store = await create_cache_store(CacheConfig(cache_dir=str(tmp_path / "c")))
        assert isinstance(store, JsonFileCacheStore)
        assert isinstance(store, CacheStore)
        assert (tmp_path / "c").is_dir()

    async def test_sqlite_backend(self, tmp_path):
        store = await create_cache_store(
            CacheConfig(
                backend=CacheBackend.SQLITE, sqlite_path=str(tmp_path / "p.db")
            )
        )
        assert isinstance(store, SqliteCacheStore)
        await store.close()
