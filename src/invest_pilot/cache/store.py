"""Price cache persistence: Protocol definition, JSON and SQLite backends, factory.

Two stores live behind one interface:

- the flat price cache (asset id -> last live price), merged on save;
- the asset snapshot (full serialized collection), overwritten on save.

Public methods never raise. Storage and serialization failures are logged
and the call behaves as if the cache were empty or absent.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable

import aiosqlite
from pydantic import ValidationError

from invest_pilot.core.config import CacheConfig
from invest_pilot.core.exceptions import CacheError
from invest_pilot.core.models import Asset
from invest_pilot.core.models import CacheBackend as CacheBackendEnum

logger = logging.getLogger(__name__)

PRICES_FILE = "prices.json"
SNAPSHOT_FILE = "assets_snapshot.json"


@runtime_checkable
class CacheStore(Protocol):
    """Persistence boundary of the reconciliation cycle."""

    async def load(self) -> dict[str, float]: ...
    async def save(self, prices: Mapping[str, float]) -> None: ...
    async def load_snapshot(self) -> list[Asset] | None: ...
    async def save_snapshot(self, assets: Sequence[Asset]) -> None: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...


def _valid_prices(raw: Mapping[str, Any]) -> dict[str, float]:
    """Keep entries that are finite positive numbers."""
    clean: dict[str, float] = {}
    for key, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value) and value > 0:
            clean[str(key)] = float(value)
    return clean


def _parse_snapshot(data: Any) -> list[Asset]:
    if not isinstance(data, list):
        raise CacheError(
            f"Snapshot must be a list, got {type(data).__name__}",
            context={"operation": "load_snapshot"},
        )
    assets: list[Asset] = []
    for item in data:
        try:
            assets.append(Asset.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid snapshot entry %r: %s",
                item.get("id") if isinstance(item, dict) else item,
                e.error_count(),
            )
    return assets


def _dump_snapshot(assets: Sequence[Asset]) -> str:
    return json.dumps([a.model_dump(mode="json") for a in assets], ensure_ascii=False)


class JsonFileCacheStore:
    """Two JSON files in a cache directory, written atomically."""

    def __init__(self, config: CacheConfig) -> None:
        self._dir = Path(config.cache_dir)

    @property
    def prices_path(self) -> Path:
        return self._dir / PRICES_FILE

    @property
    def snapshot_path(self) -> Path:
        return self._dir / SNAPSHOT_FILE

    async def initialize(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Cache directory %s unavailable: %s", self._dir, e)

    async def close(self) -> None:
        return None

    async def load(self) -> dict[str, float]:
        try:
            data = self._read_json(self.prices_path)
        except CacheError as e:
            logger.warning("Price cache unreadable: %s", e)
            return {}
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning("Price cache is not an object; ignoring")
            return {}
        return _valid_prices(data)

    async def save(self, prices: Mapping[str, float]) -> None:
        """Merge ``prices`` into the cache; keys not in ``prices`` are kept."""
        incoming = _valid_prices(prices)
        if not incoming:
            return
        merged = await self.load()
        merged.update(incoming)
        try:
            self._write_atomic(self.prices_path, json.dumps(merged, sort_keys=True))
        except CacheError as e:
            logger.warning("Price cache write failed: %s", e)

    async def load_snapshot(self) -> list[Asset] | None:
        try:
            data = self._read_json(self.snapshot_path)
            if data is None:
                return None
            return _parse_snapshot(data)
        except CacheError as e:
            logger.warning("Asset snapshot unreadable: %s", e)
            return None

    async def save_snapshot(self, assets: Sequence[Asset]) -> None:
        try:
            self._write_atomic(self.snapshot_path, _dump_snapshot(assets))
        except (CacheError, TypeError, ValueError) as e:
            logger.warning("Asset snapshot write failed: %s", e)

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CacheError(
                str(e), context={"operation": "read", "path": str(path)}
            ) from e

    def _write_atomic(self, path: Path, text: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CacheError(
                str(e), context={"operation": "write", "path": str(path)}
            ) from e


class SqliteCacheStore:
    """SQLite implementation of the cache protocol.

    Uses aiosqlite for async access and a version-tracked migration system.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS price_cache (
                    asset_id TEXT PRIMARY KEY,
                    price REAL NOT NULL,
                    updated_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS asset_snapshot (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    payload TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )""",
            ],
        ),
    }

    def __init__(self, config: CacheConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except (OSError, aiosqlite.Error) as e:
            logger.warning("SQLite cache unavailable at %s: %s", self._path, e)
            await self.close()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _get_schema_version(self) -> int:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self._db.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] or 0 if row else 0

    async def _apply_migrations(self, current: int) -> None:
        assert self._db is not None
        for version in sorted(self._MIGRATIONS):
            if version <= current:
                continue
            description, statements = self._MIGRATIONS[version]
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            logger.debug("Applied cache migration %d: %s", version, description)

    async def load(self) -> dict[str, float]:
        if self._db is None:
            return {}
        try:
            cursor = await self._db.execute("SELECT asset_id, price FROM price_cache")
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.warning("Price cache read failed: %s", e)
            return {}
        return _valid_prices({row[0]: row[1] for row in rows})

    async def save(self, prices: Mapping[str, float]) -> None:
        incoming = _valid_prices(prices)
        if self._db is None or not incoming:
            return
        now = datetime.now(UTC).isoformat()
        try:
            await self._db.executemany(
                """INSERT INTO price_cache (asset_id, price, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(asset_id) DO UPDATE SET
                       price = excluded.price,
                       updated_at = excluded.updated_at""",
                [(k, v, now) for k, v in incoming.items()],
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            logger.warning("Price cache write failed: %s", e)

    async def load_snapshot(self) -> list[Asset] | None:
        if self._db is None:
            return None
        try:
            cursor = await self._db.execute(
                "SELECT payload FROM asset_snapshot WHERE id = 1"
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return _parse_snapshot(json.loads(row[0]))
        except (aiosqlite.Error, ValueError, CacheError) as e:
            logger.warning("Asset snapshot unreadable: %s", e)
            return None

    async def save_snapshot(self, assets: Sequence[Asset]) -> None:
        if self._db is None:
            return
        try:
            await self._db.execute(
                """INSERT INTO asset_snapshot (id, payload, saved_at)
                   VALUES (1, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       payload = excluded.payload,
                       saved_at = excluded.saved_at""",
                (_dump_snapshot(assets), datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except (aiosqlite.Error, TypeError, ValueError) as e:
            logger.warning("Asset snapshot write failed: %s", e)


async def create_cache_store(config: CacheConfig) -> CacheStore:
    """Create and initialize a cache backend based on configuration."""
    if config.backend == CacheBackendEnum.JSON:
        store: CacheStore = JsonFileCacheStore(config)
    elif config.backend == CacheBackendEnum.SQLITE:
        store = SqliteCacheStore(config)
    else:
        raise CacheError(
            f"Unsupported cache backend: {config.backend}",
            context={"operation": "create_cache_store", "backend": str(config.backend)},
        )
    await store.initialize()
    return store
