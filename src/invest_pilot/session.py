"""Dashboard session: owns the asset collection between refresh cycles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from invest_pilot.ai.advisor import Advisor
from invest_pilot.ai.price_search import AIPriceSearch
from invest_pilot.cache.store import CacheStore, create_cache_store
from invest_pilot.catalog import initial_assets
from invest_pilot.core.config import PilotConfig
from invest_pilot.core.models import Asset, RefreshScope
from invest_pilot.providers import create_http_client, create_providers
from invest_pilot.reconcile.engine import CycleReport, ReconciliationEngine
from invest_pilot.reconcile.policy import load_priority_table

logger = logging.getLogger(__name__)

CREDENTIAL_WARNING = (
    "No usable AI API key configured: assets without a live feed will fall "
    "back to cached or offline prices, and analysis/chat are disabled."
)


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of a session refresh."""

    assets: list[Asset]
    skipped: bool
    report: CycleReport | None = None


class DashboardSession:
    """The shell side of the pipeline.

    Holds the in-memory collection, hands it to the engine by value on each
    cycle, and replaces it wholesale with the result. Overlapping refreshes
    are suppressed rather than queued.
    """

    def __init__(
        self,
        config: PilotConfig,
        engine: ReconciliationEngine,
        cache: CacheStore,
        assets: list[Asset],
        advisor: Advisor | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._engine = engine
        self._cache = cache
        self._assets = list(assets)
        self._advisor = advisor or Advisor(config.ai)
        self._client = client
        self._refreshing = False

    @classmethod
    async def start(cls, config: PilotConfig) -> DashboardSession:
        """Wire every component from config and seed from the last snapshot."""
        client = create_http_client(config.providers)
        cache = await create_cache_store(config.cache)
        try:
            table = load_priority_table(config.reconcile.priority_table_path)
            engine = ReconciliationEngine(
                providers=create_providers(config.providers, client),
                cache=cache,
                ai_search=AIPriceSearch(config.ai, client=client),
                table=table,
                tolerance=config.reconcile.tolerance,
            )
            snapshot = await cache.load_snapshot()
        except BaseException:
            await cache.close()
            await client.aclose()
            raise
        assets = initial_assets(snapshot, points=config.dashboard.history_points)
        session = cls(
            config,
            engine,
            cache,
            assets,
            advisor=Advisor(config.ai, client=client),
            client=client,
        )
        if session.credential_warning:
            logger.warning(session.credential_warning)
        return session

    async def close(self) -> None:
        await self._cache.close()
        if self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> DashboardSession:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # --- Collection access ---

    @property
    def config(self) -> PilotConfig:
        return self._config

    @property
    def advisor(self) -> Advisor:
        return self._advisor

    @property
    def assets(self) -> list[Asset]:
        return list(self._assets)

    @property
    def visible_assets(self) -> list[Asset]:
        """Configured visible subset, in configured order."""
        by_id = {a.id: a for a in self._assets}
        return [
            by_id[i] for i in self._config.dashboard.visible_assets if i in by_id
        ]

    def get(self, asset_id: str) -> Asset | None:
        for asset in self._assets:
            if asset.id == asset_id:
                return asset
        return None

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing or self._engine.is_refreshing

    @property
    def credential_warning(self) -> str | None:
        """Message to surface proactively when no AI credential is usable."""
        if not self._config.ai.enabled:
            return None
        return None if self._config.ai.is_configured else CREDENTIAL_WARNING

    # --- Refresh ---

    def _scope(self) -> set[str] | None:
        if self._config.reconcile.scope == RefreshScope.VISIBLE:
            return set(self._config.dashboard.visible_assets)
        return None

    async def refresh(self) -> RefreshOutcome:
        """Run one cycle, unless one is already running."""
        if self.is_refreshing:
            logger.info("Refresh requested while one is running; ignored")
            return RefreshOutcome(assets=self.assets, skipped=True)
        self._refreshing = True
        try:
            updated = await self._engine.refresh(self._assets, scope=self._scope())
        finally:
            self._refreshing = False
        self._assets = updated
        return RefreshOutcome(
            assets=self.assets, skipped=False, report=self._engine.last_report
        )

    async def run_forever(
        self,
        on_update: Callable[[RefreshOutcome], Awaitable[None] | None] | None = None,
        stop: asyncio.Event | None = None,
        max_cycles: int | None = None,
        immediate: bool = True,
    ) -> None:
        """Refresh on every interval tick until stopped.

        The first cycle runs right away unless ``immediate`` is False, in which
        case the loop waits one interval first.
        """
        interval = self._config.dashboard.refresh_interval_seconds
        stop = stop or asyncio.Event()
        cycles = 0
        if not immediate and await _wait_or_stop(stop, interval):
            return
        while not stop.is_set():
            outcome = await self.refresh()
            cycles += 1
            if on_update is not None:
                result = on_update(outcome)
                if asyncio.iscoroutine(result):
                    await result
            if max_cycles is not None and cycles >= max_cycles:
                break
            if await _wait_or_stop(stop, interval):
                break


async def _wait_or_stop(stop: asyncio.Event, interval: float) -> bool:
    """Sleep for ``interval``; True if ``stop`` was set meanwhile."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=interval)
    except asyncio.TimeoutError:
        return False
    return True
