"""Reconciliation engine: one refresh cycle over the asset collection.

Cycle order:
1. Every provider is queried concurrently for the codes the priority table
   needs, and all results are collected before anything is resolved.
2. Each asset is resolved by its rule class (commodity, redundant pair,
   direct, crypto).
3. Leftovers go to the AI search fallback.
4. Still-unresolved assets take the cached price ("Cache"), else their
   in-memory or catalog base price ("Offline").
5. History drifts only for live prices, derived fields are recomputed, and
   the price cache and snapshot are written after everything is final.

``refresh`` never raises and never mutates its input.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from invest_pilot.ai.price_search import AIPriceSearch, AssetRef
from invest_pilot.cache.store import CacheStore
from invest_pilot.catalog import base_price
from invest_pilot.core.exceptions import ReconciliationError
from invest_pilot.core.models import Asset, Source
from invest_pilot.providers.base import QuoteProvider
from invest_pilot.quotes.history import PRECISION, apply_drift, derive_change
from invest_pilot.quotes.normalize import kg_to_gram_if_needed
from invest_pilot.reconcile.policy import (
    DEFAULT_PRIORITY_TABLE,
    CommodityRule,
    CryptoRule,
    DirectRule,
    PriorityTable,
    QuoteBook,
    RedundantRule,
    Resolution,
)

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What happened during one refresh cycle."""

    started_at: datetime
    skipped: bool = False
    failed: bool = False
    live: list[str] = field(default_factory=list)
    ai: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    offline: list[str] = field(default_factory=list)
    untouched: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class ReconciliationEngine:
    """Turns provider quotes into one priced, labelled asset per id.

    Parameters
    ----------
    providers : Mapping[str, QuoteProvider]
        Feeds keyed by the provider names used in the priority table.
    cache : CacheStore
        Flat price cache and snapshot store.
    ai_search : AIPriceSearch | None
        Fallback for assets no feed resolved. ``None`` disables it.
    table : PriorityTable
        Source-priority configuration.
    tolerance : float
        Default relative tolerance for redundant-pair cross-validation.
    """

    def __init__(
        self,
        providers: Mapping[str, QuoteProvider],
        cache: CacheStore,
        ai_search: AIPriceSearch | None = None,
        table: PriorityTable = DEFAULT_PRIORITY_TABLE,
        tolerance: float = 0.01,
    ) -> None:
        self._providers = dict(providers)
        self._cache = cache
        self._ai_search = ai_search
        self._table = table
        self._tolerance = tolerance
        self._in_flight = False
        self.last_report: CycleReport | None = None

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight

    @property
    def table(self) -> PriorityTable:
        return self._table

    async def refresh(
        self,
        assets: Sequence[Asset],
        scope: Collection[str] | None = None,
    ) -> list[Asset]:
        """Reconcile ``assets`` and return a new list in the same order.

        When ``scope`` is given, only those ids are reconciled and the rest
        pass through unchanged. An overlapping call is suppressed and
        returns its input.
        """
        current = list(assets)
        if self._in_flight:
            logger.info("Refresh already in flight; suppressing overlapping call")
            self.last_report = CycleReport(started_at=datetime.now(UTC), skipped=True)
            return current

        self._in_flight = True
        report = CycleReport(started_at=datetime.now(UTC))
        started = time.monotonic()
        try:
            updated = await self._run_cycle(current, scope, report)
        except Exception as e:
            logger.exception("Refresh cycle failed; keeping previous prices: %s", e)
            report.failed = True
            updated = current
        finally:
            self._in_flight = False
            report.duration_seconds = time.monotonic() - started
            self.last_report = report

        if not report.failed:
            logger.info(
                "Refresh: %d live, %d AI, %d cache, %d offline in %.2fs",
                len(report.live), len(report.ai), len(report.cached),
                len(report.offline), report.duration_seconds,
            )
        return updated

    async def _run_cycle(
        self,
        assets: list[Asset],
        scope: Collection[str] | None,
        report: CycleReport,
    ) -> list[Asset]:
        in_scope = [a for a in assets if scope is None or a.id in scope]
        if not in_scope:
            report.untouched = [a.id for a in assets]
            return assets

        book = await self._fetch_all(self._table.requests_for(a.id for a in in_scope))
        resolved = self._resolve(in_scope, book, assets)
        ai_ids = await self._ai_fallback(in_scope, resolved)
        cache = await self._cache.load()

        now = datetime.now(UTC).isoformat(timespec="seconds")
        updated: list[Asset] = []
        live_prices: dict[str, float] = {}
        scoped_ids = {a.id for a in in_scope}
        for asset in assets:
            if asset.id not in scoped_ids:
                report.untouched.append(asset.id)
                updated.append(asset)
                continue
            new = self._finalize(asset, resolved.get(asset.id), cache, now)
            updated.append(new)
            if asset.id in resolved:
                live_prices[asset.id] = new.price
                (report.ai if asset.id in ai_ids else report.live).append(asset.id)
            elif new.sources == [Source.CACHE.value]:
                report.cached.append(asset.id)
            else:
                report.offline.append(asset.id)

        if len(updated) != len(assets):
            raise ReconciliationError(
                "Cycle changed the asset count",
                context={"stage": "resolve", "before": len(assets), "after": len(updated)},
            )

        if live_prices:
            await self._cache.save(live_prices)
        await self._cache.save_snapshot(updated)
        return updated

    async def _fetch_all(self, requests: dict[str, dict[str, str]]) -> QuoteBook:
        """Query every needed provider concurrently and wait for all of them."""
        names = [name for name in requests if name in self._providers]
        for name in requests:
            if name not in self._providers:
                logger.debug("No provider registered for %r; skipping", name)
        raw_results = await asyncio.gather(
            *(self._providers[name].fetch(requests[name]) for name in names),
            return_exceptions=True,
        )
        results: dict[str, dict[str, float]] = {}
        for name, result in zip(names, raw_results):
            if isinstance(result, BaseException):
                logger.warning("Provider %s raised: %s", name, result)
                continue
            results[name] = result
        book = QuoteBook(results)
        logger.debug("Collected %d quotes from %s", book.count(), book.providers())
        return book

    def _resolve(
        self,
        assets: list[Asset],
        book: QuoteBook,
        collection: list[Asset],
    ) -> dict[str, Resolution]:
        fx_rate = self._table.fx_rate(book) or self._fallback_fx_rate(collection)
        resolved: dict[str, Resolution] = {}
        for asset in assets:
            rule = self._table.rule_for(asset.id)
            result: Resolution | None = None
            if isinstance(rule, CommodityRule):
                result = rule.resolve(book, fx_rate)
            elif isinstance(rule, RedundantRule):
                result = rule.resolve(book, self._tolerance)
            elif isinstance(rule, DirectRule):
                result = rule.resolve(book)
            elif isinstance(rule, CryptoRule):
                result = rule.resolve(book)
            if result is not None:
                resolved[asset.id] = result
        return resolved

    def _fallback_fx_rate(self, collection: list[Asset]) -> float | None:
        fx_id = self._table.fx_asset_id
        for asset in collection:
            if asset.id == fx_id and asset.price > 0:
                return asset.price
        return base_price(fx_id)

    async def _ai_fallback(
        self, assets: list[Asset], resolved: dict[str, Resolution]
    ) -> set[str]:
        """Resolve leftovers through AI search; returns the ids it priced."""
        if self._ai_search is None:
            return set()
        pending = [a for a in assets if a.id not in resolved]
        if not pending:
            return set()
        found = await self._ai_search.search([AssetRef.from_asset(a) for a in pending])
        priced: set[str] = set()
        for asset in pending:
            value = found.get(asset.id)
            if value is None:
                continue
            threshold = self._table.ai_kg_thresholds.get(asset.id)
            if threshold is not None:
                value = kg_to_gram_if_needed(value, threshold)
            resolved[asset.id] = Resolution(value, (Source.AI_SEARCH.value,))
            priced.add(asset.id)
        return priced

    def _finalize(
        self,
        asset: Asset,
        resolution: Resolution | None,
        cache: Mapping[str, float],
        now: str,
    ) -> Asset:
        """Build the new immutable asset for this cycle."""
        history = asset.history
        if resolution is not None:
            price = round(resolution.price, PRECISION)
            sources = list(resolution.sources)
            previous = asset.price if asset.price > 0 else price
            history = apply_drift(asset.history, price - previous)
        elif asset.id in cache:
            price = round(cache[asset.id], PRECISION)
            sources = [Source.CACHE.value]
        else:
            fallback = asset.price if asset.price > 0 else base_price(asset.id)
            price = fallback if fallback is not None else asset.price
            sources = [Source.OFFLINE.value]

        change, change_percent = derive_change(price, history)
        return asset.model_copy(
            update={
                "price": price,
                "change": change,
                "change_percent": change_percent,
                "history": history,
                "sources": sources,
                "last_checked": now,
            }
        )
