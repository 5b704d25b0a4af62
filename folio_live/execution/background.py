"""Periodic cache re-warming for every tracked symbol."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence

from folio_core.data.registry import SymbolRegistry
from folio_core.data.source import filter_symbols
from folio_core.data.store import PriceStore
from folio_core.models import RefreshResults, SymbolRefreshDetail, utc_now
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.utils.config import FallbackConfig, RefreshConfig

logger = logging.getLogger(__name__)


class BackgroundRefreshService:
    """Owned periodic refresh driver.

    ``start`` spawns a ticker task that launches one refresh cycle right away
    and another every ``interval`` seconds. Only one cycle runs at a time: a
    tick that finds a cycle in flight is skipped, not queued.
    """

    def __init__(
        self,
        batch_fetcher: BatchPriceFetcher,
        registry: SymbolRegistry,
        store: PriceStore,
        config: Optional[RefreshConfig] = None,
        fallback_config: Optional[FallbackConfig] = None,
        include_stocks: bool = True,
        include_mutual_funds: bool = True,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.batch_fetcher = batch_fetcher
        self.registry = registry
        self.store = store
        self.config = config or RefreshConfig()
        self.fallback_config = fallback_config or FallbackConfig()
        self.include_stocks = include_stocks
        self.include_mutual_funds = include_mutual_funds
        self.clock = clock
        self.sleep = sleep

        self.interval = self.config.interval_seconds
        self.running = False
        self.is_refreshing = False
        self.last_refresh_time: Optional[datetime] = None
        self.last_results: Optional[RefreshResults] = None
        self.last_error: Optional[str] = None
        self.cycles_completed = 0
        self.skipped_ticks = 0
        self._ticker: Optional[asyncio.Task[None]] = None
        self._cycle: Optional[asyncio.Task[Optional[RefreshResults]]] = None

    async def start(self, interval: Optional[float] = None) -> None:
        if self.running:
            logger.warning("Background refresh already running")
            return
        if interval is not None:
            if interval <= 0:
                raise ValueError("interval must be > 0")
            self.interval = interval
        self.running = True
        logger.info(f"Starting background price refresh every {self.interval:.0f}s")
        self._ticker = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        """Cancel the ticker and wait for an in-flight cycle to finish."""
        if not self.running:
            return
        self.running = False
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        if self._cycle is not None and not self._cycle.done():
            logger.info("Waiting for in-flight refresh cycle to finish")
            await self._cycle
        logger.info("Background price refresh stopped")

    async def _tick_loop(self) -> None:
        while self.running:
            self._tick()
            await self.sleep(self.interval)

    def _tick(self) -> None:
        if self.is_refreshing:
            self.skipped_ticks += 1
            logger.info("Refresh cycle still running, skipping tick")
            return
        self.is_refreshing = True
        self._cycle = asyncio.create_task(self._run_cycle())

    async def refresh_once(self) -> Optional[RefreshResults]:
        """Run one cycle now; returns None when a cycle is already running."""
        if self.is_refreshing:
            logger.info("Refresh already in progress, skipping")
            return None
        self.is_refreshing = True
        return await self._run_cycle()

    async def _run_cycle(self) -> Optional[RefreshResults]:
        try:
            symbols = await self.registry.get_all_tracked_symbols()
            symbols = filter_symbols(symbols, self.include_stocks, self.include_mutual_funds)
            if not symbols:
                logger.info("No tracked symbols to refresh")
                results = RefreshResults()
            else:
                logger.info(f"Refreshing {len(symbols)} tracked symbols")
                results = await self.refresh_specific_symbols(symbols)
            self.last_refresh_time = self.clock()
            self.last_results = results
            self.last_error = None
            self.cycles_completed += 1
            return results
        except Exception as exc:
            self.last_error = str(exc)
            logger.error(f"Background refresh cycle failed: {exc}", exc_info=True)
            return None
        finally:
            self.is_refreshing = False

    async def refresh_specific_symbols(self, symbols: Sequence[str]) -> RefreshResults:
        started = time.monotonic()
        results = RefreshResults()
        for result in await self.batch_fetcher.batch_fetch(symbols):
            results.record(SymbolRefreshDetail.from_result(result, self.clock()))
        results.duration = time.monotonic() - started
        logger.info(
            f"Refresh completed in {results.duration:.1f}s: "
            f"{results.success} successful, {results.failed} failed"
        )
        return results

    def get_service_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "is_refreshing": self.is_refreshing,
            "interval_seconds": self.interval,
            "last_refresh_time": self.last_refresh_time,
            "cycles_completed": self.cycles_completed,
            "skipped_ticks": self.skipped_ticks,
            "last_error": self.last_error,
        }

    async def get_refresh_statistics(self) -> dict[str, Any]:
        now = self.clock()
        entries = await self.store.list_cached()
        fresh = sum(
            1
            for entry in entries
            if entry.age(now).total_seconds() <= self.fallback_config.fresh_threshold_seconds
        )
        tracked = await self.registry.get_all_tracked_symbols()
        return {
            "total_cached": len(entries),
            "fresh": fresh,
            "stale": len(entries) - fresh,
            "last_update": max((entry.last_updated for entry in entries), default=None),
            "tracked_symbols": len(tracked),
            "last_refresh_time": self.last_refresh_time,
        }

    async def health_check(self) -> dict[str, Any]:
        """Unhealthy when stopped, when the cache is empty or when every entry is stale."""
        issues: list[str] = []
        if not self.running:
            issues.append("background refresh service is not running")
        stats = await self.get_refresh_statistics()
        if stats["total_cached"] == 0:
            issues.append("no cached price data")
        elif stats["fresh"] == 0:
            issues.append("all cached prices are stale")
        return {"healthy": not issues, "issues": issues, "statistics": stats}
