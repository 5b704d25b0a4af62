"""In-process pricing API wiring the core components together."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from folio_core.data.factory import (
    build_batch_fetcher,
    build_price_fetcher,
    build_price_sources,
    build_price_store,
)
from folio_core.data.registry import CachedSymbolRegistry, StaticSymbolRegistry, SymbolRegistry
from folio_core.data.source import PriceSource, normalize_symbol
from folio_core.data.store import PriceStore
from folio_core.models import FallbackDecision, PerSymbolResult, PriceSourceName, PriceTrend, RefreshJob
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.pricing.fetcher import PriceFetcher
from folio_core.pricing.health import check_pricing_service_health
from folio_core.pricing.trend import cleanup_price_history, get_cache_stats, get_price_trend
from folio_core.utils.config import FallbackConfig, RefreshConfig
from folio_live.execution.background import BackgroundRefreshService
from folio_live.execution.realtime import RealTimeRefreshService, RefreshOptions
from folio_live.utils.config import LiveServiceConfig

logger = logging.getLogger(__name__)


class PricingService:
    """Entry point used by the rest of the application.

    Owns one background refresher and one real-time job table, both feeding
    the same ``BatchPriceFetcher``.
    """

    def __init__(
        self,
        fetcher: PriceFetcher,
        batch_fetcher: BatchPriceFetcher,
        registry: SymbolRegistry,
        refresh_config: Optional[RefreshConfig] = None,
        fallback_config: Optional[FallbackConfig] = None,
        include_stocks: bool = True,
        include_mutual_funds: bool = True,
    ) -> None:
        self.fetcher = fetcher
        self.batch_fetcher = batch_fetcher
        self.store: PriceStore = fetcher.store
        self.registry = registry
        self.refresh_config = refresh_config or RefreshConfig()
        self.background = BackgroundRefreshService(
            batch_fetcher,
            registry,
            self.store,
            config=self.refresh_config,
            fallback_config=fallback_config,
            include_stocks=include_stocks,
            include_mutual_funds=include_mutual_funds,
        )
        self.realtime = RealTimeRefreshService(batch_fetcher, registry, config=self.refresh_config)

    @classmethod
    def from_config(
        cls,
        config: LiveServiceConfig,
        store: Optional[PriceStore] = None,
        sources: Optional[dict[PriceSourceName, PriceSource]] = None,
    ) -> "PricingService":
        pricing = config.pricing
        store = store if store is not None else build_price_store(pricing.store)
        sources = sources if sources is not None else build_price_sources(pricing)
        fetcher = build_price_fetcher(pricing, store, sources=sources)
        registry: SymbolRegistry
        if config.get_symbols():
            registry = StaticSymbolRegistry(config.get_symbols())
        else:
            registry = CachedSymbolRegistry(store)
        logger.info(f"Pricing service '{config.id}' built with sources {[name.value for name in sources]}")
        return cls(
            fetcher,
            build_batch_fetcher(pricing, fetcher),
            registry,
            refresh_config=pricing.refresh,
            fallback_config=pricing.fallback,
            include_stocks=config.include_stocks,
            include_mutual_funds=config.include_mutual_funds,
        )

    async def get_price_with_fallback(self, symbol: str, force_refresh: bool = False) -> FallbackDecision:
        return await self.fetcher.get_price_with_fallback(normalize_symbol(symbol), force_refresh)

    async def batch_get_prices(self, symbols: Sequence[str]) -> list[PerSymbolResult]:
        return await self.batch_fetcher.batch_fetch([normalize_symbol(symbol) for symbol in symbols])

    async def start_refresh(self, options: Optional[RefreshOptions] = None) -> str:
        return await self.realtime.start_refresh(options)

    def get_refresh_status(self, request_id: str) -> Optional[RefreshJob]:
        return self.realtime.get_refresh_status(request_id)

    def cancel_refresh(self, request_id: str) -> bool:
        return self.realtime.cancel_refresh(request_id)

    def get_active_refreshes(self) -> list[RefreshJob]:
        return self.realtime.get_active_refreshes()

    async def quick_refresh(self, symbols: Sequence[str], timeout: Optional[float] = None) -> RefreshJob:
        return await self.realtime.quick_refresh(symbols, timeout)

    async def check_pricing_service_health(self) -> dict[str, Any]:
        report = await check_pricing_service_health(
            self.fetcher.sources, self.store, self.fetcher.rate_limiter
        )
        report["background_refresh"] = self.background.get_service_status()
        return report

    async def get_price_trend(self, symbol: str, days: int = 30) -> PriceTrend:
        return await get_price_trend(self.store, normalize_symbol(symbol), days)

    async def cleanup_price_history(self, days_to_keep: Optional[int] = None) -> int:
        days = self.refresh_config.history_retention_days if days_to_keep is None else days_to_keep
        return await cleanup_price_history(self.store, days)

    async def get_cache_stats(self) -> dict[str, Any]:
        return await get_cache_stats(self.store)

    async def start_background_refresh(self, interval: Optional[float] = None) -> None:
        await self.background.start(interval)

    async def stop_background_refresh(self) -> None:
        await self.background.stop()
