"""Single-symbol guarded fetch with write-through and fallback."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Mapping, Optional, TypeVar

from folio_core.data.source import PriceSource, classify_symbol
from folio_core.data.store import PriceStore
from folio_core.data.validation import validate_price
from folio_core.errors import CacheWriteError, DataNotFoundError, PricingError
from folio_core.models import (
    Confidence,
    FallbackDecision,
    FallbackLevel,
    PriceCacheEntry,
    PriceHistoryRecord,
    PriceSourceName,
    utc_now,
)
from folio_core.resilience.fallback import StaleDataFallbackHandler
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.resilience.retry import RetryPolicy, execute_with_retry
from folio_core.resilience.timeout import execute_with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PriceFetcher:
    """Routes symbols to sources and wraps every outbound call in the
    rate-limit gate, timeout and retry policy.

    The rate-limit check runs inside each attempt, so an attempt rejected by
    the limiter is retried after backoff like any other retryable failure.
    """

    def __init__(
        self,
        sources: Mapping[PriceSourceName, PriceSource],
        store: PriceStore,
        rate_limiter: RateLimiter,
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout: float = 30.0,
        fallback: Optional[StaleDataFallbackHandler] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sources = dict(sources)
        self.store = store
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.request_timeout = request_timeout
        self.fallback = fallback or StaleDataFallbackHandler(store, clock=clock)
        self.clock = clock
        self.sleep = sleep

    def source_for(self, symbol: str) -> PriceSource:
        name = classify_symbol(symbol)
        source = self.sources.get(name)
        if source is None:
            raise DataNotFoundError(f"No price source configured for {symbol} ({name.value})", symbol=symbol)
        return source

    async def guarded(
        self,
        source: PriceSource,
        operation: Callable[[], Awaitable[T]],
        *,
        symbol: Optional[str] = None,
        operation_name: str = "price fetch",
    ) -> T:
        async def attempt() -> T:
            self.rate_limiter.check_rate_limit(source.name)
            return await execute_with_timeout(
                operation(), self.request_timeout, operation_name=operation_name
            )

        return await execute_with_retry(
            attempt,
            self.retry_policy,
            symbol=symbol,
            operation_name=operation_name,
            sleep=self.sleep,
        )

    async def fetch_live_price(self, symbol: str) -> tuple[Decimal, PriceSourceName]:
        source = self.source_for(symbol)
        raw = await self.guarded(
            source,
            lambda: source.fetch_price(symbol),
            symbol=symbol,
            operation_name=f"{source.name.value} fetch {symbol}",
        )
        return validate_price(raw, symbol), source.name

    async def write_through(self, symbol: str, price: Decimal, source: PriceSourceName) -> list[str]:
        """Upsert the cache and append history; failures come back as warnings."""

        now = self.clock()
        try:
            await self.store.upsert_cache(
                PriceCacheEntry(symbol=symbol, price=price, source=source, last_updated=now)
            )
            await self.store.append_history(
                PriceHistoryRecord(symbol=symbol, price=price, source=source, timestamp=now)
            )
        except Exception as exc:
            error = exc if isinstance(exc, CacheWriteError) else CacheWriteError(
                f"Failed to cache price for {symbol}: {exc}", symbol=symbol
            )
            logger.warning(f"Price for {symbol} fetched but not cached: {exc}", exc_info=True)
            return [str(error)]
        return []

    async def get_price_with_fallback(self, symbol: str, force_refresh: bool = False) -> FallbackDecision:
        """Fresh cache, then live source, then stale cache or historical average.

        Raises:
            NoPriceAvailableError: Live fetch failed and nothing usable is stored.
        """
        if not force_refresh:
            entry = await self.fallback.read_cache(symbol)
            if entry is not None:
                cached = self.fallback.from_cache(entry)
                if cached is not None and cached.fallback_level is FallbackLevel.NONE:
                    return cached

        try:
            price, source = await self.fetch_live_price(symbol)
        except PricingError as exc:
            logger.warning(f"Live price unavailable for {symbol} ({exc.kind.value}), falling back")
            return await self.fallback.resolve(symbol)

        warnings = await self.write_through(symbol, price, source)
        return FallbackDecision(
            symbol=symbol,
            price=price,
            source=source,
            fallback_level=FallbackLevel.NONE,
            confidence=Confidence.HIGH,
            warnings=tuple(warnings),
        )
