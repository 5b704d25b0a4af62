"""Tiered degradation from cached prices to a historical average."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from folio_core.data.store import PriceStore
from folio_core.errors import NoPriceAvailableError
from folio_core.models import (
    Confidence,
    FallbackDecision,
    FallbackLevel,
    PriceCacheEntry,
    PriceSourceName,
    utc_now,
)
from folio_core.utils.config import FallbackConfig

logger = logging.getLogger(__name__)

HISTORICAL_WARNING = "using historical average: live price unavailable"


def describe_age(age: timedelta) -> str:
    minutes = int(age.total_seconds() // 60)
    if minutes < 60:
        return f"data is {minutes} minutes old"
    return f"data is {minutes // 60} hours old"


class StaleDataFallbackHandler:
    """Decide how far to trust what the store holds for a symbol.

    Cached entries up to ``fresh_threshold_seconds`` old are served as-is,
    entries up to ``stale_threshold_seconds`` old are served with a warning,
    and anything older is ignored in favour of the mean of recent history.
    """

    def __init__(
        self,
        store: PriceStore,
        config: Optional[FallbackConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.config = config or FallbackConfig()
        self.clock = clock

    async def read_cache(self, symbol: str) -> Optional[PriceCacheEntry]:
        try:
            return await self.store.get_cached(symbol)
        except Exception as exc:  # treated as a miss
            logger.error(f"Cache read failed for {symbol}: {exc}", exc_info=True)
            return None

    def from_cache(self, entry: PriceCacheEntry, now: Optional[datetime] = None) -> Optional[FallbackDecision]:
        """Classify ``entry`` by age; ``None`` means it is expired."""

        age = entry.age(now or self.clock())
        seconds = age.total_seconds()
        if seconds <= self.config.fresh_threshold_seconds:
            return FallbackDecision(
                symbol=entry.symbol,
                price=entry.price,
                source=entry.source,
                fallback_level=FallbackLevel.NONE,
                confidence=Confidence.HIGH,
                age=age,
            )
        if seconds <= self.config.stale_threshold_seconds:
            return FallbackDecision(
                symbol=entry.symbol,
                price=entry.price,
                source=entry.source,
                fallback_level=FallbackLevel.STALE,
                confidence=Confidence.MEDIUM,
                warnings=(describe_age(age),),
                age=age,
            )
        return None

    async def historical_average(self, symbol: str, now: Optional[datetime] = None) -> Optional[Decimal]:
        now = now or self.clock()
        records = await self.store.query_history(
            symbol,
            start=now - timedelta(days=self.config.history_lookback_days),
            end=now,
            limit=self.config.history_sample_limit,
        )
        if not records:
            return None
        return sum((record.price for record in records), Decimal(0)) / len(records)

    async def resolve(self, symbol: str) -> FallbackDecision:
        """Best available price for ``symbol`` without contacting any source.

        Raises:
            NoPriceAvailableError: Nothing cached within the stale window and
                no history inside the lookback.
        """
        now = self.clock()
        entry = await self.read_cache(symbol)
        if entry is not None:
            decision = self.from_cache(entry, now)
            if decision is not None:
                if decision.fallback_level is FallbackLevel.STALE:
                    logger.warning(f"Serving stale price for {symbol}: {decision.warnings[0]}")
                return decision
            logger.info(f"Cached price for {symbol} expired ({describe_age(entry.age(now))})")

        average = await self.historical_average(symbol, now)
        if average is None:
            raise NoPriceAvailableError(f"No price available for {symbol}", symbol=symbol)
        logger.warning(f"Serving historical average for {symbol}")
        return FallbackDecision(
            symbol=symbol,
            price=average,
            source=PriceSourceName.HISTORICAL_AVERAGE,
            fallback_level=FallbackLevel.HISTORICAL,
            confidence=Confidence.LOW,
            warnings=(HISTORICAL_WARNING,),
        )
