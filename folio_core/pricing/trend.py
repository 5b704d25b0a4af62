"""Trend analysis, history retention and cache statistics."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from folio_core.data.store import PriceStore
from folio_core.models import PriceTrend, utc_now

logger = logging.getLogger(__name__)

STABLE_THRESHOLD_PERCENT = Decimal("0.1")


async def get_price_trend(
    store: PriceStore,
    symbol: str,
    days: int = 30,
    now: Optional[datetime] = None,
) -> PriceTrend:
    """Compare the newest price in the lookback to the oldest one.

    Direction is ``stable`` when the move is under 0.1 %, ``unknown`` with
    fewer than two data points.
    """
    now = now or utc_now()
    history = await store.query_history(symbol, start=now - timedelta(days=days), end=now)
    if not history:
        return PriceTrend(symbol, None, None, None, None, "unknown", 0)

    current = history[0].price
    previous = history[-1].price if len(history) > 1 else None
    if previous is None:
        return PriceTrend(symbol, current, None, None, None, "unknown", len(history))

    change = current - previous
    change_percent = change / previous * 100
    if abs(change_percent) < STABLE_THRESHOLD_PERCENT:
        direction = "stable"
    elif change > 0:
        direction = "up"
    else:
        direction = "down"
    return PriceTrend(symbol, current, previous, change, change_percent, direction, len(history))


async def cleanup_price_history(
    store: PriceStore,
    days_to_keep: int = 365,
    now: Optional[datetime] = None,
) -> int:
    """Delete history records older than ``days_to_keep`` days."""

    if days_to_keep < 0:
        raise ValueError("days_to_keep cannot be negative")
    cutoff = (now or utc_now()) - timedelta(days=days_to_keep)
    deleted = await store.delete_history_older_than(cutoff)
    logger.info(f"Cleaned up {deleted} old price history records")
    return deleted


async def get_cache_stats(store: PriceStore) -> dict[str, Any]:
    entries = await store.list_cached()
    if not entries:
        return {"count": 0, "oldest_entry": None, "newest_entry": None}
    stamps = [entry.last_updated for entry in entries]
    return {"count": len(entries), "oldest_entry": min(stamps), "newest_entry": max(stamps)}
