"""Price store interface and an in-process implementation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from folio_core.models import PriceCacheEntry, PriceHistoryRecord


class PriceStore(Protocol):
    """Durable cache (latest price per symbol) plus an append-only history log."""

    async def get_cached(self, symbol: str) -> Optional[PriceCacheEntry]:  # pragma: no cover - interface only
        ...

    async def upsert_cache(self, entry: PriceCacheEntry) -> None:  # pragma: no cover - interface only
        ...

    async def append_history(self, record: PriceHistoryRecord) -> None:  # pragma: no cover - interface only
        ...

    async def query_history(
        self,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PriceHistoryRecord]:  # pragma: no cover - interface only
        """Return records newest first."""
        ...

    async def delete_history_older_than(self, cutoff: datetime) -> int:  # pragma: no cover - interface only
        ...

    async def list_cached(self) -> list[PriceCacheEntry]:  # pragma: no cover - interface only
        ...


def filter_history(
    records: list[PriceHistoryRecord],
    symbol: str,
    start: Optional[datetime],
    end: Optional[datetime],
    limit: Optional[int],
) -> list[PriceHistoryRecord]:
    matched = [
        record
        for record in records
        if record.symbol == symbol
        and (start is None or record.timestamp >= start)
        and (end is None or record.timestamp <= end)
    ]
    matched.sort(key=lambda record: record.timestamp, reverse=True)
    if limit is not None:
        matched = matched[:limit]
    return matched


class InMemoryPriceStore:
    """Dictionary-backed store; state is lost on restart."""

    def __init__(self) -> None:
        self._cache: dict[str, PriceCacheEntry] = {}
        self._history: list[PriceHistoryRecord] = []

    async def get_cached(self, symbol: str) -> Optional[PriceCacheEntry]:
        return self._cache.get(symbol)

    async def upsert_cache(self, entry: PriceCacheEntry) -> None:
        self._cache[entry.symbol] = entry

    async def append_history(self, record: PriceHistoryRecord) -> None:
        self._history.append(record)

    async def query_history(
        self,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PriceHistoryRecord]:
        return filter_history(self._history, symbol, start, end, limit)

    async def delete_history_older_than(self, cutoff: datetime) -> int:
        kept = [record for record in self._history if record.timestamp >= cutoff]
        deleted = len(self._history) - len(kept)
        self._history = kept
        return deleted

    async def list_cached(self) -> list[PriceCacheEntry]:
        return list(self._cache.values())
