"""Parquet-backed price store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pandas as pd

from folio_core.data.store import filter_history
from folio_core.errors import CacheWriteError
from folio_core.models import PriceCacheEntry, PriceHistoryRecord, PriceSourceName

logger = logging.getLogger(__name__)

CACHE_COLUMNS = ["symbol", "price", "source", "last_updated"]
HISTORY_COLUMNS = ["symbol", "price", "source", "timestamp"]


def _to_datetime(value: pd.Timestamp) -> datetime:
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    return stamp.to_pydatetime()


class ParquetPriceStore:
    """Price cache and history persisted as two Parquet files under ``root``.

    Prices are stored as strings so ``Decimal`` values survive a round trip.
    Frames are loaded on first use and kept in memory; each mutation rewrites
    the affected file.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._cache_frame: Optional[pd.DataFrame] = None
        self._history_frame: Optional[pd.DataFrame] = None
        self._lock = asyncio.Lock()

    @property
    def cache_path(self) -> Path:
        return self.root / "price_cache.parquet"

    @property
    def history_path(self) -> Path:
        return self.root / "price_history.parquet"

    def _load(self, path: Path, columns: list[str]) -> pd.DataFrame:
        if not path.exists():
            return pd.DataFrame(columns=columns)
        frame = pd.read_parquet(path)
        missing = set(columns) - set(frame.columns)
        if missing:
            raise ValueError(f"Stored frame {path.name} is missing columns: {sorted(missing)}")
        return frame[columns]

    def _cache(self) -> pd.DataFrame:
        if self._cache_frame is None:
            self._cache_frame = self._load(self.cache_path, CACHE_COLUMNS)
        return self._cache_frame

    def _history(self) -> pd.DataFrame:
        if self._history_frame is None:
            self._history_frame = self._load(self.history_path, HISTORY_COLUMNS)
        return self._history_frame

    async def _persist(self, frame: pd.DataFrame, path: Path) -> None:
        try:
            await asyncio.to_thread(frame.reset_index(drop=True).to_parquet, path, index=False)
        except (OSError, ValueError) as exc:
            raise CacheWriteError(f"Failed to write {path.name}: {exc}") from exc

    @staticmethod
    def _entry_from_row(row: pd.Series) -> PriceCacheEntry:
        return PriceCacheEntry(
            symbol=str(row["symbol"]),
            price=Decimal(str(row["price"])),
            source=PriceSourceName(row["source"]),
            last_updated=_to_datetime(row["last_updated"]),
        )

    @staticmethod
    def _record_from_row(row: pd.Series) -> PriceHistoryRecord:
        return PriceHistoryRecord(
            symbol=str(row["symbol"]),
            price=Decimal(str(row["price"])),
            source=PriceSourceName(row["source"]),
            timestamp=_to_datetime(row["timestamp"]),
        )

    async def get_cached(self, symbol: str) -> Optional[PriceCacheEntry]:
        frame = self._cache()
        matches = frame[frame["symbol"] == symbol]
        if matches.empty:
            return None
        return self._entry_from_row(matches.iloc[-1])

    async def upsert_cache(self, entry: PriceCacheEntry) -> None:
        async with self._lock:
            frame = self._cache()
            row = pd.DataFrame(
                [
                    {
                        "symbol": entry.symbol,
                        "price": str(entry.price),
                        "source": entry.source.value,
                        "last_updated": pd.Timestamp(entry.last_updated),
                    }
                ],
                columns=CACHE_COLUMNS,
            )
            remaining = frame[frame["symbol"] != entry.symbol]
            updated = row if remaining.empty else pd.concat([remaining, row], ignore_index=True)
            await self._persist(updated, self.cache_path)
            self._cache_frame = updated

    async def append_history(self, record: PriceHistoryRecord) -> None:
        async with self._lock:
            frame = self._history()
            row = pd.DataFrame(
                [
                    {
                        "symbol": record.symbol,
                        "price": str(record.price),
                        "source": record.source.value,
                        "timestamp": pd.Timestamp(record.timestamp),
                    }
                ],
                columns=HISTORY_COLUMNS,
            )
            updated = row if frame.empty else pd.concat([frame, row], ignore_index=True)
            await self._persist(updated, self.history_path)
            self._history_frame = updated

    async def query_history(
        self,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[PriceHistoryRecord]:
        frame = self._history()
        subset = frame[frame["symbol"] == symbol]
        records = [self._record_from_row(row) for _, row in subset.iterrows()]
        return filter_history(records, symbol, start, end, limit)

    async def delete_history_older_than(self, cutoff: datetime) -> int:
        async with self._lock:
            frame = self._history()
            if frame.empty:
                return 0
            stamps = pd.to_datetime(frame["timestamp"], utc=True)
            kept = frame[stamps >= pd.Timestamp(cutoff)]
            deleted = len(frame) - len(kept)
            if deleted:
                await self._persist(kept, self.history_path)
                self._history_frame = kept
                logger.info(f"Removed {deleted} history rows older than {cutoff.isoformat()}")
            return deleted

    async def list_cached(self) -> list[PriceCacheEntry]:
        frame = self._cache()
        return [self._entry_from_row(row) for _, row in frame.iterrows()]
