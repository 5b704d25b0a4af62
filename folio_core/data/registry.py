"""Tracked-symbol registries."""

from __future__ import annotations

from typing import Iterable, Protocol

from folio_core.data.source import normalize_symbol
from folio_core.data.store import PriceStore


class SymbolRegistry(Protocol):
    async def get_all_tracked_symbols(self) -> list[str]:  # pragma: no cover - interface only
        ...


class StaticSymbolRegistry:
    """Fixed list of symbols, typically from the service config."""

    def __init__(self, symbols: Iterable[str]) -> None:
        seen: dict[str, None] = {}
        for symbol in symbols:
            seen.setdefault(normalize_symbol(symbol), None)
        self._symbols = list(seen)

    async def get_all_tracked_symbols(self) -> list[str]:
        return list(self._symbols)


class CachedSymbolRegistry:
    """Every symbol that currently has a cached price."""

    def __init__(self, store: PriceStore) -> None:
        self.store = store

    async def get_all_tracked_symbols(self) -> list[str]:
        entries = await self.store.list_cached()
        return sorted({entry.symbol for entry in entries})
