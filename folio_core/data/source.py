"""Outbound price source interface."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Sequence

from folio_core.errors import ErrorKind, PricingError
from folio_core.models import PerSymbolResult, PriceSourceName

logger = logging.getLogger(__name__)


def normalize_symbol(symbol: str) -> str:
    """Uppercase and strip a ticker or scheme code."""

    if not symbol or not symbol.strip():
        raise ValueError("symbol must be a non-empty string")
    return symbol.strip().upper()


def classify_symbol(symbol: str) -> PriceSourceName:
    """Purely numeric symbols are fund scheme codes, everything else is an equity."""

    return PriceSourceName.FUND_NAV if symbol.strip().isdigit() else PriceSourceName.EQUITY_API


def filter_symbols(
    symbols: Iterable[str],
    include_stocks: bool = True,
    include_mutual_funds: bool = True,
) -> list[str]:
    kept = []
    for symbol in symbols:
        is_fund = classify_symbol(symbol) is PriceSourceName.FUND_NAV
        if (is_fund and include_mutual_funds) or (not is_fund and include_stocks):
            kept.append(symbol)
    return kept


class PriceSource(ABC):
    """Abstract near-real-time price provider."""

    name: PriceSourceName
    # True when fetch_prices_batch is a single upstream request.
    native_batch: bool = False

    @abstractmethod
    async def fetch_price(self, symbol: str) -> Decimal:
        """Return the latest price or raise a ``PricingError``."""

    async def fetch_prices_batch(self, symbols: Sequence[str]) -> list[PerSymbolResult]:
        """Fetch several symbols; per-symbol failures are reported, not raised.

        Sources with a native batch endpoint override this. The default fans
        out to ``fetch_price`` concurrently.
        """

        outcomes = await asyncio.gather(
            *(self.fetch_price(symbol) for symbol in symbols),
            return_exceptions=True,
        )
        results: list[PerSymbolResult] = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, PricingError):
                results.append(
                    PerSymbolResult(symbol=symbol, error=str(outcome), error_kind=outcome.kind)
                )
            elif isinstance(outcome, Exception):
                logger.error(f"Unexpected error fetching {symbol} from {self.name.value}: {outcome}")
                results.append(
                    PerSymbolResult(symbol=symbol, error=str(outcome), error_kind=ErrorKind.TRANSIENT)
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(PerSymbolResult(symbol=symbol, price=outcome, source=self.name))
        return results

    async def ping(self) -> bool:
        """Cheap reachability probe used by health checks."""

        return True
