"""Chunked, rate-limit-aware batch fetching."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from folio_core.data.source import PriceSource, classify_symbol
from folio_core.data.validation import validate_price
from folio_core.errors import ErrorKind, PricingError
from folio_core.models import PerSymbolResult, PriceSourceName
from folio_core.pricing.fetcher import PriceFetcher
from folio_core.utils.config import BatchConfig

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[list[PerSymbolResult]], None]
StopCheck = Callable[[], bool]


def chunked(symbols: Sequence[str], size: int) -> list[list[str]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(symbols[i : i + size]) for i in range(0, len(symbols), size)]


def _failed(symbol: str, message: str, kind: Optional[ErrorKind]) -> PerSymbolResult:
    return PerSymbolResult(symbol=symbol, error=message, error_kind=kind)


class BatchPriceFetcher:
    """Fetch many symbols in ordered chunks, one result per input symbol.

    Within a chunk, symbols are grouped by source and groups run concurrently.
    A source with a native batch endpoint gets one guarded
    ``fetch_prices_batch`` call per group; a group that fails as a whole
    (after retries) is reported once per symbol instead of being retried
    symbol by symbol. Other sources get one guarded ``fetch_price`` call per
    symbol, so every upstream request passes the rate limiter and a slow
    symbol only runs into its own timeout.
    """

    def __init__(
        self,
        fetcher: PriceFetcher,
        config: Optional[BatchConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.config = config or BatchConfig()
        self.sleep = sleep

    async def batch_fetch(
        self,
        symbols: Sequence[str],
        *,
        chunk_size: Optional[int] = None,
        on_chunk: Optional[ChunkCallback] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> list[PerSymbolResult]:
        """Fetch ``symbols`` and return results in input order.

        Args:
            symbols: Symbols to fetch; duplicates are fetched once per chunk.
            chunk_size: Overrides ``BatchConfig.batch_size``.
            on_chunk: Called with each chunk's results once it is written through.
            should_stop: Checked before every chunk after the first; when it
                returns True the remaining chunks are skipped and only
                processed results are returned.
        """
        chunks = chunked(symbols, chunk_size or self.config.batch_size)
        results: list[PerSymbolResult] = []
        for index, chunk in enumerate(chunks):
            if index > 0:
                if should_stop is not None and should_stop():
                    logger.info(f"Batch stopped before chunk {index + 1}/{len(chunks)}")
                    break
                await self.sleep(self.config.inter_batch_delay)
                if should_stop is not None and should_stop():
                    logger.info(f"Batch stopped before chunk {index + 1}/{len(chunks)}")
                    break

            chunk_results = await self._fetch_chunk(chunk)
            results.extend(chunk_results)
            ok = sum(1 for result in chunk_results if result.ok)
            logger.info(f"Chunk {index + 1}/{len(chunks)}: {ok} ok, {len(chunk_results) - ok} failed")
            if on_chunk is not None:
                on_chunk(chunk_results)
        return results

    async def _fetch_chunk(self, chunk: list[str]) -> list[PerSymbolResult]:
        groups: dict[PriceSourceName, list[str]] = {}
        for symbol in dict.fromkeys(chunk):
            groups.setdefault(classify_symbol(symbol), []).append(symbol)

        outcomes = await asyncio.gather(
            *(self._fetch_group(name, group) for name, group in groups.items())
        )
        by_symbol: dict[str, PerSymbolResult] = {}
        for outcome in outcomes:
            by_symbol.update(outcome)
        return [by_symbol[symbol] for symbol in chunk]

    async def _fetch_group(self, name: PriceSourceName, symbols: list[str]) -> dict[str, PerSymbolResult]:
        source = self.fetcher.sources.get(name)
        if source is None:
            message = f"No price source configured for {name.value}"
            return {symbol: _failed(symbol, message, ErrorKind.NOT_FOUND) for symbol in symbols}

        if not source.native_batch:
            raw_results = await self._fetch_each(source, symbols)
        else:
            try:
                raw_results = await self.fetcher.guarded(
                    source,
                    lambda: source.fetch_prices_batch(symbols),
                    operation_name=f"{name.value} batch fetch ({len(symbols)} symbols)",
                )
            except PricingError as exc:
                logger.error(f"{name.value} batch of {len(symbols)} symbols failed: {exc}")
                return {symbol: _failed(symbol, str(exc), exc.kind) for symbol in symbols}
            except Exception as exc:  # chunk-level outage, reported per symbol
                logger.error(f"{name.value} batch of {len(symbols)} symbols crashed: {exc}", exc_info=True)
                return {symbol: _failed(symbol, str(exc), ErrorKind.TRANSIENT) for symbol in symbols}

        returned = {result.symbol: result for result in raw_results}
        merged: dict[str, PerSymbolResult] = {}
        for symbol in symbols:
            result = returned.get(symbol)
            if result is None:
                merged[symbol] = _failed(symbol, f"No result returned for {symbol}", ErrorKind.TRANSIENT)
                continue
            if result.error is not None:
                merged[symbol] = result
                continue
            try:
                price = validate_price(result.price, symbol)
            except PricingError as exc:
                merged[symbol] = _failed(symbol, str(exc), exc.kind)
                continue
            warnings = await self.fetcher.write_through(symbol, price, name)
            merged[symbol] = PerSymbolResult(
                symbol=symbol,
                price=price,
                source=name,
                warnings=[*result.warnings, *warnings],
            )
        return merged

    async def _fetch_each(self, source: PriceSource, symbols: list[str]) -> list[PerSymbolResult]:
        outcomes = await asyncio.gather(
            *(
                self.fetcher.guarded(
                    source,
                    lambda symbol=symbol: source.fetch_price(symbol),
                    symbol=symbol,
                    operation_name=f"{source.name.value} fetch {symbol}",
                )
                for symbol in symbols
            ),
            return_exceptions=True,
        )
        results: list[PerSymbolResult] = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, PricingError):
                results.append(_failed(symbol, str(outcome), outcome.kind))
            elif isinstance(outcome, Exception):
                logger.error(f"Unexpected error fetching {symbol} from {source.name.value}: {outcome}")
                results.append(_failed(symbol, str(outcome), ErrorKind.TRANSIENT))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(PerSymbolResult(symbol=symbol, price=outcome, source=source.name))
        return results
