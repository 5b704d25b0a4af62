"""Generic JSON quote endpoint adapter built on requests."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

import requests

from folio_core.data.source import PriceSource
from folio_core.data.validation import validate_price
from folio_core.errors import (
    DataNotFoundError,
    FetchTimeoutError,
    PricingError,
    RateLimitError,
    TransientSourceError,
)
from folio_core.models import PerSymbolResult, PriceSourceName

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 15


def _retry_after(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=max(seconds, 0.0))


class HttpQuoteClient:
    """Thin wrapper around a JSON quote endpoint.

    ``GET {url}?symbol=X`` is expected to answer ``{"symbol": "X", "price": 1.0}``
    and ``GET {url}?symbols=X,Y`` to answer ``{"quotes": [{"symbol": ..., "price": ...}]}``.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def _get(self, params: dict[str, str], symbol: Optional[str] = None) -> dict[str, Any]:
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(f"Quote request timed out: {exc}", symbol=symbol) from exc
        except requests.exceptions.RequestException as exc:
            raise TransientSourceError(f"Quote request failed: {exc}", symbol=symbol) from exc

        if resp.status_code == 429:
            raise RateLimitError(
                "Quote endpoint rate limit exceeded",
                reset_time=_retry_after(resp.headers.get("Retry-After")),
                source=self.url,
                symbol=symbol,
            )
        if resp.status_code == 404:
            raise DataNotFoundError(f"Symbol {symbol} not found", symbol=symbol)
        if resp.status_code >= 500:
            raise TransientSourceError(f"Quote endpoint error {resp.status_code}", symbol=symbol)
        if resp.status_code >= 400:
            raise TransientSourceError(
                f"Quote endpoint rejected request with {resp.status_code}",
                symbol=symbol,
                retryable=False,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransientSourceError(f"Malformed quote payload: {exc}", symbol=symbol) from exc
        if not isinstance(payload, dict):
            raise TransientSourceError(f"Unexpected quote payload: {payload!r}", symbol=symbol)
        return payload

    def get_quote(self, symbol: str) -> Any:
        payload = self._get({"symbol": symbol}, symbol=symbol)
        if payload.get("price") is None:
            raise DataNotFoundError(f"Symbol {symbol} not found", symbol=symbol)
        return payload["price"]

    def get_quotes(self, symbols: Sequence[str]) -> dict[str, Any]:
        payload = self._get({"symbols": ",".join(symbols)})
        quotes = payload.get("quotes") or []
        return {
            str(entry.get("symbol")): entry.get("price")
            for entry in quotes
            if isinstance(entry, dict) and entry.get("symbol") is not None
        }


class HttpQuoteSource(PriceSource):
    """``PriceSource`` backed by an ``HttpQuoteClient``; I/O runs in a worker thread."""

    native_batch = True

    def __init__(self, name: PriceSourceName, client: HttpQuoteClient, symbol_prefix: str = "") -> None:
        self.name = name
        self.client = client
        self.symbol_prefix = symbol_prefix

    def _wire(self, symbol: str) -> str:
        return f"{self.symbol_prefix}{symbol}"

    async def fetch_price(self, symbol: str) -> Decimal:
        raw = await asyncio.to_thread(self.client.get_quote, self._wire(symbol))
        return validate_price(raw, symbol)

    async def fetch_prices_batch(self, symbols: Sequence[str]) -> list[PerSymbolResult]:
        wire_map = {self._wire(symbol): symbol for symbol in symbols}
        quotes = await asyncio.to_thread(self.client.get_quotes, list(wire_map))
        results: list[PerSymbolResult] = []
        for wire_symbol, symbol in wire_map.items():
            if quotes.get(wire_symbol) is None:
                error: PricingError = DataNotFoundError(f"Symbol {symbol} not found", symbol=symbol)
                results.append(PerSymbolResult(symbol=symbol, error=str(error), error_kind=error.kind))
                continue
            try:
                price = validate_price(quotes[wire_symbol], symbol)
            except PricingError as exc:
                results.append(PerSymbolResult(symbol=symbol, error=str(exc), error_kind=exc.kind))
                continue
            results.append(PerSymbolResult(symbol=symbol, price=price, source=self.name))
        return results

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(self.client.get_quotes, [])
        except PricingError as exc:
            logger.warning(f"{self.name.value} ping failed: {exc}")
            return False
        return True
