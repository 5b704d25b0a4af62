"""Validation helpers for prices returned by sources."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from folio_core.errors import InvalidPriceError


def validate_price(value: Any, symbol: str) -> Decimal:
    """Convert a raw payload value into a positive, finite ``Decimal``."""

    if value is None or isinstance(value, bool):
        raise InvalidPriceError(f"Price not available for {symbol}", symbol=symbol)
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidPriceError(f"Unparseable price for {symbol}: {value!r}", symbol=symbol) from exc
    if not price.is_finite():
        raise InvalidPriceError(f"Non-finite price for {symbol}: {value!r}", symbol=symbol)
    if price <= 0:
        raise InvalidPriceError(f"Price must be positive for {symbol}, got {price}", symbol=symbol)
    return price
