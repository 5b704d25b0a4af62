"""Error taxonomy for price fetching.

Every failure raised by the pricing layer is a ``PricingError`` carrying an
explicit ``kind`` and ``retryable`` flag, set when the error is constructed.
Retry and fallback logic branch on those fields only.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    RATE_LIMIT = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "API_TIMEOUT"
    TRANSIENT = "TRANSIENT_SOURCE_ERROR"
    NOT_FOUND = "DATA_NOT_FOUND"
    INVALID_PRICE = "INVALID_PRICE"
    CACHE_WRITE = "CACHE_WRITE_FAILED"
    NO_PRICE = "NO_PRICE_AVAILABLE"


class PricingError(Exception):
    """Base class for all pricing failures."""

    default_kind: ErrorKind = ErrorKind.TRANSIENT
    default_retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        symbol: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.symbol = symbol
        self.kind = kind if kind is not None else self.default_kind
        self.retryable = self.default_retryable if retryable is None else retryable

    def __str__(self) -> str:
        return self.message


class RateLimitError(PricingError):
    """Request quota exhausted; ``reset_time`` is when capacity returns."""

    default_kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        reset_time: Optional[datetime] = None,
        source: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> None:
        super().__init__(message, symbol=symbol)
        self.reset_time = reset_time
        self.source = source


class FetchTimeoutError(PricingError):
    default_kind = ErrorKind.TIMEOUT


class TransientSourceError(PricingError):
    """Generic upstream failure (network, 5xx, malformed payload)."""

    default_kind = ErrorKind.TRANSIENT


class DataNotFoundError(PricingError):
    """The source does not know the symbol."""

    default_kind = ErrorKind.NOT_FOUND
    default_retryable = False


class InvalidPriceError(PricingError):
    default_kind = ErrorKind.INVALID_PRICE
    default_retryable = False


class CacheWriteError(PricingError):
    """Write-through failed after a successful fetch (non-fatal)."""

    default_kind = ErrorKind.CACHE_WRITE
    default_retryable = False


class RetriesExhaustedError(PricingError):
    """Raised when every attempt allowed by the retry budget failed."""

    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_error: PricingError,
        symbol: Optional[str] = None,
    ) -> None:
        super().__init__(message, symbol=symbol, kind=last_error.kind, retryable=False)
        self.attempts = attempts
        self.last_error = last_error


class NoPriceAvailableError(PricingError):
    """Neither live, cached nor historical data can satisfy the request."""

    default_kind = ErrorKind.NO_PRICE
    default_retryable = False


_USER_MESSAGES = {
    ErrorKind.RATE_LIMIT: "Price service is temporarily busy. Please try again in a few minutes.",
    ErrorKind.TIMEOUT: "Price service is taking longer than usual to respond.",
    ErrorKind.TRANSIENT: "Price service temporarily unavailable.",
    ErrorKind.NOT_FOUND: "Price data not available for the requested symbol.",
    ErrorKind.INVALID_PRICE: "Price service returned an unusable price.",
    ErrorKind.CACHE_WRITE: "Price fetched but could not be saved.",
    ErrorKind.NO_PRICE: "No current, cached or historical price is available.",
}


def describe_error(exc: BaseException) -> str:
    """Return a short user-facing message for ``exc``."""

    if isinstance(exc, RetriesExhaustedError):
        return f"Unable to fetch current prices after {exc.attempts} attempts."
    if isinstance(exc, PricingError):
        message = _USER_MESSAGES.get(exc.kind, "Price service temporarily unavailable.")
        if exc.kind is ErrorKind.NOT_FOUND and exc.symbol:
            return f"Price data not available for {exc.symbol}."
        return message
    return "Unexpected error while fetching price data."
