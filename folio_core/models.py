"""Price, refresh and fallback primitives."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from folio_core.errors import ErrorKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PriceSourceName(str, Enum):
    EQUITY_API = "EQUITY_API"
    FUND_NAV = "FUND_NAV"
    HISTORICAL_AVERAGE = "HISTORICAL_AVERAGE"


class FallbackLevel(str, Enum):
    NONE = "none"
    STALE = "stale"
    HISTORICAL = "historical"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RefreshStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (RefreshStatus.COMPLETED, RefreshStatus.CANCELLED, RefreshStatus.FAILED)


@dataclass(frozen=True)
class PriceCacheEntry:
    """Latest known price for a symbol (one per symbol, latest write wins)."""

    symbol: str
    price: Decimal
    source: PriceSourceName
    last_updated: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.last_updated


@dataclass(frozen=True)
class PriceHistoryRecord:
    """Append-only observation used for trends and historical averages."""

    symbol: str
    price: Decimal
    source: PriceSourceName
    timestamp: datetime


@dataclass
class RateLimitWindowState:
    """Per-source fixed-window counters; reset times are epoch seconds."""

    minute_count: int = 0
    minute_reset_at: float = 0.0
    hour_count: int = 0
    hour_reset_at: float = 0.0
    burst_count: int = 0
    burst_reset_at: float = 0.0


@dataclass
class PerSymbolResult:
    symbol: str
    price: Optional[Decimal] = None
    error: Optional[str] = None
    source: Optional[PriceSourceName] = None
    error_kind: Optional[ErrorKind] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.price is not None and self.error is None


@dataclass(frozen=True)
class FallbackDecision:
    """Price handed to callers together with how much it can be trusted."""

    symbol: str
    price: Decimal
    source: PriceSourceName
    fallback_level: FallbackLevel
    confidence: Confidence
    warnings: tuple[str, ...] = ()
    age: Optional[timedelta] = None


@dataclass
class RefreshProgress:
    total: int = 0
    completed: int = 0
    failed: int = 0
    percentage: int = 0

    def update(self, completed: int, failed: int) -> None:
        self.completed = min(completed, self.total)
        self.failed = failed
        if self.total == 0:
            self.percentage = 100
        else:
            self.percentage = round(self.completed / self.total * 100)


@dataclass
class SymbolRefreshDetail:
    symbol: str
    success: bool
    price: Optional[Decimal] = None
    source: Optional[PriceSourceName] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    refreshed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_result(cls, result: PerSymbolResult, refreshed_at: Optional[datetime] = None) -> "SymbolRefreshDetail":
        return cls(
            symbol=result.symbol,
            success=result.ok,
            price=result.price,
            source=result.source,
            error=result.error,
            warnings=list(result.warnings),
            refreshed_at=refreshed_at or utc_now(),
        )


@dataclass
class RefreshResults:
    success: int = 0
    failed: int = 0
    duration: float = 0.0
    details: list[SymbolRefreshDetail] = field(default_factory=list)

    def record(self, detail: SymbolRefreshDetail) -> None:
        self.details.append(detail)
        if detail.success:
            self.success += 1
        else:
            self.failed += 1

    @property
    def processed(self) -> int:
        return self.success + self.failed


@dataclass
class RefreshJob:
    """State of one on-demand refresh request."""

    request_id: str
    symbols: list[str]
    status: RefreshStatus = RefreshStatus.PENDING
    progress: RefreshProgress = field(default_factory=RefreshProgress)
    results: RefreshResults = field(default_factory=RefreshResults)
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    cancel_requested: bool = False


@dataclass(frozen=True)
class PriceTrend:
    symbol: str
    current_price: Optional[Decimal]
    previous_price: Optional[Decimal]
    change: Optional[Decimal]
    change_percent: Optional[Decimal]
    direction: str
    data_points: int
