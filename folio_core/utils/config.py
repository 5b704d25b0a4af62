"""Configuration system backed by Pydantic + YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from folio_core.models import PriceSourceName

T = TypeVar("T", bound=BaseModel)


class RateLimitConfig(BaseModel):
    """Request ceilings enforced per source before any outbound call."""

    requests_per_minute: int = 100
    requests_per_hour: int = 1000
    burst_limit: int = 10
    burst_window_seconds: float = Field(default=10.0, description="Length of the short burst window")

    @field_validator("requests_per_minute", "requests_per_hour", "burst_limit")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("rate limits must be >= 1")
        return value

    @field_validator("burst_window_seconds")
    @classmethod
    def validate_window(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("burst_window_seconds must be > 0")
        return value


DEFAULT_RATE_LIMITS: dict[PriceSourceName, RateLimitConfig] = {
    PriceSourceName.EQUITY_API: RateLimitConfig(
        requests_per_minute=100, requests_per_hour=1000, burst_limit=10
    ),
    PriceSourceName.FUND_NAV: RateLimitConfig(
        requests_per_minute=10, requests_per_hour=100, burst_limit=5
    ),
}


class RetryConfig(BaseModel):
    """Exponential backoff knobs (seconds)."""

    max_retries: int = Field(default=3, description="Total attempts, 1 = no retry")
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_retries must be >= 1")
        return value

    @field_validator("base_delay", "max_delay")
    @classmethod
    def validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays cannot be negative")
        return value

    @field_validator("multiplier")
    @classmethod
    def validate_multiplier(cls, value: float) -> float:
        if value < 1:
            raise ValueError("multiplier must be >= 1")
        return value


class FallbackConfig(BaseModel):
    """Age tiers for cached prices and the historical-average lookback."""

    fresh_threshold_seconds: float = 60 * 60
    stale_threshold_seconds: float = 24 * 60 * 60
    history_lookback_days: int = 30
    history_sample_limit: int = 100

    @field_validator("history_lookback_days", "history_sample_limit")
    @classmethod
    def validate_lookback(cls, value: int) -> int:
        if value < 1:
            raise ValueError("history lookback values must be >= 1")
        return value

    @model_validator(mode="after")
    def validate_thresholds(self) -> "FallbackConfig":
        if self.fresh_threshold_seconds <= 0:
            raise ValueError("fresh_threshold_seconds must be > 0")
        if self.stale_threshold_seconds < self.fresh_threshold_seconds:
            raise ValueError("stale_threshold_seconds must be >= fresh_threshold_seconds")
        return self


class BatchConfig(BaseModel):
    """Chunking and pacing for outbound batch fetches."""

    batch_size: int = 10
    inter_batch_delay: float = Field(default=2.0, description="Seconds to wait between chunks")
    request_timeout: float = Field(default=30.0, description="Per-call timeout in seconds")

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch_size must be >= 1")
        return value

    @field_validator("inter_batch_delay")
    @classmethod
    def validate_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("inter_batch_delay cannot be negative")
        return value

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("request_timeout must be > 0")
        return value


class SourceConfig(BaseModel):
    """One outbound JSON quote endpoint."""

    name: PriceSourceName
    url: str
    symbol_prefix: str = Field(default="", description="Prefix added to symbols on the wire, e.g. 'NSE:'")
    auth_token_env: Optional[str] = Field(
        default=None, description="Environment variable holding the auth token"
    )
    rate_limit: Optional[RateLimitConfig] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: PriceSourceName) -> PriceSourceName:
        if value is PriceSourceName.HISTORICAL_AVERAGE:
            raise ValueError("HISTORICAL_AVERAGE is not an outbound source")
        return value

    def resolved_rate_limit(self) -> RateLimitConfig:
        if self.rate_limit is not None:
            return self.rate_limit
        return DEFAULT_RATE_LIMITS.get(self.name, RateLimitConfig())


class StoreConfig(BaseModel):
    backend: str = Field(default="parquet", description="parquet | memory")
    root: Path = Field(default=Path("results/prices"))

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        if value not in {"parquet", "memory"}:
            raise ValueError("backend must be 'parquet' or 'memory'")
        return value

    @field_validator("root", mode="before")
    @classmethod
    def coerce_root(cls, value: Any) -> Path:
        return Path(value)


class RefreshConfig(BaseModel):
    """Scheduling for background and on-demand refreshes."""

    interval_seconds: float = 60 * 60
    job_retention_seconds: float = 60 * 60
    quick_refresh_timeout: float = 5 * 60
    poll_interval: float = 0.5
    history_retention_days: int = 365

    @field_validator("interval_seconds", "poll_interval", "quick_refresh_timeout")
    @classmethod
    def validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("refresh timings must be > 0")
        return value


class PricingConfig(BaseModel):
    """Top-level configuration for the pricing engine."""

    id: str = "default"
    sources: list[SourceConfig] = Field(default_factory=list)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, value: list[SourceConfig]) -> list[SourceConfig]:
        names = [source.name for source in value]
        if len(names) != len(set(names)):
            raise ValueError("each source name may only be configured once")
        return value

    def rate_limits(self) -> dict[PriceSourceName, RateLimitConfig]:
        limits = dict(DEFAULT_RATE_LIMITS)
        for source in self.sources:
            limits[source.name] = source.resolved_rate_limit()
        return limits


def load_yaml_config(path: Any, model: Type[T]) -> T:
    """Load YAML file and parse it into the provided Pydantic model."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file {file_path} does not exist.")
    with file_path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    return model.model_validate(payload)
