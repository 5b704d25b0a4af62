"""Configuration models for the long-running pricing service."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from folio_core.data.source import normalize_symbol
from folio_core.utils.config import PricingConfig


class LiveServiceConfig(BaseModel):
    """Configuration for the folio-live service.

    Tracked symbols can be given either way:
    - Single: symbol: "RELIANCE"
    - Multi: symbols: ["RELIANCE", "INFY", "120503"]

    With neither, every symbol that already has a cached price is tracked.
    """

    id: str = Field(description="Unique identifier for this service config")
    pricing: PricingConfig = Field(default_factory=PricingConfig)

    symbol: Optional[str] = Field(default=None, description="Single tracked symbol")
    symbols: Optional[list[str]] = Field(default=None, description="Tracked symbols")

    include_stocks: bool = Field(default=True, description="Refresh equity symbols")
    include_mutual_funds: bool = Field(default=True, description="Refresh fund scheme codes")

    @model_validator(mode="after")
    def validate_symbols(self) -> "LiveServiceConfig":
        """Normalize symbol/symbols into a deduplicated symbols list."""
        if self.symbol is not None and self.symbols is not None:
            raise ValueError("Cannot provide both 'symbol' and 'symbols' - use one or the other")

        if self.symbol is not None:
            self.symbols = [self.symbol]
            self.symbol = None

        if self.symbols is not None:
            self.symbols = list(dict.fromkeys(normalize_symbol(symbol) for symbol in self.symbols))
        return self

    def get_symbols(self) -> list[str]:
        return self.symbols or []
