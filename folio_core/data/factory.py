"""Factory helpers to build stores, sources and fetchers from config."""

from __future__ import annotations

import logging
from typing import Optional

from folio_core.data.cache import ParquetPriceStore
from folio_core.data.http_quotes import HttpQuoteClient, HttpQuoteSource
from folio_core.data.source import PriceSource
from folio_core.data.store import InMemoryPriceStore, PriceStore
from folio_core.models import PriceSourceName
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.pricing.fetcher import PriceFetcher
from folio_core.resilience.fallback import StaleDataFallbackHandler
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.resilience.retry import RetryPolicy
from folio_core.utils.config import PricingConfig, SourceConfig, StoreConfig
from folio_core.utils.env import read_secret

logger = logging.getLogger(__name__)


def build_price_store(config: StoreConfig) -> PriceStore:
    """Build the price store named by ``config.backend``.

    Raises:
        ValueError: If the backend is unsupported.
    """
    if config.backend == "parquet":
        return ParquetPriceStore(config.root)
    if config.backend == "memory":
        logger.warning("Using in-memory price store; cached prices are lost on restart")
        return InMemoryPriceStore()
    raise ValueError(
        f"Unsupported store backend '{config.backend}'. Supported backends: 'parquet', 'memory'"
    )


def build_http_source(config: SourceConfig, timeout: float) -> HttpQuoteSource:
    token = read_secret(config.auth_token_env)
    if config.auth_token_env and token is None:
        logger.warning(f"{config.auth_token_env} is not set; calling {config.name.value} unauthenticated")
    client = HttpQuoteClient(config.url, token=token, timeout=timeout)
    return HttpQuoteSource(config.name, client, symbol_prefix=config.symbol_prefix)


def build_price_sources(config: PricingConfig) -> dict[PriceSourceName, PriceSource]:
    sources: dict[PriceSourceName, PriceSource] = {}
    for source_config in config.sources:
        sources[source_config.name] = build_http_source(source_config, config.batch.request_timeout)
    if not sources:
        logger.warning(f"No price sources configured for '{config.id}'; only cached data will be served")
    return sources


def build_rate_limiter(config: PricingConfig) -> RateLimiter:
    return RateLimiter(config.rate_limits())


def build_price_fetcher(
    config: PricingConfig,
    store: PriceStore,
    sources: Optional[dict[PriceSourceName, PriceSource]] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> PriceFetcher:
    return PriceFetcher(
        sources=sources if sources is not None else build_price_sources(config),
        store=store,
        rate_limiter=rate_limiter or build_rate_limiter(config),
        retry_policy=RetryPolicy.from_config(config.retry),
        request_timeout=config.batch.request_timeout,
        fallback=StaleDataFallbackHandler(store, config.fallback),
    )


def build_batch_fetcher(config: PricingConfig, fetcher: PriceFetcher) -> BatchPriceFetcher:
    return BatchPriceFetcher(fetcher, config.batch)
