"""Health report across sources, the store and rate-limit state."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

from folio_core.data.source import PriceSource
from folio_core.data.store import PriceStore
from folio_core.errors import PricingError
from folio_core.models import PriceSourceName
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.resilience.timeout import execute_with_timeout

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


def overall_status(statuses: Mapping[str, bool]) -> str:
    if statuses and all(statuses.values()):
        return HEALTHY
    if any(statuses.values()):
        return DEGRADED
    return UNHEALTHY


def _service_status(started: float, error: Optional[str] = None) -> dict[str, Any]:
    return {
        "healthy": error is None,
        "response_time": round(time.monotonic() - started, 3),
        "error": error,
    }


async def _probe_source(source: PriceSource, timeout: float) -> dict[str, Any]:
    started = time.monotonic()
    try:
        up = await execute_with_timeout(source.ping(), timeout, operation_name=f"{source.name.value} ping")
    except PricingError as exc:
        logger.warning(f"{source.name.value} health probe failed: {exc}")
        return _service_status(started, str(exc))
    if not up:
        return _service_status(started, f"{source.name.value} did not answer the probe")
    return _service_status(started)


async def _probe_store(store: PriceStore) -> dict[str, Any]:
    started = time.monotonic()
    try:
        await store.list_cached()
    except Exception as exc:  # reported as down
        logger.error(f"Price store health probe failed: {exc}", exc_info=True)
        return _service_status(started, str(exc))
    return _service_status(started)


async def check_pricing_service_health(
    sources: Mapping[PriceSourceName, PriceSource],
    store: PriceStore,
    rate_limiter: RateLimiter,
    probe_timeout: float = 10.0,
) -> dict[str, Any]:
    """Probe every source and the store.

    Returns:
        ``{"status": healthy|degraded|unhealthy, "services": {name:
        {"healthy", "response_time", "error"}}, "rate_limits": {source:
        window status}}``. Healthy means everything is up, degraded means at
        least one component is. Response times are in seconds.
    """
    services: dict[str, dict[str, Any]] = {}
    for name, source in sources.items():
        services[name.value] = await _probe_source(source, probe_timeout)
    services["store"] = await _probe_store(store)

    rate_limits = {
        name.value: rate_limiter.get_rate_limit_status(name)
        for name in sources
        if name in rate_limiter.limits
    }
    status = overall_status({name: info["healthy"] for name, info in services.items()})
    if status != HEALTHY:
        down = [name for name, info in services.items() if not info["healthy"]]
        logger.warning(f"Pricing service {status}: down={down}")
    return {"status": status, "services": services, "rate_limits": rate_limits}
