"""Per-source request quotas (burst, minute, hour)."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from folio_core.errors import RateLimitError
from folio_core.models import PriceSourceName, RateLimitWindowState
from folio_core.utils.config import DEFAULT_RATE_LIMITS, RateLimitConfig

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0
HOUR_SECONDS = 3600.0


class RateLimiter:
    """Fixed-window rate limiter.

    Each window opens on the first request after the previous one expired and
    closes ``window`` seconds later, so short bursts above the nominal rate
    are possible right at a window boundary. A request is admitted only when
    all three windows have capacity; a rejected request leaves every counter
    untouched.

    ``check_rate_limit`` never suspends, which makes check-and-increment
    atomic for coroutines sharing the event loop.
    """

    def __init__(
        self,
        limits: Optional[Mapping[PriceSourceName, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limits: dict[PriceSourceName, RateLimitConfig] = dict(limits or DEFAULT_RATE_LIMITS)
        self.clock = clock
        self._state: dict[PriceSourceName, RateLimitWindowState] = {}

    def _config(self, source: PriceSourceName) -> RateLimitConfig:
        try:
            return self.limits[source]
        except KeyError:
            raise ValueError(f"No rate limit configured for source {source}") from None

    def _windows(self, source: PriceSourceName, now: float) -> RateLimitWindowState:
        """Return the source state with expired windows rolled over."""

        config = self._config(source)
        state = self._state.setdefault(source, RateLimitWindowState())
        if now >= state.burst_reset_at:
            state.burst_count = 0
            state.burst_reset_at = now + config.burst_window_seconds
        if now >= state.minute_reset_at:
            state.minute_count = 0
            state.minute_reset_at = now + MINUTE_SECONDS
        if now >= state.hour_reset_at:
            state.hour_count = 0
            state.hour_reset_at = now + HOUR_SECONDS
        return state

    def check_rate_limit(self, source: PriceSourceName) -> None:
        """Admit one request for ``source`` or raise ``RateLimitError``."""

        config = self._config(source)
        now = self.clock()
        state = self._windows(source, now)

        violated: list[tuple[str, float]] = []
        if state.burst_count >= config.burst_limit:
            violated.append(("burst", state.burst_reset_at))
        if state.minute_count >= config.requests_per_minute:
            violated.append(("minute", state.minute_reset_at))
        if state.hour_count >= config.requests_per_hour:
            violated.append(("hour", state.hour_reset_at))

        if violated:
            window, reset_at = min(violated, key=lambda item: item[1])
            reset_time = datetime.fromtimestamp(reset_at, tz=timezone.utc)
            logger.warning(
                f"Rate limit hit for {source.value} ({', '.join(name for name, _ in violated)}); "
                f"resets at {reset_time.isoformat()}"
            )
            raise RateLimitError(
                f"{window.capitalize()} rate limit exceeded for {source.value}",
                reset_time=reset_time,
                source=source.value,
            )

        state.burst_count += 1
        state.minute_count += 1
        state.hour_count += 1

    def get_rate_limit_status(self, source: PriceSourceName) -> dict[str, dict[str, object]]:
        """Remaining quota per window; expired windows are reported as full."""

        config = self._config(source)
        now = self.clock()
        state = self._state.get(source, RateLimitWindowState())

        def window(count: int, reset_at: float, limit: int) -> dict[str, object]:
            if now >= reset_at:
                return {"limit": limit, "remaining": limit, "reset_at": None}
            return {
                "limit": limit,
                "remaining": max(limit - count, 0),
                "reset_at": datetime.fromtimestamp(reset_at, tz=timezone.utc),
            }

        return {
            "burst": window(state.burst_count, state.burst_reset_at, config.burst_limit),
            "minute": window(state.minute_count, state.minute_reset_at, config.requests_per_minute),
            "hour": window(state.hour_count, state.hour_reset_at, config.requests_per_hour),
        }

    def reset(self, source: Optional[PriceSourceName] = None) -> None:
        if source is None:
            self._state.clear()
        else:
            self._state.pop(source, None)
