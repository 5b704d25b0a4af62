"""Classified retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from folio_core.errors import PricingError, RetriesExhaustedError
from folio_core.utils.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
        )

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-indexed) before the next one."""

        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    symbol: Optional[str] = None,
    operation_name: str = "price fetch",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        policy: Attempt budget and backoff curve. ``max_retries=1`` means a
            single attempt.
        symbol: Attached to the exhaustion error for reporting.
        operation_name: Used in log messages.
        sleep: Suspension used between attempts.

    Returns:
        The first successful result.

    Raises:
        PricingError: The original error when it is not retryable.
        RetriesExhaustedError: When every attempt failed with a retryable error.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except PricingError as exc:
            if not exc.retryable:
                raise
            if attempt >= policy.max_retries:
                logger.error(f"{operation_name} failed after {attempt} attempts: {exc}")
                raise RetriesExhaustedError(
                    f"{operation_name} failed after {attempt} attempts: {exc}",
                    attempts=attempt,
                    last_error=exc,
                    symbol=symbol or exc.symbol,
                ) from exc
            delay = policy.delay_after(attempt)
            logger.warning(
                f"{operation_name} attempt {attempt}/{policy.max_retries} failed ({exc.kind.value}): "
                f"{exc}; retrying in {delay:.2f}s"
            )
            await sleep(delay)
