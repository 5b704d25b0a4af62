"""Latency bound for outbound calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from folio_core.errors import FetchTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Abandoned operations still running after their caller timed out.
_abandoned: set[asyncio.Task[Any]] = set()


def _discard(task: asyncio.Task[Any]) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned operation finished with error: {exc}")


async def execute_with_timeout(
    operation: Awaitable[T],
    timeout: float,
    *,
    operation_name: str = "operation",
) -> T:
    """Await ``operation`` for at most ``timeout`` seconds.

    On expiry ``FetchTimeoutError`` is raised immediately and the operation is
    left running rather than cancelled; whatever it does afterwards must be
    safe to repeat.
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()

    _abandoned.add(task)
    task.add_done_callback(_discard)
    logger.warning(f"{operation_name} timed out after {timeout:.1f}s")
    raise FetchTimeoutError(f"{operation_name} timed out after {timeout:.1f}s")


def abandoned_count() -> int:
    return len(_abandoned)
