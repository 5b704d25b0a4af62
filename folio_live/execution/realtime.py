"""On-demand, cancellable refresh jobs with progress tracking."""

from __future__ import annotations

import asyncio
import copy
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Sequence

from folio_core.data.registry import SymbolRegistry
from folio_core.data.source import filter_symbols, normalize_symbol
from folio_core.models import (
    PerSymbolResult,
    RefreshJob,
    RefreshProgress,
    RefreshStatus,
    SymbolRefreshDetail,
    utc_now,
)
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.utils.config import RefreshConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshOptions:
    """What an on-demand refresh should cover.

    With no ``symbols`` every tracked symbol is refreshed.
    """

    symbols: Optional[tuple[str, ...]] = None
    include_stocks: bool = True
    include_mutual_funds: bool = True
    batch_size: Optional[int] = None


class RealTimeRefreshService:
    """Job table of refresh requests, each running as its own asyncio task.

    Jobs are only mutated by their own task or by ``cancel_refresh``; callers
    get deep-copied snapshots. Finished jobs are evicted once their end time
    is older than the retention window.
    """

    def __init__(
        self,
        batch_fetcher: BatchPriceFetcher,
        registry: SymbolRegistry,
        config: Optional[RefreshConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.batch_fetcher = batch_fetcher
        self.registry = registry
        self.config = config or RefreshConfig()
        self.clock = clock
        self.sleep = sleep
        self._jobs: dict[str, RefreshJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def _new_request_id(self) -> str:
        while True:
            request_id = f"refresh_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
            if request_id not in self._jobs:
                return request_id

    async def start_refresh(self, options: Optional[RefreshOptions] = None) -> str:
        """Register a job and start it in the background; returns its request id."""
        options = options or RefreshOptions()
        self.cleanup_old_refreshes()

        if options.symbols is not None:
            symbols = list(dict.fromkeys(normalize_symbol(symbol) for symbol in options.symbols))
        else:
            symbols = await self.registry.get_all_tracked_symbols()
        symbols = filter_symbols(symbols, options.include_stocks, options.include_mutual_funds)

        request_id = self._new_request_id()
        job = RefreshJob(
            request_id=request_id,
            symbols=symbols,
            progress=RefreshProgress(total=len(symbols)),
            start_time=self.clock(),
        )
        self._jobs[request_id] = job
        task = asyncio.create_task(self._run_job(job, options))
        self._tasks[request_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(request_id, None))
        logger.info(f"Started refresh {request_id} for {len(symbols)} symbols")
        return request_id

    async def _run_job(self, job: RefreshJob, options: RefreshOptions) -> None:
        started = time.monotonic()
        if job.status is RefreshStatus.CANCELLED:
            return
        job.status = RefreshStatus.IN_PROGRESS

        def on_chunk(results: list[PerSymbolResult]) -> None:
            refreshed_at = self.clock()
            for result in results:
                job.results.record(SymbolRefreshDetail.from_result(result, refreshed_at))
            job.progress.update(job.results.processed, job.results.failed)

        try:
            await self.batch_fetcher.batch_fetch(
                job.symbols,
                chunk_size=options.batch_size,
                on_chunk=on_chunk,
                should_stop=lambda: job.cancel_requested,
            )
            if job.cancel_requested:
                job.status = RefreshStatus.CANCELLED
                logger.info(f"Refresh {job.request_id} cancelled after {job.results.processed} symbols")
            else:
                job.status = RefreshStatus.COMPLETED
                job.progress.update(job.results.processed, job.results.failed)
        except Exception as exc:
            job.status = RefreshStatus.FAILED
            job.error = str(exc)
            logger.error(f"Refresh {job.request_id} failed: {exc}", exc_info=True)
        finally:
            job.results.duration = time.monotonic() - started
            job.end_time = self.clock()
            logger.info(
                f"Refresh {job.request_id} {job.status.value}: "
                f"{job.results.success} successful, {job.results.failed} failed"
            )

    def get_refresh_status(self, request_id: str) -> Optional[RefreshJob]:
        job = self._jobs.get(request_id)
        return copy.deepcopy(job) if job is not None else None

    def cancel_refresh(self, request_id: str) -> bool:
        """Ask a job to stop at its next chunk boundary."""
        job = self._jobs.get(request_id)
        if job is None or job.status.finished:
            return False
        job.cancel_requested = True
        if job.status is RefreshStatus.PENDING:
            job.status = RefreshStatus.CANCELLED
            job.end_time = self.clock()
        logger.info(f"Cancellation requested for refresh {request_id}")
        return True

    def get_active_refreshes(self) -> list[RefreshJob]:
        return [copy.deepcopy(job) for job in self._jobs.values() if not job.status.finished]

    def cleanup_old_refreshes(self, retention_seconds: Optional[float] = None) -> int:
        """Evict finished jobs whose end time is older than the retention window."""
        retention = self.config.job_retention_seconds if retention_seconds is None else retention_seconds
        cutoff = self.clock() - timedelta(seconds=retention)
        expired = [
            request_id
            for request_id, job in self._jobs.items()
            if job.status.finished and job.end_time is not None and job.end_time < cutoff
        ]
        for request_id in expired:
            del self._jobs[request_id]
        if expired:
            logger.info(f"Cleaned up {len(expired)} old refresh jobs")
        return len(expired)

    async def wait_for(self, request_id: str) -> None:
        task = self._tasks.get(request_id)
        if task is not None:
            await asyncio.shield(task)

    async def quick_refresh(
        self,
        symbols: Sequence[str],
        timeout: Optional[float] = None,
    ) -> RefreshJob:
        """Start a refresh and poll it to completion.

        When ``timeout`` (default ``quick_refresh_timeout``) expires first, the
        job is cancelled and every symbol without a result is reported as a
        timeout failure in the returned snapshot.
        """
        timeout = self.config.quick_refresh_timeout if timeout is None else timeout
        request_id = await self.start_refresh(RefreshOptions(symbols=tuple(symbols)))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            job = self._jobs[request_id]
            if job.status.finished:
                return copy.deepcopy(job)
            if loop.time() >= deadline:
                break
            await self.sleep(min(self.config.poll_interval, max(deadline - loop.time(), 0.0)))

        self.cancel_refresh(request_id)
        snapshot = copy.deepcopy(self._jobs[request_id])
        done = {detail.symbol for detail in snapshot.results.details}
        now = self.clock()
        for symbol in snapshot.symbols:
            if symbol not in done:
                snapshot.results.record(
                    SymbolRefreshDetail(
                        symbol=symbol,
                        success=False,
                        error=f"Refresh timed out after {timeout:.0f}s",
                        refreshed_at=now,
                    )
                )
        snapshot.progress.update(snapshot.results.processed, snapshot.results.failed)
        snapshot.status = RefreshStatus.CANCELLED
        snapshot.error = f"Refresh timed out after {timeout:.0f}s"
        snapshot.end_time = now
        logger.warning(f"Quick refresh {request_id} timed out with {len(snapshot.symbols) - len(done)} symbols pending")
        return snapshot
