"""CLI for the folio pricing service."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from folio_core.errors import PricingError, describe_error
from folio_core.utils.config import load_yaml_config
from folio_core.utils.env import env_float, env_int, env_path, load_project_env
from folio_live.execution.realtime import RefreshOptions
from folio_live.service import PricingService
from folio_live.utils.config import LiveServiceConfig

app = typer.Typer(help="Folio pricing service CLI")
load_project_env()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)

logger = logging.getLogger(__name__)


def load_service_config(config: Path) -> LiveServiceConfig:
    """Load YAML config and apply environment overrides.

    - FOLIO_REFRESH_INTERVAL=600 (seconds between background cycles)
    - FOLIO_BATCH_SIZE=5 (symbols per outbound chunk)
    - FOLIO_STORE_ROOT=/data/prices (parquet store directory)
    """
    service_config = load_yaml_config(config, LiveServiceConfig)
    pricing = service_config.pricing

    interval = env_float("FOLIO_REFRESH_INTERVAL")
    if interval is not None and interval > 0:
        logger.info(f"FOLIO_REFRESH_INTERVAL override: {interval:.0f}s")
        pricing.refresh.interval_seconds = interval

    batch_size = env_int("FOLIO_BATCH_SIZE")
    if batch_size is not None and batch_size > 0:
        logger.info(f"FOLIO_BATCH_SIZE override: {batch_size}")
        pricing.batch.batch_size = batch_size

    store_root = env_path("FOLIO_STORE_ROOT")
    if store_root is not None:
        logger.info(f"FOLIO_STORE_ROOT override: {store_root}")
        pricing.store.root = store_root

    return service_config


def _build(config: Path) -> PricingService:
    service_config = load_service_config(config)
    typer.echo(f"[Folio Live] Loaded config '{service_config.id}'")
    return PricingService.from_config(service_config)


@app.command()
def run(
    config: Path = typer.Argument(..., exists=True, help="Path to service config YAML"),
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between refresh cycles (overrides config)"
    ),
) -> None:
    """Run the background refresh loop until interrupted.

    Example:
        folio-live run config.yaml --interval 900
    """
    service = _build(config)

    async def _main() -> None:
        await service.start_background_refresh(interval)
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await service.stop_background_refresh()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, stopping gracefully")


@app.command()
def refresh(
    config: Path = typer.Argument(..., exists=True, help="Path to service config YAML"),
    symbols: Optional[list[str]] = typer.Argument(None, help="Symbols to refresh (default: all tracked)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds"),
    stocks: bool = typer.Option(True, "--stocks/--no-stocks", help="Include equity symbols"),
    funds: bool = typer.Option(True, "--funds/--no-funds", help="Include fund scheme codes"),
) -> None:
    """Refresh prices once and print a per-symbol summary."""
    service = _build(config)

    async def _main():
        if symbols:
            return await service.quick_refresh(symbols, timeout)
        request_id = await service.start_refresh(
            RefreshOptions(include_stocks=stocks, include_mutual_funds=funds)
        )
        await service.realtime.wait_for(request_id)
        return service.get_refresh_status(request_id)

    job = asyncio.run(_main())
    typer.echo(f"Refresh {job.request_id}: {job.status.value}")
    for detail in job.results.details:
        if detail.success:
            suffix = f" ({'; '.join(detail.warnings)})" if detail.warnings else ""
            typer.echo(f"  {detail.symbol:<16} {detail.price}{suffix}")
        else:
            typer.echo(f"  {detail.symbol:<16} FAILED: {detail.error}")
    typer.echo(
        f"Success: {job.results.success}, Failed: {job.results.failed}, "
        f"Duration: {job.results.duration:.1f}s"
    )
    if job.results.failed:
        raise typer.Exit(code=1)


@app.command()
def price(
    config: Path = typer.Argument(..., exists=True, help="Path to service config YAML"),
    symbol: str = typer.Argument(..., help="Ticker or fund scheme code"),
    force: bool = typer.Option(False, "--force", help="Skip the fresh-cache shortcut"),
) -> None:
    """Print the best available price for SYMBOL with its confidence."""
    service = _build(config)
    try:
        decision = asyncio.run(service.get_price_with_fallback(symbol, force_refresh=force))
    except PricingError as exc:
        typer.echo(f"Error: {describe_error(exc)}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"{decision.symbol}: {decision.price} ({decision.source.value})")
    typer.echo(f"Confidence: {decision.confidence.value} | Fallback: {decision.fallback_level.value}")
    for warning in decision.warnings:
        typer.echo(f"Warning: {warning}")


@app.command()
def health(
    config: Path = typer.Argument(..., exists=True, help="Path to service config YAML"),
) -> None:
    """Probe sources and the store, then print rate-limit headroom."""
    service = _build(config)
    report = asyncio.run(service.check_pricing_service_health())

    typer.echo(f"Status: {report['status'].upper()}")
    for name, info in report["services"].items():
        state = "up" if info["healthy"] else f"DOWN ({info['error']})"
        typer.echo(f"  {name:<20} {state} [{info['response_time'] * 1000:.0f} ms]")
    for source, windows in report["rate_limits"].items():
        summary = ", ".join(
            f"{window} {info['remaining']}/{info['limit']}" for window, info in windows.items()
        )
        typer.echo(f"  {source:<20} {summary}")
    if report["status"] == "unhealthy":
        raise typer.Exit(code=1)


@app.command("cleanup-history")
def cleanup_history(
    config: Path = typer.Argument(..., exists=True, help="Path to service config YAML"),
    days: Optional[int] = typer.Option(None, "--days", help="Days of history to keep"),
) -> None:
    """Delete price history older than the retention window."""
    service = _build(config)
    deleted = asyncio.run(service.cleanup_price_history(days))
    typer.echo(f"Deleted {deleted} price history records")


if __name__ == "__main__":
    app()
