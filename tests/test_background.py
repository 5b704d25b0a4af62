import asyncio
from datetime import timedelta

from folio_core.data.registry import StaticSymbolRegistry
from folio_core.models import PriceSourceName
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.pricing.fetcher import PriceFetcher
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.resilience.retry import RetryPolicy
from folio_core.utils.config import BatchConfig, RateLimitConfig, RefreshConfig
from folio_live.execution.background import BackgroundRefreshService
from tests.fakes import START, RecordingStore, ScriptedSource, cache_entry

GENEROUS = RateLimitConfig(requests_per_minute=1000, requests_per_hour=10000, burst_limit=1000)


class FailingRegistry:
    async def get_all_tracked_symbols(self):
        raise ConnectionError("holdings database offline")


def _service(sources, symbols, store=None, registry=None, **kwargs):
    store = store if store is not None else RecordingStore()
    fetcher = PriceFetcher(
        {source.name: source for source in sources},
        store,
        RateLimiter({name: GENEROUS for name in PriceSourceName if name is not PriceSourceName.HISTORICAL_AVERAGE}),
        retry_policy=RetryPolicy(max_retries=1),
        request_timeout=2.0,
        clock=lambda: START,
    )
    batch = BatchPriceFetcher(fetcher, BatchConfig(batch_size=10, inter_batch_delay=0.0))
    service = BackgroundRefreshService(
        batch,
        registry or StaticSymbolRegistry(symbols),
        store,
        config=RefreshConfig(interval_seconds=3600),
        clock=lambda: START,
        **kwargs,
    )
    return service, store


def test_refresh_once_refreshes_every_tracked_symbol():
    source = ScriptedSource(prices={"INFY": 1500, "TCS": 4000})
    service, store = _service([source], ["INFY", "TCS"])

    results = asyncio.run(service.refresh_once())

    assert results.success == 2
    assert results.failed == 0
    assert {entry.symbol for entry in store.upserts} == {"INFY", "TCS"}
    assert service.last_refresh_time == START
    assert service.cycles_completed == 1
    assert service.is_refreshing is False


def test_refresh_once_is_skipped_while_a_cycle_runs():
    source = ScriptedSource(prices={"INFY": 1500})
    service, _ = _service([source], ["INFY"])
    service.is_refreshing = True

    assert asyncio.run(service.refresh_once()) is None
    assert source.batch_calls == []


def test_overlapping_ticks_are_skipped_not_queued():
    source = ScriptedSource(prices={"INFY": 1500}, delay=0.2)
    service, _ = _service([source], ["INFY"])

    async def scenario():
        await service.start(interval=0.05)
        await asyncio.sleep(0.3)
        await service.stop()

    asyncio.run(scenario())

    assert service.skipped_ticks >= 1
    assert service.cycles_completed == len(source.batch_calls)
    assert service.running is False


def test_stop_waits_for_in_flight_cycle():
    source = ScriptedSource(prices={"INFY": 1500}, delay=0.1)
    service, store = _service([source], ["INFY"])

    async def scenario():
        await service.start()
        await asyncio.sleep(0.01)
        assert service.is_refreshing is True
        await service.stop()

    asyncio.run(scenario())

    assert service.cycles_completed == 1
    assert service.is_refreshing is False
    assert len(store.upserts) == 1


def test_start_twice_keeps_a_single_ticker():
    source = ScriptedSource(prices={"INFY": 1500})
    service, _ = _service([source], ["INFY"])

    async def scenario():
        await service.start(interval=60)
        ticker = service._ticker
        await service.start(interval=60)
        same = service._ticker is ticker
        await service.stop()
        return same

    assert asyncio.run(scenario()) is True


def test_fund_codes_can_be_excluded():
    equities = ScriptedSource(PriceSourceName.EQUITY_API, prices={"INFY": 1500})
    funds = ScriptedSource(PriceSourceName.FUND_NAV, prices={"120503": 45})
    service, _ = _service([equities, funds], ["INFY", "120503"], include_mutual_funds=False)

    results = asyncio.run(service.refresh_once())

    assert results.processed == 1
    assert funds.batch_calls == []


def test_registry_failure_does_not_kill_the_service():
    service, _ = _service([ScriptedSource()], [], registry=FailingRegistry())

    assert asyncio.run(service.refresh_once()) is None
    assert "holdings database offline" in service.last_error
    assert service.is_refreshing is False


def test_health_check_flags_stopped_service_and_empty_cache():
    service, _ = _service([ScriptedSource()], ["INFY"])

    report = asyncio.run(service.health_check())

    assert report["healthy"] is False
    assert "background refresh service is not running" in report["issues"]
    assert "no cached price data" in report["issues"]


def test_health_check_flags_all_stale_cache():
    store = RecordingStore()
    service, _ = _service([ScriptedSource()], ["INFY"], store=store)

    async def scenario():
        await store.upsert_cache(cache_entry("INFY", "1500", timedelta(hours=2)))
        service.running = True
        return await service.health_check()

    report = asyncio.run(scenario())

    assert report["issues"] == ["all cached prices are stale"]
    assert report["statistics"]["stale"] == 1


def test_refresh_statistics_split_fresh_and_stale():
    store = RecordingStore()
    service, _ = _service([ScriptedSource()], ["INFY", "TCS", "HDFC"], store=store)

    async def scenario():
        await store.upsert_cache(cache_entry("INFY", "1500", timedelta(minutes=5)))
        await store.upsert_cache(cache_entry("TCS", "4000", timedelta(hours=3)))
        return await service.get_refresh_statistics()

    stats = asyncio.run(scenario())

    assert stats["total_cached"] == 2
    assert stats["fresh"] == 1
    assert stats["stale"] == 1
    assert stats["tracked_symbols"] == 3
    assert stats["last_update"] == START - timedelta(minutes=5)
