import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from folio_core.data.registry import CachedSymbolRegistry, StaticSymbolRegistry
from folio_core.data.store import InMemoryPriceStore
from folio_core.errors import DataNotFoundError, NoPriceAvailableError, TransientSourceError
from folio_core.models import Confidence, FallbackLevel, PriceSourceName, RefreshStatus, utc_now
from folio_core.pricing.batch import BatchPriceFetcher
from folio_core.pricing.fetcher import PriceFetcher
from folio_core.resilience.fallback import StaleDataFallbackHandler
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.resilience.retry import RetryPolicy
from folio_core.utils.config import BatchConfig, PricingConfig, StoreConfig
from folio_live.service import PricingService
from folio_live.utils.config import LiveServiceConfig
from tests.fakes import START, RecordingSleep, RecordingStore, ScriptedSource, cache_entry, history_record


def _service(source, store=None, symbols=("X", "Y"), retries=2):
    store = store if store is not None else RecordingStore()
    fetcher = PriceFetcher(
        {source.name: source},
        store,
        RateLimiter(),
        retry_policy=RetryPolicy(max_retries=retries),
        request_timeout=1.0,
        fallback=StaleDataFallbackHandler(store, clock=lambda: START),
        clock=lambda: START,
        sleep=RecordingSleep(),
    )
    batch = BatchPriceFetcher(fetcher, BatchConfig(inter_batch_delay=0.0), sleep=RecordingSleep())
    return PricingService(fetcher, batch, StaticSymbolRegistry(symbols)), store


def test_end_to_end_partial_batch():
    source = ScriptedSource(
        prices={"X": 100},
        errors={"Y": DataNotFoundError("not found", symbol="Y")},
    )
    service, store = _service(source)

    async def scenario():
        tracked = await service.registry.get_all_tracked_symbols()
        return tracked, await service.batch_get_prices(tracked)

    tracked, results = asyncio.run(scenario())

    assert tracked == ["X", "Y"]
    assert [(r.symbol, r.price, r.error) for r in results] == [
        ("X", Decimal("100"), None),
        ("Y", None, "not found"),
    ]
    assert [entry.symbol for entry in store.upserts] == ["X"]
    assert source.calls == ["X", "Y"]


def test_fresh_cache_is_served_without_calling_the_source():
    store = RecordingStore()
    asyncio.run(store.upsert_cache(cache_entry("X", "99", timedelta(minutes=10))))
    source = ScriptedSource(prices={"X": 100})
    service, _ = _service(source, store=store)

    decision = asyncio.run(service.get_price_with_fallback("x"))

    assert decision.price == Decimal("99")
    assert decision.confidence is Confidence.HIGH
    assert source.calls == []


def test_force_refresh_fetches_and_writes_through():
    store = RecordingStore()
    asyncio.run(store.upsert_cache(cache_entry("X", "99", timedelta(minutes=10))))
    source = ScriptedSource(prices={"X": 100})
    service, _ = _service(source, store=store)

    decision = asyncio.run(service.get_price_with_fallback("X", force_refresh=True))

    assert decision.price == Decimal("100")
    assert decision.fallback_level is FallbackLevel.NONE
    assert source.calls == ["X"]
    assert store.upserts[-1].price == Decimal("100")
    assert len(store.appends) == 1


def test_live_failure_degrades_to_stale_cache():
    store = RecordingStore()
    asyncio.run(store.upsert_cache(cache_entry("X", "99", timedelta(hours=3))))
    source = ScriptedSource(errors={"X": TransientSourceError("upstream 502")})
    service, _ = _service(source, store=store)

    decision = asyncio.run(service.get_price_with_fallback("X"))

    assert decision.fallback_level is FallbackLevel.STALE
    assert decision.confidence is Confidence.MEDIUM
    assert decision.warnings == ("data is 3 hours old",)
    assert source.calls == ["X", "X"]


def test_not_found_degrades_to_historical_average():
    store = RecordingStore()
    asyncio.run(store.append_history(history_record("X", "80", timedelta(days=2))))
    source = ScriptedSource(errors={"X": DataNotFoundError("not found", symbol="X")})
    service, _ = _service(source, store=store)

    decision = asyncio.run(service.get_price_with_fallback("X"))

    assert decision.source is PriceSourceName.HISTORICAL_AVERAGE
    assert decision.price == Decimal("80")
    assert source.calls == ["X"]


def test_no_data_anywhere_is_a_hard_error():
    source = ScriptedSource(errors={"X": DataNotFoundError("not found", symbol="X")})
    service, _ = _service(source)

    with pytest.raises(NoPriceAvailableError):
        asyncio.run(service.get_price_with_fallback("X"))


def test_refresh_round_trip_through_service():
    source = ScriptedSource(prices={"X": 1, "Y": 2})
    service, _ = _service(source)

    async def scenario():
        request_id = await service.start_refresh()
        await service.realtime.wait_for(request_id)
        return service.get_refresh_status(request_id), service.cancel_refresh(request_id)

    job, cancelled = asyncio.run(scenario())

    assert job.status is RefreshStatus.COMPLETED
    assert job.results.success == 2
    assert cancelled is False


def test_health_report_includes_background_status():
    source = ScriptedSource(prices={"X": 1})
    service, _ = _service(source)

    report = asyncio.run(service.check_pricing_service_health())

    assert report["status"] == "healthy"
    assert report["background_refresh"]["running"] is False


def test_trend_cleanup_and_stats_delegate_to_store():
    store = RecordingStore()
    now = utc_now()

    async def seed():
        await store.append_history(history_record("X", "100", timedelta(days=500), now=now))
        await store.append_history(history_record("X", "100", timedelta(days=5), now=now))
        await store.upsert_cache(cache_entry("X", "100", timedelta(days=5), now=now))

    asyncio.run(seed())
    service, _ = _service(ScriptedSource(), store=store)

    assert asyncio.run(service.get_cache_stats())["count"] == 1
    assert asyncio.run(service.cleanup_price_history()) == 1
    assert asyncio.run(service.get_price_trend("X")).data_points == 1


def test_from_config_uses_cached_registry_without_symbols():
    config = LiveServiceConfig(id="test", pricing=PricingConfig(store=StoreConfig(backend="memory")))

    service = PricingService.from_config(config)

    assert isinstance(service.store, InMemoryPriceStore)
    assert isinstance(service.registry, CachedSymbolRegistry)
    assert service.fetcher.sources == {}


def test_from_config_with_symbols_and_injected_sources():
    config = LiveServiceConfig(id="test", symbols=["infy", "120503"])
    source = ScriptedSource(prices={"INFY": 1500})

    service = PricingService.from_config(
        config, store=InMemoryPriceStore(), sources={PriceSourceName.EQUITY_API: source}
    )

    assert asyncio.run(service.registry.get_all_tracked_symbols()) == ["INFY", "120503"]
    assert service.fetcher.retry_policy.max_retries == 3


def test_background_refresh_lifecycle_through_service():
    source = ScriptedSource(prices={"X": 1, "Y": 2})
    service, store = _service(source)

    async def scenario():
        await service.start_background_refresh(interval=3600)
        await asyncio.sleep(0)
        running = service.background.get_service_status()["running"]
        await service.stop_background_refresh()
        return running, service.background.get_service_status()

    running, status = asyncio.run(scenario())

    assert running is True
    assert status["running"] is False
    assert status["cycles_completed"] == 1
    assert sorted(entry.symbol for entry in store.upserts) == ["X", "Y"]
