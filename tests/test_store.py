import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from folio_core.data.cache import ParquetPriceStore
from folio_core.data.store import InMemoryPriceStore
from folio_core.models import PriceSourceName
from tests.fakes import START, cache_entry, history_record


@pytest.fixture(params=["parquet", "memory"])
def store(request, tmp_path):
    if request.param == "parquet":
        return ParquetPriceStore(tmp_path / "prices")
    return InMemoryPriceStore()


def test_upsert_keeps_latest_entry_per_symbol(store):
    async def scenario():
        await store.upsert_cache(cache_entry("INFY", "1500.10", timedelta(hours=2)))
        await store.upsert_cache(cache_entry("INFY", "1512.35", timedelta(minutes=1)))
        await store.upsert_cache(cache_entry("120503", "45.6789", timedelta(minutes=1), source=PriceSourceName.FUND_NAV))
        return await store.get_cached("INFY"), await store.list_cached(), await store.get_cached("TCS")

    entry, entries, missing = asyncio.run(scenario())

    assert entry.price == Decimal("1512.35")
    assert entry.last_updated == START - timedelta(minutes=1)
    assert sorted(item.symbol for item in entries) == ["120503", "INFY"]
    assert missing is None


def test_history_query_is_newest_first_with_range_and_limit(store):
    async def scenario():
        for days, price in [(10, "90"), (5, "95"), (1, "100"), (0, "101")]:
            await store.append_history(history_record("INFY", price, timedelta(days=days)))
        await store.append_history(history_record("TCS", "4000", timedelta(days=1)))
        everything = await store.query_history("INFY")
        recent = await store.query_history("INFY", start=START - timedelta(days=6), end=START - timedelta(hours=1))
        limited = await store.query_history("INFY", limit=2)
        return everything, recent, limited

    everything, recent, limited = asyncio.run(scenario())

    assert [record.price for record in everything] == [Decimal(p) for p in ("101", "100", "95", "90")]
    assert [record.price for record in recent] == [Decimal("100"), Decimal("95")]
    assert [record.price for record in limited] == [Decimal("101"), Decimal("100")]


def test_delete_history_older_than_cutoff(store):
    async def scenario():
        for days in (400, 300, 10):
            await store.append_history(history_record("INFY", "100", timedelta(days=days)))
        deleted = await store.delete_history_older_than(START - timedelta(days=365))
        return deleted, await store.query_history("INFY")

    deleted, remaining = asyncio.run(scenario())

    assert deleted == 1
    assert len(remaining) == 2


def test_parquet_store_survives_reload(tmp_path):
    root = tmp_path / "prices"

    async def write():
        store = ParquetPriceStore(root)
        await store.upsert_cache(cache_entry("INFY", "1500.123456", timedelta(minutes=3)))
        await store.append_history(history_record("INFY", "1500.123456", timedelta(minutes=3)))

    async def read():
        store = ParquetPriceStore(root)
        return await store.get_cached("INFY"), await store.query_history("INFY")

    asyncio.run(write())
    entry, history = asyncio.run(read())

    assert (root / "price_cache.parquet").exists()
    assert entry.price == Decimal("1500.123456")
    assert entry.source is PriceSourceName.EQUITY_API
    assert entry.last_updated == START - timedelta(minutes=3)
    assert len(history) == 1
