from pathlib import Path

import pytest
from pydantic import ValidationError

from folio_core.models import PriceSourceName
from folio_core.utils.config import (
    FallbackConfig,
    PricingConfig,
    RetryConfig,
    SourceConfig,
    load_yaml_config,
)
from folio_live.utils.config import LiveServiceConfig

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "pricing.example.yaml"


def test_example_config_loads():
    config = load_yaml_config(EXAMPLE_CONFIG, LiveServiceConfig)

    assert config.get_symbols() == ["RELIANCE", "INFY", "120503"]
    assert [source.name for source in config.pricing.sources] == [
        PriceSourceName.EQUITY_API,
        PriceSourceName.FUND_NAV,
    ]
    assert config.pricing.sources[0].symbol_prefix == "NSE:"
    assert config.pricing.batch.batch_size == 10


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "absent.yaml", LiveServiceConfig)


def test_rate_limits_merge_defaults_with_overrides():
    config = PricingConfig(
        sources=[
            SourceConfig(
                name="FUND_NAV",
                url="https://nav.test",
                rate_limit={"requests_per_minute": 2, "requests_per_hour": 20, "burst_limit": 1},
            )
        ]
    )

    limits = config.rate_limits()

    assert limits[PriceSourceName.FUND_NAV].burst_limit == 1
    assert limits[PriceSourceName.EQUITY_API].requests_per_minute == 100


def test_single_symbol_is_normalised_into_symbols():
    config = LiveServiceConfig(id="one", symbol=" infy ")

    assert config.symbol is None
    assert config.get_symbols() == ["INFY"]


def test_symbol_and_symbols_are_mutually_exclusive():
    with pytest.raises(ValidationError):
        LiveServiceConfig(id="both", symbol="INFY", symbols=["TCS"])


@pytest.mark.parametrize(
    "factory",
    [
        lambda: RetryConfig(max_retries=0),
        lambda: RetryConfig(multiplier=0.5),
        lambda: FallbackConfig(fresh_threshold_seconds=7200, stale_threshold_seconds=3600),
        lambda: SourceConfig(name="HISTORICAL_AVERAGE", url="https://x.test"),
        lambda: PricingConfig(
            sources=[
                {"name": "EQUITY_API", "url": "https://a.test"},
                {"name": "EQUITY_API", "url": "https://b.test"},
            ]
        ),
    ],
)
def test_invalid_settings_are_rejected(factory):
    with pytest.raises(ValidationError):
        factory()


def test_environment_overrides(monkeypatch, tmp_path):
    from folio_live.cli.main import load_service_config

    monkeypatch.setenv("FOLIO_REFRESH_INTERVAL", "600")
    monkeypatch.setenv("FOLIO_BATCH_SIZE", "not-a-number")
    monkeypatch.setenv("FOLIO_STORE_ROOT", str(tmp_path / "store"))

    config = load_service_config(EXAMPLE_CONFIG)

    assert config.pricing.refresh.interval_seconds == 600
    assert config.pricing.batch.batch_size == 10
    assert config.pricing.store.root == tmp_path / "store"
