from datetime import timedelta

import pytest

from folio_core.errors import ErrorKind, RateLimitError
from folio_core.models import PriceSourceName
from folio_core.resilience.rate_limit import RateLimiter
from folio_core.utils.config import RateLimitConfig
from tests.fakes import START, ManualClock

EQUITY = PriceSourceName.EQUITY_API
FUND = PriceSourceName.FUND_NAV


def _limiter(clock, **limits):
    config = RateLimitConfig(**limits)
    return RateLimiter({EQUITY: config}, clock=clock.time)


def test_burst_limit_plus_one_is_rejected_then_recovers():
    clock = ManualClock()
    limiter = _limiter(clock, burst_limit=3, requests_per_minute=100, requests_per_hour=1000)

    for _ in range(3):
        limiter.check_rate_limit(EQUITY)
    with pytest.raises(RateLimitError) as excinfo:
        limiter.check_rate_limit(EQUITY)

    assert excinfo.value.kind is ErrorKind.RATE_LIMIT
    assert excinfo.value.retryable is True
    assert excinfo.value.reset_time == START + timedelta(seconds=10)

    clock.advance(10)
    limiter.check_rate_limit(EQUITY)


def test_default_fund_limits_allow_five_request_bursts():
    clock = ManualClock()
    limiter = RateLimiter(clock=clock.time)

    for _ in range(5):
        limiter.check_rate_limit(FUND)
    with pytest.raises(RateLimitError):
        limiter.check_rate_limit(FUND)
    # equities have their own counters
    limiter.check_rate_limit(EQUITY)


def test_error_carries_soonest_reset_across_violated_windows():
    clock = ManualClock()
    limiter = _limiter(clock, burst_limit=2, requests_per_minute=2, requests_per_hour=1000)

    limiter.check_rate_limit(EQUITY)
    clock.advance(5)
    limiter.check_rate_limit(EQUITY)

    with pytest.raises(RateLimitError) as excinfo:
        limiter.check_rate_limit(EQUITY)

    # burst window opened at t=0 and closes at t=10, minute window at t=60
    assert excinfo.value.reset_time == START + timedelta(seconds=10)


def test_rejected_request_does_not_increment_any_window():
    clock = ManualClock()
    limiter = _limiter(clock, burst_limit=2, requests_per_minute=3, requests_per_hour=1000)

    limiter.check_rate_limit(EQUITY)
    limiter.check_rate_limit(EQUITY)
    with pytest.raises(RateLimitError):
        limiter.check_rate_limit(EQUITY)

    status = limiter.get_rate_limit_status(EQUITY)
    assert status["minute"]["remaining"] == 1
    assert status["hour"]["remaining"] == 998

    clock.advance(11)
    limiter.check_rate_limit(EQUITY)
    with pytest.raises(RateLimitError) as excinfo:
        limiter.check_rate_limit(EQUITY)

    assert "Minute" in str(excinfo.value)
    status = limiter.get_rate_limit_status(EQUITY)
    assert status["burst"]["remaining"] == 1
    assert status["minute"]["remaining"] == 0


def test_status_reports_unused_and_expired_windows_as_full():
    clock = ManualClock()
    limiter = _limiter(clock, burst_limit=5, requests_per_minute=10, requests_per_hour=100)

    status = limiter.get_rate_limit_status(EQUITY)
    assert status["burst"] == {"limit": 5, "remaining": 5, "reset_at": None}

    limiter.check_rate_limit(EQUITY)
    status = limiter.get_rate_limit_status(EQUITY)
    assert status["burst"]["remaining"] == 4
    assert status["minute"]["reset_at"] == START + timedelta(seconds=60)

    clock.advance(3600)
    status = limiter.get_rate_limit_status(EQUITY)
    assert status["hour"]["remaining"] == 100


def test_unknown_source_is_rejected():
    limiter = RateLimiter({EQUITY: RateLimitConfig()})

    with pytest.raises(ValueError):
        limiter.check_rate_limit(FUND)


def test_reset_clears_counters():
    clock = ManualClock()
    limiter = _limiter(clock, burst_limit=1, requests_per_minute=10, requests_per_hour=100)

    limiter.check_rate_limit(EQUITY)
    limiter.reset()
    limiter.check_rate_limit(EQUITY)
