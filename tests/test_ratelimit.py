"""Tests for the enrichment rate limiter and its backoff policy."""

from datetime import timedelta

from sentinel.config import RateLimitSettings
from sentinel.ratelimit import RateLimiter

from conftest import FakeClock


def limiter(clock: FakeClock, **settings) -> RateLimiter:
    defaults = dict(max_requests=2, window_seconds=60, failure_threshold=3, backoff_base_seconds=10, backoff_max_seconds=100)
    defaults.update(settings)
    return RateLimiter(RateLimitSettings(**defaults), clock)


def test_quota_per_window(clock: FakeClock) -> None:
    rl = limiter(clock)
    assert rl.allow()
    assert rl.allow()
    assert not rl.allow()
    clock.advance(seconds=61)
    assert rl.allow()


def test_degraded_after_threshold_failures(clock: FakeClock) -> None:
    rl = limiter(clock)
    rl.record_failure()
    rl.record_failure()
    assert not rl.degraded
    assert rl.backoff_until is None
    rl.record_failure()
    assert rl.degraded
    assert rl.backoff_until == clock() + timedelta(seconds=10)
    assert not rl.allow()


def test_trial_request_after_backoff_and_recovery(clock: FakeClock) -> None:
    rl = limiter(clock, max_requests=100)
    for _ in range(3):
        rl.record_failure()
    clock.advance(seconds=11)
    assert rl.allow()
    rl.record_success()
    assert not rl.degraded
    assert rl.consecutive_failures == 0
    assert rl.backoff_until is None


def test_failed_trial_request_extends_backoff(clock: FakeClock) -> None:
    rl = limiter(clock, max_requests=100)
    for _ in range(3):
        rl.record_failure()
    clock.advance(seconds=11)
    assert rl.allow()
    rl.record_failure()
    assert rl.backoff_until == clock() + timedelta(seconds=20)


def test_exponential_backoff_is_capped(clock: FakeClock) -> None:
    rl = limiter(clock)
    assert [rl.backoff_seconds(n) for n in (3, 4, 5, 6, 7)] == [10, 20, 40, 80, 100]


def test_linear_backoff_policy(clock: FakeClock) -> None:
    rl = limiter(clock, backoff_policy="linear")
    assert [rl.backoff_seconds(n) for n in (3, 4, 5)] == [10, 20, 30]


def test_retry_after_overrides_short_backoff(clock: FakeClock) -> None:
    rl = limiter(clock)
    rl.record_failure(retry_after=45)
    assert not rl.degraded
    assert rl.backoff_until == clock() + timedelta(seconds=45)
    assert not rl.allow()


def test_state_snapshot(clock: FakeClock) -> None:
    rl = limiter(clock)
    rl.allow()
    state = rl.state()
    assert state.request_count == 1
    assert state.max_requests == 2
    assert state.degraded is False
