"""
Tests for the fixed-window rate limiter
"""
from conftest import FakeClock
from renovatr.rate_limiter import FixedWindowRateLimiter


def test_admits_up_to_max_then_blocks():
    limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60, clock=FakeClock())

    assert [limiter.check("1.2.3.4") for _ in range(5)] == [True, True, True, False, False]


def test_window_expiry_opens_a_new_window():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
    limiter.check("a")
    limiter.check("a")
    assert limiter.check("a") is False
    assert limiter.retry_after("a") == 60

    clock.now += 60.5
    assert limiter.check("a") is True


def test_identifiers_are_independent():
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    assert limiter.check("a") is True
    assert limiter.check("a") is False
    assert limiter.check("b") is True


def test_reset_window():
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
    limiter.check("a")
    limiter.check("b")

    limiter.reset_window("a")
    assert limiter.check("a") is True
    assert limiter.check("b") is False

    limiter.reset_window()
    assert limiter.check("b") is True


def test_sweep_expired():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=10, clock=clock)
    limiter.check("old")
    clock.now += 5
    limiter.check("new")
    clock.now += 6

    assert limiter.sweep_expired() == 1
    assert limiter.retry_after("new") == 0.0


def test_maybe_sweep_runs_once_per_window():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=10, clock=clock)
    for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
        limiter.check(ip)

    clock.now += 5
    assert limiter.maybe_sweep() == 0

    clock.now += 6
    assert limiter.maybe_sweep() == 3
    assert limiter._windows == {}

    limiter.check("10.0.0.4")
    clock.now += 3
    assert limiter.maybe_sweep() == 0
    clock.now += 8
    assert limiter.maybe_sweep() == 1
