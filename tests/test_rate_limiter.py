"""Tests for the shared rate limiter."""

import threading

import pytest

from conftest import FakeClock
from cjscout.errors import RateLimitTimeout
from cjscout.rate_limiter import RateLimiter


def test_first_acquire_does_not_wait():
    """Test that an idle limiter hands out a slot immediately."""
    clock = FakeClock(100.0)
    limiter = RateLimiter(interval=1.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    assert clock.sleeps == []


def test_back_to_back_acquires_are_spaced_by_interval():
    """Test that consecutive callers are spaced one interval apart."""
    clock = FakeClock(100.0)
    limiter = RateLimiter(interval=1.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    limiter.acquire()
    limiter.acquire()
    assert clock.sleeps == [1.0, 1.0]
    assert clock.now == 102.0


def test_acquire_times_out_with_distinct_error():
    """Test that a slot beyond the timeout raises RateLimitTimeout."""
    clock = FakeClock()
    limiter = RateLimiter(interval=1.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    with pytest.raises(RateLimitTimeout):
        limiter.acquire(timeout=0.5)


def test_timed_out_acquire_does_not_reserve_a_slot():
    """Test that a failed acquire leaves the schedule untouched."""
    clock = FakeClock()
    limiter = RateLimiter(interval=1.0, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    with pytest.raises(RateLimitTimeout):
        limiter.acquire(timeout=0.1)
    clock.advance(1.0)
    limiter.acquire(timeout=0.1)
    assert clock.sleeps == []


def test_cancelled_acquire_raises():
    """Test that a set cancel event aborts the acquire."""
    limiter = RateLimiter(interval=1.0)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RateLimitTimeout):
        limiter.acquire(cancel=cancel)


def test_negative_interval_rejected():
    """Test that a negative interval is rejected."""
    with pytest.raises(ValueError):
        RateLimiter(interval=-1)
