"""Tests for the minimum-interval rate limiter."""

import pytest

from kb_retriever.ratelimit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_acquire_is_immediate():
    """Test the first call does not wait."""
    clock = FakeClock()
    limiter = RateLimiter(0.2, clock=clock, sleep=clock.sleep)
    assert limiter.acquire() == 0.0
    assert clock.sleeps == []


def test_back_to_back_calls_are_spaced():
    """Test consecutive calls wait out the interval."""
    clock = FakeClock()
    limiter = RateLimiter(0.2, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    waited = limiter.acquire()
    assert waited == pytest.approx(0.2)
    limiter.acquire()
    assert clock.sleeps == pytest.approx([0.2, 0.2])


def test_no_wait_after_interval_elapsed():
    """Test no sleep when the caller was already slow enough."""
    clock = FakeClock()
    limiter = RateLimiter(0.2, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    clock.now += 1.0
    assert limiter.acquire() == 0.0
    assert clock.sleeps == []


def test_zero_interval_disables_limiting():
    """Test a zero interval never sleeps."""
    clock = FakeClock()
    limiter = RateLimiter(0, clock=clock, sleep=clock.sleep)
    for _ in range(5):
        limiter.acquire()
    assert clock.sleeps == []


def test_reset_and_validation():
    """Test reset grants immediately and negative intervals are rejected."""
    clock = FakeClock()
    limiter = RateLimiter(0.5, clock=clock, sleep=clock.sleep)
    limiter.acquire()
    limiter.reset()
    assert limiter.acquire() == 0.0
    with pytest.raises(ValueError):
        RateLimiter(-1)
