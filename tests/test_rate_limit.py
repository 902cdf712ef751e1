# tests/test_rate_limit.py
import time

import pytest

from app.jobs.rate_limit import SlidingWindowRateLimiter
from tests.helpers.fakes import FakeMonotonic


def test_budget_within_window():
    clock = FakeMonotonic()
    limiter = SlidingWindowRateLimiter(3, 1.0, clock=clock)

    for _ in range(3):
        assert limiter.delay_until_available() == 0
        limiter.record_start()
        clock.advance(0.1)

    assert limiter.starts_in_window == 3
    # Oldest start was 0.3s ago
    assert limiter.delay_until_available() == pytest.approx(0.7)


def test_window_slides_per_start():
    clock = FakeMonotonic()
    limiter = SlidingWindowRateLimiter(2, 1.0, clock=clock)

    limiter.record_start()           # t=0
    clock.advance(0.5)
    limiter.record_start()           # t=0.5
    clock.advance(0.4)               # t=0.9
    assert limiter.delay_until_available() == pytest.approx(0.1)

    clock.advance(0.1)               # t=1.0, first start leaves the window
    assert limiter.delay_until_available() == 0
    assert limiter.starts_in_window == 1


def test_invalid_configuration():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0, 1.0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(1, 0)


async def test_acquire_waits_for_budget():
    limiter = SlidingWindowRateLimiter(1, 0.1)

    start = time.monotonic()
    await limiter.acquire()
    await limiter.acquire()
    await limiter.acquire()

    assert time.monotonic() - start >= 0.19
