"""Tests for the shared token-bucket rate limiter."""

import asyncio

import pytest

from rd_downloader.api import rate_limiter as rate_limiter_module
from rd_downloader.api.rate_limiter import TokenBucketRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    clock = FakeClock()
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)
        clock.now += delay

    clock.sleeps = sleeps
    monkeypatch.setattr(rate_limiter_module.asyncio, "sleep", fake_sleep)
    return clock


class TestTokenBucketRateLimiter:
    def test_burst_passes_without_waiting(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=60, burst=3, clock=clock)

        async def scenario():
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(scenario())

        assert clock.sleeps == []

    def test_empty_bucket_waits_for_refill(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=120, burst=1, clock=clock)

        async def scenario():
            await limiter.acquire()
            await limiter.acquire()

        asyncio.run(scenario())

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_idle_time_refills_up_to_burst(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=60, burst=2, clock=clock)

        async def scenario():
            await limiter.acquire()
            await limiter.acquire()
            clock.now += 3600
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(scenario())

        # Only the third request after the pause exceeds the burst.
        assert clock.sleeps == [pytest.approx(1.0)]

    def test_429_halves_rate_and_drains_bucket(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=240, burst=5, clock=clock)

        async def scenario():
            await limiter.on_429()
            await limiter.acquire()

        asyncio.run(scenario())

        assert limiter.rate_per_second == pytest.approx(2.0)
        assert clock.sleeps == [pytest.approx(0.5)]

    def test_rate_never_drops_below_floor(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=160, clock=clock)

        async def scenario():
            for _ in range(10):
                await limiter.on_429()

        asyncio.run(scenario())

        assert limiter.rate_per_second == pytest.approx(160 / 60 / 16)

    def test_rate_recovers_after_quiet_period(self, clock):
        limiter = TokenBucketRateLimiter(requests_per_minute=240, clock=clock)

        async def scenario():
            await limiter.on_429()
            clock.now += 301
            await limiter.acquire()

        asyncio.run(scenario())

        assert limiter.rate_per_second == pytest.approx(2.0 * 1.05)
