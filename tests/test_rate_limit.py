"""Tests for the fixed-window limiters."""

from __future__ import annotations

import pytest

from slovo.core import rate_limit
from slovo.core.rate_limit import InMemoryRateLimiter, RedisRateLimiter, build_rate_limiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.mark.asyncio
async def test_allows_up_to_limit_within_window() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_requests=3, window_ms=1000, clock=clock)

    results = [await limiter.allow("guess", "42") for _ in range(4)]

    assert results == [True, True, True, False]


@pytest.mark.asyncio
async def test_window_elapses_and_counter_resets() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_requests=1, window_ms=1000, clock=clock)

    assert await limiter.allow("guess", "42")
    assert not await limiter.allow("guess", "42")

    clock.advance(0.999)
    assert not await limiter.allow("guess", "42")

    clock.advance(0.002)
    assert await limiter.allow("guess", "42")


@pytest.mark.asyncio
async def test_keys_are_independent() -> None:
    limiter = InMemoryRateLimiter(max_requests=1, window_ms=1000, clock=FakeClock())

    assert await limiter.allow("guess", "1")
    assert await limiter.allow("guess", "2")
    assert await limiter.allow("message", "1")
    assert not await limiter.allow("guess", "1")


@pytest.mark.asyncio
async def test_reset_clears_a_key() -> None:
    limiter = InMemoryRateLimiter(max_requests=1, window_ms=1000, clock=FakeClock())
    await limiter.allow("guess", "1")

    await limiter.reset("guess", "1")

    assert await limiter.allow("guess", "1")


def test_expired_windows_are_pruned_when_full() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_requests=1, window_ms=1000, clock=clock, max_keys=2)
    limiter.hit("guess", "1")
    limiter.hit("guess", "2")

    clock.advance(2)
    limiter.hit("guess", "3")

    assert len(limiter._windows) == 1


@pytest.mark.asyncio
async def test_redis_limiter_counts_and_fails_open(monkeypatch) -> None:
    counts = {}

    async def fake_counter(key, window_ms, client=None):
        counts[key] = counts.get(key, 0) + 1
        return counts[key]

    monkeypatch.setattr(rate_limit, "incr_window_counter", fake_counter)
    limiter = RedisRateLimiter(max_requests=2, window_ms=1000)

    assert await limiter.allow("guess", "9")
    assert await limiter.allow("guess", "9")
    assert not await limiter.allow("guess", "9")
    assert counts == {"ratelimit:guess:9": 3}

    async def unavailable(key, window_ms, client=None):
        return None

    monkeypatch.setattr(rate_limit, "incr_window_counter", unavailable)
    assert await limiter.allow("guess", "9")


def test_backend_selection() -> None:
    assert isinstance(build_rate_limiter("memory"), InMemoryRateLimiter)
    assert isinstance(build_rate_limiter("redis"), RedisRateLimiter)
