"""Unit tests — FixedWindowRateLimiter.

Tests cover:
  - the request after the budget is denied
  - a new window starts once the old one ends
  - check_or_raise carries a positive Retry-After
  - policies keep separate counters for the same key
  - reset and sweep
"""

from __future__ import annotations

import asyncio

import pytest

from ngo_backoffice.exceptions import RateLimitError
from ngo_backoffice.security.rate_limiter import FixedWindowRateLimiter, RateLimitPolicy

pytestmark = pytest.mark.unit

LOGIN = RateLimitPolicy("auth", max_requests=5, window_minutes=15)
WRITE = RateLimitPolicy("write", max_requests=20, window_minutes=1)


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def limiter(clock: _Clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(clock=clock)


class TestBudget:
    def test_sixth_request_in_window_is_denied(self, limiter: FixedWindowRateLimiter) -> None:
        results = [limiter.check("10.0.0.1", LOGIN) for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]

    def test_reset_time_is_fixed_by_first_request(
        self, limiter: FixedWindowRateLimiter, clock: _Clock
    ) -> None:
        first = limiter.check("ip", LOGIN)
        clock.now += 60
        second = limiter.check("ip", LOGIN)
        assert first.reset_time == second.reset_time == 1_000.0 + 15 * 60

    def test_new_window_after_reset_time(
        self, limiter: FixedWindowRateLimiter, clock: _Clock
    ) -> None:
        for _ in range(6):
            limiter.check("ip", LOGIN)
        clock.now += 15 * 60
        result = limiter.check("ip", LOGIN)
        assert result.allowed
        assert result.remaining == 4

    def test_keys_are_independent(self, limiter: FixedWindowRateLimiter) -> None:
        for _ in range(5):
            limiter.check("a", LOGIN)
        assert not limiter.check("a", LOGIN).allowed
        assert limiter.check("b", LOGIN).allowed

    def test_policies_are_independent(self, limiter: FixedWindowRateLimiter) -> None:
        for _ in range(5):
            limiter.check("ip", LOGIN)
        assert not limiter.check("ip", LOGIN).allowed
        assert limiter.check("ip", WRITE).allowed


class TestCheckOrRaise:
    def test_raises_with_retry_after(self, limiter: FixedWindowRateLimiter, clock: _Clock) -> None:
        for _ in range(5):
            limiter.check_or_raise("ip", LOGIN)
        clock.now += 100
        with pytest.raises(RateLimitError) as exc_info:
            limiter.check_or_raise("ip", LOGIN)
        err = exc_info.value
        assert err.limit == 5
        assert err.retry_after_seconds == 15 * 60 - 100
        assert err.context["retry_after_minutes"] == 14

    def test_retry_after_is_at_least_one_second(
        self, limiter: FixedWindowRateLimiter, clock: _Clock
    ) -> None:
        for _ in range(5):
            limiter.check("ip", LOGIN)
        clock.now += 15 * 60 - 0.2
        with pytest.raises(RateLimitError) as exc_info:
            limiter.check_or_raise("ip", LOGIN)
        assert exc_info.value.retry_after_seconds == 1


class TestMaintenance:
    def test_reset_single_slot(self, limiter: FixedWindowRateLimiter) -> None:
        for _ in range(5):
            limiter.check("ip", LOGIN)
            limiter.check("ip", WRITE)
        limiter.reset("ip", LOGIN)
        assert limiter.check("ip", LOGIN).remaining == 4
        assert limiter.check("ip", WRITE).remaining == 14

    def test_reset_all(self, limiter: FixedWindowRateLimiter) -> None:
        limiter.check("a", LOGIN)
        limiter.check("b", WRITE)
        limiter.reset()
        assert len(limiter) == 0

    def test_sweep_evicts_only_ended_windows(
        self, limiter: FixedWindowRateLimiter, clock: _Clock
    ) -> None:
        limiter.check("short", WRITE)
        limiter.check("long", LOGIN)
        clock.now += 120
        assert limiter.sweep() == 1
        assert len(limiter) == 1

    async def test_background_sweeper_runs_and_stops(
        self, limiter: FixedWindowRateLimiter, clock: _Clock
    ) -> None:
        limiter.check("ip", WRITE)
        clock.now += 120
        limiter.start_sweeper(0.01)
        await asyncio.sleep(0.05)
        await limiter.stop_sweeper()
        assert len(limiter) == 0
