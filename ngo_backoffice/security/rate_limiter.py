"""Security layer — Fixed-window rate limiter.

In-memory counters keyed by ``policy_name:identifier`` (usually the client
IP).  Each key holds a count and the end of its current window:

  - first request, or first request after the window ended → allowed, count=1,
    new window = now + window
  - later requests in the window → allowed while ``count < max_requests``
  - once ``count >= max_requests`` → denied with ``remaining=0`` until the
    window ends

Windows reset hard at the boundary, so a client can burst up to twice the
limit across a boundary.  Counters live in process memory only: they are
lost on restart and are not shared between processes.

A background sweep evicts ended windows to bound memory.  Correctness never
depends on it.

Usage::

    limiter = FixedWindowRateLimiter()
    policy = RateLimitPolicy("auth", max_requests=5, window_minutes=15)
    result = limiter.check("203.0.113.7", policy)
    limiter.check_or_raise("203.0.113.7", policy)   # raises RateLimitError
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ngo_backoffice.exceptions import RateLimitError
from ngo_backoffice.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named request budget for one endpoint class."""

    name: str
    max_requests: int
    window_minutes: float

    @property
    def window_seconds(self) -> float:
        return self.window_minutes * 60.0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float  # epoch seconds

    def retry_after_seconds(self, now: float | None = None) -> float:
        current = now if now is not None else time.time()
        return max(0.0, self.reset_time - current)


@dataclass
class _Window:
    count: int
    reset_time: float


class FixedWindowRateLimiter:
    """Fixed-window counter table shared by every request handler.

    The table is guarded by a lock so the limiter stays correct when FastAPI
    runs sync dependencies in its thread pool.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Count one request for *key* under *policy* and return the verdict."""
        now = self._clock()
        slot = f"{policy.name}:{key}"
        with self._lock:
            window = self._windows.get(slot)

            if window is None or now >= window.reset_time:
                reset_time = now + policy.window_seconds
                self._windows[slot] = _Window(count=1, reset_time=reset_time)
                return RateLimitResult(
                    allowed=True,
                    remaining=policy.max_requests - 1,
                    reset_time=reset_time,
                )

            if window.count < policy.max_requests:
                window.count += 1
                return RateLimitResult(
                    allowed=True,
                    remaining=policy.max_requests - window.count,
                    reset_time=window.reset_time,
                )

            return RateLimitResult(allowed=False, remaining=0, reset_time=window.reset_time)

    def check_or_raise(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Check *key*; raise :class:`RateLimitError` when the budget is spent."""
        result = self.check(key, policy)
        if not result.allowed:
            retry_after = result.retry_after_seconds(self._clock())
            log.warning(
                "rate_limited",
                policy=policy.name,
                key=key,
                retry_after_seconds=round(retry_after, 1),
            )
            raise RateLimitError(
                key=key,
                limit=policy.max_requests,
                retry_after_seconds=retry_after,
            )
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self, key: str | None = None, policy: RateLimitPolicy | None = None) -> None:
        """Reset counters.

        With *key* and *policy* only that slot is cleared; with *key* alone
        every policy slot for that key is cleared; with neither, all state
        is dropped.
        """
        with self._lock:
            if key is None:
                self._windows.clear()
            elif policy is not None:
                self._windows.pop(f"{policy.name}:{key}", None)
            else:
                for slot in [s for s in self._windows if s.split(":", 1)[1] == key]:
                    del self._windows[slot]

    def sweep(self) -> int:
        """Evict ended windows.  Returns the number of entries removed."""
        now = self._clock()
        with self._lock:
            expired = [slot for slot, w in self._windows.items() if now >= w.reset_time]
            for slot in expired:
                del self._windows[slot]
        if expired:
            log.debug("rate_limit_sweep", evicted=len(expired), remaining=len(self._windows))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception as exc:
                log.warning("rate_limit_sweep_failed", error=str(exc))
