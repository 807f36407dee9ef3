"""In-memory windowed rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- A key's window starts at its first request (not on a wall-clock boundary)
  and restarts once a full window has elapsed.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class _WindowState:
    window_start: float
    count: int
    last_seen: float


class InMemoryWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting requests per key inside a rolling window.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of requests per window.
            window_ms: Window duration in milliseconds.
            clock: Time source returning seconds.

        Raises:
            ValueError: If limit or window_ms are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        self._limit = limit
        self._window_seconds = window_ms / 1000
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    @property
    def limit(self) -> int:
        return self._limit

    def current_count(self, key: str) -> int:
        """Return the number of requests counted for ``key`` (0 if untracked)."""
        with self._lock:
            state = self._state_by_key.get(key)
            return state.count if state else 0

    def _get_or_reset_state(self, key: str, now: float) -> _WindowState:
        """Get the state for key, creating it or restarting an elapsed window."""
        state = self._state_by_key.get(key)
        if state is None:
            state = _WindowState(window_start=now, count=0, last_seen=now)
            self._state_by_key[key] = state
        elif now - state.window_start >= self._window_seconds:
            state.window_start = now
            state.count = 0
        state.last_seen = now
        return state

    def consume(self, key: str) -> RateLimitResult:
        """Check the key's window and count the request if quota remains.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            state = self._get_or_reset_state(key, now)
            reset_at = state.window_start + self._window_seconds

            if state.count >= self._limit:
                retry_after = max(0, int(math.ceil(reset_at - now)))
                return RateLimitResult(
                    allowed=False,
                    limit=self._limit,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=retry_after,
                    window_start=state.window_start,
                )

            state.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self._limit,
                remaining=self._limit - state.count,
                reset_at=reset_at,
                retry_after_seconds=None,
                window_start=state.window_start,
            )

    def release(self, key: str, window_start: float) -> bool:
        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or state.window_start != window_start or state.count == 0:
                return False
            state.count -= 1
            return True

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [
                key
                for key, state in self._state_by_key.items()
                if now - state.last_seen > self._window_seconds
            ]
            for key in stale:
                del self._state_by_key[key]
        return len(stale)
