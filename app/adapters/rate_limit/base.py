"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so window storage can move to a shared store (e.g., Redis) later with
minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: Clock time (seconds) at which the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        window_start: Start of the window that evaluated the request; pass it
            back to ``release`` to refund the request.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None
    window_start: float


class AbstractRateLimiter(ABC):
    """Interface for keyed window rate limiters."""

    @abstractmethod
    def consume(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` unless its quota is exhausted.

        Args:
            key: Caller identity (e.g., client address, address:user id).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self, key: str, window_start: float) -> bool:
        """Refund one previously counted request.

        Args:
            key: Caller identity used for ``consume``.
            window_start: ``RateLimitResult.window_start`` of the counted request.

        Returns:
            True when a request was refunded from the same window.
        """
        raise NotImplementedError

    @abstractmethod
    def evict_expired(self) -> int:
        """Drop windows idle for longer than one window; return how many."""
        raise NotImplementedError
