"""Client-side rate limiting for Solana JSON-RPC endpoints.

Public RPC nodes enforce per-IP request limits (api.mainnet-beta allows about
40 requests per 10 seconds for most methods) and answer HTTP 429 when they are
exceeded. This module provides a sliding window limiter with exponential
backoff for those 429 responses, honoring the Retry-After hint when sent.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Optional


@dataclass
class RateLimitConfig:
    """Configuration for RPC rate limits.

    Attributes:
        max_requests: Maximum requests per window (default: 40)
        window_seconds: Sliding window size in seconds (default: 10.0)
        backoff_base: Base delay in seconds for exponential backoff (default: 1.0)
        max_backoff: Maximum backoff delay in seconds (default: 60.0)
    """

    max_requests: int = 40
    window_seconds: float = 10.0
    backoff_base: float = 1.0
    max_backoff: float = 60.0


@dataclass
class RateLimiter:
    """Track and enforce the request budget of one RPC endpoint.

    Example:
        limiter = RateLimiter()

        wait = limiter.wait_time()
        if wait > 0:
            time.sleep(wait)
        limiter.record_request()

        # On 429 response
        limiter.record_rate_limit_hit()
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    _timestamps: deque = field(default_factory=deque, init=False)
    _backoff_until: datetime = field(default_factory=lambda: datetime.min.replace(tzinfo=UTC), init=False)
    _consecutive_429s: int = field(default=0, init=False)

    def can_request(self) -> bool:
        """Check if a request can be made within the budget."""
        now = datetime.now(UTC)

        if now < self._backoff_until:
            return False

        self._cleanup_old_timestamps(now)
        return len(self._timestamps) < self.config.max_requests

    def record_request(self) -> None:
        """Record a request timestamp."""
        self._timestamps.append(datetime.now(UTC))

    def wait_time(self) -> float:
        """Seconds to wait before the next request is allowed (0.0 if now)."""
        now = datetime.now(UTC)

        if now < self._backoff_until:
            return (self._backoff_until - now).total_seconds()

        self._cleanup_old_timestamps(now)
        if len(self._timestamps) < self.config.max_requests:
            return 0.0

        # Next slot opens when the oldest request leaves the window
        available_at = self._timestamps[0] + timedelta(seconds=self.config.window_seconds)
        return max(0.0, (available_at - now).total_seconds())

    def record_rate_limit_hit(self, retry_after: Optional[float] = None) -> None:
        """Record a 429 response.

        Each consecutive 429 doubles the backoff delay. A Retry-After hint from
        the node replaces the computed delay; both are capped at max_backoff.
        """
        self._consecutive_429s += 1
        if retry_after is not None and retry_after >= 0:
            backoff_seconds = min(retry_after, self.config.max_backoff)
        else:
            backoff_seconds = min(
                self.config.backoff_base * (2 ** (self._consecutive_429s - 1)),
                self.config.max_backoff,
            )
        self._backoff_until = datetime.now(UTC) + timedelta(seconds=backoff_seconds)

    def record_success(self) -> None:
        """Reset the consecutive 429 counter."""
        self._consecutive_429s = 0

    def get_backoff_remaining(self) -> float:
        now = datetime.now(UTC)
        if now >= self._backoff_until:
            return 0.0
        return (self._backoff_until - now).total_seconds()

    def get_available_capacity(self) -> int:
        """Number of requests that can be made immediately."""
        now = datetime.now(UTC)
        if now < self._backoff_until:
            return 0

        self._cleanup_old_timestamps(now)
        return max(0, self.config.max_requests - len(self._timestamps))

    def reset(self) -> None:
        self._timestamps.clear()
        self._backoff_until = datetime.min.replace(tzinfo=UTC)
        self._consecutive_429s = 0

    def _cleanup_old_timestamps(self, now: datetime) -> None:
        """Remove timestamps outside the sliding window."""
        window_start = now - timedelta(seconds=self.config.window_seconds)
        while self._timestamps and self._timestamps[0] < window_start:
            self._timestamps.popleft()
