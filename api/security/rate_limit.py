"""Fixed-window request limiting keyed by client identifier."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol

DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_SECONDS = 15 * 60


class RateLimiter(Protocol):
    """Interface for request limiters; swap in a shared store for multi-instance deployments."""

    def is_limited(self, identifier: str) -> bool:
        """Count one request for *identifier* and report whether it is over the limit."""
        ...

    def remaining(self, identifier: str) -> int:
        ...

    def cleanup(self) -> int:
        """Drop expired windows, returning how many were removed."""
        ...


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """Process-local limiter. State is lost on restart and not shared between processes."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def is_limited(self, identifier: str) -> bool:
        now = self._clock()
        entry = self._entries.get(identifier)
        if entry is None or now > entry.reset_at:
            self._entries[identifier] = RateLimitEntry(count=1, reset_at=now + self.window_seconds)
            return False
        entry.count += 1
        return entry.count > self.max_requests

    def remaining(self, identifier: str) -> int:
        entry = self._entries.get(identifier)
        if entry is None or self._clock() > entry.reset_at:
            return self.max_requests
        return max(0, self.max_requests - entry.count)

    def cleanup(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
