"""
Fixed-window rate limiting with an injected store.

The limiter holds no global state: callers pass a RateLimitStore, and the
in-memory store takes an injectable clock so windows are testable.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0  # seconds until the window resets; 0 when allowed


class RateLimitStore(ABC):
    """Storage for per-key request counters."""

    @abstractmethod
    def get(self, key: str) -> Optional[RateLimitEntry]:
        ...

    @abstractmethod
    def increment(self, key: str, window_sec: float) -> RateLimitEntry:
        """Count one request, opening a new window when the current one has expired."""

    @abstractmethod
    def evict_expired(self) -> int:
        """Drop expired windows. Returns how many were removed."""


class InMemoryRateLimitStore(RateLimitStore):

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[RateLimitEntry]:
        entry = self._entries.get(key)
        if entry is not None and entry.reset_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def increment(self, key: str, window_sec: float) -> RateLimitEntry:
        entry = self.get(key)
        if entry is None:
            entry = RateLimitEntry(count=0, reset_at=self._clock() + window_sec)
            self._entries[key] = entry
        entry.count += 1
        return entry

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RateLimiter:
    """Allow at most ``max_requests`` per key within ``window_sec``."""

    def __init__(
        self,
        store: RateLimitStore,
        max_requests: int = 10,
        window_sec: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._store = store
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock or getattr(store, "now", time.monotonic)

    def check(self, key: str) -> RateLimitDecision:
        """Count a request for ``key`` and decide whether it may proceed."""
        self._store.evict_expired()
        entry = self._store.get(key)
        if entry is not None and entry.count >= self.max_requests:
            retry_after = max(0.0, entry.reset_at - self._clock())
            logger.warning("Rate limit exceeded", key=key, retry_after=round(retry_after, 1))
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
        entry = self._store.increment(key, self.window_sec)
        return RateLimitDecision(allowed=True, remaining=max(0, self.max_requests - entry.count))
