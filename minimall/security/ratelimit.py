"""Fixed-window rate limiting.

Contract:
- is_allowed() never raises; it is pure admission control
- The check and the increment happen without any await in between, so on a
  single event loop they are atomic with respect to other requests
- Entries whose window closed more than one window length ago are removed by
  sweep(); the app lifespan calls it periodically

The in-memory store is per process. A multi-process deployment needs a shared
atomic counter store behind the same RateLimitStore interface.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Protocol

from minimall.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Counter for one identifier within its current window."""

    count: int
    reset_time_ms: int


class RateLimitStore(Protocol):
    def get(self, key: str) -> RateLimitEntry | None: ...

    def start_window(self, key: str, reset_time_ms: int) -> RateLimitEntry: ...

    def increment(self, key: str) -> int: ...

    def sweep(self, now_ms: int, grace_ms: int) -> int: ...


class InMemoryRateLimitStore:
    """Identifier -> entry map shared by every request in the process."""

    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> RateLimitEntry | None:
        return self._entries.get(key)

    def start_window(self, key: str, reset_time_ms: int) -> RateLimitEntry:
        entry = RateLimitEntry(count=1, reset_time_ms=reset_time_ms)
        self._entries[key] = entry
        return entry

    def increment(self, key: str) -> int:
        entry = self._entries[key]
        entry.count += 1
        return entry.count

    def sweep(self, now_ms: int, grace_ms: int) -> int:
        expired = [
            key
            for key, entry in self._entries.items()
            if now_ms > entry.reset_time_ms + grace_ms
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary identifier."""

    def __init__(
        self,
        max_attempts: int = 10,
        window_ms: int = 60_000,
        store: RateLimitStore | None = None,
        clock: Clock | None = None,
        name: str = "default",
    ) -> None:
        self.max_attempts = max_attempts
        self.window_ms = window_ms
        self.name = name
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock or SystemClock()

    def _live_entry(self, identifier: str, now: int) -> RateLimitEntry | None:
        entry = self._store.get(identifier)
        if entry is None or now > entry.reset_time_ms:
            return None
        return entry

    def is_allowed(self, identifier: str) -> bool:
        now = self._clock.now_ms()
        entry = self._live_entry(identifier, now)

        if entry is None:
            self._store.start_window(identifier, now + self.window_ms)
            return True

        if entry.count >= self.max_attempts:
            logger.info("Rate limit hit: limiter=%s key=%s", self.name, identifier)
            return False

        self._store.increment(identifier)
        return True

    def remaining_attempts(self, identifier: str) -> int:
        entry = self._live_entry(identifier, self._clock.now_ms())
        if entry is None:
            return self.max_attempts
        return max(0, self.max_attempts - entry.count)

    def time_until_reset(self, identifier: str) -> timedelta:
        now = self._clock.now_ms()
        entry = self._live_entry(identifier, now)
        if entry is None:
            return timedelta(0)
        return timedelta(milliseconds=entry.reset_time_ms - now)

    def sweep(self) -> int:
        """Drop entries whose window closed more than one window ago."""
        removed = self._store.sweep(self._clock.now_ms(), self.window_ms)
        if removed:
            logger.debug("Swept %d expired entries from limiter %s", removed, self.name)
        return removed


class TopicRateLimiter:
    """Per-(shop, topic) webhook limiter with a configurable limit per topic."""

    def __init__(
        self,
        limits: Mapping[str, int],
        default_limit: int = 30,
        window_ms: int = 60_000,
        store: RateLimitStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._limits = dict(limits)
        self._default_limit = default_limit
        self._window_ms = window_ms
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock or SystemClock()
        self._limiters: dict[str, RateLimiter] = {}

    def limit_for(self, topic: str) -> int:
        return self._limits.get(topic, self._default_limit)

    def _limiter(self, topic: str) -> RateLimiter:
        limiter = self._limiters.get(topic)
        if limiter is None:
            limiter = RateLimiter(
                max_attempts=self.limit_for(topic),
                window_ms=self._window_ms,
                store=self._store,
                clock=self._clock,
                name=f"webhook:{topic}",
            )
            self._limiters[topic] = limiter
        return limiter

    def is_allowed(self, shop: str, topic: str) -> bool:
        return self._limiter(topic).is_allowed(f"{shop}:{topic}")

    def time_until_reset(self, shop: str, topic: str) -> timedelta:
        return self._limiter(topic).time_until_reset(f"{shop}:{topic}")

    def sweep(self) -> int:
        return self._store.sweep(self._clock.now_ms(), self._window_ms)
