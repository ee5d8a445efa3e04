"""Fixed-Window Rate Limiter - per-key request counting that gates mutating requests.

Invariants:
    - A window opens on the first call for a key and lasts window_ms
    - Expired window (now - window_start >= window_ms) restarts with count = 1
    - A call is allowed iff the post-increment count <= limit
    - Read-increment-write for a key happens under one lock: concurrent callers
      never see the same count
    - Windows idle for EVICTION_FACTOR * window_ms are evicted on the next sweep
    - check() never raises - rejection is a value, not an error

Design Decisions:
    - Fixed window over sliding log: up to 2x limit can pass across a window edge,
      accepted for request-abuse protection (ADR: approximate admission control)
    - Clock injected (milliseconds): tests drive time explicitly, no sleeping
    - Single lock over per-key locks: the critical section is O(1) dict work, and a
      sync lock also covers FastAPI's threadpool dependencies
    - Lazy sweep piggybacks on check(): no background task to start or cancel
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable


EVICTION_FACTOR = 2


def wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class RateLimitWindow:
    """Counter state for one key. Process-lifetime only."""
    key: str
    count: int
    window_start: float
    limit: int
    window_ms: int

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_ms

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_ms


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float  # epoch milliseconds
    limit: int

    def retry_after_ms(self, now: float) -> int:
        return max(0, int(self.reset_at - now))


class FixedWindowRateLimiter:
    """Owned counter map with create/query/mutate/evict behind check()."""

    def __init__(self, clock: Callable[[], float] = wall_clock_ms):
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        """Count one request for key. Allowed iff the window still has room."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now, window_ms)
            window = self._windows.get(key)
            if window is None or window.expired(now):
                window = RateLimitWindow(key, 1, now, limit, window_ms)
                self._windows[key] = window
                return RateLimitDecision(True, max(0, limit - 1), window.reset_at, limit)
            if window.count >= window.limit:
                # Rejected calls don't count: committed count stays <= limit
                return RateLimitDecision(False, 0, window.reset_at, window.limit)
            window.count += 1
            return RateLimitDecision(
                True, window.limit - window.count, window.reset_at, window.limit,
            )

    def now(self) -> float:
        return self._clock()

    def peek(self, key: str) -> RateLimitWindow | None:
        with self._lock:
            return self._windows.get(key)

    def reset(self, key: str | None = None) -> None:
        """Drop one key's window, or all windows."""
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def sweep(self) -> int:
        """Evict idle windows now. Returns number evicted."""
        with self._lock:
            return self._evict(self._clock())

    def __len__(self) -> int:
        return len(self._windows)

    def _maybe_sweep(self, now: float, window_ms: int) -> None:
        if now - self._last_sweep >= window_ms:
            self._evict(now)

    def _evict(self, now: float) -> int:
        stale = [
            k for k, w in self._windows.items()
            if now - w.window_start >= EVICTION_FACTOR * w.window_ms
        ]
        for k in stale:
            del self._windows[k]
        self._last_sweep = now
        return len(stale)
