"""
Per-caller rate limits for the KYC submission and transfer endpoints.

Each caller identity gets a sliding window of hit timestamps; a hit is
recorded only when it is allowed. Idle callers are swept every
`sweep_every` checks so the table does not grow with every identity seen.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class _CallerWindow:

    def __init__(self):
        self.hits: Deque[float] = deque()

    def prune(self, cutoff: float) -> int:
        dropped = 0
        while self.hits and self.hits[0] < cutoff:
            self.hits.popleft()
            dropped += 1
        return dropped


class RateLimiter:
    """
    Sliding window limiter keyed by caller identity.

    `rpm` is the number of hits allowed in any `window_seconds` span.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, sweep_every: int = 1000):
        self.limit = max(1, rpm)
        self.window = window_seconds
        self.sweep_every = max(1, sweep_every)
        self._callers: Dict[str, _CallerWindow] = {}
        self._checks = 0
        self._lock = threading.Lock()

    def allow(self, caller: str) -> bool:
        return self.check(caller).allowed

    def check(self, caller: str) -> RateLimitResult:
        now = time.time()
        with self._lock:
            self._checks += 1
            if self._checks % self.sweep_every == 0:
                self._sweep(now - self.window)

            window = self._callers.setdefault(caller, _CallerWindow())
            window.prune(now - self.window)
            hits = window.hits

            if len(hits) >= self.limit:
                reset_at = hits[0] + self.window
                return RateLimitResult(False, 0, reset_at, retry_after=max(0.0, reset_at - now))

            hits.append(now)
            return RateLimitResult(True, self.limit - len(hits), hits[0] + self.window)

    def get_stats(self, caller: str) -> Dict[str, int]:
        cutoff = time.time() - self.window
        with self._lock:
            window = self._callers.get(caller)
            current = sum(1 for t in window.hits if t >= cutoff) if window else 0
        return {
            "current": current,
            "limit": self.limit,
            "remaining": max(0, self.limit - current),
            "window_seconds": self.window,
        }

    @property
    def tracked_callers(self) -> int:
        return len(self._callers)

    def reset(self, caller: Optional[str] = None) -> None:
        with self._lock:
            if caller is None:
                self._callers.clear()
            else:
                self._callers.pop(caller, None)

    def cleanup_expired(self) -> int:
        """Drop expired hits and idle callers; returns the number of hits dropped."""
        with self._lock:
            return self._sweep(time.time() - self.window)

    def _sweep(self, cutoff: float) -> int:
        dropped = sum(window.prune(cutoff) for window in self._callers.values())
        for caller in [c for c, w in self._callers.items() if not w.hits]:
            del self._callers[caller]
        return dropped
