"""Fixed-window request limiter keyed by client address."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class _Window:
    started: float
    hits: int = 0


class InMemoryRateLimiter:
    """Count hits per key in windows that start with the key's first hit.

    A window is a `[started, started + window_seconds)` interval; the count
    resets once the interval has passed. Expired windows are swept at most
    once per window length. State lives in process memory, so every worker
    keeps its own counters.
    """

    def __init__(self):
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._windows)

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a hit for `key`; return `(allowed, retry_after_seconds)`."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._sweep(now, window_seconds)
            window = self._windows.get(key)
            if window is None or now - window.started >= window_seconds:
                window = self._windows[key] = _Window(started=now)
            if window.hits >= max_requests:
                return False, max(1, int(window.started + window_seconds - now))
            window.hits += 1
        return True, 0

    def _sweep(self, now: float, window_seconds: int) -> None:
        expired = [key for key, w in self._windows.items() if now - w.started >= window_seconds]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._last_sweep = 0.0
