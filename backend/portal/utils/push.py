"""In-memory push hub for in-app notifications.

Each recipient gets a bounded deque of pending pushes; the
`/api/notifications/live` route drains it. Entries older than the TTL
are dropped on access.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Optional


class PushHub:
    def __init__(self, max_per_recipient: int = 200, ttl_seconds: int = 24 * 3600):
        self._queues: dict[int, deque] = defaultdict(lambda: deque(maxlen=max_per_recipient))
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds

    def publish(self, recipient_id: int, payload: dict) -> None:
        with self._lock:
            self._queues[recipient_id].append((time.monotonic(), dict(payload)))

    def drain(self, recipient_id: int, limit: Optional[int] = None) -> list[dict]:
        """Remove and return pending pushes for `recipient_id`, oldest first."""
        out: list[dict] = []
        with self._lock:
            self._cleanup(recipient_id)
            q = self._queues.get(recipient_id)
            while q and (limit is None or len(out) < limit):
                out.append(q.popleft()[1])
            if q is not None and not q:
                self._queues.pop(recipient_id, None)
        return out

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()

    def _cleanup(self, recipient_id: int) -> None:
        q = self._queues.get(recipient_id)
        if not q:
            return
        cutoff = time.monotonic() - self._ttl_seconds
        while q and q[0][0] < cutoff:
            q.popleft()


push_hub = PushHub()
