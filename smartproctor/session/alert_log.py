"""
Bounded, newest-first alert log for one session.

Appends are O(1); once `capacity` alerts are held the oldest one is
evicted.  There is no other removal path.
"""
from __future__ import annotations

import threading
from collections import deque
from typing import Iterator

from smartproctor.ml.risk_aggregator import Alert

DEFAULT_CAPACITY = 20


class AlertLog:

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        # appendleft keeps index 0 newest; maxlen drops from the right (oldest)
        self._alerts: deque[Alert] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, alert: Alert) -> None:
        with self._lock:
            self._alerts.appendleft(alert)

    def recent(self, k: int | None = None) -> list[Alert]:
        """Up to `k` newest alerts, newest first.  All of them when k is None."""
        with self._lock:
            if k is None:
                return list(self._alerts)
            if k <= 0:
                return []
            return [a for _, a in zip(range(k), self._alerts)]

    def count(self) -> int:
        with self._lock:
            return len(self._alerts)

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[Alert]:
        return iter(self.recent())
