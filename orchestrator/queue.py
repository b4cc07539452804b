"""In-memory FIFO of order IDs waiting for a worker."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Optional


class OrderQueue:
    """Process-local order queue; an order is queued at most once."""

    def __init__(self) -> None:
        self._queue: Deque[str] = deque()
        self._queued = set()
        self._lock = Lock()

    def enqueue(self, order_id: str) -> bool:
        """Returns False when the order is already waiting."""
        with self._lock:
            if order_id in self._queued:
                return False
            self._queue.append(order_id)
            self._queued.add(order_id)
            return True

    def dequeue(self) -> Optional[str]:
        with self._lock:
            if not self._queue:
                return None
            order_id = self._queue.popleft()
            self._queued.discard(order_id)
            return order_id
