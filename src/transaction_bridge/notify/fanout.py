"""Real-time fan-out of status snapshots to subscribers.

Every subscriber gets its own bounded queue. A subscriber that does not keep up
loses its oldest snapshots; only the latest state matters to it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class NotificationFanout:
    def __init__(self, *, max_pending: int = 16) -> None:
        self.max_pending = max_pending
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: str, data: dict[str, Any]) -> int:
        """Queue ``{"event": event, "data": data}`` for every subscriber; returns how many."""

        message = {"event": event, "data": data}
        for queue in list(self._subscribers):
            while queue.full():
                queue.get_nowait()
            queue.put_nowait(message)
        return len(self._subscribers)
