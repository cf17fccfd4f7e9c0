"""
In-process notification bus.

Suggestion and job state changes are published here; the dashboard layer
subscribes (see the /api/events websocket) to refresh its views.
"""

import asyncio
import logging
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class NotificationBus:
    """Fan-out pub/sub with one bounded queue per subscriber."""

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        message = {"type": event_type, "data": data}
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest message so publishers never block
                logger.warning(f"Notification queue full, dropping oldest ({event_type})")
                queue.get_nowait()
                queue.put_nowait(message)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
