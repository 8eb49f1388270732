"""
In-process event hub.

Each subscriber gets its own bounded queue. Publishing never blocks: when a
subscriber falls behind, its oldest pending event is dropped.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from .models import Event


logger = logging.getLogger(__name__)

SNAPSHOT_EVENT = "telemetry.snapshot"
WARNING_EVENT = "system.warning"


class EventHub:
    """Fan-out of named events to queue and callback subscribers."""

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._queues: List[asyncio.Queue] = []
        self._callbacks: List[Callable[[Event], Any]] = []
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._callbacks)

    def subscribe(self, max_queue: Optional[int] = None) -> asyncio.Queue:
        """Register a queue subscriber and return its queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue or self.max_queue)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    def add_listener(self, callback: Callable[[Event], Any]):
        """Register a synchronous callback invoked on every publish."""
        self._callbacks.append(callback)

    def remove_listener(self, callback: Callable[[Event], Any]):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def publish(self, name: str, payload: Any) -> int:
        """Deliver an event to every subscriber. Returns the delivery count."""
        event = Event(name=name, payload=payload)
        delivered = 0

        for queue in list(self._queues):
            if queue.full():
                try:
                    queue.get_nowait()
                    self.dropped += 1
                    logger.debug(f"Dropped oldest event for slow subscriber ({name})")
                except asyncio.QueueEmpty:
                    pass
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self.dropped += 1

        for callback in list(self._callbacks):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Event listener failed for {name}: {e}")

        return delivered
