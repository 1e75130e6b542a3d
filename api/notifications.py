"""In-process fan-out of concert notifications to live subscribers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

NEW_CONCERT = "new-concert"


class ConcertBroadcaster:
    """Best-effort broadcast channel; slow subscribers miss messages instead of blocking."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[dict[str, Any]]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    async def broadcast(self, event: str, payload: dict[str, Any]) -> int:
        """Queue ``{"event", "payload"}`` for every subscriber; returns how many received it."""
        message = {"event": event, "payload": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full; dropping %s notification", event)
        return delivered
