"""In-process publish/subscribe of team changes, one topic per event."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

_LOGGER = logging.getLogger(__name__)


class TeamEventBroker:
    """Fan team-mutation messages out to every subscriber of an event.

    Each subscriber owns a bounded queue. A subscriber that stops reading
    loses its oldest messages rather than blocking publishers.
    """

    def __init__(self, *, queue_size: int = 100) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self.queue_size = queue_size
        self._topics: Dict[int, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, event_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._topics[event_id].add(queue)
        return queue

    def unsubscribe(self, event_id: int, queue: asyncio.Queue) -> None:
        subscribers = self._topics.get(event_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._topics[event_id]

    def subscriber_count(self, event_id: int) -> int:
        return len(self._topics.get(event_id, ()))

    def publish(self, event_id: int, message: dict[str, Any]) -> int:
        """Deliver ``message`` to the event's subscribers; returns how many got it."""
        delivered = 0
        for queue in list(self._topics.get(event_id, ())):
            if queue.full():
                queue.get_nowait()
                _LOGGER.warning("Dropped oldest team update for a slow subscriber of event %s", event_id)
            queue.put_nowait(message)
            delivered += 1
        return delivered

    @asynccontextmanager
    async def subscription(self, event_id: int) -> AsyncIterator[asyncio.Queue]:
        queue = self.subscribe(event_id)
        try:
            yield queue
        finally:
            self.unsubscribe(event_id, queue)


_broker: Optional[TeamEventBroker] = None


def get_team_broker() -> TeamEventBroker:
    """Return the process-wide broker."""

    global _broker
    if _broker is None:
        _broker = TeamEventBroker()
    return _broker


__all__ = ["TeamEventBroker", "get_team_broker"]
