"""
In-process event bus with area-scoped channels.

Each subscriber gets a bounded queue; when a slow subscriber's queue is
full the oldest event is dropped to make room.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Set

logger = logging.getLogger(__name__)

QUEUE_MAXSIZE = 200


@dataclass(frozen=True)
class Event:
    type: str
    data: dict


@dataclass(eq=False)
class Subscription:
    channel: str
    queue: "asyncio.Queue[Event]"
    event_types: Optional[FrozenSet[str]] = None   # None → everything

    def wants(self, event: Event) -> bool:
        return self.event_types is None or event.type in self.event_types

    async def get(self) -> Event:
        return await self.queue.get()


class EventBus:
    def __init__(self, queue_maxsize: int = QUEUE_MAXSIZE) -> None:
        self._lock = asyncio.Lock()
        self._queue_maxsize = queue_maxsize
        self._subscribers: Dict[str, Set[Subscription]] = {}

    async def subscribe(self, channel: str, event_types: Optional[Iterable[str]] = None) -> Subscription:
        sub = Subscription(
            channel=channel,
            queue=asyncio.Queue(maxsize=self._queue_maxsize),
            event_types=frozenset(event_types) if event_types is not None else None,
        )
        async with self._lock:
            self._subscribers.setdefault(channel, set()).add(sub)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        async with self._lock:
            subs = self._subscribers.get(sub.channel)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscribers[sub.channel]

    async def publish(self, channel: str, event: Event) -> int:
        """Deliver to every matching subscriber of the channel; returns the count."""
        async with self._lock:
            subscribers = list(self._subscribers.get(channel, ()))
        delivered = 0
        for sub in subscribers:
            if not sub.wants(event):
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                _ = sub.queue.get_nowait()
                sub.queue.put_nowait(event)
                logger.warning("Subscriber queue full on %s; dropped oldest event", channel)
            delivered += 1
        return delivered

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))
