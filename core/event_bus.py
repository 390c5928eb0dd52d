"""In-process async publish/subscribe bus for domain events."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from scheduler.ports import EventPublisher

if TYPE_CHECKING:
    from scheduler.events import DomainEvent

logger = logging.getLogger(__name__)

WILDCARD = "*"


class EventBus(EventPublisher):
    """Fan out DomainEvents to per-type and wildcard subscribers.

    Each subscriber owns an asyncio.Queue. Publishing never blocks on a slow
    consumer: queues are unbounded and delivery is a plain put. Events are
    keyed by ``event.event_type``; subscribing to ``"*"`` receives everything.
    """

    def __init__(self) -> None:
        self._queues: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self.published_count = 0

    def subscribe(self, event_type: str = WILDCARD) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue()
        self._queues[event_type].append(q)
        return q

    def unsubscribe(self, event_type: str, q: asyncio.Queue) -> None:
        try:
            self._queues[event_type].remove(q)
        except ValueError:
            pass

    def subscriber_count(self, event_type: str | None = None) -> int:
        if event_type is None:
            return sum(len(qs) for qs in self._queues.values())
        return len(self._queues.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        targets = list(self._queues.get(event.event_type, []))
        targets += self._queues.get(WILDCARD, [])
        for q in targets:
            await q.put(event)
        self.published_count += 1
        logger.debug(
            "Event published",
            extra={"event_type": event.event_type, "aggregate_id": event.aggregate_id,
                   "subscribers": len(targets)},
        )
