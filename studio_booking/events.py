"""Change feed of a BookingCache.

Every cache owns one CacheEventStream. Each published event is numbered
and stamped with the cache state it left behind, so a consumer can tell
whether it has missed anything.

A new subscriber first receives a ``snapshot`` event holding the current
schedule, then live events. A subscriber that falls behind far enough to
fill its queue is resynchronized: the queue is emptied and a fresh
snapshot takes the place of the lost events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

log = logging.getLogger("studio_booking.events")


class EventType(str, Enum):
    SNAPSHOT = "snapshot"
    STATE = "state"
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"
    CREATED = "created"
    CREATE_FAILED = "create_failed"
    CANCELLED = "cancelled"
    CANCEL_FAILED = "cancel_failed"


@dataclass(frozen=True)
class CacheEvent:
    seq: int
    type: EventType
    state: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "type": self.type.value,
            "state": self.state,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class CacheEventStream:
    """Numbered, replayable change feed with one queue per subscriber.

    ``snapshot`` returns ``(state, data)`` describing the cache right now;
    it seeds new and resynchronized subscribers.
    """

    def __init__(
        self,
        snapshot: Optional[Callable[[], tuple[str, dict[str, Any]]]] = None,
        *,
        queue_size: int = 100,
        history_size: int = 200,
    ) -> None:
        self._snapshot = snapshot
        self._queue_size = queue_size
        self._history_size = history_size
        self._seq = 0
        self._history: list[CacheEvent] = []
        self._queues: list[asyncio.Queue[CacheEvent]] = []

    @property
    def last_seq(self) -> int:
        return self._seq

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def history(self, since: int = 0) -> list[CacheEvent]:
        """Retained events with ``seq > since``, oldest first."""
        return [e for e in self._history if e.seq > since]

    def snapshot_event(self) -> CacheEvent:
        state, data = self._snapshot() if self._snapshot else ("", {})
        return CacheEvent(seq=self._seq, type=EventType.SNAPSHOT, state=state, data=data)

    def publish(self, event_type: EventType, state: str, data: dict[str, Any]) -> CacheEvent:
        self._seq += 1
        event = CacheEvent(seq=self._seq, type=event_type, state=state, data=data)
        self._history.append(event)
        if len(self._history) > self._history_size:
            del self._history[0]

        for queue in self._queues:
            if queue.full():
                self._resync(queue)
            else:
                queue.put_nowait(event)
        return event

    def _resync(self, queue: asyncio.Queue[CacheEvent]) -> None:
        while not queue.empty():
            queue.get_nowait()
        # Taken after the event was applied, so it already includes it
        queue.put_nowait(self.snapshot_event())
        log.warning("Event subscriber fell behind at seq %d; resent snapshot", self._seq)

    def subscribe(self) -> asyncio.Queue[CacheEvent]:
        """New queue, primed with a snapshot of the current schedule."""
        queue: asyncio.Queue[CacheEvent] = asyncio.Queue(maxsize=self._queue_size)
        queue.put_nowait(self.snapshot_event())
        self._queues.append(queue)
        log.info("Event subscriber added at seq %d (total: %d)", self._seq, len(self._queues))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[CacheEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
            log.info("Event subscriber removed (total: %d)", len(self._queues))
