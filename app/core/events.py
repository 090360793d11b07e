"""
Row-level change notifications for the job and result tables.

The store publishes an INSERT/UPDATE event after every committed write;
subscribers receive the events of one job through an asyncio.Queue. Publishing
is thread safe: events are handed to each subscriber's own loop.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

JOB_TABLE = "batch_image_analysis"
RESULT_TABLE = "advanced_image_results"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str  # INSERT | UPDATE
    job_id: str
    record: dict[str, Any]
    emitted_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "eventType": self.event_type,
            "record": self.record,
            "emitted_at": self.emitted_at.isoformat(),
        }


class _Subscriber:
    def __init__(self, job_id: str, loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self.job_id = job_id
        self.loop = loop
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)

    def offer(self, event: ChangeEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Change event dropped for slow subscriber: job=%s table=%s", self.job_id, event.table)


class Subscription:
    """One job's change events, read with get(); use as a context manager."""

    def __init__(self, bus: "EventBus", subscriber: _Subscriber) -> None:
        self._bus = bus
        self._subscriber = subscriber

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        try:
            return await asyncio.wait_for(self._subscriber.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self._bus._remove(self._subscriber)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus:
    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, list[_Subscriber]] = {}

    def subscribe(self, job_id: str) -> Subscription:
        """Must be called from inside a running event loop."""
        subscriber = _Subscriber(job_id, asyncio.get_running_loop(), self._queue_size)
        self._subscribers.setdefault(job_id, []).append(subscriber)
        return Subscription(self, subscriber)

    def publish(self, event: ChangeEvent) -> None:
        for subscriber in list(self._subscribers.get(event.job_id, ())):
            if subscriber.loop.is_closed():
                self._remove(subscriber)
                continue
            subscriber.loop.call_soon_threadsafe(subscriber.offer, event)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def _remove(self, subscriber: _Subscriber) -> None:
        subs = self._subscribers.get(subscriber.job_id)
        if not subs:
            return
        if subscriber in subs:
            subs.remove(subscriber)
        if not subs:
            self._subscribers.pop(subscriber.job_id, None)


event_bus = EventBus()
