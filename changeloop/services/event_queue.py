"""Sequential in-memory event queue.

Events are appended with ``enqueue`` and drained strictly in FIFO order by a
single asyncio task. Only one drain loop runs at a time, so at most one
event is ever ``processing``. Events are retained after they finish so their
status can be inspected; nothing here survives a process restart.
"""

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from changeloop.core.exceptions import UnknownEventTypeError
from changeloop.core.subscriptions import SubscriberRegistry, Subscription
from changeloop.core.types import EventStatus, utc_now

EventHandler = Callable[[Any], Awaitable[Any]]

# Lifecycle notification names
QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
QUEUE_EMPTY = "queue-empty"


@dataclass
class QueuedEvent:
    """One unit of work. Mutated only by the drain loop."""

    id: str
    type: str
    payload: Any
    status: EventStatus = EventStatus.PENDING
    enqueued_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "enqueued_at": self.enqueued_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "error": self.error,
        }


def _new_event_id() -> str:
    return f"evt-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class SequentialEventQueue:
    """FIFO queue with a single-flight asynchronous drain loop."""

    def __init__(
        self,
        handlers: dict[str, EventHandler] | None = None,
        pause_seconds: float = 0.1,
    ):
        self._handlers: dict[str, EventHandler] = dict(handlers or {})
        self._pause_seconds = pause_seconds
        self._queue: deque[QueuedEvent] = deque()
        self._events: dict[str, QueuedEvent] = {}
        self._processing = False
        self._drain_task: asyncio.Task | None = None
        self._listeners = SubscriberRegistry("event queue")

        self.processed_count = 0
        self.failed_count = 0

    @property
    def processing(self) -> bool:
        return self._processing

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """Route events of ``event_type`` to ``handler``."""
        self._handlers[event_type] = handler

    def subscribe(self, callback: Callable[[str, QueuedEvent | None], Any]) -> Subscription:
        """Observe lifecycle notifications.

        The callback receives ``(notification, event)`` where notification is
        one of queued/processing/completed/failed, or ``queue-empty`` with
        ``event`` set to None.
        """
        return self._listeners.subscribe(callback)

    def enqueue(self, event_type: str, payload: Any = None) -> str:
        """Append an event and return its id without waiting for it.

        Starts the drain loop when it is not already running; must be called
        from inside a running event loop.
        """
        event = QueuedEvent(id=_new_event_id(), type=event_type, payload=payload)
        self._queue.append(event)
        self._events[event.id] = event
        logger.info(f"Event queued: {event.id} ({event_type})")
        self._listeners.publish(QUEUED, event)

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self.process_queue())
        return event.id

    async def process_queue(self) -> None:
        """Drain pending events in order; returns when the queue is empty."""
        if self._processing or not self._queue:
            return

        # queue-empty listeners may enqueue follow-up work while this task is
        # still the active drain; keep going until nothing is left
        while self._queue:
            self._processing = True
            try:
                while self._queue:
                    event = self._queue.popleft()
                    await self._process_one(event)
                    # Bound throughput between successive dequeues
                    await asyncio.sleep(self._pause_seconds)
            finally:
                self._processing = False

            self._listeners.publish(QUEUE_EMPTY, None)

    async def _process_one(self, event: QueuedEvent) -> None:
        try:
            logger.debug(f"Processing event: {event.id}")
            event.status = EventStatus.PROCESSING
            self._listeners.publish(PROCESSING, event)

            await self._dispatch(event)

            event.status = EventStatus.COMPLETED
            event.completed_at = utc_now()
            self.processed_count += 1
            logger.info(f"Event completed: {event.id}")
            self._listeners.publish(COMPLETED, event)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            event.status = EventStatus.FAILED
            event.error = str(e)
            event.failed_at = utc_now()
            self.failed_count += 1
            logger.error(f"Event failed: {event.id}: {e}")
            self._listeners.publish(FAILED, event)

    async def _dispatch(self, event: QueuedEvent) -> Any:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise UnknownEventTypeError(event.type)
        return await handler(event.payload)

    def get_status(self) -> dict[str, Any]:
        """Queue length, drain flag, cumulative counts and success rate."""
        if self.processed_count > 0:
            rate = self.processed_count / (self.processed_count + self.failed_count)
            success_rate = f"{rate * 100:.1f}%"
        else:
            success_rate = "N/A"
        return {
            "queue_length": len(self._queue),
            "processing": self._processing,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "success_rate": success_rate,
        }

    def get_pending_events(self) -> list[QueuedEvent]:
        return [e for e in self._queue if e.status is EventStatus.PENDING]

    def get_event(self, event_id: str) -> QueuedEvent | None:
        return self._events.get(event_id)

    async def wait_idle(self) -> None:
        """Wait until the current drain loop (if any) has finished."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def close(self) -> None:
        """Stop draining; events still queued stay pending."""
        if self._drain_task and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        self._processing = False
        self._listeners.clear()
