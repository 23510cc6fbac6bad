"""Best-effort activity notary.

Services hand events to the notary after their transaction commits. The
notary only enqueues: it never awaits the sink, never blocks the caller and
never raises. A background worker drains the queue into a sink and
swallows sink failures.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from congregate.app.db.context import AccessContext
from congregate.app.utils.clock import Clock, SystemClock
from congregate.app.utils.metrics import audit_events_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityEvent:
    """One audit trail entry waiting to be written."""

    action: str
    entity_type: str
    entity_id: str | None
    metadata: dict[str, Any]
    actor: AccessContext | None
    occurred_at: datetime


class ActivitySink(Protocol):
    """Durable destination for activity events."""

    async def write(self, event: ActivityEvent) -> None:
        """Persist one event."""
        ...


@dataclass
class ActivityNotary:
    """In-process queue in front of an activity sink."""

    sink: ActivitySink
    maxsize: int = 1000
    enabled: bool = True
    clock: Clock = field(default_factory=SystemClock)

    def __post_init__(self) -> None:
        self._queue: asyncio.Queue[ActivityEvent] = asyncio.Queue(maxsize=self.maxsize)
        self._worker: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID | str | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        actor: AccessContext | None = None,
    ) -> bool:
        """Enqueue an activity event.

        Returns:
            True if the event was queued, False if it was dropped
        """
        if not self.enabled:
            return False

        event = ActivityEvent(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            metadata=metadata or {},
            actor=actor,
            occurred_at=self.clock.now(),
        )

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            audit_events_total.labels(outcome="dropped").inc()
            logger.warning(
                "Activity queue full, dropping event: %s",
                action,
                extra={"structured": {"action": action, "entity_type": entity_type}},
            )
            return False

        audit_events_total.labels(outcome="enqueued").inc()
        return True

    def start(self) -> None:
        """Start the background worker on the running loop."""
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        """Deliver what is queued, then stop the worker."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the sink."""
        if self._worker is None:
            while not self._queue.empty():
                event = self._queue.get_nowait()
                try:
                    await self._deliver(event)
                finally:
                    self._queue.task_done()
        else:
            await self._queue.join()

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: ActivityEvent) -> None:
        try:
            await self.sink.write(event)
        except Exception:
            audit_events_total.labels(outcome="failed").inc()
            logger.exception(
                "Failed to log activity: %s",
                event.action,
                extra={"structured": {"action": event.action, "entity_type": event.entity_type}},
            )
            return

        audit_events_total.labels(outcome="written").inc()
