"""EventBus and event types for sync job lifecycle notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Points in a sync job's life that observers can hook into."""

    JOB_STARTED = "job_started"
    BATCH_COMPLETED = "batch_completed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"


@dataclass(frozen=True, slots=True)
class SyncEvent:
    """Immutable snapshot of a job's progress when the event fired.

    Attributes:
        event_type: What happened.
        job_id: The sync job.
        datasource_id: The datasource the job reads from.
        batch_number: 1-based batch index (batch events only).
        processed: Rows processed so far.
        successful: Rows upserted so far.
        failed: Rows recorded as errors so far.
        message: Error message for failed jobs.
    """

    event_type: EventType
    job_id: str
    datasource_id: str
    batch_number: int | None = None
    processed: int = 0
    successful: int = 0
    failed: int = 0
    message: str | None = None


class EventBus:
    """Dispatches sync events to registered handlers.

    Handlers are awaited sequentially in registration order, inside the job
    loop, so a handler on ``BATCH_COMPLETED`` runs before the next batch
    boundary.  Exceptions are logged but never propagated: a failing
    observer never fails a job.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: SyncEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in self._handlers[event.event_type]:
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on job %s",
                    handler,
                    event.event_type.value,
                    event.job_id,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
