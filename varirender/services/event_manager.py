"""SSE event manager for render job transitions.

Polling is the baseline contract; this is an optional push channel. Each
subscriber gets its own queue; a stream ends after the job reaches a
terminal status.
"""

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed", "removed"})


@dataclass
class JobEvent:
    """Event data for a job transition."""

    event_type: str  # e.g. "pending", "processing", "completed", "failed", "removed"
    job_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    data: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_STATUSES

    def to_sse(self) -> str:
        """Format event for SSE transmission."""
        event_data: dict[str, Any] = {
            "type": self.event_type,
            "jobId": self.job_id,
            "timestamp": self.timestamp,
        }
        if self.data:
            event_data["data"] = self.data

        return f"event: {self.event_type}\ndata: {json.dumps(event_data, default=str)}\n\n"


class JobEventManager:
    """Manages SSE subscriptions and event publishing for render jobs."""

    def __init__(self) -> None:
        # Map job_id -> set of asyncio.Queue for each subscriber
        self._subscribers: dict[str, set[asyncio.Queue[JobEvent]]] = defaultdict(set)

    def subscribe(self, job_id: str) -> asyncio.Queue[JobEvent]:
        """Register a subscriber queue for one job.

        Registration is immediate, so no transition published after this call
        is missed. Pair with ``unsubscribe``.
        """
        queue: asyncio.Queue[JobEvent] = asyncio.Queue()
        self._subscribers[job_id].add(queue)
        logger.info(f"New subscriber for job {job_id}. Total: {len(self._subscribers[job_id])}")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue[JobEvent]) -> None:
        subscribers = self._subscribers.get(job_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[job_id]
        logger.info(f"Subscriber removed for job {job_id}")

    async def listen(self, queue: asyncio.Queue[JobEvent]) -> AsyncGenerator[JobEvent, None]:
        """Yield events from a subscriber queue until a terminal one."""
        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                break

    def publish(self, job_id: str, event_type: str, data: dict[str, Any] | None = None) -> int:
        """Publish an event to all subscribers of a job.

        Synchronous so that the queue can publish from any transition point.

        Returns:
            Number of subscribers notified
        """
        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return 0

        event = JobEvent(event_type=event_type, job_id=job_id, data=data)
        for queue in list(subscribers):
            queue.put_nowait(event)

        logger.debug(f"Published {event_type} to {len(subscribers)} subscribers for job {job_id}")
        return len(subscribers)

    def get_subscriber_count(self, job_id: str) -> int:
        """Get the number of active subscribers for a job."""
        return len(self._subscribers.get(job_id, set()))
