from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .schemas import ProcessingJob, utcnow

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({"job_completed", "job_failed", "job_cancelled"})


class JobEvent(BaseModel):
    event: str
    job: ProcessingJob
    at: datetime = Field(default_factory=utcnow)


class Subscription:
    """Async iterator over job events, registered as soon as it is created.

    A subscription scoped to one job ends after that job's terminal event.
    An unscoped one runs until :meth:`close` or ``JobEvents.close``.
    """

    def __init__(self, broker: "JobEvents", job_id: Optional[str] = None) -> None:
        self.job_id = job_id
        self._broker = broker
        self._queue: "asyncio.Queue[Optional[JobEvent]]" = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> JobEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            self._closed = True
            raise StopAsyncIteration
        if self.job_id is not None and item.event in TERMINAL_EVENTS:
            self.close()
        return item

    def wants(self, event: JobEvent) -> bool:
        return self.job_id is None or event.job.id == self.job_id

    def offer(self, event: JobEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broker.discard(self)
        self._queue.put_nowait(None)


class JobEvents:
    """Fan-out of job snapshots to subscribers.

    Every subscriber gets its own queue, so a slow reader never holds up the
    runner. Progress in published snapshots never goes down within a job run.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscription] = []
        self._last_progress: Dict[str, int] = {}

    def subscribe(self, job_id: Optional[str] = None) -> Subscription:
        sub = Subscription(self, job_id)
        self._subscribers.append(sub)
        return sub

    def discard(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    def publish(self, event: str, job: ProcessingJob) -> JobEvent:
        snapshot = job.model_copy(deep=True)
        last = self._last_progress.get(job.id)
        if last is not None and snapshot.progress < last and event != "job_started":
            logger.warning(
                "job_progress_regressed",
                extra={"job_id": job.id, "progress": snapshot.progress, "previous": last},
            )
            snapshot.progress = last
        if event in TERMINAL_EVENTS:
            self._last_progress.pop(job.id, None)
        else:
            self._last_progress[job.id] = snapshot.progress

        item = JobEvent(event=event, job=snapshot)
        for sub in list(self._subscribers):
            if sub.wants(item):
                sub.offer(item)
        return item

    def close(self) -> None:
        for sub in list(self._subscribers):
            sub.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
