"""Status-change notifications for observers of job runs."""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from loguru import logger
from .models import JobStatus, SyncJob


@dataclass(frozen=True)
class StatusEvent:
    job_id: int
    job_name: str
    status: JobStatus
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    exit_code: Optional[int]

    @classmethod
    def from_job(cls, job: SyncJob) -> "StatusEvent":
        return cls(
            job_id=job.id,
            job_name=job.name,
            status=job.last_status,
            started_at=job.last_started_at,
            finished_at=job.last_finished_at,
            exit_code=job.last_exit_code,
        )


Observer = Callable[[StatusEvent], None]


class EventBus:
    """Fan-out of status events to subscribers.

    Events are delivered on whichever thread publishes them; subscribers
    must not assume a particular thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; returns a function that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def publish(self, event: StatusEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception:
                logger.exception(f"Status observer failed for job {event.job_id}")
