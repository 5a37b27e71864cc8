"""Daily time-of-day triggering of scheduled jobs."""

import queue
import threading
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional
from loguru import logger
from .errors import SyncCtlError
from .executor import ExecutionCoordinator
from .models import SyncJob
from .registry import JobRegistry

SECONDS_PER_DAY = 24 * 60 * 60

DEFAULT_TICK_INTERVAL = timedelta(minutes=1)
DEFAULT_DUE_WINDOW = timedelta(minutes=1)
DEFAULT_COOLDOWN = timedelta(minutes=2)


def time_of_day_distance(a: time, b: time) -> timedelta:
    """Distance between two times of day on the 24h circle (23:59 -> 00:00 is 1 minute)."""
    seconds_a = a.hour * 3600 + a.minute * 60 + a.second + a.microsecond / 1e6
    seconds_b = b.hour * 3600 + b.minute * 60 + b.second + b.microsecond / 1e6
    diff = abs(seconds_a - seconds_b)
    return timedelta(seconds=min(diff, SECONDS_PER_DAY - diff))


def is_due(
    job: SyncJob,
    now: datetime,
    running: bool,
    due_window: timedelta = DEFAULT_DUE_WINDOW,
    cooldown: timedelta = DEFAULT_COOLDOWN,
) -> bool:
    """Whether ``job`` should fire at ``now``."""
    if not (job.enabled and job.schedule_enabled):
        return False
    if time_of_day_distance(now.time(), job.scheduled_time) >= due_window:
        return False
    if running:
        return False
    last = job.last_triggered_at
    if last is not None and timedelta(0) <= now - last < cooldown:
        return False
    return True


class Scheduler:
    """Background timer that hands due jobs to the coordinator.

    A tick thread evaluates jobs and queues the due ones; a separate
    dispatch thread drains the queue, so a tick never waits on a run.
    """

    def __init__(
        self,
        registry: JobRegistry,
        coordinator: ExecutionCoordinator,
        tick_interval: timedelta = DEFAULT_TICK_INTERVAL,
        initial_delay: timedelta = timedelta(seconds=10),
        due_window: timedelta = DEFAULT_DUE_WINDOW,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not due_window < cooldown <= 2 * tick_interval:
            raise ValueError("Expected due_window < cooldown <= 2 * tick_interval")
        # A longer tick can step over the whole window around a scheduled time
        if tick_interval > 2 * due_window:
            raise ValueError("Expected tick_interval <= 2 * due_window")
        self.registry = registry
        self.coordinator = coordinator
        self.tick_interval = tick_interval
        self.initial_delay = initial_delay
        self.due_window = due_window
        self.cooldown = cooldown
        self.clock = clock
        self._requests: "queue.Queue[Optional[int]]" = queue.Queue()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._tick_loop, name="syncctl-scheduler", daemon=True),
            threading.Thread(target=self._dispatch_loop, name="syncctl-dispatch", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            f"Scheduler started - checking every {self.tick_interval.total_seconds():g}s for scheduled jobs"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        if not self._threads:
            return
        self._stop.set()
        self._requests.put(None)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Scheduler stopped")

    def _tick_loop(self) -> None:
        if self._stop.wait(self.initial_delay.total_seconds()):
            return
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("[SCHEDULER] Tick failed")
            self._stop.wait(self.tick_interval.total_seconds())

    def tick(self, now: Optional[datetime] = None) -> List[int]:
        """Evaluate every job once and queue the due ones. Returns their ids."""
        now = now or self.clock()
        fired = []
        for job in self.registry.list_jobs():
            try:
                running = self.coordinator.is_running(job.id)
                if not is_due(job, now, running, self.due_window, self.cooldown):
                    continue
                logger.info(f"[SCHEDULER] Triggering scheduled job: {job.name} at {now:%H:%M:%S}")
                # Recorded before dispatch so a following tick sees the cooldown
                self.registry.record_trigger(job.id, now)
                self._requests.put(job.id)
                fired.append(job.id)
            except Exception:
                logger.exception(f"[SCHEDULER] Error evaluating job {job.name}")
        return fired

    def _dispatch_loop(self) -> None:
        while True:
            job_id = self._requests.get()
            if job_id is None:
                return
            self.dispatch(job_id)

    def dispatch(self, job_id: int) -> None:
        try:
            self.coordinator.run(job_id)
        except SyncCtlError as e:
            logger.warning(f"[SCHEDULER] Job {job_id} not started: {e}")
        except Exception:
            logger.exception(f"[SCHEDULER] Failed to start job {job_id}")

    def drain(self) -> int:
        """Dispatch everything queued on the calling thread. Returns the count."""
        count = 0
        while True:
            try:
                job_id = self._requests.get_nowait()
            except queue.Empty:
                return count
            if job_id is not None:
                self.dispatch(job_id)
                count += 1
