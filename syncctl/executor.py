"""Execution of sync jobs through the external copy utility."""

import subprocess
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from loguru import logger
from .archive import Archiver
from .command import build_copy_command, render_command
from .errors import InvalidJobError, JobAlreadyRunningError, SyncCtlError
from .events import EventBus, StatusEvent
from .models import (
    FAILURE_EXIT_CODE,
    GlobalSettings,
    JobStatus,
    LAUNCH_FAILED_EXIT_CODE,
    SyncJob,
)
from .registry import JobRegistry

Launcher = Callable[[List[str]], subprocess.Popen]


def launch_process(command: List[str]) -> subprocess.Popen:
    """Start the copy utility with its output piped back to us."""
    return subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
    )


def status_for_exit_code(exit_code: int) -> JobStatus:
    """Map a copy-utility exit code to a run outcome (0-7 is success)."""
    if 0 <= exit_code < FAILURE_EXIT_CODE:
        return JobStatus.SUCCESS
    return JobStatus.FAILED


class RunHandle:
    """One accepted run of a job, from reservation until exit."""

    def __init__(self, job_id: int, job_name: str):
        self.job_id = job_id
        self.job_name = job_name
        self.process: Optional[subprocess.Popen] = None
        self.cancelled = False
        self.status = JobStatus.RUNNING
        self.exit_code: Optional[int] = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run has finished. Returns False on timeout."""
        return self._done.wait(timeout)

    def _complete(self, status: JobStatus, exit_code: Optional[int]) -> None:
        self.status = status
        self.exit_code = exit_code
        self._done.set()


class ProcessTable:
    """Live runs by job id; presence of an entry means the job is running.

    ``lock`` is re-entrant so callers can hold it across a reservation and
    the matching status update.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._runs: Dict[int, RunHandle] = {}

    def reserve(self, handle: RunHandle) -> bool:
        """Insert ``handle`` unless its job already has a live run."""
        with self.lock:
            if handle.job_id in self._runs:
                return False
            self._runs[handle.job_id] = handle
            return True

    def release(self, job_id: int) -> Optional[RunHandle]:
        with self.lock:
            return self._runs.pop(job_id, None)

    def get(self, job_id: int) -> Optional[RunHandle]:
        with self.lock:
            return self._runs.get(job_id)

    def snapshot(self) -> List[RunHandle]:
        with self.lock:
            return list(self._runs.values())

    def __contains__(self, job_id: int) -> bool:
        with self.lock:
            return job_id in self._runs

    def __len__(self) -> int:
        with self.lock:
            return len(self._runs)


class ExecutionCoordinator:
    """Runs jobs, at most one run per job id at a time."""

    def __init__(
        self,
        registry: JobRegistry,
        archiver: Optional[Archiver] = None,
        events: Optional[EventBus] = None,
        launcher: Launcher = launch_process,
        copy_tool: str = "robocopy",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.archiver = archiver or Archiver()
        self.events = events or EventBus()
        self.launcher = launcher
        self.copy_tool = copy_tool
        self.clock = clock
        self._table = ProcessTable()

    def is_running(self, job_id: int) -> bool:
        return job_id in self._table

    def running_job_ids(self) -> List[int]:
        return [handle.job_id for handle in self._table.snapshot()]

    def run(self, job_id: int) -> RunHandle:
        """Start a run of ``job_id`` and return without waiting for it.

        Raises InvalidJobError if the job has no source or destination and
        JobAlreadyRunningError if it is already running.
        """
        job = self.registry.get_job(job_id)
        if not job.has_paths:
            logger.warning(f"[{job.name}] Source and destination paths must be configured before running")
            raise InvalidJobError(f"Job '{job.name}' needs both a source and a destination path")

        handle = RunHandle(job.id, job.name)
        with self._table.lock:
            if not self._table.reserve(handle):
                logger.warning(f"[{job.name}] Already running; ignoring duplicate start")
                raise JobAlreadyRunningError(job.id, job.name)
            try:
                started = self.registry.mark_running(job.id, self.clock())
            except SyncCtlError:
                self._table.release(job.id)
                raise
        self.events.publish(StatusEvent.from_job(started))

        settings = self.registry.get_settings()
        thread = threading.Thread(
            target=self._execute,
            args=(started, settings, handle),
            name=f"syncctl-job-{job.id}",
            daemon=True,
        )
        thread.start()
        return handle

    def _execute(self, job: SyncJob, settings: GlobalSettings, handle: RunHandle) -> None:
        status, exit_code = JobStatus.FAILED, LAUNCH_FAILED_EXIT_CODE
        try:
            if job.enable_archiving and settings.enable_versioning:
                self.archiver.archive(job, settings)
            status, exit_code = self._run_copy(job, settings, handle)
        except Exception as e:
            logger.exception(f"[{job.name}] ERROR: {e}")
        finally:
            self._finish(job, handle, status, exit_code)

    def _run_copy(
        self, job: SyncJob, settings: GlobalSettings, handle: RunHandle
    ) -> Tuple[JobStatus, Optional[int]]:
        command = build_copy_command(job, settings, self.copy_tool)
        logger.info(f"[{job.name}] Starting at {self.clock():%Y-%m-%d %H:%M:%S}")
        logger.info(f"[{job.name}] Command: {render_command(command)}")

        if handle.cancelled:
            logger.info(f"[{job.name}] Cancelled before the copy started")
            return JobStatus.CANCELLED, None
        try:
            process = self.launcher(command)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error(f"[{job.name}] ERROR: could not start {self.copy_tool}: {e}")
            return JobStatus.FAILED, LAUNCH_FAILED_EXIT_CODE

        # A cancel that arrived while the process was starting saw no process
        with self._table.lock:
            handle.process = process
            cancelled = handle.cancelled
        if cancelled and process.poll() is None:
            try:
                process.terminate()
            except OSError as e:
                logger.debug(f"[{job.name}] Process already gone: {e}")

        self._relay_output(job, process)
        exit_code = process.wait()
        if handle.cancelled:
            return JobStatus.CANCELLED, exit_code
        return status_for_exit_code(exit_code), exit_code

    def _relay_output(self, job: SyncJob, process: subprocess.Popen) -> None:
        stream = process.stdout
        if stream is None:
            return
        with stream:
            for line in stream:
                line = line.rstrip()
                if line:
                    logger.debug(f"[{job.name}] {line}")

    def _finish(
        self, job: SyncJob, handle: RunHandle, status: JobStatus, exit_code: Optional[int]
    ) -> None:
        # The only place a live run leaves the table
        finished_at = self.clock()
        with self._table.lock:
            self._table.release(job.id)
            finished = self.registry.mark_finished(job.id, status, exit_code, finished_at)

        logger.info(
            f"[{job.name}] Completed at {finished_at:%Y-%m-%d %H:%M:%S} "
            f"with exit code: {exit_code} ({status.value})"
        )
        if finished is not None:
            self.events.publish(StatusEvent.from_job(finished))
        handle._complete(status, exit_code)

    def run_all(self) -> List[RunHandle]:
        """Start every enabled job that has both paths configured."""
        jobs = [job for job in self.registry.list_jobs() if job.enabled and job.has_paths]
        logger.info(f"Starting {len(jobs)} job(s)")
        handles = []
        for job in jobs:
            try:
                handles.append(self.run(job.id))
            except SyncCtlError as e:
                logger.warning(f"[{job.name}] Not started: {e}")
        return handles

    def wait_all(self, handles: Optional[Iterable[RunHandle]] = None, timeout: Optional[float] = None) -> bool:
        """Wait for ``handles`` (default: every live run). False on timeout."""
        pending = list(handles) if handles is not None else self._table.snapshot()
        deadline = None if timeout is None else time.monotonic() + timeout
        for handle in pending:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not handle.wait(remaining):
                return False
        return True

    def cancel(self, job_id: int) -> bool:
        """Terminate ``job_id``'s run if it has one. Safe to call repeatedly."""
        with self._table.lock:
            handle = self._table.get(job_id)
            if handle is None:
                return False
            handle.cancelled = True
            process = handle.process

        if process is not None and process.poll() is None:
            try:
                process.terminate()
            except OSError as e:
                logger.debug(f"[{handle.job_name}] Process already gone: {e}")
        logger.info(f"[{handle.job_name}] Process terminated by user")
        return True

    def cancel_all(self, timeout: Optional[float] = None) -> int:
        """Terminate every live run and wait for the table to drain."""
        handles = self._table.snapshot()
        for handle in handles:
            self.cancel(handle.job_id)
        self.wait_all(handles, timeout)
        return len(handles)
