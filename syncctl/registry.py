"""Job registry: the configured jobs plus global settings."""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
from loguru import logger
from .errors import JobNotFoundError
from .models import (
    AppState,
    GlobalSettings,
    JobStatus,
    LAUNCH_FAILED_EXIT_CODE,
    SyncJob,
)
from .storage import Storage

_RUN_STATE_FIELDS = {
    "id",
    "last_triggered_at",
    "last_started_at",
    "last_finished_at",
    "last_exit_code",
    "last_status",
}


class JobRegistry:
    """Thread-safe owner of jobs and settings.

    Readers always get copies, so a run never sees a job or the settings
    change underneath it. Every mutation is saved through the storage.
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self._lock = threading.RLock()
        state = storage.load()
        self._jobs: Dict[int, SyncJob] = {job.id: job for job in state.jobs}
        self._settings = state.settings
        self._reset_stale_runs()
        logger.info(f"Loaded {len(self._jobs)} saved job(s)")

    def _reset_stale_runs(self) -> None:
        # Nothing is running in a fresh process, so leftover "running" is stale
        stale = [job for job in self._jobs.values() if job.last_status == JobStatus.RUNNING]
        for job in stale:
            logger.warning(f"[{job.name}] Was running when the previous session ended; marking failed")
            job.last_status = JobStatus.FAILED
            job.last_exit_code = LAUNCH_FAILED_EXIT_CODE
        if stale:
            self.save()

    def save(self) -> None:
        with self._lock:
            state = AppState(jobs=list(self._jobs.values()), settings=self._settings)
            try:
                self.storage.save(state)
            except OSError as e:
                logger.error(f"Error auto-saving configuration: {e}")

    def _get(self, job_id: int) -> SyncJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # Jobs

    def add_job(self, **fields: Any) -> SyncJob:
        """Create a job with the next free id."""
        with self._lock:
            job_id = max(self._jobs, default=0) + 1
            fields = {k: v for k, v in fields.items() if k not in _RUN_STATE_FIELDS}
            fields.setdefault("name", f"Job {job_id}")
            job = SyncJob(id=job_id, **fields)
            self._jobs[job_id] = job
            self.save()
            logger.info(f"New job added: {job.name}")
            return job.model_copy()

    def get_job(self, job_id: int) -> SyncJob:
        with self._lock:
            return self._get(job_id).model_copy()

    def list_jobs(self) -> List[SyncJob]:
        """Snapshot of all jobs, ordered by id."""
        with self._lock:
            return [self._jobs[job_id].model_copy() for job_id in sorted(self._jobs)]

    def update_job(self, job_id: int, **changes: Any) -> SyncJob:
        """Apply user edits to a job. Run-state fields cannot be edited here."""
        with self._lock:
            job = self._get(job_id)
            blocked = _RUN_STATE_FIELDS.intersection(changes)
            if blocked:
                raise ValueError(f"Cannot edit run-state field(s): {', '.join(sorted(blocked))}")
            data = job.model_dump()
            data.update(changes)
            updated = SyncJob.model_validate(data)
            self._jobs[job_id] = updated
            self.save()
            return updated.model_copy()

    def delete_job(self, job_id: int) -> SyncJob:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                raise JobNotFoundError(job_id)
            self.save()
            logger.info(f"Deleted job: {job.name}")
            return job

    # Run bookkeeping

    def record_trigger(self, job_id: int, when: datetime) -> SyncJob:
        with self._lock:
            job = self._get(job_id)
            job.last_triggered_at = when
            self.save()
            return job.model_copy()

    def mark_running(self, job_id: int, when: datetime) -> SyncJob:
        with self._lock:
            job = self._get(job_id)
            job.last_status = JobStatus.RUNNING
            job.last_started_at = when
            job.last_finished_at = None
            job.last_exit_code = None
            self.save()
            return job.model_copy()

    def mark_finished(
        self, job_id: int, status: JobStatus, exit_code: Optional[int], when: datetime
    ) -> Optional[SyncJob]:
        """Record a run outcome. Returns None if the job was deleted meanwhile."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"Job {job_id} finished after it was deleted")
                return None
            job.last_status = status
            job.last_exit_code = exit_code
            job.last_finished_at = when
            self.save()
            return job.model_copy()

    # Settings

    def get_settings(self) -> GlobalSettings:
        with self._lock:
            return self._settings.model_copy()

    def update_settings(self, **changes: Any) -> GlobalSettings:
        with self._lock:
            data = self._settings.model_dump()
            data.update(changes)
            self._settings = GlobalSettings.model_validate(data)
            self.save()
            return self._settings.model_copy()
