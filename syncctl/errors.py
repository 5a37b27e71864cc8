"""Exceptions raised by the syncctl engine."""


class SyncCtlError(Exception):
    """Base class for errors surfaced to callers."""


class JobNotFoundError(SyncCtlError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidJobError(SyncCtlError):
    """Job configuration cannot be run (e.g. missing source or destination)."""


class JobAlreadyRunningError(SyncCtlError):
    def __init__(self, job_id: int, name: str = ""):
        label = f"'{name}'" if name else str(job_id)
        super().__init__(f"Job {label} is already running")
        self.job_id = job_id
