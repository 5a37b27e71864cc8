"""Data models for sync jobs and global policy."""

from datetime import datetime, time
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

VERSION_FOLDER = "OldVersions"
LAUNCH_FAILED_EXIT_CODE = -1

# Exit codes below this are success-with-info for the copy utility
FAILURE_EXIT_CODE = 8


class JobStatus(str, Enum):
    """Outcome of a job's most recent run."""
    NEVER_RUN = "never-run"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncJob(BaseModel):
    """One configured source -> destination synchronization task."""
    id: int
    name: str = ""
    source_path: str = ""
    destination_path: str = ""
    threads: int = Field(default=8, ge=1, le=128)
    enabled: bool = True
    schedule_enabled: bool = False
    scheduled_time: time = time(18, 0)
    enable_archiving: bool = True
    excluded_directories: str = ""  # comma-separated directory names

    last_triggered_at: Optional[datetime] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_exit_code: Optional[int] = None
    last_status: JobStatus = JobStatus.NEVER_RUN

    class Config:
        use_enum_values = False
        validate_assignment = True

    @field_validator("scheduled_time")
    @classmethod
    def _minute_precision(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @property
    def has_paths(self) -> bool:
        return bool(self.source_path.strip()) and bool(self.destination_path.strip())

    @property
    def excluded_directory_names(self) -> List[str]:
        """User exclusions split from the free-text list."""
        names = (part.strip() for part in self.excluded_directories.split(","))
        return [name for name in names if name]


class GlobalSettings(BaseModel):
    """Process-wide copy and versioning policy."""
    mirror_mode: bool = True
    purge_destination: bool = False
    copy_subdirs: bool = True
    copy_empty_dirs: bool = False
    retries: int = Field(default=3, ge=0)
    wait_time: int = Field(default=30, ge=0)  # seconds between retries
    enable_versioning: bool = True
    days_to_keep_versions: int = Field(default=30, ge=0)  # 0 keeps forever
    max_versions_per_file: int = Field(default=0, ge=0)  # 0 is unlimited

    class Config:
        validate_assignment = True

    @property
    def version_folder(self) -> str:
        return VERSION_FOLDER

    @property
    def copies_subdirectories(self) -> bool:
        """Whether the copy descends below the top level of the source."""
        return self.mirror_mode or self.copy_subdirs

    @property
    def deletes_extraneous(self) -> bool:
        """Whether the copy removes destination files missing from source."""
        return self.mirror_mode or self.purge_destination


class AppState(BaseModel):
    """Serializable snapshot of every job plus the global settings."""
    jobs: List[SyncJob] = Field(default_factory=list)
    settings: GlobalSettings = Field(default_factory=GlobalSettings)
