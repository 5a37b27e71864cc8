"""Command line for the external copy utility (robocopy dialect)."""

import subprocess
from typing import List
from .archive import SYSTEM_EXCLUDED_DIRS
from .models import GlobalSettings, SyncJob


def excluded_directories(job: SyncJob, settings: GlobalSettings) -> List[str]:
    """Directories the copy must never touch, system folders first."""
    dirs = list(SYSTEM_EXCLUDED_DIRS)
    if settings.enable_versioning:
        dirs.append(settings.version_folder)
    for name in job.excluded_directory_names:
        if name not in dirs:
            dirs.append(name)
    return dirs


def build_copy_command(job: SyncJob, settings: GlobalSettings, tool: str = "robocopy") -> List[str]:
    """Build the argument vector for one copy run of ``job``."""
    args = [tool, job.source_path, job.destination_path]

    if settings.mirror_mode:
        args.append("/MIR")
    elif settings.copy_subdirs:
        args.append("/E" if settings.copy_empty_dirs else "/S")

    args.append(f"/MT:{job.threads}")
    args.append(f"/R:{settings.retries}")
    args.append(f"/W:{settings.wait_time}")
    args.append("/NP")  # no per-file progress percentage
    args.append("/A-:SH")  # strip system and hidden attributes

    if settings.purge_destination and not settings.mirror_mode:
        args.append("/PURGE")

    for directory in excluded_directories(job, settings):
        args.extend(["/XD", directory])

    return args


def render_command(args: List[str]) -> str:
    """Human-readable form of an argument vector."""
    return subprocess.list2cmdline(args)
