"""Preservation of destination files that a copy run will overwrite or delete."""

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from loguru import logger
from .fs import FileEntry, FileSystem, LocalFileSystem
from .models import GlobalSettings, SyncJob
from .retention import PruneReport, RetentionManager

# The copy utility treats files within this many seconds as unchanged
TIMESTAMP_TOLERANCE_SECONDS = 2.0

SYSTEM_EXCLUDED_DIRS = ("$RECYCLE.BIN", "System Volume Information", "$Recycle.Bin", "Recycler")
IGNORED_FILE_NAMES = frozenset(name.casefold() for name in (".DS_Store", "Thumbs.db", "desktop.ini"))

VERSION_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


class Action(str, Enum):
    """What the archiver does with one destination file."""
    SKIP = "skip"
    PRESERVE_OVERWRITE = "preserve-overwrite"
    PRESERVE_DELETE = "preserve-delete"


def classify(dest: FileEntry, source: Optional[FileEntry], deletes_extraneous: bool) -> Action:
    """Decide whether the copy run is about to change ``dest``."""
    if source is None:
        return Action.PRESERVE_DELETE if deletes_extraneous else Action.SKIP
    if source.size != dest.size:
        return Action.PRESERVE_OVERWRITE
    if abs(source.mtime - dest.mtime) > TIMESTAMP_TOLERANCE_SECONDS:
        return Action.PRESERVE_OVERWRITE
    return Action.SKIP


def version_path(version_root: str, entry: FileEntry) -> str:
    """Where the superseded copy of ``entry`` is stored."""
    stamp = datetime.fromtimestamp(entry.mtime).strftime(VERSION_TIMESTAMP_FORMAT)
    stem, ext = os.path.splitext(entry.name)
    directory = os.path.dirname(entry.relative_path)
    return os.path.join(version_root, directory, f"{stem}_{stamp}{ext}")


@dataclass
class ArchiveReport:
    scanned: int = 0
    archived: int = 0
    errors: int = 0
    skipped: bool = False
    prune: Optional[PruneReport] = None


class Archiver:
    """Copies at-risk destination files into the job's version store."""

    def __init__(self, fs: Optional[FileSystem] = None, retention: Optional[RetentionManager] = None):
        self.fs = fs or LocalFileSystem()
        self.retention = retention or RetentionManager(self.fs)

    @staticmethod
    def version_root(job: SyncJob, settings: GlobalSettings) -> str:
        return os.path.join(job.destination_path, settings.version_folder)

    def archive(self, job: SyncJob, settings: GlobalSettings) -> ArchiveReport:
        """Scan ``job``'s trees, preserve changed files, then prune."""
        report = ArchiveReport()
        if not job.has_paths:
            report.skipped = True
            return report
        if not self.fs.is_dir(job.source_path):
            logger.warning(f"[{job.name}] Archiving skipped - source path does not exist")
            report.skipped = True
            return report
        if not self.fs.is_dir(job.destination_path):
            logger.info(f"[{job.name}] Archiving skipped - destination path does not exist")
            report.skipped = True
            return report

        logger.info(f"[{job.name}] Checking for files to archive...")
        version_root = self.version_root(job, settings)
        excluded = list(SYSTEM_EXCLUDED_DIRS) + job.excluded_directory_names
        recursive = settings.copies_subdirectories

        source_files: Dict[str, FileEntry] = {
            os.path.normcase(entry.relative_path): entry
            for entry in self.fs.walk_files(job.source_path, excluded_names=excluded, recursive=recursive)
        }
        dest_files = self.fs.walk_files(
            job.destination_path,
            excluded_names=excluded,
            excluded_paths=[version_root],
            recursive=recursive,
        )

        for dest in dest_files:
            if dest.name.casefold() in IGNORED_FILE_NAMES:
                continue
            report.scanned += 1
            source = source_files.get(os.path.normcase(dest.relative_path))
            if classify(dest, source, settings.deletes_extraneous) is Action.SKIP:
                continue
            target = version_path(version_root, dest)
            try:
                self.fs.copy_file(dest.path, target)
            except OSError as e:
                report.errors += 1
                logger.error(f"[{job.name}] ERROR archiving {dest.relative_path}: {e}")
                continue
            report.archived += 1
            logger.debug(f"[{job.name}] Archived: {dest.relative_path}")

        if report.archived:
            logger.info(f"[{job.name}] Archived {report.archived} file(s) to {settings.version_folder}")
        else:
            logger.info(f"[{job.name}] No files needed archiving")

        report.prune = self.retention.prune(version_root, settings, label=job.name)
        return report
