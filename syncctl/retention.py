"""Pruning of the version store by age and per-file version count."""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import groupby
from typing import Callable, List, Optional, Tuple
from loguru import logger
from .fs import FileEntry, FileSystem, LocalFileSystem
from .models import GlobalSettings

# Suffix added by the archiver: _YYYY-MM-DD_HH-MM-SS
_VERSION_SUFFIX = re.compile(r"_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}$")


def version_identity(entry: FileEntry) -> Tuple[str, str, str]:
    """Identify the original file a version belongs to.

    Returns (relative directory, base name, extension) with the timestamp
    segment stripped from the base name.
    """
    directory = os.path.dirname(entry.relative_path)
    stem, ext = os.path.splitext(entry.name)
    base = _VERSION_SUFFIX.sub("", stem)
    return os.path.normcase(directory), base, ext


@dataclass
class PruneReport:
    scanned: int = 0
    deleted_by_age: int = 0
    deleted_by_count: int = 0
    removed_dirs: int = 0
    errors: int = 0

    @property
    def deleted(self) -> int:
        return self.deleted_by_age + self.deleted_by_count


class RetentionManager:
    """Bounds the size of a version store."""

    def __init__(
        self,
        fs: Optional[FileSystem] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.fs = fs or LocalFileSystem()
        self.clock = clock

    def prune(self, version_root: str, settings: GlobalSettings, label: str = "") -> PruneReport:
        """Apply the retention policy to every file under ``version_root``."""
        prefix = f"[{label}] " if label else ""
        report = PruneReport()
        if not self.fs.is_dir(version_root):
            logger.debug(f"{prefix}No version store at {version_root}")
            return report

        logger.info(f"{prefix}Starting cleanup in: {version_root}")
        files = list(self.fs.walk_files(version_root))
        report.scanned = len(files)
        logger.info(f"{prefix}Found {len(files)} total version file(s)")

        if settings.days_to_keep_versions > 0:
            cutoff = self.clock() - timedelta(days=settings.days_to_keep_versions)
            cutoff_ts = cutoff.timestamp()
            logger.info(f"{prefix}Deleting files older than: {cutoff:%Y-%m-%d %H:%M:%S}")
            expired = [f for f in files if f.mtime < cutoff_ts]
            for entry in expired:
                if self._delete(entry, report, prefix):
                    report.deleted_by_age += 1
            gone = {entry.path for entry in expired}
            files = [f for f in files if f.path not in gone]
            if report.deleted_by_age:
                logger.info(
                    f"{prefix}Cleaned up {report.deleted_by_age} version(s) older than "
                    f"{settings.days_to_keep_versions} days"
                )
        else:
            logger.debug(f"{prefix}Days to keep is 0 - not deleting by age")

        if settings.max_versions_per_file > 0:
            for _, group in groupby(sorted(files, key=version_identity), key=version_identity):
                excess = self._excess_versions(list(group), settings.max_versions_per_file)
                for entry in excess:
                    logger.debug(f"{prefix}Deleting excess version: {entry.relative_path}")
                    if self._delete(entry, report, prefix):
                        report.deleted_by_count += 1
            if report.deleted_by_count:
                logger.info(
                    f"{prefix}Cleaned up {report.deleted_by_count} version(s) exceeding max "
                    f"{settings.max_versions_per_file} per file"
                )
        else:
            logger.debug(f"{prefix}Max versions per file not set (0) - keeping all versions")

        report.removed_dirs = self.remove_empty_dirs(version_root, prefix)
        logger.info(f"{prefix}Cleanup complete")
        return report

    @staticmethod
    def _excess_versions(group: List[FileEntry], keep: int) -> List[FileEntry]:
        newest_first = sorted(group, key=lambda f: (f.mtime, f.name), reverse=True)
        return newest_first[keep:]

    def _delete(self, entry: FileEntry, report: PruneReport, prefix: str) -> bool:
        try:
            self.fs.remove_file(entry.path)
            return True
        except OSError as e:
            report.errors += 1
            logger.warning(f"{prefix}Failed to delete {entry.relative_path}: {e}")
            return False

    def remove_empty_dirs(self, root: str, prefix: str = "") -> int:
        """Remove empty directories below ``root``, bottom-up. ``root`` stays."""
        removed = 0
        try:
            children = list(self.fs.subdirectories(root))
        except OSError as e:
            logger.warning(f"{prefix}Cannot read directory {root}: {e}")
            return 0
        for child in children:
            removed += self.remove_empty_dirs(child, prefix)
            try:
                if self.fs.is_empty_dir(child):
                    self.fs.remove_dir(child)
                    removed += 1
            except OSError as e:
                logger.warning(f"{prefix}Cannot remove directory {child}: {e}")
        return removed
