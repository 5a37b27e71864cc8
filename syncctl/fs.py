"""File-system access used by the archive and retention engines.

The engines only talk to a :class:`FileSystem`, so tests can substitute a
fake one. Enumeration is a generator that yields entries in sorted order,
so walking the same tree twice gives the same sequence.
"""

import os
import shutil
from dataclasses import dataclass
from typing import Collection, Iterator, Optional
from loguru import logger


@dataclass(frozen=True)
class FileEntry:
    """A file found during a walk."""
    path: str
    relative_path: str
    size: int
    mtime: float

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class FileSystem:
    """Operations the engines need from a file system."""

    def is_dir(self, path: str) -> bool:
        raise NotImplementedError

    def walk_files(
        self,
        root: str,
        excluded_names: Collection[str] = (),
        excluded_paths: Collection[str] = (),
        recursive: bool = True,
    ) -> Iterator[FileEntry]:
        raise NotImplementedError

    def stat(self, path: str, relative_path: str = "") -> Optional[FileEntry]:
        raise NotImplementedError

    def copy_file(self, src: str, dst: str) -> None:
        raise NotImplementedError

    def remove_file(self, path: str) -> None:
        raise NotImplementedError

    def subdirectories(self, path: str) -> Iterator[str]:
        raise NotImplementedError

    def is_empty_dir(self, path: str) -> bool:
        raise NotImplementedError

    def remove_dir(self, path: str) -> None:
        raise NotImplementedError


class LocalFileSystem(FileSystem):
    """The real, local file system."""

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def walk_files(self, root, excluded_names=(), excluded_paths=(), recursive=True):
        """Yield every file under ``root``, or only its top level if not ``recursive``.

        Directories whose name matches ``excluded_names`` (case-insensitive,
        at any depth) or whose full path is in ``excluded_paths`` are not
        entered. Unreadable directories are logged and skipped.
        """
        names = {name.casefold() for name in excluded_names}
        paths = {os.path.normcase(os.path.abspath(p)) for p in excluded_paths}
        yield from self._walk(root, "", names, paths, recursive)

    def _walk(self, directory, relative, names, paths, recursive):
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Cannot read directory {directory}: {e}")
            return

        for entry in entries:
            rel = os.path.join(relative, entry.name) if relative else entry.name
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not recursive or entry.name.casefold() in names:
                        continue
                    if os.path.normcase(os.path.abspath(entry.path)) in paths:
                        continue
                    yield from self._walk(entry.path, rel, names, paths, recursive)
                elif entry.is_file():
                    st = entry.stat()
                    yield FileEntry(entry.path, rel, st.st_size, st.st_mtime)
            except OSError as e:
                logger.warning(f"Cannot read {entry.path}: {e}")

    def stat(self, path, relative_path=""):
        try:
            st = os.stat(path)
        except OSError:
            return None
        return FileEntry(path, relative_path, st.st_size, st.st_mtime)

    def copy_file(self, src, dst):
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        shutil.copy2(src, dst)

    def remove_file(self, path):
        os.remove(path)

    def subdirectories(self, path):
        with os.scandir(path) as it:
            dirs = sorted(e.path for e in it if e.is_dir(follow_symlinks=False))
        yield from dirs

    def is_empty_dir(self, path):
        with os.scandir(path) as it:
            return next(it, None) is None

    def remove_dir(self, path):
        os.rmdir(path)
