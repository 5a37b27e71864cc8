"""Tests for the retention manager."""

import os
import time
from datetime import datetime

from conftest import write_file
from syncctl.fs import FileEntry, LocalFileSystem
from syncctl.models import GlobalSettings
from syncctl.retention import RetentionManager, version_identity

DAY = 86400


def remaining(root):
    found = []
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            found.append(os.path.relpath(os.path.join(dirpath, name), root))
    return sorted(found)


class TestVersionIdentity:

    def test_strips_timestamp(self):
        """Test: Versions of one file from different days share an identity."""
        a = FileEntry("/v/d/report_2024-01-02_10-11-12.txt", os.path.join("d", "report_2024-01-02_10-11-12.txt"), 1, 0)
        b = FileEntry("/v/d/report_2024-02-09_08-00-00.txt", os.path.join("d", "report_2024-02-09_08-00-00.txt"), 1, 0)
        assert version_identity(a) == version_identity(b)
        assert version_identity(a)[1:] == ("report", ".txt")

    def test_directory_and_extension_distinguish(self):
        """Test: Same name in another folder or with another extension is a different file."""
        a = FileEntry("/v/x/r_2024-01-02_10-11-12.txt", os.path.join("x", "r_2024-01-02_10-11-12.txt"), 1, 0)
        b = FileEntry("/v/y/r_2024-01-02_10-11-12.txt", os.path.join("y", "r_2024-01-02_10-11-12.txt"), 1, 0)
        c = FileEntry("/v/x/r_2024-01-02_10-11-12.csv", os.path.join("x", "r_2024-01-02_10-11-12.csv"), 1, 0)
        assert len({version_identity(a), version_identity(b), version_identity(c)}) == 3

    def test_underscore_in_original_name(self):
        """Test: Underscores in the original name are kept."""
        e = FileEntry("/v/my_file_2024-01-02_10-11-12.txt", "my_file_2024-01-02_10-11-12.txt", 1, 0)
        assert version_identity(e)[1] == "my_file"


class TestRetention:

    def setup_method(self):
        self.now = time.time()

    def manager(self):
        return RetentionManager(clock=lambda: datetime.fromtimestamp(self.now))

    def test_age_based_deletion(self, tmp_path):
        """Test: Files older than the retention window are deleted."""
        root = str(tmp_path)
        for name, age in (("a_2024-01-01_00-00-00.txt", 10), ("b_2024-01-01_00-00-00.txt", 40),
                          ("c_2024-01-01_00-00-00.txt", 400)):
            write_file(os.path.join(root, name), "v", self.now - age * DAY)

        report = self.manager().prune(root, GlobalSettings(days_to_keep_versions=30))

        assert report.deleted_by_age == 2
        assert remaining(root) == ["a_2024-01-01_00-00-00.txt"]

    def test_zero_days_keeps_forever(self, tmp_path):
        """Test: Retention of 0 days never deletes by age."""
        root = str(tmp_path)
        write_file(os.path.join(root, "a_2024-01-01_00-00-00.txt"), "v", self.now - 4000 * DAY)

        report = self.manager().prune(root, GlobalSettings(days_to_keep_versions=0))
        assert report.deleted == 0
        assert len(remaining(root)) == 1

    def test_count_based_deletion(self, tmp_path):
        """Test: Only the newest N versions of a file survive."""
        root = str(tmp_path)
        names = []
        for i in range(5):
            mtime = self.now - (5 - i) * 3600
            name = f"doc_{datetime.fromtimestamp(mtime):%Y-%m-%d_%H-%M-%S}.txt"
            write_file(os.path.join(root, name), "v", mtime)
            names.append(name)

        settings = GlobalSettings(days_to_keep_versions=0, max_versions_per_file=2)
        report = self.manager().prune(root, settings)

        assert report.deleted_by_count == 3
        assert remaining(root) == sorted(names[-2:])

    def test_count_is_per_file(self, tmp_path):
        """Test: The version limit applies to each original file separately."""
        root = str(tmp_path)
        for base in ("a", "b"):
            for i in range(3):
                write_file(os.path.join(root, f"{base}_2024-01-0{i + 1}_00-00-00.txt"), "v", self.now - i * 60)

        settings = GlobalSettings(days_to_keep_versions=0, max_versions_per_file=1)
        report = self.manager().prune(root, settings)
        assert report.deleted_by_count == 4
        assert remaining(root) == ["a_2024-01-01_00-00-00.txt", "b_2024-01-01_00-00-00.txt"]

    def test_prune_is_idempotent(self, tmp_path):
        """Test: A second prune with nothing new deletes nothing."""
        root = str(tmp_path)
        for i, age in enumerate((1, 50, 60, 2)):
            write_file(os.path.join(root, "d", f"f_2024-01-0{i + 1}_00-00-00.txt"), "v", self.now - age * DAY)
        settings = GlobalSettings(days_to_keep_versions=30, max_versions_per_file=1)

        first = self.manager().prune(root, settings)
        second = self.manager().prune(root, settings)

        assert first.deleted == 3
        assert second.deleted == 0
        assert second.errors == 0
        assert remaining(root) == [os.path.join("d", "f_2024-01-01_00-00-00.txt")]

    def test_empty_directories_removed(self, tmp_path):
        """Test: Directories emptied by pruning are removed bottom-up; the root stays."""
        root = tmp_path / "OldVersions"
        write_file(str(root / "a" / "b" / "old_2024-01-01_00-00-00.txt"), "v", self.now - 100 * DAY)
        write_file(str(root / "keep" / "new_2024-01-01_00-00-00.txt"), "v", self.now)

        report = self.manager().prune(str(root), GlobalSettings(days_to_keep_versions=30))

        assert report.removed_dirs == 2
        assert not (root / "a").exists()
        assert (root / "keep").is_dir()
        assert root.is_dir()

    def test_missing_version_store(self, tmp_path):
        """Test: Pruning a store that does not exist is a no-op."""
        report = self.manager().prune(str(tmp_path / "nope"), GlobalSettings())
        assert report.scanned == 0
        assert report.deleted == 0

    def test_delete_failure_continues(self, tmp_path):
        """Test: A file that cannot be deleted does not stop the others."""
        root = str(tmp_path)
        for name in ("locked_2024-01-01_00-00-00.txt", "x_2024-01-01_00-00-00.txt", "y_2024-01-01_00-00-00.txt"):
            write_file(os.path.join(root, name), "v", self.now - 100 * DAY)

        class LockedFS(LocalFileSystem):
            def remove_file(self, path):
                if os.path.basename(path).startswith("locked"):
                    raise PermissionError("in use")
                super().remove_file(path)

        manager = RetentionManager(LockedFS(), clock=lambda: datetime.fromtimestamp(self.now))
        report = manager.prune(root, GlobalSettings(days_to_keep_versions=30))

        assert report.errors == 1
        assert report.deleted_by_age == 2
        assert remaining(root) == ["locked_2024-01-01_00-00-00.txt"]
