"""Shared pytest fixtures for the syncctl test suite."""

import os
import subprocess
import sys
import threading
import time

import pytest

from syncctl.executor import ExecutionCoordinator
from syncctl.registry import JobRegistry
from syncctl.storage import Storage


def write_file(path, content="data", mtime=None):
    """Create ``path`` (and parents) with ``content`` and an optional mtime."""
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return str(path)


def wait_until(predicate, timeout=10.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeLauncher:
    """Starts a tiny Python process instead of the copy utility."""

    def __init__(self, exit_code=0, sleep=0.0, on_launch=None):
        self.exit_code = exit_code
        self.sleep = sleep
        self.on_launch = on_launch
        self.commands = []
        self._lock = threading.Lock()

    @property
    def launches(self):
        with self._lock:
            return len(self.commands)

    def __call__(self, command):
        with self._lock:
            self.commands.append(command)
        if self.on_launch is not None:
            self.on_launch(command)
        script = f"import sys, time; print('copying'); time.sleep({self.sleep}); sys.exit({self.exit_code})"
        return subprocess.Popen(
            [sys.executable, "-c", script],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )


@pytest.fixture
def registry(tmp_path):
    return JobRegistry(Storage(str(tmp_path / "state")))


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def coordinator(registry, launcher):
    coordinator = ExecutionCoordinator(registry, launcher=launcher)
    yield coordinator
    coordinator.cancel_all(timeout=10)


@pytest.fixture
def dirs(tmp_path):
    source = tmp_path / "src"
    dest = tmp_path / "dst"
    source.mkdir()
    dest.mkdir()
    return str(source), str(dest)
