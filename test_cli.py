"""Tests for the syncctl command-line interface."""

import os

import pytest
from click.testing import CliRunner
from loguru import logger
from pydantic import ValidationError

from syncctl.cli import cli
from syncctl.config import AppConfig, get_config
from syncctl.logging import setup_logging
from syncctl.models import JobStatus
from syncctl.registry import JobRegistry
from syncctl.storage import Storage


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("SYNCCTL_DATA_DIR", str(path))
    monkeypatch.setenv("SYNCCTL_COPY_TOOL", str(tmp_path / "no-such-copy-tool"))
    get_config.cache_clear()
    yield path
    get_config.cache_clear()


@pytest.fixture
def invoke(data_dir):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, ["-q", *args])

    return _invoke


def saved_registry(data_dir):
    return JobRegistry(Storage(str(data_dir)))


class TestJobCommands:

    def test_add_and_list(self, invoke, data_dir):
        """Test: Added jobs are saved and listed."""
        result = invoke("add", "--name", "docs", "--source", "/src", "--dest", "/dst",
                        "--threads", "16", "--schedule", "18:30")
        assert result.exit_code == 0, result.output
        assert "Job 1 (docs) added" in result.output

        job = saved_registry(data_dir).get_job(1)
        assert job.threads == 16
        assert job.schedule_enabled is True
        assert f"{job.scheduled_time:%H:%M}" == "18:30"

        listing = invoke("list")
        assert listing.exit_code == 0
        assert "docs" in listing.output
        assert "18:30" in listing.output

    def test_add_rejects_bad_schedule(self, invoke):
        """Test: Schedules must be HH:MM."""
        result = invoke("add", "--schedule", "25:00")
        assert result.exit_code != 0
        assert "HH:MM" in result.output

    def test_add_rejects_bad_threads(self, invoke):
        """Test: Thread count is bounded."""
        assert invoke("add", "--threads", "0").exit_code != 0

    def test_update_and_delete(self, invoke, data_dir):
        """Test: Jobs can be edited and removed."""
        invoke("add", "--name", "docs")
        result = invoke("update", "1", "--no-archive", "--exclude", "temp,.git")
        assert result.exit_code == 0, result.output
        job = saved_registry(data_dir).get_job(1)
        assert job.enable_archiving is False
        assert job.excluded_directory_names == ["temp", ".git"]

        result = invoke("delete", "1")
        assert result.exit_code == 0
        assert saved_registry(data_dir).list_jobs() == []

    def test_unknown_job(self, invoke):
        """Test: Commands on a missing job fail cleanly."""
        for args in (("show", "7"), ("update", "7", "--name", "x"), ("delete", "7"), ("run", "7")):
            result = invoke(*args)
            assert result.exit_code == 1
            assert "Job 7 not found" in result.output

    def test_show_and_command(self, invoke):
        """Test: The copy command can be previewed."""
        invoke("add", "--name", "docs", "--source", "/src", "--dest", "/dst", "--exclude", "cache")
        shown = invoke("show", "1")
        assert "/MIR" in shown.output
        assert "Last status:   never-run" in shown.output

        command = invoke("command", "1")
        assert command.exit_code == 0
        assert "/src /dst /MIR" in command.output
        assert "/XD cache" in command.output


class TestRunCommands:

    def test_run_without_paths(self, invoke):
        """Test: Running a job with no paths is refused."""
        invoke("add")
        result = invoke("run", "1")
        assert result.exit_code == 1
        assert "needs both a source and a destination" in result.output

    def test_run_missing_tool_fails(self, invoke, data_dir, tmp_path):
        """Test: A copy tool that cannot start marks the job failed."""
        source = tmp_path / "s"
        dest = tmp_path / "d"
        source.mkdir()
        dest.mkdir()
        invoke("add", "--source", str(source), "--dest", str(dest))

        result = invoke("run", "1")
        assert result.exit_code == 1
        assert "failed (exit code: -1)" in result.output
        assert saved_registry(data_dir).get_job(1).last_status == JobStatus.FAILED

    def test_run_all_without_jobs(self, invoke):
        """Test: run-all with nothing runnable reports an error."""
        result = invoke("run-all")
        assert result.exit_code == 1
        assert "No valid jobs" in result.output

    def test_prune(self, invoke, tmp_path):
        """Test: prune applies retention to the job's version store."""
        dest = tmp_path / "d"
        old = dest / "OldVersions" / "sub" / "a_2000-01-01_00-00-00.txt"
        old.parent.mkdir(parents=True)
        old.write_text("v")
        os.utime(old, (946684800, 946684800))
        invoke("add", "--source", str(tmp_path / "s"), "--dest", str(dest))

        result = invoke("prune", "1")
        assert result.exit_code == 0, result.output
        assert "deleted 1" in result.output
        assert not old.exists()
        assert not old.parent.exists()


class TestSettingsCommands:

    def test_show_defaults(self, invoke):
        """Test: Settings show lists the defaults."""
        result = invoke("settings", "show")
        assert result.exit_code == 0
        assert "days-to-keep:" in result.output
        assert "OldVersions" in result.output

    def test_set_values(self, invoke, data_dir):
        """Test: Settings can be changed and are saved."""
        assert invoke("settings", "set", "days-to-keep", "60").exit_code == 0
        assert invoke("settings", "set", "mirror", "false").exit_code == 0
        settings = saved_registry(data_dir).get_settings()
        assert settings.days_to_keep_versions == 60
        assert settings.mirror_mode is False

    def test_set_invalid(self, invoke):
        """Test: Invalid settings values are rejected."""
        result = invoke("settings", "set", "retries", "many")
        assert result.exit_code == 1
        assert "Invalid value" in result.output
        assert invoke("settings", "set", "days-to-keep", "-5").exit_code == 1
        assert invoke("settings", "set", "version-folder", "x").exit_code != 0

    def test_status(self, invoke):
        """Test: Status summarises jobs."""
        invoke("add")
        result = invoke("status")
        assert result.exit_code == 0
        assert "Total Jobs:     1" in result.output


class TestConfig:

    def test_tick_interval_bounds(self, monkeypatch):
        """Test: Scheduler ticks longer than two minutes are rejected at load."""
        monkeypatch.setenv("SYNCCTL_TICK_INTERVAL_SECONDS", "300")
        with pytest.raises(ValidationError):
            AppConfig()
        monkeypatch.setenv("SYNCCTL_TICK_INTERVAL_SECONDS", "120")
        assert AppConfig().tick_interval_seconds == 120

    def test_scheduler_rejects_long_tick(self, invoke, monkeypatch):
        """Test: scheduler start refuses a tick that could miss a scheduled time."""
        monkeypatch.setenv("SYNCCTL_TICK_INTERVAL_SECONDS", "300")
        get_config.cache_clear()
        result = invoke("scheduler", "start")
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "tick_interval_seconds" in result.output


class TestLogging:

    def test_file_sink_written(self, tmp_path):
        """Test: setup_logging writes engine messages to the daily log file."""
        config = AppConfig(data_dir=str(tmp_path / "data"))
        setup_logging(config, console=False)
        try:
            logger.info("[job] Completed with exit code: 0 (success)")
            logger.complete()
        finally:
            logger.remove()

        logs = list(config.log_path.glob("syncctl_*.log"))
        assert len(logs) == 1
        assert "Completed with exit code: 0" in logs[0].read_text(encoding="utf-8")
