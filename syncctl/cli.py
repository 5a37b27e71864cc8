"""CLI interface for syncctl."""

import sys
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import click
from pydantic import ValidationError

from .archive import Archiver
from .command import build_copy_command, render_command
from .config import AppConfig, get_config
from .errors import SyncCtlError
from .events import EventBus, StatusEvent
from .executor import ExecutionCoordinator, RunHandle
from .logging import setup_logging
from .models import JobStatus, SyncJob
from .registry import JobRegistry
from .scheduler import Scheduler
from .storage import Storage


class Engine:
    """The wired-up registry, coordinator and event bus for one process."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.registry = JobRegistry(Storage(config.data_dir))
        self.events = EventBus()
        self.archiver = Archiver()
        self.coordinator = ExecutionCoordinator(
            self.registry,
            archiver=self.archiver,
            events=self.events,
            copy_tool=config.copy_tool,
        )


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _parse_time(value: str):
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError:
        raise click.BadParameter(f"{value!r} is not a 24-hour HH:MM time")


def _echo_event(event: StatusEvent) -> None:
    if event.status == JobStatus.RUNNING:
        click.echo(f"▶ [{event.job_name}] started at {event.started_at:%Y-%m-%d %H:%M:%S}")
        return
    symbol = "✓" if event.status == JobStatus.SUCCESS else "✗"
    click.echo(f"{symbol} [{event.job_name}] {event.status.value} (exit code: {event.exit_code})")


def _wait_foreground(engine: Engine, handles: List[RunHandle]) -> None:
    """Wait for runs, cancelling them all on Ctrl-C."""
    try:
        while not engine.coordinator.wait_all(handles, timeout=0.5):
            pass
    except KeyboardInterrupt:
        click.echo("\nCancelling running jobs...")
        engine.coordinator.cancel_all(timeout=30)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Only log to the log file")
@click.pass_context
def cli(ctx, quiet: bool):
    """syncctl - Scheduled folder synchronization with versioned backups"""
    try:
        config = get_config()
    except ValidationError as e:
        _fail(f"Invalid configuration: {e}")
    setup_logging(config, console=not quiet)
    ctx.obj = Engine(config)


def _job_options(func):
    """Options shared by ``add`` and ``update``."""
    options = [
        click.option("--name", help="Display name"),
        click.option("--source", help="Source folder"),
        click.option("--dest", help="Destination folder"),
        click.option("--threads", type=click.IntRange(1, 128), help="Copy threads (1-128)"),
        click.option("--exclude", help="Comma-separated directory names to skip"),
        click.option("--schedule", help="Daily run time, HH:MM (24-hour)"),
        click.option("--schedule-enabled/--schedule-disabled", default=None, help="Run on schedule"),
        click.option("--archive/--no-archive", default=None, help="Keep old versions before overwriting"),
        click.option("--enabled/--disabled", default=None, help="Include in run-all and scheduling"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _job_changes(name, source, dest, threads, exclude, schedule,
                 schedule_enabled, archive, enabled) -> Dict[str, Any]:
    changes: Dict[str, Any] = {
        "name": name,
        "source_path": source,
        "destination_path": dest,
        "threads": threads,
        "excluded_directories": exclude,
        "schedule_enabled": schedule_enabled,
        "enable_archiving": archive,
        "enabled": enabled,
    }
    if schedule is not None:
        changes["scheduled_time"] = _parse_time(schedule)
        if schedule_enabled is None:
            changes["schedule_enabled"] = True
    return {key: value for key, value in changes.items() if value is not None}


@cli.command()
@_job_options
@click.pass_obj
def add(engine: Engine, **options):
    """Add a new job.

    Example:
        syncctl add --name docs --source C:\\Docs --dest E:\\Backup\\Docs --schedule 18:00
    """
    try:
        job = engine.registry.add_job(**_job_changes(**options))
    except ValidationError as e:
        _fail(f"Invalid job: {e}")
    click.echo(f"✓ Job {job.id} ({job.name}) added")


@cli.command()
@click.argument("job_id", type=int)
@_job_options
@click.pass_obj
def update(engine: Engine, job_id: int, **options):
    """Change a job's settings.

    Example:
        syncctl update 1 --threads 16 --no-archive
    """
    try:
        job = engine.registry.update_job(job_id, **_job_changes(**options))
    except (SyncCtlError, ValidationError, ValueError) as e:
        _fail(str(e))
    click.echo(f"✓ Job {job.id} ({job.name}) updated")


@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def delete(engine: Engine, job_id: int):
    """Delete a job."""
    if engine.coordinator.is_running(job_id):
        _fail(f"Job {job_id} is running; stop it first")
    try:
        job = engine.registry.delete_job(job_id)
    except SyncCtlError as e:
        _fail(str(e))
    click.echo(f"✓ Job {job.id} ({job.name}) deleted")


@cli.command("list")
@click.option("--status", "status_filter", type=click.Choice([s.value for s in JobStatus]), help="Filter by last status")
@click.pass_obj
def list_jobs(engine: Engine, status_filter: Optional[str]):
    """List jobs.

    Example:
        syncctl list --status failed
    """
    jobs = engine.registry.list_jobs()
    if status_filter:
        jobs = [job for job in jobs if job.last_status.value == status_filter]

    if not jobs:
        click.echo("No jobs found")
        return

    click.echo(f"\n{'ID':<5} {'Name':<20} {'Enabled':<8} {'Schedule':<9} {'Status':<10} {'Last Finished':<20}")
    click.echo("-" * 75)
    for job in jobs:
        schedule = f"{job.scheduled_time:%H:%M}" if job.schedule_enabled else "-"
        finished = f"{job.last_finished_at:%Y-%m-%d %H:%M:%S}" if job.last_finished_at else "-"
        enabled = "yes" if job.enabled else "no"
        click.echo(f"{job.id:<5} {job.name[:20]:<20} {enabled:<8} {schedule:<9} {job.last_status.value:<10} {finished:<20}")
    click.echo()


def _show_job(engine: Engine, job: SyncJob) -> None:
    settings = engine.registry.get_settings()
    command = build_copy_command(job, settings, engine.config.copy_tool)
    click.echo(f"\nJob {job.id}: {job.name}")
    click.echo(f"  Source:        {job.source_path or '-'}")
    click.echo(f"  Destination:   {job.destination_path or '-'}")
    click.echo(f"  Threads:       {job.threads}")
    click.echo(f"  Enabled:       {job.enabled}")
    click.echo(f"  Schedule:      {job.scheduled_time:%H:%M} ({'on' if job.schedule_enabled else 'off'})")
    click.echo(f"  Archiving:     {job.enable_archiving}")
    click.echo(f"  Excluded:      {job.excluded_directories or '-'}")
    click.echo(f"  Last status:   {job.last_status.value} (exit code: {job.last_exit_code})")
    click.echo(f"  Command:       {render_command(command)}")
    click.echo()


@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def show(engine: Engine, job_id: int):
    """Show a job, including the copy command it would run."""
    try:
        job = engine.registry.get_job(job_id)
    except SyncCtlError as e:
        _fail(str(e))
    _show_job(engine, job)


@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def command(engine: Engine, job_id: int):
    """Print the copy command for a job without running it."""
    try:
        job = engine.registry.get_job(job_id)
    except SyncCtlError as e:
        _fail(str(e))
    settings = engine.registry.get_settings()
    click.echo(render_command(build_copy_command(job, settings, engine.config.copy_tool)))


@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def run(engine: Engine, job_id: int):
    """Run one job now and wait for it to finish.

    Example:
        syncctl run 1
    """
    engine.events.subscribe(_echo_event)
    try:
        handle = engine.coordinator.run(job_id)
    except SyncCtlError as e:
        _fail(str(e))
    _wait_foreground(engine, [handle])
    if handle.status != JobStatus.SUCCESS:
        sys.exit(1)


@cli.command("run-all")
@click.pass_obj
def run_all(engine: Engine):
    """Run every enabled job concurrently and wait for all of them."""
    engine.events.subscribe(_echo_event)
    handles = engine.coordinator.run_all()
    if not handles:
        _fail("No valid jobs to run. Configure source and destination paths first.")
    _wait_foreground(engine, handles)
    failed = [h for h in handles if h.status != JobStatus.SUCCESS]
    click.echo(f"\nAll jobs completed: {len(handles) - len(failed)} succeeded, {len(failed)} did not")
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("job_id", type=int)
@click.pass_obj
def prune(engine: Engine, job_id: int):
    """Apply the retention policy to a job's version store now."""
    try:
        job = engine.registry.get_job(job_id)
    except SyncCtlError as e:
        _fail(str(e))
    if not job.destination_path:
        _fail(f"Job {job_id} has no destination path")
    settings = engine.registry.get_settings()
    report = engine.archiver.retention.prune(
        Archiver.version_root(job, settings), settings, label=job.name
    )
    click.echo(
        f"✓ Scanned {report.scanned} version(s), deleted {report.deleted}, "
        f"removed {report.removed_dirs} empty folder(s)"
    )


@cli.command()
@click.pass_obj
def status(engine: Engine):
    """Show job counts by last status and the current policy."""
    jobs = engine.registry.list_jobs()
    settings = engine.registry.get_settings()
    counts = {s: 0 for s in JobStatus}
    for job in jobs:
        counts[job.last_status] += 1

    click.echo("\n" + "=" * 50)
    click.echo("syncctl Status")
    click.echo("=" * 50)
    click.echo(f"Total Jobs:     {len(jobs)}")
    for s in JobStatus:
        click.echo(f"  {s.value + ':':<14}{counts[s]}")
    click.echo(f"Scheduled:      {sum(1 for j in jobs if j.enabled and j.schedule_enabled)}")
    click.echo("\nPolicy:")
    click.echo(f"  Mode:         {'mirror' if settings.mirror_mode else 'copy'}{' + purge' if settings.purge_destination else ''}")
    click.echo(f"  Versioning:   {settings.enable_versioning} ({settings.version_folder})")
    click.echo("=" * 50 + "\n")


@cli.group()
def settings():
    """Manage global copy and versioning settings"""
    pass


SETTINGS_KEYS = {
    "retries": ("retries", click.INT),
    "wait-time": ("wait_time", click.INT),
    "mirror": ("mirror_mode", click.BOOL),
    "purge": ("purge_destination", click.BOOL),
    "copy-subdirs": ("copy_subdirs", click.BOOL),
    "copy-empty-dirs": ("copy_empty_dirs", click.BOOL),
    "versioning": ("enable_versioning", click.BOOL),
    "days-to-keep": ("days_to_keep_versions", click.INT),
    "max-versions": ("max_versions_per_file", click.INT),
}


@settings.command("show")
@click.pass_obj
def settings_show(engine: Engine):
    """Show current settings.

    Example:
        syncctl settings show
    """
    cfg = engine.registry.get_settings()
    click.echo("\nCurrent Settings:")
    for key, (field, _) in SETTINGS_KEYS.items():
        click.echo(f"  {key + ':':<17}{getattr(cfg, field)}")
    click.echo(f"  {'version-folder:':<17}{cfg.version_folder}")
    click.echo()


@settings.command("set")
@click.argument("key", type=click.Choice(list(SETTINGS_KEYS)))
@click.argument("value")
@click.pass_obj
def settings_set(engine: Engine, key: str, value: str):
    """Set a settings value.

    Example:
        syncctl settings set days-to-keep 60
        syncctl settings set mirror false
    """
    field, param_type = SETTINGS_KEYS[key]
    try:
        engine.registry.update_settings(**{field: param_type.convert(value, None, None)})
    except (click.BadParameter, ValidationError) as e:
        _fail(f"Invalid value: {e}")
    click.echo(f"✓ Settings updated: {key} = {value}")


@cli.group()
def scheduler():
    """Run the background scheduler"""
    pass


@scheduler.command("start")
@click.pass_obj
def scheduler_start(engine: Engine):
    """Run scheduled jobs until interrupted with Ctrl-C."""
    try:
        sched = Scheduler(
            engine.registry,
            engine.coordinator,
            tick_interval=timedelta(seconds=engine.config.tick_interval_seconds),
            initial_delay=timedelta(seconds=engine.config.initial_delay_seconds),
        )
    except ValueError as e:
        _fail(f"Invalid scheduler timing: {e}")
    engine.events.subscribe(_echo_event)
    sched.start()
    click.echo("Scheduler running. Press Ctrl-C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    finally:
        sched.stop(timeout=5)
        stopped = engine.coordinator.cancel_all(timeout=30)
        if stopped:
            click.echo(f"Stopped {stopped} running job(s)")
        engine.registry.save()


if __name__ == "__main__":
    cli()
