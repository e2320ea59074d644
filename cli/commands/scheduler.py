# cli/commands/scheduler.py
"""Scheduler daemon and cron inspection commands."""

import asyncio
import signal
import sys
from datetime import datetime
from typing import Optional

import click
import structlog

from flow_scheduler.config import load_settings
from flow_scheduler.scheduler import (
    LoggingExecutor,
    ScheduleConfigurationError,
    SchedulerError,
    WorkflowScheduler,
    describe_cron,
    get_next_n_runs,
    validate_cron_expression,
)


logger = structlog.get_logger(__name__)


async def _serve(scheduler: WorkflowScheduler) -> None:
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await scheduler.start()
    try:
        await stop_requested.wait()
        logger.info("shutdown_signal_received")
    finally:
        await scheduler.stop()


@click.command()
@click.option(
    '--config',
    '-c',
    'config_path',
    type=click.Path(exists=True, dir_okay=False),
    help='YAML settings file'
)
@click.option(
    '--check-interval',
    type=float,
    help='Seconds between schedule scans'
)
@click.option(
    '--schedule-file',
    type=click.Path(dir_okay=False),
    help='Snapshot file for persisted schedules'
)
@click.option(
    '--no-persist',
    is_flag=True,
    help='Keep schedules in memory only'
)
def run(
    config_path: Optional[str],
    check_interval: Optional[float],
    schedule_file: Optional[str],
    no_persist: bool
):
    """Run the scheduler until interrupted."""
    try:
        settings = load_settings(
            config_path,
            check_interval=check_interval,
            schedule_file=schedule_file,
            persistent=False if no_persist else None
        )
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Invalid settings: {e}")

    scheduler = WorkflowScheduler(settings=settings, executor=LoggingExecutor())

    logger.info(
        "scheduler_starting",
        check_interval=settings.check_interval,
        schedule_file=settings.schedule_file if settings.persistence_enabled else None
    )

    try:
        asyncio.run(_serve(scheduler))
    except KeyboardInterrupt:
        logger.info("scheduler_interrupted")
    except SchedulerError as e:
        logger.error("scheduler_error", error=str(e))
        sys.exit(1)


@click.group()
def cron():
    """Inspect cron expressions."""
    pass


@cron.command()
@click.argument('expression')
def validate(expression: str):
    """Check that EXPRESSION parses."""
    is_valid, error = validate_cron_expression(expression)
    if not is_valid:
        raise click.ClickException(error)
    click.echo(f"✅ Valid: {describe_cron(expression)}")


@cron.command()
@click.argument('expression')
@click.option('--count', '-n', type=click.IntRange(1, 100), default=5, help='Number of fire times')
@click.option('--timezone', '-z', 'tz_name', default=None, help='Timezone to evaluate in')
@click.option(
    '--from',
    'base',
    type=click.DateTime(formats=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d']),
    default=None,
    help='Start time (UTC), defaults to now'
)
def preview(expression: str, count: int, tz_name: Optional[str], base: Optional[datetime]):
    """Print the next fire times of EXPRESSION in UTC."""
    try:
        runs = get_next_n_runs(expression, n=count, base=base, tz_name=tz_name)
    except ScheduleConfigurationError as e:
        raise click.ClickException(str(e))

    click.echo(describe_cron(expression))
    for fire_time in runs:
        click.echo(fire_time.isoformat())
