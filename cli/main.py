# cli/main.py
"""Main CLI entry point for Flow Scheduler."""

import logging

import click
import structlog

from flow_scheduler import __version__


def configure_logging(level: str) -> None:
    """Filter structlog output below ``level``."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        )
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    '--log-level',
    type=click.Choice(['debug', 'info', 'warning', 'error'], case_sensitive=False),
    default='info',
    help='Minimum log level'
)
def cli(log_level: str):
    """Flow Scheduler CLI - run the scheduler and inspect cron expressions."""
    configure_logging(log_level)


def register_commands():
    """Register all CLI command groups."""
    from cli.commands.scheduler import run, cron
    cli.add_command(run)
    cli.add_command(cron)


register_commands()


if __name__ == '__main__':
    cli()
