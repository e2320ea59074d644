"""
Pytest configuration and fixtures for the flow-scheduler project.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from flow_scheduler.config import SchedulerSettings
from flow_scheduler.scheduler import (
    Schedule,
    ScheduleClock,
    ScheduleConfig,
    ScheduleType,
    WorkflowScheduler,
)


START = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FakeTime:
    """Controllable time source for ScheduleClock."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


def make_schedule(schedule_type: ScheduleType, name: str = "test schedule", **kwargs) -> Schedule:
    """Build a schedule; config keyword arguments go into ScheduleConfig."""
    schedule_fields = {
        key: kwargs.pop(key)
        for key in list(kwargs)
        if key in ("max_executions", "enabled", "description", "metadata", "workflow_id", "user_id")
    }
    return Schedule(
        name=name,
        schedule_type=schedule_type,
        config=ScheduleConfig(**kwargs),
        **schedule_fields
    )


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def clock(fake_time):
    return ScheduleClock(time_source=fake_time)


@pytest.fixture
def settings():
    """In-memory scheduler settings."""
    return SchedulerSettings(persistent=False, check_interval=1.0)


@pytest.fixture
def scheduler(settings, clock):
    """Scheduler on fake time without persistence or executor."""
    return WorkflowScheduler(settings=settings, clock=clock)
