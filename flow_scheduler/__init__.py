"""Flow Scheduler: decides when workflows run."""

__version__ = "1.0.0"

from flow_scheduler.config import SchedulerSettings, get_settings, load_settings
from flow_scheduler.scheduler import (
    ExecutionStatus,
    Schedule,
    ScheduleConfig,
    ScheduleType,
    ScheduledExecutionResult,
    WorkflowScheduler,
)

__all__ = [
    "SchedulerSettings",
    "get_settings",
    "load_settings",
    "ExecutionStatus",
    "Schedule",
    "ScheduleConfig",
    "ScheduleType",
    "ScheduledExecutionResult",
    "WorkflowScheduler",
]
