"""Scheduler module for flow scheduler."""

from flow_scheduler.scheduler.base import (
    ExecutionStatus,
    RetryConfig,
    Schedule,
    ScheduleConfig,
    ScheduleConfigurationError,
    ScheduledExecutionResult,
    ScheduleNotFoundError,
    SchedulePersistenceError,
    ScheduleType,
    SchedulerError,
)
from flow_scheduler.scheduler.clock import ScheduleClock
from flow_scheduler.scheduler.cron import (
    CronExpression,
    describe_cron,
    get_next_n_runs,
    next_cron_time,
    parse_cron,
    validate_cron_expression,
)
from flow_scheduler.scheduler.engine import WorkflowScheduler
from flow_scheduler.scheduler.executor import (
    CallbackExecutor,
    ExecutionReport,
    ExecutionRequest,
    LoggingExecutor,
    WorkflowExecutor,
)
from flow_scheduler.scheduler.history import ExecutionHistory, SchedulerStats
from flow_scheduler.scheduler.store import ScheduleStore

__all__ = [
    # Base
    "ExecutionStatus",
    "RetryConfig",
    "Schedule",
    "ScheduleConfig",
    "ScheduleType",
    "ScheduledExecutionResult",
    "SchedulerError",
    "ScheduleConfigurationError",
    "ScheduleNotFoundError",
    "SchedulePersistenceError",

    # Cron
    "CronExpression",
    "parse_cron",
    "next_cron_time",
    "get_next_n_runs",
    "validate_cron_expression",
    "describe_cron",

    # Components
    "ScheduleClock",
    "ScheduleStore",
    "ExecutionHistory",
    "SchedulerStats",
    "WorkflowScheduler",

    # Executors
    "WorkflowExecutor",
    "ExecutionRequest",
    "ExecutionReport",
    "CallbackExecutor",
    "LoggingExecutor",
]
