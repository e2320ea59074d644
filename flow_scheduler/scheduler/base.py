"""Schedule data model and scheduler errors."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


_WINDOW_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ScheduleConfigurationError(SchedulerError, ValueError):
    """A schedule or scheduler request is invalid. Nothing was applied."""


class ScheduleNotFoundError(ScheduleConfigurationError):
    """No schedule exists with the requested id."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


class SchedulePersistenceError(SchedulerError):
    """Reading or writing the schedule snapshot failed."""


class ScheduleType(Enum):
    """Types of schedules."""
    ONCE = "once"  # Run once at specific time
    INTERVAL = "interval"  # Run at regular intervals
    CRON = "cron"  # Cron expression
    EVENT = "event"  # Event-triggered
    MANUAL = "manual"  # Manual trigger only


class ExecutionStatus(Enum):
    """Status of one scheduled execution."""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
            ExecutionStatus.TIMEOUT,
        )


class RetryConfig(BaseModel):
    """Retry policy for a single execution attempt."""
    max_attempts: int = Field(default=3, ge=0)
    delay_seconds: float = Field(default=60.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=600.0, ge=0)

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.delay_seconds * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay_seconds)

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts


class ScheduleConfig(BaseModel):
    """Type-specific and cross-cutting schedule options."""
    cron_expression: Optional[str] = None
    interval_seconds: Optional[int] = None
    execution_time: Optional[datetime] = None
    event_type: Optional[str] = None
    event_filter: Optional[Dict[str, Any]] = None

    timezone: Optional[str] = None
    execution_window: Optional[Tuple[str, str]] = None
    days_of_week: Optional[List[int]] = None  # 0 = Sunday
    timeout: Optional[float] = None  # seconds, enforced by the executor
    retry_config: Optional[RetryConfig] = None

    @field_validator("execution_time")
    @classmethod
    def _execution_time_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator("execution_window")
    @classmethod
    def _check_window(cls, value: Optional[Tuple[str, str]]) -> Optional[Tuple[str, str]]:
        if value is None:
            return value
        for bound in value:
            if not _WINDOW_RE.match(bound):
                raise ValueError(f"Execution window bound must be HH:MM, got {bound!r}")
        return value

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError(f"Day of week must be between 0 and 6, got {day}")
        return sorted(set(value))


class Schedule(BaseModel):
    """A persisted declaration of when a workflow should run."""
    id: str = ""
    name: str
    description: Optional[str] = None
    schedule_type: ScheduleType
    workflow_id: str = ""
    user_id: str = ""
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Runtime state
    next_execution: Optional[datetime] = None
    last_execution: Optional[datetime] = None
    execution_count: int = Field(default=0, ge=0)
    max_executions: Optional[int] = Field(default=None, ge=0)

    config: ScheduleConfig = Field(default_factory=ScheduleConfig)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "updated_at", "next_execution", "last_execution")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_exhausted(self) -> bool:
        return (
            self.max_executions is not None
            and self.execution_count >= self.max_executions
        )

    @property
    def is_armed(self) -> bool:
        return self.enabled and self.next_execution is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        return cls.model_validate(data)


class ScheduledExecutionResult(BaseModel):
    """One recorded state of one firing. Never mutated once created."""
    model_config = ConfigDict(frozen=True)

    schedule_id: str
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    scheduled_at: datetime
    executed_at: datetime
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    result: Optional[Any] = None
    error: Optional[str] = None
    retry_attempts: int = 0

    @field_validator("scheduled_at", "executed_at", "completed_at")
    @classmethod
    def _timestamps_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
