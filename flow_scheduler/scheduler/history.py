"""Execution history and derived statistics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from flow_scheduler.scheduler.base import ExecutionStatus, ScheduledExecutionResult


@dataclass
class SchedulerStats:
    """Scheduler statistics.

    Execution counters are folded in one result at a time by :meth:`record`.
    Schedule counters describe the store and are filled in by the scheduler
    when a snapshot is requested.
    """
    total_schedules: int = 0
    active_schedules: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_execution_time: float = 0.0
    timed_executions: int = 0
    last_execution: Optional[datetime] = None
    schedules_by_type: Dict[str, int] = field(default_factory=dict)

    def record(self, result: ScheduledExecutionResult) -> None:
        self.total_executions += 1

        if result.status == ExecutionStatus.SUCCESS:
            self.successful_executions += 1
        elif result.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT):
            self.failed_executions += 1

        # Only results carrying a duration take part in the mean.
        if result.duration is not None:
            self.timed_executions += 1
            n = self.timed_executions
            self.avg_execution_time = (
                self.avg_execution_time * (n - 1) + result.duration
            ) / n

        self.last_execution = result.executed_at

    @classmethod
    def from_history(cls, results: Iterable[ScheduledExecutionResult]) -> "SchedulerStats":
        stats = cls()
        for result in results:
            stats.record(result)
        return stats

    @property
    def success_rate(self) -> float:
        finished = self.successful_executions + self.failed_executions
        if finished == 0:
            return 0.0
        return self.successful_executions / finished

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_schedules": self.total_schedules,
            "active_schedules": self.active_schedules,
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "avg_execution_time": self.avg_execution_time,
            "timed_executions": self.timed_executions,
            "success_rate": self.success_rate,
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
            "schedules_by_type": dict(self.schedules_by_type)
        }


class ExecutionHistory:
    """Append-only log of execution results."""

    def __init__(self, retention_days: int = 30):
        self.retention_days = retention_days
        self._results: List[ScheduledExecutionResult] = []

    def __len__(self) -> int:
        return len(self._results)

    def append(self, result: ScheduledExecutionResult) -> None:
        self._results.append(result)

    def query(self, schedule_id: Optional[str] = None) -> List[ScheduledExecutionResult]:
        """Results in insertion order, optionally for one schedule."""
        if schedule_id is None:
            return list(self._results)
        return [r for r in self._results if r.schedule_id == schedule_id]

    def latest(self, execution_id: str) -> Optional[ScheduledExecutionResult]:
        """Most recent record for an execution."""
        for result in reversed(self._results):
            if result.execution_id == execution_id:
                return result
        return None
