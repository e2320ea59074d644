"""Next-fire computation for schedules."""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from flow_scheduler.scheduler.base import (
    Schedule,
    ScheduleConfigurationError,
    ScheduleType,
    ensure_utc,
    utcnow,
)
from flow_scheduler.scheduler.cron import next_cron_time, resolve_timezone


class ScheduleClock:
    """Computes when a schedule is next eligible to fire.

    The clock holds no schedule state. ``next_fire`` never mutates the
    schedule it is given; one handler exists per :class:`ScheduleType`.
    """

    def __init__(
        self,
        default_timezone: str = "UTC",
        time_source: Callable[[], datetime] = utcnow
    ):
        resolve_timezone(default_timezone)
        self.default_timezone = default_timezone
        self._time_source = time_source
        self._handlers: Dict[
            ScheduleType, Callable[[Schedule, datetime], Optional[datetime]]
        ] = {
            ScheduleType.ONCE: self._next_once,
            ScheduleType.INTERVAL: self._next_interval,
            ScheduleType.CRON: self._next_cron,
            ScheduleType.EVENT: self._next_never,
            ScheduleType.MANUAL: self._next_never,
        }

    def now(self) -> datetime:
        return ensure_utc(self._time_source())

    def next_fire(
        self,
        schedule: Schedule,
        now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """Next fire time for ``schedule`` in UTC, or None if it cannot fire.

        Cron expressions are evaluated in the schedule's ``timezone``, falling
        back to :attr:`default_timezone`. With the default "UTC" a daily
        ``0 0 0 * * *`` fires at midnight UTC; a non-UTC default moves the fire
        times of every cron schedule that does not name its own timezone.

        Raises:
            ScheduleConfigurationError: a field required by the schedule type
                is missing or invalid.
        """
        current = ensure_utc(now) if now is not None else self.now()
        return self._handlers[schedule.schedule_type](schedule, current)

    def _next_once(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        execution_time = schedule.config.execution_time
        if execution_time is None:
            raise ScheduleConfigurationError(
                "Execution time not specified for one-time schedule"
            )
        if execution_time > now:
            return execution_time
        return None  # Already passed

    def _next_interval(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        interval = schedule.config.interval_seconds
        if interval is None:
            raise ScheduleConfigurationError(
                "Interval not specified for interval schedule"
            )
        if interval <= 0:
            raise ScheduleConfigurationError(
                f"Interval must be positive, got {interval}"
            )
        try:
            return now + timedelta(seconds=interval)
        except OverflowError as e:
            raise ScheduleConfigurationError(
                f"Interval of {interval}s is out of range"
            ) from e

    def _next_cron(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        expression = schedule.config.cron_expression
        if not expression:
            raise ScheduleConfigurationError(
                "Cron expression not specified for cron schedule"
            )
        tz_name = schedule.config.timezone or self.default_timezone
        return next_cron_time(expression, now, tz_name)

    def _next_never(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        # Event and manual schedules only fire through explicit triggers.
        return None
