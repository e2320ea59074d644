"""Cron expression parsing and evaluation."""

from typing import Optional, List, Tuple, Dict, Union
from datetime import datetime, timezone, tzinfo
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from croniter import croniter

from flow_scheduler.scheduler.base import ScheduleConfigurationError, ensure_utc


SPECIAL_EXPRESSIONS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *"
}


@dataclass
class CronExpression:
    """Parsed cron expression."""
    minute: str = "*"
    hour: str = "*"
    day: str = "*"
    month: str = "*"
    weekday: str = "*"
    second: Optional[str] = None  # Extended cron with seconds
    year: Optional[str] = None  # Extended cron with year

    def __str__(self):
        """Convert back to cron string."""
        parts = [self.minute, self.hour, self.day, self.month, self.weekday]

        if self.second is not None:
            parts.insert(0, self.second)
        if self.year is not None:
            parts.append(self.year)

        return " ".join(parts)

    def to_croniter(self) -> str:
        """Render in croniter's field order (seconds and year trail)."""
        parts = [self.minute, self.hour, self.day, self.month, self.weekday]

        if self.second is not None or self.year is not None:
            parts.append(self.second if self.second is not None else "0")
        if self.year is not None:
            parts.append(self.year)

        return " ".join(parts)

    def to_dict(self) -> Dict[str, Optional[str]]:
        """Convert to dictionary."""
        return {
            "minute": self.minute,
            "hour": self.hour,
            "day": self.day,
            "month": self.month,
            "weekday": self.weekday,
            "second": self.second,
            "year": self.year
        }


def parse_cron(expression: str) -> CronExpression:
    """
    Parse a cron expression.

    Supports standard 5-field cron and extended 6/7-field formats.

    Standard: minute hour day month weekday
    Extended: second minute hour day month weekday [year]

    Special strings:
    - @yearly, @annually - Run once a year at midnight on January 1st
    - @monthly - Run once a month at midnight on the first day
    - @weekly - Run once a week at midnight on Sunday
    - @daily, @midnight - Run once a day at midnight
    - @hourly - Run once an hour at the beginning

    Only the shape is checked here; field values are checked by
    :func:`validate_cron_expression`.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ScheduleConfigurationError("Cron expression cannot be empty")

    expression = expression.strip()
    expression = SPECIAL_EXPRESSIONS.get(expression.lower(), expression)

    parts = expression.split()

    if len(parts) == 5:
        return CronExpression(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            weekday=parts[4]
        )
    elif len(parts) == 6:
        return CronExpression(
            second=parts[0],
            minute=parts[1],
            hour=parts[2],
            day=parts[3],
            month=parts[4],
            weekday=parts[5]
        )
    elif len(parts) == 7:
        return CronExpression(
            second=parts[0],
            minute=parts[1],
            hour=parts[2],
            day=parts[3],
            month=parts[4],
            weekday=parts[5],
            year=parts[6]
        )
    else:
        raise ScheduleConfigurationError(
            f"Invalid cron expression: {expression!r} has {len(parts)} fields, expected 5, 6 or 7"
        )


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Map a timezone name to a tzinfo. ``None`` and "UTC" mean UTC."""
    if name is None or name.upper() in ("UTC", "Z", "ETC/UTC"):
        return timezone.utc

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleConfigurationError(f"Unknown timezone: {name}") from e


def _iterator(expression: str, base: datetime, tz: tzinfo) -> croniter:
    parsed = parse_cron(expression)
    local_base = base.astimezone(tz).replace(microsecond=0)

    try:
        return croniter(parsed.to_croniter(), local_base)
    except (ValueError, KeyError, TypeError) as e:
        raise ScheduleConfigurationError(f"Invalid cron expression: {expression!r}: {e}") from e


def next_cron_time(
    expression: str,
    base: Optional[datetime] = None,
    tz_name: Optional[str] = None
) -> datetime:
    """First fire time strictly after ``base``, returned in UTC.

    The expression is evaluated in ``tz_name`` (UTC when omitted).
    """
    base = ensure_utc(base) or datetime.now(timezone.utc)
    tz = resolve_timezone(tz_name)
    itr = _iterator(expression, base, tz)

    try:
        next_time = itr.get_next(datetime)
        while ensure_utc(next_time) <= base:
            next_time = itr.get_next(datetime)
    except (ValueError, KeyError, TypeError, OverflowError) as e:
        raise ScheduleConfigurationError(f"Invalid cron expression: {expression!r}: {e}") from e

    return ensure_utc(next_time)


def get_next_n_runs(
    expression: str,
    n: int = 10,
    base: Optional[datetime] = None,
    tz_name: Optional[str] = None
) -> List[datetime]:
    """Get next N fire times (UTC) for an expression."""
    runs: List[datetime] = []
    current = ensure_utc(base) or datetime.now(timezone.utc)

    for _ in range(n):
        current = next_cron_time(expression, current, tz_name)
        runs.append(current)

    return runs


def validate_cron_expression(expression: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a cron expression.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        next_cron_time(expression)
        return True, None
    except ScheduleConfigurationError as e:
        return False, str(e)


def describe_cron(expression: Union[str, CronExpression]) -> str:
    """Get human-readable description of an expression."""
    parsed = expression if isinstance(expression, CronExpression) else parse_cron(expression)
    cron_string = str(parsed)

    descriptions = {
        "0 0 * * *": "Daily at midnight",
        "0 0 0 * * *": "Daily at midnight",
        "0 * * * *": "Every hour",
        "*/5 * * * *": "Every 5 minutes",
        "0 0 * * 0": "Weekly on Sunday at midnight",
        "0 0 1 * *": "Monthly on the 1st at midnight",
        "0 0 1 1 *": "Yearly on January 1st at midnight"
    }

    return descriptions.get(cron_string, f"Cron: {cron_string}")
