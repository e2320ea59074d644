"""
Tests for flow_scheduler.scheduler.cron.

Tests cover:
- Parsing 5, 6 and 7 field expressions and @aliases
- Rendering for croniter
- Next fire time computation, strictness and timezones
- Validation and human-readable descriptions
"""

from datetime import datetime, timezone

import pytest

from flow_scheduler.scheduler.base import ScheduleConfigurationError
from flow_scheduler.scheduler.cron import (
    CronExpression,
    describe_cron,
    get_next_n_runs,
    next_cron_time,
    parse_cron,
    resolve_timezone,
    validate_cron_expression,
)


BASE = datetime(2026, 10, 19, 12, 34, 56, tzinfo=timezone.utc)


class TestParseCron:
    """Test cases for parse_cron."""

    def test_standard_five_fields(self):
        expr = parse_cron("*/5 2 * * 1")

        assert expr.minute == "*/5"
        assert expr.hour == "2"
        assert expr.weekday == "1"
        assert expr.second is None
        assert str(expr) == "*/5 2 * * 1"
        assert expr.to_croniter() == "*/5 2 * * 1"

    def test_six_fields_have_leading_seconds(self):
        expr = parse_cron("30 0 0 * * *")

        assert expr.second == "30"
        assert expr.minute == "0"
        assert expr.hour == "0"
        assert str(expr) == "30 0 0 * * *"
        assert expr.to_croniter() == "0 0 * * * 30"

    def test_seven_fields_include_year(self):
        expr = parse_cron("0 0 12 1 1 * 2030")

        assert expr.year == "2030"
        assert expr.to_croniter() == "0 12 1 1 * 0 2030"

    @pytest.mark.parametrize("alias,expected", [
        ("@daily", "0 0 * * *"),
        ("@hourly", "0 * * * *"),
        ("@weekly", "0 0 * * 0"),
        ("@YEARLY", "0 0 1 1 *"),
    ])
    def test_special_strings(self, alias, expected):
        assert str(parse_cron(alias)) == expected

    @pytest.mark.parametrize("bad", ["", "   ", "* * * *", "1 2 3 4 5 6 7 8", "every day"])
    def test_wrong_field_count_is_configuration_error(self, bad):
        with pytest.raises(ScheduleConfigurationError):
            parse_cron(bad)

    def test_to_dict(self):
        assert parse_cron("0 * * * *").to_dict()["minute"] == "0"
        assert CronExpression().to_dict()["second"] is None


class TestNextCronTime:
    """Test cases for next_cron_time and get_next_n_runs."""

    def test_daily_midnight_with_seconds(self):
        next_time = next_cron_time("0 0 0 * * *", BASE)

        assert next_time == datetime(2026, 10, 20, 0, 0, 0, tzinfo=timezone.utc)

    def test_result_is_strictly_after_base(self):
        on_the_hour = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)

        next_time = next_cron_time("0 * * * *", on_the_hour)

        assert next_time == datetime(2026, 10, 19, 11, 0, 0, tzinfo=timezone.utc)

    def test_sub_second_base_is_not_returned_early(self):
        base = datetime(2026, 10, 19, 10, 0, 0, 500000, tzinfo=timezone.utc)

        next_time = next_cron_time("* * * * * *", base)

        assert next_time > base
        assert next_time == datetime(2026, 10, 19, 10, 0, 1, tzinfo=timezone.utc)

    def test_step_minutes(self):
        base = datetime(2026, 10, 19, 10, 7, 0, tzinfo=timezone.utc)

        assert next_cron_time("*/15 * * * *", base) == datetime(
            2026, 10, 19, 10, 15, 0, tzinfo=timezone.utc
        )

    def test_naive_base_is_treated_as_utc(self):
        naive = datetime(2026, 10, 19, 23, 30, 0)

        assert next_cron_time("@daily", naive) == datetime(2026, 10, 20, tzinfo=timezone.utc)

    def test_timezone_evaluation_returns_utc(self):
        base = datetime(2026, 1, 15, 0, 0, 0, tzinfo=timezone.utc)

        next_time = next_cron_time("0 9 * * *", base, "America/New_York")

        # 09:00 EST is 14:00 UTC
        assert next_time == datetime(2026, 1, 15, 14, 0, 0, tzinfo=timezone.utc)
        assert next_time.tzinfo == timezone.utc

    def test_invalid_field_value_is_configuration_error(self):
        with pytest.raises(ScheduleConfigurationError):
            next_cron_time("61 * * * *", BASE)

    def test_unknown_timezone_is_configuration_error(self):
        with pytest.raises(ScheduleConfigurationError):
            next_cron_time("0 * * * *", BASE, "Mars/Olympus_Mons")

    def test_next_n_runs_are_increasing(self):
        runs = get_next_n_runs("0 0 0 * * *", n=3, base=BASE)

        assert runs == [
            datetime(2026, 10, 20, tzinfo=timezone.utc),
            datetime(2026, 10, 21, tzinfo=timezone.utc),
            datetime(2026, 10, 22, tzinfo=timezone.utc),
        ]


class TestValidation:
    """Test cases for validation helpers."""

    def test_valid_expression(self):
        assert validate_cron_expression("0 0 0 * * *") == (True, None)

    def test_invalid_expression_reports_error(self):
        is_valid, error = validate_cron_expression("99 99 * * *")

        assert is_valid is False
        assert "Invalid cron expression" in error

    def test_resolve_utc_aliases(self):
        assert resolve_timezone(None) is timezone.utc
        assert resolve_timezone("utc") is timezone.utc

    def test_describe_known_and_unknown(self):
        assert describe_cron("@daily") == "Daily at midnight"
        assert describe_cron("0 0 0 * * *") == "Daily at midnight"
        assert describe_cron("1 2 3 4 5") == "Cron: 1 2 3 4 5"
