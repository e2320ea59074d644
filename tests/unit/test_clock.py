"""Tests for ScheduleClock."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import START, make_schedule
from flow_scheduler.scheduler import ScheduleClock, ScheduleConfigurationError, ScheduleType


class TestOnce:

    def test_future_execution_time(self, clock):
        when = START + timedelta(hours=1)
        schedule = make_schedule(ScheduleType.ONCE, execution_time=when)

        assert clock.next_fire(schedule) == when

    @pytest.mark.parametrize("offset", [0, -1, -3600])
    def test_elapsed_or_current_time_is_none(self, clock, offset):
        schedule = make_schedule(ScheduleType.ONCE, execution_time=START + timedelta(seconds=offset))

        assert clock.next_fire(schedule) is None

    def test_missing_execution_time(self, clock):
        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(make_schedule(ScheduleType.ONCE))


class TestInterval:

    def test_relative_to_check_time(self, clock, fake_time):
        schedule = make_schedule(ScheduleType.INTERVAL, interval_seconds=90)

        assert clock.next_fire(schedule) == START + timedelta(seconds=90)

        fake_time.advance(10)
        assert clock.next_fire(schedule) == START + timedelta(seconds=100)

    def test_explicit_now_overrides_time_source(self, clock):
        schedule = make_schedule(ScheduleType.INTERVAL, interval_seconds=5)
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)

        assert clock.next_fire(schedule, now) == now + timedelta(seconds=5)

    def test_missing_interval(self, clock):
        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(make_schedule(ScheduleType.INTERVAL))

    def test_non_positive_interval(self, clock):
        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(make_schedule(ScheduleType.INTERVAL, interval_seconds=0))

    @pytest.mark.parametrize("interval", [10**12, 10**20])
    def test_out_of_range_interval(self, clock, interval):
        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(make_schedule(ScheduleType.INTERVAL, interval_seconds=interval))


class TestCron:

    @pytest.mark.parametrize("now", [
        START,
        datetime(2026, 10, 19, 0, 0, 0, tzinfo=timezone.utc),
        datetime(2026, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
        datetime(2028, 2, 28, 23, 59, 59, 999999, tzinfo=timezone.utc),
    ])
    def test_daily_midnight_is_always_future_midnight_utc(self, clock, now):
        schedule = make_schedule(ScheduleType.CRON, cron_expression="0 0 0 * * *")

        next_time = clock.next_fire(schedule, now)

        assert next_time > now
        assert (next_time.hour, next_time.minute, next_time.second) == (0, 0, 0)
        assert next_time.utcoffset() == timedelta(0)
        assert next_time - now <= timedelta(days=1)

    def test_schedule_timezone_wins_over_default(self, fake_time):
        clock = ScheduleClock(default_timezone="Europe/Berlin", time_source=fake_time)
        utc_schedule = make_schedule(ScheduleType.CRON, cron_expression="0 0 18 * * *", timezone="UTC")
        berlin_schedule = make_schedule(ScheduleType.CRON, cron_expression="0 0 18 * * *")

        # 2026-10-19 is CEST (UTC+2)
        assert clock.next_fire(utc_schedule) == datetime(2026, 10, 19, 18, tzinfo=timezone.utc)
        assert clock.next_fire(berlin_schedule) == datetime(2026, 10, 19, 16, tzinfo=timezone.utc)

    def test_non_utc_default_moves_midnight(self, fake_time):
        schedule = make_schedule(ScheduleType.CRON, cron_expression="0 0 0 * * *")
        utc_clock = ScheduleClock(time_source=fake_time)
        berlin_clock = ScheduleClock(default_timezone="Europe/Berlin", time_source=fake_time)

        assert utc_clock.next_fire(schedule) == datetime(2026, 10, 20, tzinfo=timezone.utc)
        # Midnight in Berlin on 2026-10-20 (CEST)
        assert berlin_clock.next_fire(schedule) == datetime(2026, 10, 19, 22, tzinfo=timezone.utc)

    def test_malformed_expression(self, clock):
        schedule = make_schedule(ScheduleType.CRON, cron_expression="not a cron")

        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(schedule)

    def test_missing_expression(self, clock):
        with pytest.raises(ScheduleConfigurationError):
            clock.next_fire(make_schedule(ScheduleType.CRON))


class TestClockInvisibleTypes:

    def test_event_and_manual_never_fire_from_the_clock(self, clock):
        event = make_schedule(ScheduleType.EVENT, event_type="file_changed")
        manual = make_schedule(ScheduleType.MANUAL)

        assert clock.next_fire(event) is None
        assert clock.next_fire(manual) is None


def test_next_fire_does_not_mutate_schedule(clock):
    schedule = make_schedule(ScheduleType.INTERVAL, interval_seconds=30)
    before = schedule.model_dump()

    clock.next_fire(schedule)

    assert schedule.model_dump() == before


def test_unknown_default_timezone_rejected():
    with pytest.raises(ScheduleConfigurationError):
        ScheduleClock(default_timezone="Nowhere/Land")


def test_naive_time_source_is_normalized():
    clock = ScheduleClock(time_source=lambda: datetime(2026, 1, 1, 12, 0, 0))

    assert clock.now() == datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
