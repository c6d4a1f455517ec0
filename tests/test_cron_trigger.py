"""Tests for CronTrigger."""

from datetime import datetime, timedelta, timezone

import pytest

from quartzpy.calendars import WeeklyCalendar
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.core.key import Key
from quartzpy.triggers import (
    MISFIRE_INSTRUCTION_DO_NOTHING,
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    CronTrigger,
)


def cron(expression: str, start: datetime, **fields) -> CronTrigger:
    return CronTrigger(key=Key("c"), job_key=Key("j"), cron_expression=expression, start_time=start, **fields)


class TestCronSchedule:
    """Tests for cron fire time computation."""

    def test_first_fire_time_in_zone(self):
        """The expression is evaluated on the trigger's local wall clock."""
        trigger = cron("0 9 * * *", datetime(2025, 1, 1, tzinfo=timezone.utc), timezone="America/New_York")

        first = trigger.compute_first_fire_time()

        assert first == datetime(2025, 1, 1, 14, 0, tzinfo=timezone.utc)

    def test_start_time_on_a_match_fires_at_start(self):
        """A start time matching the expression is the first fire time."""
        start = datetime(2025, 1, 1, 10, 15, tzinfo=timezone.utc)
        trigger = cron("*/15 * * * *", start)

        assert trigger.compute_first_fire_time() == start

    def test_daylight_saving_keeps_local_hour(self):
        """A daily 09:00 trigger stays at 09:00 local time across spring-forward."""
        trigger = cron("0 9 * * *", datetime(2025, 3, 1, tzinfo=timezone.utc), timezone="America/New_York")

        after_dst = trigger.get_fire_time_after(datetime(2025, 3, 8, 14, 0, tzinfo=timezone.utc))

        assert after_dst == datetime(2025, 3, 9, 13, 0, tzinfo=timezone.utc)

    def test_end_time_bounds_schedule(self):
        """No fire time is produced after the end time."""
        start = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
        trigger = cron("*/15 * * * *", start, end_time=start + timedelta(hours=1))

        assert trigger.get_fire_time_after(start + timedelta(minutes=50)) == start + timedelta(hours=1)
        assert trigger.get_fire_time_after(start + timedelta(hours=1)) is None
        assert trigger.get_final_fire_time() == start + timedelta(hours=1)

    def test_final_fire_time_without_end(self):
        """A cron trigger without an end time never stops."""
        trigger = cron("0 * * * *", datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert trigger.get_final_fire_time() is None

    def test_fire_time_before(self):
        """get_fire_time_before() finds the previous match."""
        trigger = cron("0 */6 * * *", datetime(2025, 1, 1, tzinfo=timezone.utc))

        before = trigger.get_fire_time_before(datetime(2025, 1, 2, 5, 0, tzinfo=timezone.utc))

        assert before == datetime(2025, 1, 2, 0, 0, tzinfo=timezone.utc)

    def test_calendar_skips_weekend(self):
        """Firings on days excluded by the calendar are skipped."""
        # 2025-01-04 is a Saturday
        trigger = cron("0 12 * * *", datetime(2025, 1, 4, tzinfo=timezone.utc))

        first = trigger.compute_first_fire_time(WeeklyCalendar())

        assert first == datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


class TestCronValidation:
    """Tests for cron validation."""

    @pytest.mark.parametrize("expression", ["not a cron", "61 * * * *"])
    def test_invalid_expression(self, expression):
        """Malformed expressions are rejected."""
        with pytest.raises(ScheduleValidationError):
            cron(expression, datetime(2025, 1, 1, tzinfo=timezone.utc)).validate()

    def test_simple_only_misfire_code_rejected(self):
        """Codes above DO_NOTHING are invalid for cron triggers."""
        with pytest.raises(ScheduleValidationError):
            cron("0 * * * *", datetime(2025, 1, 1, tzinfo=timezone.utc), misfire_instruction=3).validate()


class TestCronMisfire:
    """Tests for the cron misfire policies."""

    def test_smart_policy_fires_once_now(self):
        """The smart policy fires once immediately."""
        trigger = cron("0 * * * *", datetime(2025, 1, 1, tzinfo=timezone.utc))
        trigger.compute_first_fire_time()
        now = datetime(2025, 1, 1, 5, 30, tzinfo=timezone.utc)

        trigger.update_after_misfire(None, now)

        assert trigger.next_fire_time == now

    def test_do_nothing_skips_to_next_slot(self):
        """DO_NOTHING moves to the first slot after now."""
        trigger = cron(
            "0 * * * *",
            datetime(2025, 1, 1, tzinfo=timezone.utc),
            misfire_instruction=MISFIRE_INSTRUCTION_DO_NOTHING,
        )
        trigger.compute_first_fire_time()

        trigger.update_after_misfire(None, datetime(2025, 1, 1, 5, 30, tzinfo=timezone.utc))

        assert trigger.next_fire_time == datetime(2025, 1, 1, 6, 0, tzinfo=timezone.utc)

    def test_ignore_policy_leaves_fire_time(self):
        """IGNORE_MISFIRE_POLICY does not touch the fire time."""
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        trigger = cron("0 * * * *", start, misfire_instruction=MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY)
        trigger.compute_first_fire_time()

        trigger.update_after_misfire(None, start + timedelta(hours=5))

        assert trigger.next_fire_time == start
