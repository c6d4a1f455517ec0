"""Trigger repeating at a fixed interval inside a daily time window."""

import logging
import math
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import Field

from quartzpy.core.dates import (
    ALL_DAYS_OF_THE_WEEK,
    SECONDS_IN_DAY,
    IntervalUnit,
    TimeOfDay,
    ensure_aware,
    local_date,
    localize,
    utc_now,
    validate_day_of_week,
)
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.triggers.base import REPEAT_INDEFINITELY, Trigger
from quartzpy.triggers.cron import MISFIRE_INSTRUCTION_DO_NOTHING, misfire_time_after_now

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar

logger = logging.getLogger(__name__)

_ALLOWED_UNITS = (IntervalUnit.SECOND, IntervalUnit.MINUTE, IntervalUnit.HOUR)


class DailyTimeIntervalTrigger(Trigger):
    """Fires every N seconds, minutes or hours between two times of day.

    On each allowed day of the week the first firing is at
    ``start_time_of_day``, followed by one every interval until
    ``end_time_of_day``. The interval restarts from the window start on
    the next allowed day.

    Example:
        Every 15 minutes from 09:00 to 17:00 on weekdays::

            DailyTimeIntervalTrigger(
                key=Key("poll"),
                repeat_interval=15,
                repeat_interval_unit=IntervalUnit.MINUTE,
                start_time_of_day=TimeOfDay(hour=9),
                end_time_of_day=TimeOfDay(hour=17),
                days_of_week=list(MONDAY_THROUGH_FRIDAY),
            )

    Attributes:
        repeat_interval_unit: SECOND, MINUTE or HOUR.
        repeat_interval: Units between firings within a day.
        start_time_of_day: Daily window start.
        end_time_of_day: Daily window end.
        days_of_week: Allowed ISO weekdays.
        repeat_count: Repeats after the first firing, -1 for no limit.
    """

    kind: Literal["daily_time_interval"] = "daily_time_interval"
    repeat_interval_unit: IntervalUnit = Field(default=IntervalUnit.SECOND, description="Interval unit")
    repeat_interval: int = Field(default=1, description="Units between firings")
    start_time_of_day: TimeOfDay = Field(default_factory=TimeOfDay, description="Daily window start")
    end_time_of_day: TimeOfDay = Field(
        default_factory=lambda: TimeOfDay(hour=23, minute=59, second=59),
        description="Daily window end"
    )
    days_of_week: list[int] = Field(
        default_factory=lambda: list(ALL_DAYS_OF_THE_WEEK),
        description="Allowed ISO weekdays"
    )
    repeat_count: int = Field(default=REPEAT_INDEFINITELY, description="Repeats after the first firing")

    def _max_misfire_instruction(self) -> int:
        return MISFIRE_INSTRUCTION_DO_NOTHING

    def _validate_schedule(self) -> None:
        if self.repeat_interval_unit not in _ALLOWED_UNITS:
            raise ScheduleValidationError("Invalid repeat IntervalUnit (must be SECOND, MINUTE or HOUR).")
        if self.repeat_interval < 1:
            raise ScheduleValidationError("Repeat Interval cannot be zero.")
        if self.repeat_interval * self.repeat_interval_unit.seconds > SECONDS_IN_DAY:
            raise ScheduleValidationError(
                f"repeatInterval can not exceed 24 hours ({self.repeat_interval} "
                f"{self.repeat_interval_unit.value}s given)"
            )
        if self.start_time_of_day > self.end_time_of_day:
            raise ScheduleValidationError(
                f"Start time of day {self.start_time_of_day} is after end time of day {self.end_time_of_day}"
            )
        if not self.days_of_week:
            raise ScheduleValidationError("At least one day of the week must be allowed")
        for day in self.days_of_week:
            validate_day_of_week(day)
        if self.repeat_count < REPEAT_INDEFINITELY:
            raise ScheduleValidationError(f"Repeat count must be >= 0, use {REPEAT_INDEFINITELY} for infinity")

    def _window_on(self, value: datetime) -> tuple[datetime, datetime]:
        """Start and end of the daily window on the local date of ``value``."""
        tz = self.tz
        return (
            ensure_aware(self.start_time_of_day.on_date(value, tz)),
            ensure_aware(self.end_time_of_day.on_date(value, tz)),
        )

    def _same_local_day(self, first: datetime, second: datetime) -> bool:
        return local_date(first, self.tz) == local_date(second, self.tz)

    def _advance_to_allowed_day(self, fire_time: datetime, force: bool) -> datetime | None:
        """Move to the window start of the next allowed weekday.

        Args:
            fire_time: Candidate fire time.
            force: Move to a later day even if the current one is allowed.

        Returns:
            The candidate, possibly moved, or None if it passes the end time.
        """
        tz = self.tz
        day = local_date(fire_time, tz)
        if force or day.isoweekday() not in self.days_of_week:
            for offset in range(1, 8):
                candidate = day + timedelta(days=offset)
                if candidate.isoweekday() in self.days_of_week:
                    wall = datetime.combine(candidate, time(
                        self.start_time_of_day.hour,
                        self.start_time_of_day.minute,
                        self.start_time_of_day.second,
                    ))
                    fire_time = ensure_aware(localize(wall, tz))
                    break

        if self.end_time is not None and fire_time > self.end_time:
            return None
        return fire_time

    def get_fire_time_after(self, after: datetime | None = None) -> datetime | None:
        if self.repeat_count != REPEAT_INDEFINITELY and self.times_triggered > self.repeat_count:
            return None

        after = ensure_aware(after) if after is not None else utc_now()
        after = after.replace(microsecond=0) + timedelta(seconds=1)
        if after < self.start_time:
            after = self.start_time

        _, window_end = self._window_on(after)
        fire_time = self._advance_to_allowed_day(after, force=after > window_end)
        if fire_time is None:
            return None

        window_start, window_end = self._window_on(fire_time)
        if fire_time < window_start:
            return self._within_end_time(window_start)

        step = self.repeat_interval * self.repeat_interval_unit.seconds
        jump = math.ceil((fire_time - window_start).total_seconds() / step)
        fire_time = window_start + timedelta(seconds=jump * step)

        if fire_time > window_end:
            fire_time = self._advance_to_allowed_day(
                fire_time,
                force=self._same_local_day(fire_time, window_end),
            )
            if fire_time is None:
                return None
            fire_time, _ = self._window_on(fire_time)

        return self._within_end_time(fire_time)

    def _within_end_time(self, fire_time: datetime) -> datetime | None:
        if self.end_time is not None and fire_time > self.end_time:
            return None
        return fire_time

    def get_final_fire_time(self) -> datetime | None:
        """Latest instant the trigger may fire at, None without an end time.

        This is an upper bound: the end time itself, pulled back to the
        window end when it falls after the window on its day.
        """
        if self.end_time is None:
            return None
        _, window_end = self._window_on(self.end_time)
        return min(self.end_time, window_end)

    def update_after_misfire(
        self,
        calendar: "Calendar | None" = None,
        now: datetime | None = None,
    ) -> None:
        misfire_time_after_now(self, calendar, now)
