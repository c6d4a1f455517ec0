"""Trigger repeating at a calendar interval (every N days, weeks, months...)."""

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import Field

from quartzpy.core.dates import IntervalUnit, add_interval, ensure_aware, max_year, utc_now
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.triggers.base import Trigger
from quartzpy.triggers.cron import MISFIRE_INSTRUCTION_DO_NOTHING, misfire_time_after_now

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar

logger = logging.getLogger(__name__)

# Rough unit lengths used to jump close to the answer before stepping
_ESTIMATED_UNIT_SECONDS = {
    IntervalUnit.DAY: 24 * 60 * 60,
    IntervalUnit.WEEK: 7 * 24 * 60 * 60,
}


class CalendarIntervalTrigger(Trigger):
    """Fires every ``repeat_interval`` units of ``repeat_interval_unit``.

    Seconds, minutes and hours are added in absolute time. Days, weeks,
    months and years are added to the start time on the wall clock of
    ``timezone``, so "every day at 09:00" stays at 09:00 across daylight
    saving changes and "every month on the 31st" lands on the last day of
    shorter months without drifting in later months.

    When the start hour does not exist on a given day (spring-forward gap)
    the firing moves forward by the size of the gap, or is skipped when
    ``skip_day_if_hour_does_not_exist`` is set together with
    ``preserve_hour_of_day_across_daylight_savings``.

    Attributes:
        repeat_interval_unit: Unit of the interval.
        repeat_interval: Number of units between firings.
        preserve_hour_of_day_across_daylight_savings: Keep the start hour on the wall clock.
        skip_day_if_hour_does_not_exist: Skip days where the start hour is missing.
    """

    kind: Literal["calendar_interval"] = "calendar_interval"
    repeat_interval_unit: IntervalUnit = Field(default=IntervalUnit.DAY, description="Interval unit")
    repeat_interval: int = Field(default=1, description="Units between firings")
    preserve_hour_of_day_across_daylight_savings: bool = Field(
        default=False,
        description="Keep the start hour of day across DST changes"
    )
    skip_day_if_hour_does_not_exist: bool = Field(
        default=False,
        description="Skip a firing whose hour does not exist that day"
    )

    def _max_misfire_instruction(self) -> int:
        return MISFIRE_INSTRUCTION_DO_NOTHING

    def _validate_schedule(self) -> None:
        if self.repeat_interval < 1:
            raise ScheduleValidationError("Repeat Interval cannot be zero.")

    def _step(self, count: int) -> datetime:
        """The start time plus ``count`` intervals, in UTC."""
        return ensure_aware(
            add_interval(self.start_time, count * self.repeat_interval, self.repeat_interval_unit, self.tz)
        )

    def _hour_missing(self, fire_time: datetime, start_hour: int) -> bool:
        if not self.preserve_hour_of_day_across_daylight_savings:
            return False
        return fire_time.astimezone(self.tz).hour != start_hour and self.skip_day_if_hour_does_not_exist

    def get_fire_time_after(self, after: datetime | None = None) -> datetime | None:
        return self._fire_time_after(after, ignore_end_time=False)

    def _fire_time_after(self, after: datetime | None, ignore_end_time: bool) -> datetime | None:
        after = ensure_aware(after) if after is not None else utc_now()
        start = self.start_time
        end = None if ignore_end_time else self.end_time

        if end is not None and end <= after:
            return None
        if after < start:
            return start

        unit = self.repeat_interval_unit
        fixed = unit.seconds
        if fixed is not None:
            step = timedelta(seconds=fixed * self.repeat_interval)
            jump = math.floor((after - start) / step) + 1
            fire_time = start + jump * step
        else:
            count = self._calendar_count_after(after)
            if count is None:
                return None
            fire_time = self._step(count)

        if end is not None and end <= fire_time:
            return None
        return fire_time

    def _calendar_count_after(self, after: datetime) -> int | None:
        """Number of intervals from the start to the first firing after ``after``."""
        unit = self.repeat_interval_unit
        cutoff = max_year()
        start_hour = self.start_time.astimezone(self.tz).hour

        count = 0
        estimate = _ESTIMATED_UNIT_SECONDS.get(unit)
        if estimate is not None:
            seconds_after_start = 1 + (after - self.start_time).total_seconds()
            jump = int(seconds_after_start // (self.repeat_interval * estimate))
            # Day lengths vary with DST, so stay safely below the estimate
            if jump > 20:
                if jump < 50:
                    jump = int(jump * 0.80)
                elif jump < 500:
                    jump = int(jump * 0.90)
                else:
                    jump = int(jump * 0.95)
                count = jump

        fire_time = self._step(count)
        while fire_time.year <= cutoff:
            if fire_time > after and not self._hour_missing(fire_time, start_hour):
                return count
            count += 1
            fire_time = self._step(count)

        logger.debug(f"Trigger {self.key} has no fire time after {after} before year {cutoff}")
        return None

    def get_final_fire_time(self) -> datetime | None:
        if self.end_time is None:
            return None

        fixed = self.repeat_interval_unit.seconds
        if fixed is not None:
            step = timedelta(seconds=fixed * self.repeat_interval)
            return self.start_time + math.floor((self.end_time - self.start_time) / step) * step

        count = self._calendar_count_after(self.end_time - timedelta(seconds=1))
        if count is None:
            return None
        if self._step(count) == self.end_time:
            return self.end_time

        start_hour = self.start_time.astimezone(self.tz).hour
        for previous in range(count - 1, -1, -1):
            fire_time = self._step(previous)
            if not self._hour_missing(fire_time, start_hour):
                return fire_time
        return None

    def update_after_misfire(
        self,
        calendar: "Calendar | None" = None,
        now: datetime | None = None,
    ) -> None:
        misfire_time_after_now(self, calendar, now)
