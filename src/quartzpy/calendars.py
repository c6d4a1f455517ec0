"""Calendars that exclude blocks of time from trigger schedules.

A trigger modified by a calendar never fires at an instant the calendar
excludes. Calendars can be chained: a time is included only when the
calendar itself and every base calendar down the chain include it.

Example:
    holidays = HolidayCalendar(excluded_dates=[date(2025, 12, 25)])
    business = WeeklyCalendar(base_calendar=holidays)
    business.is_time_included(datetime(2025, 12, 25, 9, tzinfo=timezone.utc))  # False
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Union

from croniter import croniter
from pydantic import BaseModel, Field

from quartzpy.core.dates import (
    SATURDAY_AND_SUNDAY,
    TimeOfDay,
    ensure_aware,
    get_zone,
    local_date,
    max_year,
    start_of_next_day,
    validate_day_of_month,
    validate_day_of_week,
)
from quartzpy.core.errors import ScheduleValidationError

logger = logging.getLogger(__name__)


class BaseCalendar(BaseModel):
    """Calendar that includes every instant, unless its base calendar excludes it.

    Attributes:
        kind: Calendar type discriminator.
        description: Human readable description.
        timezone: Timezone used to interpret days and times of day.
        base_calendar: Calendar consulted before this one.
    """

    kind: Literal["base"] = "base"
    description: str | None = Field(default=None, description="Calendar description")
    timezone: str = Field(default="UTC", description="Timezone for day boundaries")
    base_calendar: "AnyCalendar | None" = Field(
        default=None,
        description="Calendar consulted before this one"
    )

    @property
    def tz(self):
        return get_zone(self.timezone)

    def is_time_included(self, value: datetime) -> bool:
        """Check whether an instant is included by this calendar chain.

        Args:
            value: Instant to test.

        Returns:
            True if no calendar in the chain excludes the instant.
        """
        if self.base_calendar is not None:
            return self.base_calendar.is_time_included(value)
        return True

    def get_next_included_time(self, value: datetime) -> datetime | None:
        """Find the earliest included instant at or after ``value``.

        Args:
            value: Instant to start searching from.

        Returns:
            The included instant, or None if the chain excludes everything
            before the search cutoff.
        """
        value = ensure_aware(value)
        if self.base_calendar is not None:
            return self.base_calendar.get_next_included_time(value)
        return value

    def _base_next(self, value: datetime) -> datetime | None:
        """Advance ``value`` past anything the base calendar excludes."""
        if self.base_calendar is None:
            return value
        base_time = self.base_calendar.get_next_included_time(value)
        if base_time is None:
            return None
        return max(base_time, value)

    def _search_by_day(self, value: datetime) -> datetime | None:
        """Walk day by day until an included instant is found."""
        value = ensure_aware(value)
        cutoff = max_year()
        while value.year <= cutoff:
            value = self._base_next(value)
            if value is None:
                return None
            if self.is_time_included(value):
                return value
            value = start_of_next_day(value, self.tz).astimezone(timezone.utc)
        return None


class HolidayCalendar(BaseCalendar):
    """Excludes whole days given as a set of dates.

    Attributes:
        excluded_dates: Local dates that are excluded.
    """

    kind: Literal["holiday"] = "holiday"
    excluded_dates: list[date] = Field(default_factory=list, description="Excluded dates")

    def add_excluded_date(self, value: date | datetime) -> None:
        day = local_date(value, self.tz) if isinstance(value, datetime) else value
        if day not in self.excluded_dates:
            self.excluded_dates.append(day)
            self.excluded_dates.sort()

    def remove_excluded_date(self, value: date | datetime) -> None:
        day = local_date(value, self.tz) if isinstance(value, datetime) else value
        if day in self.excluded_dates:
            self.excluded_dates.remove(day)

    def is_time_included(self, value: datetime) -> bool:
        if not super().is_time_included(value):
            return False
        return local_date(ensure_aware(value), self.tz) not in self.excluded_dates

    def get_next_included_time(self, value: datetime) -> datetime | None:
        return self._search_by_day(value)


class WeeklyCalendar(BaseCalendar):
    """Excludes days of the week, Saturday and Sunday by default.

    Attributes:
        excluded_days: ISO weekdays (1 = Monday, 7 = Sunday) that are excluded.
    """

    kind: Literal["weekly"] = "weekly"
    excluded_days: list[int] = Field(
        default_factory=lambda: list(SATURDAY_AND_SUNDAY),
        description="Excluded ISO weekdays"
    )

    def model_post_init(self, __context: Any) -> None:
        for day in self.excluded_days:
            validate_day_of_week(day)

    def set_day_excluded(self, day: int, exclude: bool) -> None:
        validate_day_of_week(day)
        if exclude and day not in self.excluded_days:
            self.excluded_days.append(day)
            self.excluded_days.sort()
        elif not exclude and day in self.excluded_days:
            self.excluded_days.remove(day)

    def is_day_excluded(self, day: int) -> bool:
        validate_day_of_week(day)
        return day in self.excluded_days

    def are_all_days_excluded(self) -> bool:
        return len(set(self.excluded_days)) >= 7

    def is_time_included(self, value: datetime) -> bool:
        if self.are_all_days_excluded():
            return False
        if not super().is_time_included(value):
            return False
        return local_date(ensure_aware(value), self.tz).isoweekday() not in self.excluded_days

    def get_next_included_time(self, value: datetime) -> datetime | None:
        if self.are_all_days_excluded():
            return None
        return self._search_by_day(value)


class MonthlyCalendar(BaseCalendar):
    """Excludes days of the month.

    Attributes:
        excluded_days: Days of month (1 to 31) that are excluded.
    """

    kind: Literal["monthly"] = "monthly"
    excluded_days: list[int] = Field(default_factory=list, description="Excluded days of month")

    def model_post_init(self, __context: Any) -> None:
        for day in self.excluded_days:
            validate_day_of_month(day)

    def set_day_excluded(self, day: int, exclude: bool) -> None:
        validate_day_of_month(day)
        if exclude and day not in self.excluded_days:
            self.excluded_days.append(day)
            self.excluded_days.sort()
        elif not exclude and day in self.excluded_days:
            self.excluded_days.remove(day)

    def is_day_excluded(self, day: int) -> bool:
        validate_day_of_month(day)
        return day in self.excluded_days

    def are_all_days_excluded(self) -> bool:
        return len(set(self.excluded_days)) >= 31

    def is_time_included(self, value: datetime) -> bool:
        if not super().is_time_included(value):
            return False
        return local_date(ensure_aware(value), self.tz).day not in self.excluded_days

    def get_next_included_time(self, value: datetime) -> datetime | None:
        if self.are_all_days_excluded():
            return None
        return self._search_by_day(value)


class DailyCalendar(BaseCalendar):
    """Excludes a time-of-day range on every day.

    With ``invert_time_range`` the range becomes the only included part
    of each day.

    Attributes:
        range_start: First excluded time of day.
        range_end: Last excluded time of day.
        invert_time_range: Include only the range instead of excluding it.
    """

    kind: Literal["daily"] = "daily"
    range_start: TimeOfDay = Field(..., description="Start of the time range")
    range_end: TimeOfDay = Field(..., description="End of the time range")
    invert_time_range: bool = Field(default=False, description="Include only the range")

    def model_post_init(self, __context: Any) -> None:
        if self.range_start >= self.range_end:
            raise ScheduleValidationError(
                f"Invalid time range: {self.range_start} - {self.range_end}"
            )

    def _in_range(self, value: datetime) -> bool:
        local = ensure_aware(value).astimezone(self.tz)
        seconds = local.hour * 3600 + local.minute * 60 + local.second
        return self.range_start.seconds_of_day <= seconds <= self.range_end.seconds_of_day

    def is_time_included(self, value: datetime) -> bool:
        if not super().is_time_included(value):
            return False
        in_range = self._in_range(value)
        return in_range if self.invert_time_range else not in_range

    def get_next_included_time(self, value: datetime) -> datetime | None:
        value = ensure_aware(value)
        cutoff = max_year()
        while value.year <= cutoff:
            if self.is_time_included(value):
                return value

            range_start = self.range_start.on_date(value, self.tz)
            range_end = self.range_end.on_date(value, self.tz)
            own_excluded = self._in_range(value) != self.invert_time_range

            if own_excluded and not self.invert_time_range:
                value = (range_end + timedelta(seconds=1)).astimezone(timezone.utc)
            elif own_excluded and value < range_start:
                value = range_start.astimezone(timezone.utc)
            elif own_excluded:
                value = start_of_next_day(value, self.tz).astimezone(timezone.utc)
            else:
                value = self._base_next(value)
                if value is None:
                    return None
                if not self.base_calendar.is_time_included(value):
                    value = value + timedelta(seconds=1)
        return None


class CronCalendar(BaseCalendar):
    """Excludes every instant matched by a cron expression.

    A five-field expression matches whole minutes, a six-field one
    (trailing seconds field) matches single seconds.

    Attributes:
        cron_expression: Expression describing the excluded instants.
    """

    kind: Literal["cron"] = "cron"
    cron_expression: str = Field(..., description="Cron expression of excluded times")

    def model_post_init(self, __context: Any) -> None:
        if not croniter.is_valid(self.cron_expression):
            raise ScheduleValidationError(f"Invalid cron expression: {self.cron_expression}")

    @property
    def precision(self) -> timedelta:
        return timedelta(seconds=1 if len(self.cron_expression.split()) == 6 else 60)

    def _matches(self, value: datetime) -> bool:
        local = ensure_aware(value).astimezone(self.tz)
        return croniter.match(self.cron_expression, local)

    def is_time_included(self, value: datetime) -> bool:
        if not super().is_time_included(value):
            return False
        return not self._matches(value)

    def get_next_invalid_time_after(self, value: datetime) -> datetime:
        """First instant after ``value`` that the expression does not match."""
        step = self.precision
        value = ensure_aware(value)
        if step.total_seconds() == 60:
            value = value.replace(second=0, microsecond=0)
        else:
            value = value.replace(microsecond=0)
        cutoff = max_year()
        while self._matches(value) and value.year <= cutoff:
            value = value + step
        return value

    def get_next_included_time(self, value: datetime) -> datetime | None:
        value = ensure_aware(value)
        cutoff = max_year()
        while value.year <= cutoff:
            if self.is_time_included(value):
                return value
            if self._matches(value):
                value = self.get_next_invalid_time_after(value)
            else:
                value = self._base_next(value)
                if value is None:
                    return None
                if not self.base_calendar.is_time_included(value):
                    value = value + timedelta(seconds=1)
        return None


AnyCalendar = Annotated[
    Union[BaseCalendar, HolidayCalendar, WeeklyCalendar, MonthlyCalendar, DailyCalendar, CronCalendar],
    Field(discriminator="kind"),
]

# Calendars consumed by triggers only need the two inclusion methods
Calendar = BaseCalendar

for _model in (BaseCalendar, HolidayCalendar, WeeklyCalendar, MonthlyCalendar, DailyCalendar, CronCalendar):
    _model.model_rebuild()
