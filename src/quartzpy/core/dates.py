"""Date and time helpers shared by triggers, calendars and builders.

Fixed-length units (second, minute, hour) are applied in absolute time.
Calendar units (day, week, month, year) are applied on the local wall
clock of the trigger's timezone, so a daily schedule keeps its hour of
day across daylight saving transitions.
"""

import calendar as _calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from quartzpy.core.errors import ScheduleValidationError

MONDAY = 1
TUESDAY = 2
WEDNESDAY = 3
THURSDAY = 4
FRIDAY = 5
SATURDAY = 6
SUNDAY = 7

ALL_DAYS_OF_THE_WEEK = (MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY)
MONDAY_THROUGH_FRIDAY = (MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY)
SATURDAY_AND_SUNDAY = (SATURDAY, SUNDAY)

SECONDS_IN_DAY = 24 * 60 * 60


class IntervalUnit(str, Enum):
    """Unit of a repeat interval.

    Attributes:
        SECOND: Fixed length, absolute time.
        MINUTE: Fixed length, absolute time.
        HOUR: Fixed length, absolute time.
        DAY: Calendar day on the local wall clock.
        WEEK: Seven calendar days on the local wall clock.
        MONTH: Calendar month, day clamped to the month length.
        YEAR: Calendar year, Feb 29 clamped to Feb 28.
    """

    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @property
    def seconds(self) -> int | None:
        """Nominal length in seconds, None for calendar units."""
        return _FIXED_UNIT_SECONDS.get(self)


_FIXED_UNIT_SECONDS = {
    IntervalUnit.SECOND: 1,
    IntervalUnit.MINUTE: 60,
    IntervalUnit.HOUR: 60 * 60,
}


def max_year() -> int:
    """Year after which fire time searches give up."""
    return datetime.now(timezone.utc).year + 100


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=64)
def get_zone(name: str | None) -> tzinfo:
    """Resolve a timezone name.

    Args:
        name: IANA timezone name. None or "UTC" mean UTC.

    Returns:
        The timezone object.

    Raises:
        ScheduleValidationError: If the name is unknown.
    """
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError) as e:
        raise ScheduleValidationError(f"Unknown timezone: {name}") from e


def localize(naive: datetime, tz: tzinfo) -> datetime:
    """Attach a timezone to a wall-clock time.

    A wall-clock time that does not exist (inside a spring-forward gap)
    is moved forward by the size of the gap.

    Args:
        naive: Wall-clock time without tzinfo.
        tz: Target timezone.

    Returns:
        Aware datetime in ``tz``.
    """
    aware = naive.replace(tzinfo=tz)
    return aware.astimezone(timezone.utc).astimezone(tz)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months to a naive wall-clock time, clamping the day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, _calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_interval(value: datetime, amount: int, unit: IntervalUnit, tz: tzinfo) -> datetime:
    """Add ``amount`` units to an aware datetime.

    Args:
        value: Aware datetime.
        amount: Number of units, may be negative.
        unit: Interval unit.
        tz: Timezone whose wall clock calendar units are applied on.

    Returns:
        Aware datetime in ``tz``.
    """
    fixed = unit.seconds
    if fixed is not None:
        return (value.astimezone(timezone.utc) + timedelta(seconds=amount * fixed)).astimezone(tz)

    wall = value.astimezone(tz).replace(tzinfo=None)
    if unit == IntervalUnit.DAY:
        wall = wall + timedelta(days=amount)
    elif unit == IntervalUnit.WEEK:
        wall = wall + timedelta(weeks=amount)
    elif unit == IntervalUnit.MONTH:
        wall = add_months(wall, amount)
    elif unit == IntervalUnit.YEAR:
        wall = add_months(wall, amount * 12)
    return localize(wall, tz)


def start_of_day(value: datetime, tz: tzinfo) -> datetime:
    """Midnight of the local day containing ``value``."""
    local = value.astimezone(tz)
    return localize(datetime.combine(local.date(), time()), tz)


def start_of_next_day(value: datetime, tz: tzinfo) -> datetime:
    """Midnight of the local day after the one containing ``value``."""
    local = value.astimezone(tz)
    return localize(datetime.combine(local.date() + timedelta(days=1), time()), tz)


def local_date(value: datetime, tz: tzinfo) -> date:
    """Local calendar date of ``value`` in ``tz``."""
    return value.astimezone(tz).date()


def validate_hour(hour: int) -> None:
    if not 0 <= hour <= 23:
        raise ScheduleValidationError(f"Invalid hour (must be >= 0 and <= 23): {hour}")


def validate_minute(minute: int) -> None:
    if not 0 <= minute <= 59:
        raise ScheduleValidationError(f"Invalid minute (must be >= 0 and <= 59): {minute}")


def validate_second(second: int) -> None:
    if not 0 <= second <= 59:
        raise ScheduleValidationError(f"Invalid second (must be >= 0 and <= 59): {second}")


def validate_day_of_week(day: int) -> None:
    if day not in ALL_DAYS_OF_THE_WEEK:
        raise ScheduleValidationError(f"Invalid day of week (must be 1 to 7): {day}")


def validate_day_of_month(day: int) -> None:
    if not 1 <= day <= 31:
        raise ScheduleValidationError(f"Invalid day of month (must be 1 to 31): {day}")


def validate_interval_unit(unit: "IntervalUnit | str") -> IntervalUnit:
    """Coerce ``unit`` to an IntervalUnit.

    Raises:
        ScheduleValidationError: If ``unit`` names no interval unit.
    """
    try:
        return IntervalUnit(unit)
    except ValueError:
        raise ScheduleValidationError(f"Invalid interval unit: {unit!r}") from None


class TimeOfDay(BaseModel):
    """A wall-clock time within a day.

    Attributes:
        hour: Hour, 0 to 23.
        minute: Minute, 0 to 59.
        second: Second, 0 to 59.
    """

    model_config = ConfigDict(frozen=True)

    hour: int = Field(default=0, description="Hour of day")
    minute: int = Field(default=0, description="Minute of hour")
    second: int = Field(default=0, description="Second of minute")

    def model_post_init(self, __context) -> None:
        validate_hour(self.hour)
        validate_minute(self.minute)
        validate_second(self.second)

    @classmethod
    def from_time(cls, value: time) -> "TimeOfDay":
        return cls(hour=value.hour, minute=value.minute, second=value.second)

    @property
    def seconds_of_day(self) -> int:
        return self.hour * 3600 + self.minute * 60 + self.second

    def __lt__(self, other: "TimeOfDay") -> bool:
        return self.seconds_of_day < other.seconds_of_day

    def __le__(self, other: "TimeOfDay") -> bool:
        return self.seconds_of_day <= other.seconds_of_day

    def __gt__(self, other: "TimeOfDay") -> bool:
        return self.seconds_of_day > other.seconds_of_day

    def __ge__(self, other: "TimeOfDay") -> bool:
        return self.seconds_of_day >= other.seconds_of_day

    def on_date(self, value: datetime, tz: tzinfo) -> datetime:
        """This time of day on the local date of ``value``."""
        day = local_date(value, tz)
        return localize(datetime.combine(day, time(self.hour, self.minute, self.second)), tz)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}"
