"""Fluent builders for job details and triggers.

Example:
    job = JobBuilder.new_job(SendReport).with_identity("report", "reports").build()
    trigger = (
        TriggerBuilder.new_trigger()
        .with_identity("nightly", "reports")
        .start_now()
        .with_schedule(CronScheduleBuilder.daily_at_hour_and_minute(2, 30))
        .build()
    )
    scheduler.schedule_job(trigger, job)
"""

import inspect
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable

from croniter import croniter

from quartzpy.core.dates import (
    ALL_DAYS_OF_THE_WEEK,
    MONDAY_THROUGH_FRIDAY,
    SATURDAY_AND_SUNDAY,
    IntervalUnit,
    TimeOfDay,
    ensure_aware,
    get_zone,
    utc_now,
    validate_day_of_month,
    validate_day_of_week,
    validate_hour,
    validate_interval_unit,
    validate_minute,
)
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.core.job import Job, JobDetail, job_type_name
from quartzpy.core.key import Key
from quartzpy.triggers import (
    MISFIRE_INSTRUCTION_DO_NOTHING,
    MISFIRE_INSTRUCTION_FIRE_NOW,
    MISFIRE_INSTRUCTION_FIRE_ONCE_NOW,
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT,
    MISFIRE_INSTRUCTION_SMART_POLICY,
    REPEAT_INDEFINITELY,
    CalendarIntervalTrigger,
    CronTrigger,
    DailyTimeIntervalTrigger,
    SimpleTrigger,
    Trigger,
)


class JobBuilder:
    """Builds a JobDetail."""

    def __init__(self, job_type: str | type[Job] | Callable | None = None) -> None:
        self._key: Key | None = None
        self._job_type: str | None = None
        self._description: str | None = None
        self._durable = False
        self._job_data: dict[str, Any] = {}
        if job_type is not None:
            self.of_type(job_type)

    @classmethod
    def new_job(cls, job_type: str | type[Job] | Callable | None = None) -> "JobBuilder":
        return cls(job_type)

    def with_identity(self, name: str | Key, group: str | None = None) -> "JobBuilder":
        self._key = name if isinstance(name, Key) else Key(name, group)
        return self

    def with_description(self, description: str) -> "JobBuilder":
        self._description = description
        return self

    def of_type(self, job_type: str | type[Job] | Callable) -> "JobBuilder":
        """Set the job type from a registry name, a Job subclass or a function."""
        if isinstance(job_type, str):
            self._job_type = job_type
        elif inspect.isclass(job_type) or callable(job_type):
            self._job_type = job_type_name(job_type)
        else:
            raise ScheduleValidationError(f"Unsupported job type: {job_type!r}")
        return self

    def store_durably(self, durable: bool = True) -> "JobBuilder":
        self._durable = durable
        return self

    def using_job_data(self, key: str | dict[str, Any], value: Any = None) -> "JobBuilder":
        if isinstance(key, dict):
            self._job_data.update(key)
        else:
            self._job_data[key] = value
        return self

    def build(self) -> JobDetail:
        if self._job_type is None:
            raise ScheduleValidationError("Job type must be set")
        key = self._key or Key(Key.create_unique_name())
        return JobDetail(
            key=key,
            job_type=self._job_type,
            description=self._description,
            durable=self._durable,
            job_data=dict(self._job_data),
        )


class ScheduleBuilder(ABC):
    """Produces the kind-specific part of a trigger."""

    def __init__(self) -> None:
        self._misfire_instruction = MISFIRE_INSTRUCTION_SMART_POLICY
        self._timezone: str | None = None

    def in_time_zone(self, name: str):
        get_zone(name)
        self._timezone = name
        return self

    def with_misfire_handling_instruction_ignore_misfires(self):
        self._misfire_instruction = MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY
        return self

    def _common(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"misfire_instruction": self._misfire_instruction}
        if self._timezone is not None:
            fields["timezone"] = self._timezone
        return fields

    @abstractmethod
    def build(self, **fields: Any) -> Trigger:
        """Create the trigger from the builder's settings and ``fields``."""


class SimpleScheduleBuilder(ScheduleBuilder):
    """Schedule for SimpleTrigger: a fixed interval and repeat count."""

    def __init__(self) -> None:
        super().__init__()
        self._interval = 0.0
        self._repeat_count = 0

    @classmethod
    def simple_schedule(cls) -> "SimpleScheduleBuilder":
        return cls()

    @classmethod
    def repeat_secondly_forever(cls, seconds: int = 1) -> "SimpleScheduleBuilder":
        return cls().with_interval_in_seconds(seconds).repeat_forever()

    @classmethod
    def repeat_minutely_forever(cls, minutes: int = 1) -> "SimpleScheduleBuilder":
        return cls().with_interval_in_minutes(minutes).repeat_forever()

    @classmethod
    def repeat_hourly_forever(cls, hours: int = 1) -> "SimpleScheduleBuilder":
        return cls().with_interval_in_hours(hours).repeat_forever()

    @classmethod
    def repeat_secondly_for_total_count(cls, count: int, seconds: int = 1) -> "SimpleScheduleBuilder":
        return cls._for_total_count(count).with_interval_in_seconds(seconds)

    @classmethod
    def repeat_minutely_for_total_count(cls, count: int, minutes: int = 1) -> "SimpleScheduleBuilder":
        return cls._for_total_count(count).with_interval_in_minutes(minutes)

    @classmethod
    def repeat_hourly_for_total_count(cls, count: int, hours: int = 1) -> "SimpleScheduleBuilder":
        return cls._for_total_count(count).with_interval_in_hours(hours)

    @classmethod
    def _for_total_count(cls, count: int) -> "SimpleScheduleBuilder":
        if count < 1:
            raise ScheduleValidationError(f"Total count of firings must be at least one! Given count: {count}")
        return cls().with_repeat_count(count - 1)

    def with_interval(self, interval: timedelta) -> "SimpleScheduleBuilder":
        self._interval = interval.total_seconds()
        return self

    def with_interval_in_seconds(self, seconds: float) -> "SimpleScheduleBuilder":
        self._interval = seconds
        return self

    def with_interval_in_minutes(self, minutes: int) -> "SimpleScheduleBuilder":
        self._interval = minutes * 60
        return self

    def with_interval_in_hours(self, hours: int) -> "SimpleScheduleBuilder":
        self._interval = hours * 3600
        return self

    def with_repeat_count(self, repeat_count: int) -> "SimpleScheduleBuilder":
        self._repeat_count = repeat_count
        return self

    def repeat_forever(self) -> "SimpleScheduleBuilder":
        self._repeat_count = REPEAT_INDEFINITELY
        return self

    def with_misfire_handling_instruction_fire_now(self) -> "SimpleScheduleBuilder":
        self._misfire_instruction = MISFIRE_INSTRUCTION_FIRE_NOW
        return self

    def with_misfire_handling_instruction_next_with_existing_count(self) -> "SimpleScheduleBuilder":
        self._misfire_instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT
        return self

    def with_misfire_handling_instruction_next_with_remaining_count(self) -> "SimpleScheduleBuilder":
        self._misfire_instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT
        return self

    def with_misfire_handling_instruction_now_with_existing_count(self) -> "SimpleScheduleBuilder":
        self._misfire_instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT
        return self

    def with_misfire_handling_instruction_now_with_remaining_count(self) -> "SimpleScheduleBuilder":
        self._misfire_instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT
        return self

    def build(self, **fields: Any) -> SimpleTrigger:
        return SimpleTrigger(
            repeat_interval=self._interval,
            repeat_count=self._repeat_count,
            **self._common(),
            **fields,
        )


class _FireOnceNowMisfireMixin:
    def with_misfire_handling_instruction_fire_and_proceed(self):
        self._misfire_instruction = MISFIRE_INSTRUCTION_FIRE_ONCE_NOW
        return self

    def with_misfire_handling_instruction_do_nothing(self):
        self._misfire_instruction = MISFIRE_INSTRUCTION_DO_NOTHING
        return self


def _cron_day_of_week(day: int) -> str:
    validate_day_of_week(day)
    # croniter counts Sunday as 0
    return str(day % 7)


class CronScheduleBuilder(_FireOnceNowMisfireMixin, ScheduleBuilder):
    """Schedule for CronTrigger."""

    def __init__(self, cron_expression: str) -> None:
        super().__init__()
        if not croniter.is_valid(cron_expression):
            raise ScheduleValidationError(f"Invalid cron expression: {cron_expression}")
        self._cron_expression = cron_expression

    @classmethod
    def cron_schedule(cls, cron_expression: str) -> "CronScheduleBuilder":
        return cls(cron_expression)

    @classmethod
    def daily_at_hour_and_minute(cls, hour: int, minute: int) -> "CronScheduleBuilder":
        validate_hour(hour)
        validate_minute(minute)
        return cls(f"{minute} {hour} * * *")

    @classmethod
    def at_hour_and_minute_on_given_days_of_week(cls, hour: int, minute: int, *days: int) -> "CronScheduleBuilder":
        if not days:
            raise ScheduleValidationError("You must specify at least one day of week.")
        validate_hour(hour)
        validate_minute(minute)
        return cls(f"{minute} {hour} * * {','.join(_cron_day_of_week(d) for d in days)}")

    @classmethod
    def weekly_on_day_and_hour_and_minute(cls, day: int, hour: int, minute: int) -> "CronScheduleBuilder":
        return cls.at_hour_and_minute_on_given_days_of_week(hour, minute, day)

    @classmethod
    def monthly_on_day_and_hour_and_minute(cls, day: int, hour: int, minute: int) -> "CronScheduleBuilder":
        validate_day_of_month(day)
        validate_hour(hour)
        validate_minute(minute)
        return cls(f"{minute} {hour} {day} * *")

    def build(self, **fields: Any) -> CronTrigger:
        return CronTrigger(cron_expression=self._cron_expression, **self._common(), **fields)


class CalendarIntervalScheduleBuilder(_FireOnceNowMisfireMixin, ScheduleBuilder):
    """Schedule for CalendarIntervalTrigger."""

    def __init__(self) -> None:
        super().__init__()
        self._interval = 1
        self._unit = IntervalUnit.DAY
        self._preserve_hour = False
        self._skip_day = False

    @classmethod
    def calendar_interval_schedule(cls) -> "CalendarIntervalScheduleBuilder":
        return cls()

    def with_interval(self, interval: int, unit: IntervalUnit) -> "CalendarIntervalScheduleBuilder":
        if interval < 1:
            raise ScheduleValidationError("Interval must be a positive value.")
        self._interval = interval
        self._unit = validate_interval_unit(unit)
        return self

    def with_interval_in_seconds(self, seconds: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(seconds, IntervalUnit.SECOND)

    def with_interval_in_minutes(self, minutes: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(minutes, IntervalUnit.MINUTE)

    def with_interval_in_hours(self, hours: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(hours, IntervalUnit.HOUR)

    def with_interval_in_days(self, days: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(days, IntervalUnit.DAY)

    def with_interval_in_weeks(self, weeks: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(weeks, IntervalUnit.WEEK)

    def with_interval_in_months(self, months: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(months, IntervalUnit.MONTH)

    def with_interval_in_years(self, years: int) -> "CalendarIntervalScheduleBuilder":
        return self.with_interval(years, IntervalUnit.YEAR)

    def preserve_hour_of_day_across_daylight_savings(self, preserve: bool = True) -> "CalendarIntervalScheduleBuilder":
        self._preserve_hour = preserve
        return self

    def skip_day_if_hour_does_not_exist(self, skip: bool = True) -> "CalendarIntervalScheduleBuilder":
        self._skip_day = skip
        return self

    def build(self, **fields: Any) -> CalendarIntervalTrigger:
        return CalendarIntervalTrigger(
            repeat_interval=self._interval,
            repeat_interval_unit=self._unit,
            preserve_hour_of_day_across_daylight_savings=self._preserve_hour,
            skip_day_if_hour_does_not_exist=self._skip_day,
            **self._common(),
            **fields,
        )


class DailyTimeIntervalScheduleBuilder(_FireOnceNowMisfireMixin, ScheduleBuilder):
    """Schedule for DailyTimeIntervalTrigger."""

    def __init__(self) -> None:
        super().__init__()
        self._interval = 1
        self._unit = IntervalUnit.MINUTE
        self._days = list(ALL_DAYS_OF_THE_WEEK)
        self._start_time_of_day: TimeOfDay | None = None
        self._end_time_of_day: TimeOfDay | None = None
        self._repeat_count = REPEAT_INDEFINITELY

    @classmethod
    def daily_time_interval_schedule(cls) -> "DailyTimeIntervalScheduleBuilder":
        return cls()

    def with_interval(self, interval: int, unit: IntervalUnit) -> "DailyTimeIntervalScheduleBuilder":
        unit = validate_interval_unit(unit)
        if unit not in (IntervalUnit.SECOND, IntervalUnit.MINUTE, IntervalUnit.HOUR):
            raise ScheduleValidationError("Invalid repeat IntervalUnit (must be SECOND, MINUTE or HOUR).")
        if interval < 1:
            raise ScheduleValidationError("Interval must be a positive value.")
        self._interval = interval
        self._unit = unit
        return self

    def with_interval_in_seconds(self, seconds: int) -> "DailyTimeIntervalScheduleBuilder":
        return self.with_interval(seconds, IntervalUnit.SECOND)

    def with_interval_in_minutes(self, minutes: int) -> "DailyTimeIntervalScheduleBuilder":
        return self.with_interval(minutes, IntervalUnit.MINUTE)

    def with_interval_in_hours(self, hours: int) -> "DailyTimeIntervalScheduleBuilder":
        return self.with_interval(hours, IntervalUnit.HOUR)

    def on_days_of_the_week(self, *days: int) -> "DailyTimeIntervalScheduleBuilder":
        if not days:
            raise ScheduleValidationError("Days of week must be an non-empty set.")
        for day in days:
            validate_day_of_week(day)
        self._days = sorted(set(days))
        return self

    def on_monday_through_friday(self) -> "DailyTimeIntervalScheduleBuilder":
        return self.on_days_of_the_week(*MONDAY_THROUGH_FRIDAY)

    def on_saturday_and_sunday(self) -> "DailyTimeIntervalScheduleBuilder":
        return self.on_days_of_the_week(*SATURDAY_AND_SUNDAY)

    def on_every_day(self) -> "DailyTimeIntervalScheduleBuilder":
        return self.on_days_of_the_week(*ALL_DAYS_OF_THE_WEEK)

    def starting_daily_at(self, time_of_day: TimeOfDay) -> "DailyTimeIntervalScheduleBuilder":
        self._start_time_of_day = time_of_day
        return self

    def ending_daily_at(self, time_of_day: TimeOfDay) -> "DailyTimeIntervalScheduleBuilder":
        self._end_time_of_day = time_of_day
        return self

    def ending_daily_after_count(self, count: int) -> "DailyTimeIntervalScheduleBuilder":
        """Set the daily end so that the window holds ``count`` firings.

        Raises:
            ScheduleValidationError: If the start of the window is not set
                yet, or ``count`` firings do not fit before 23:59:59.
        """
        if count <= 0:
            raise ScheduleValidationError(f"Ending daily after count must be a positive number! Given count: {count}")
        if self._start_time_of_day is None:
            raise ScheduleValidationError("You must set the starting_daily_at() before calling ending_daily_after_count()!")

        interval_seconds = self._interval * self._unit.seconds
        last_second = TimeOfDay(hour=23, minute=59, second=59).seconds_of_day
        remaining = last_second - self._start_time_of_day.seconds_of_day
        max_count = remaining // interval_seconds
        if count > max_count:
            raise ScheduleValidationError(f"The given count {count} is too large! The max you can set is {max_count}")

        end_seconds = self._start_time_of_day.seconds_of_day + (count - 1) * interval_seconds
        self._end_time_of_day = TimeOfDay(
            hour=end_seconds // 3600,
            minute=end_seconds % 3600 // 60,
            second=end_seconds % 60,
        )
        return self

    def with_repeat_count(self, repeat_count: int) -> "DailyTimeIntervalScheduleBuilder":
        self._repeat_count = repeat_count
        return self

    def build(self, **fields: Any) -> DailyTimeIntervalTrigger:
        window: dict[str, Any] = {}
        if self._start_time_of_day is not None:
            window["start_time_of_day"] = self._start_time_of_day
        if self._end_time_of_day is not None:
            window["end_time_of_day"] = self._end_time_of_day
        return DailyTimeIntervalTrigger(
            repeat_interval=self._interval,
            repeat_interval_unit=self._unit,
            days_of_week=list(self._days),
            repeat_count=self._repeat_count,
            **window,
            **self._common(),
            **fields,
        )


class TriggerBuilder:
    """Builds a trigger of any kind from a schedule builder.

    Without a schedule the trigger fires once at its start time.
    """

    def __init__(self) -> None:
        self._key: Key | None = None
        self._job_key: Key | None = None
        self._description: str | None = None
        self._priority: int | None = None
        self._calendar_name: str | None = None
        self._start_time: datetime | None = None
        self._end_time: datetime | None = None
        self._job_data: dict[str, Any] = {}
        self._schedule: ScheduleBuilder | None = None

    @classmethod
    def new_trigger(cls) -> "TriggerBuilder":
        return cls()

    def with_identity(self, name: str | Key, group: str | None = None) -> "TriggerBuilder":
        self._key = name if isinstance(name, Key) else Key(name, group)
        return self

    def with_description(self, description: str) -> "TriggerBuilder":
        self._description = description
        return self

    def with_priority(self, priority: int) -> "TriggerBuilder":
        self._priority = priority
        return self

    def modified_by_calendar(self, calendar_name: str) -> "TriggerBuilder":
        self._calendar_name = calendar_name
        return self

    def start_at(self, start_time: datetime) -> "TriggerBuilder":
        self._start_time = ensure_aware(start_time)
        return self

    def start_now(self) -> "TriggerBuilder":
        self._start_time = utc_now().replace(microsecond=0)
        return self

    def end_at(self, end_time: datetime | None) -> "TriggerBuilder":
        self._end_time = ensure_aware(end_time) if end_time is not None else None
        return self

    def for_job(self, job: str | Key | JobDetail, group: str | None = None) -> "TriggerBuilder":
        if isinstance(job, JobDetail):
            self._job_key = job.key
        elif isinstance(job, Key):
            self._job_key = job
        else:
            self._job_key = Key(job, group)
        return self

    def using_job_data(self, key: str | dict[str, Any], value: Any = None) -> "TriggerBuilder":
        if isinstance(key, dict):
            self._job_data.update(key)
        else:
            self._job_data[key] = value
        return self

    def with_schedule(self, schedule: ScheduleBuilder) -> "TriggerBuilder":
        self._schedule = schedule
        return self

    def build(self) -> Trigger:
        schedule = self._schedule or SimpleScheduleBuilder.simple_schedule()
        fields: dict[str, Any] = {
            "key": self._key or Key(Key.create_unique_name()),
            "job_key": self._job_key,
            "description": self._description,
            "calendar_name": self._calendar_name,
            "start_time": self._start_time or utc_now().replace(microsecond=0),
            "end_time": self._end_time,
            "job_data": dict(self._job_data),
        }
        if self._priority is not None:
            fields["priority"] = self._priority
        trigger = schedule.build(**fields)
        if trigger.end_time is not None and trigger.end_time < trigger.start_time:
            raise ScheduleValidationError("End time cannot be before start time")
        return trigger
