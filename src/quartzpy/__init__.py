"""quartzpy - A job scheduler with persistent triggers, calendars and misfire handling."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("quartzpy")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from quartzpy.core.builders import (
    CalendarIntervalScheduleBuilder,
    CronScheduleBuilder,
    DailyTimeIntervalScheduleBuilder,
    JobBuilder,
    SimpleScheduleBuilder,
    TriggerBuilder,
)
from quartzpy.core.context import JobExecutionContext
from quartzpy.core.job import Job, JobDetail
from quartzpy.core.key import Key
from quartzpy.scheduler import Scheduler, SchedulerEvent
from quartzpy.store import JobStore, JsonFileStorage, MemoryStorage
from quartzpy.triggers import TriggerState

__all__ = [
    "CalendarIntervalScheduleBuilder",
    "CronScheduleBuilder",
    "DailyTimeIntervalScheduleBuilder",
    "Job",
    "JobBuilder",
    "JobDetail",
    "JobExecutionContext",
    "JobStore",
    "JsonFileStorage",
    "Key",
    "MemoryStorage",
    "Scheduler",
    "SchedulerEvent",
    "SimpleScheduleBuilder",
    "TriggerBuilder",
    "TriggerState",
]
