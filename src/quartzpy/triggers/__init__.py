"""Trigger kinds and their shared lifecycle."""

from quartzpy.triggers.base import (
    DEFAULT_PRIORITY,
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    MISFIRE_INSTRUCTION_SMART_POLICY,
    REPEAT_INDEFINITELY,
    Trigger,
    TriggerState,
)
from quartzpy.triggers.calendar_interval import CalendarIntervalTrigger
from quartzpy.triggers.cron import (
    MISFIRE_INSTRUCTION_DO_NOTHING,
    MISFIRE_INSTRUCTION_FIRE_ONCE_NOW,
    CronTrigger,
)
from quartzpy.triggers.daily_time_interval import DailyTimeIntervalTrigger
from quartzpy.triggers.fired import AnyTrigger, FiredTrigger
from quartzpy.triggers.simple import (
    MISFIRE_INSTRUCTION_FIRE_NOW,
    MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT,
    MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT,
    SimpleTrigger,
)

__all__ = [
    "DEFAULT_PRIORITY",
    "MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY",
    "MISFIRE_INSTRUCTION_SMART_POLICY",
    "MISFIRE_INSTRUCTION_FIRE_ONCE_NOW",
    "MISFIRE_INSTRUCTION_DO_NOTHING",
    "MISFIRE_INSTRUCTION_FIRE_NOW",
    "MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT",
    "MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT",
    "MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT",
    "MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT",
    "REPEAT_INDEFINITELY",
    "AnyTrigger",
    "CalendarIntervalTrigger",
    "CronTrigger",
    "DailyTimeIntervalTrigger",
    "FiredTrigger",
    "SimpleTrigger",
    "Trigger",
    "TriggerState",
]
