"""Trigger firing at the instants matched by a cron expression."""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal

from croniter import croniter
from pydantic import Field

from quartzpy.core.dates import ensure_aware, utc_now
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.triggers.base import (
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    MISFIRE_INSTRUCTION_SMART_POLICY,
    Trigger,
)

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar

logger = logging.getLogger(__name__)

MISFIRE_INSTRUCTION_FIRE_ONCE_NOW = 1
MISFIRE_INSTRUCTION_DO_NOTHING = 2


def misfire_time_after_now(trigger: Trigger, calendar: "Calendar | None", now: datetime | None) -> None:
    """Apply the fire-once-now / do-nothing misfire family to ``trigger``.

    Shared by the cron, calendar interval and daily time interval triggers.
    """
    instruction = trigger.misfire_instruction
    if instruction == MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY:
        return

    now = now or utc_now()
    if instruction == MISFIRE_INSTRUCTION_SMART_POLICY:
        instruction = MISFIRE_INSTRUCTION_FIRE_ONCE_NOW

    logger.debug(f"Trigger {trigger.key} misfired, applying instruction {instruction}")

    if instruction == MISFIRE_INSTRUCTION_DO_NOTHING:
        trigger.next_fire_time = trigger.next_fire_time_after_now(calendar, now)
    elif instruction == MISFIRE_INSTRUCTION_FIRE_ONCE_NOW:
        trigger.next_fire_time = now


class CronTrigger(Trigger):
    """Fires on the schedule of a cron expression, evaluated in ``timezone``.

    Five-field expressions fire on whole minutes. A sixth field is read as
    seconds, following croniter's convention.

    Attributes:
        cron_expression: The schedule.
    """

    kind: Literal["cron"] = "cron"
    cron_expression: str = Field(..., description="Cron expression")

    def _validate_schedule(self) -> None:
        if not croniter.is_valid(self.cron_expression):
            raise ScheduleValidationError(f"Invalid cron expression: {self.cron_expression}")

    def _iterator(self, value: datetime) -> croniter:
        return croniter(self.cron_expression, value.astimezone(self.tz))

    def get_fire_time_after(self, after: datetime | None = None) -> datetime | None:
        after = ensure_aware(after) if after is not None else utc_now()
        if self.start_time > after:
            after = self.start_time - timedelta(seconds=1)

        if self.end_time is not None and after >= self.end_time:
            return None

        fire_time = ensure_aware(self._iterator(after).get_next(datetime))
        if self.end_time is not None and fire_time > self.end_time:
            return None
        return fire_time

    def get_fire_time_before(self, end: datetime) -> datetime | None:
        """Latest matched instant strictly before ``end``."""
        return ensure_aware(self._iterator(ensure_aware(end)).get_prev(datetime))

    def get_final_fire_time(self) -> datetime | None:
        if self.end_time is None:
            return None
        fire_time = self.get_fire_time_before(self.end_time + timedelta(seconds=1))
        if fire_time is None or fire_time < self.start_time:
            return None
        return fire_time

    def update_after_misfire(
        self,
        calendar: "Calendar | None" = None,
        now: datetime | None = None,
    ) -> None:
        misfire_time_after_now(self, calendar, now)
