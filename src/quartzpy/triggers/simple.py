"""Trigger firing at a start time, then repeating at a fixed interval."""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import Field

from quartzpy.core.dates import ensure_aware, utc_now
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.triggers.base import (
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    MISFIRE_INSTRUCTION_SMART_POLICY,
    REPEAT_INDEFINITELY,
    Trigger,
)

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar

logger = logging.getLogger(__name__)

MISFIRE_INSTRUCTION_FIRE_NOW = 1
MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT = 2
MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT = 3
MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT = 4
MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT = 5


class SimpleTrigger(Trigger):
    """Fires at ``start_time`` and then every ``repeat_interval`` seconds.

    The trigger fires ``repeat_count + 1`` times in total, or forever when
    ``repeat_count`` is ``REPEAT_INDEFINITELY``, and never at or after
    ``end_time``.

    Attributes:
        repeat_count: Number of repeats after the first firing.
        repeat_interval: Seconds between firings.
    """

    kind: Literal["simple"] = "simple"
    repeat_count: int = Field(default=0, description="Repeats after the first firing")
    repeat_interval: float = Field(default=0, description="Seconds between firings")

    @property
    def _interval(self) -> timedelta:
        return timedelta(seconds=self.repeat_interval)

    def _max_misfire_instruction(self) -> int:
        return MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT

    def _validate_schedule(self) -> None:
        if self.repeat_count < REPEAT_INDEFINITELY:
            raise ScheduleValidationError(f"Repeat count must be >= 0, use {REPEAT_INDEFINITELY} for infinity")
        if self.repeat_count != 0 and self.repeat_interval < 1:
            raise ScheduleValidationError("Repeat interval cannot be zero.")

    def _repeats_forever(self) -> bool:
        return self.repeat_count == REPEAT_INDEFINITELY

    def get_fire_time_after(self, after: datetime | None = None) -> datetime | None:
        if not self._repeats_forever() and self.times_triggered > self.repeat_count:
            return None

        after = ensure_aware(after) if after is not None else utc_now()
        if self.repeat_count == 0 and after >= self.start_time:
            return None

        end = self.end_time
        if end is not None and end <= after:
            return None

        if after < self.start_time:
            return self.start_time

        elapsed = (after - self.start_time).total_seconds()
        count = int(elapsed // self.repeat_interval) + 1
        if not self._repeats_forever() and count > self.repeat_count:
            return None

        fire_time = self.start_time + count * self._interval
        if end is not None and end <= fire_time:
            return None
        return fire_time

    def get_fire_time_before(self, end: datetime | None) -> datetime | None:
        """Latest fire time at or before ``end``, ignoring the repeat count."""
        if end is None or end < self.start_time:
            return None
        count = self.compute_num_times_fired_between(self.start_time, end)
        return self.start_time + count * self._interval

    def compute_num_times_fired_between(self, start: datetime, end: datetime) -> int:
        if self.repeat_interval < 1:
            return 0
        return int((end - start).total_seconds() // self.repeat_interval)

    def get_final_fire_time(self) -> datetime | None:
        if self.repeat_count == 0:
            return self.start_time

        if self._repeats_forever():
            if self.end_time is None:
                return None
            return self.get_fire_time_before(self.end_time)

        last = self.start_time + self.repeat_count * self._interval
        if self.end_time is None or last < self.end_time:
            return last
        return self.get_fire_time_before(self.end_time)

    def update_after_misfire(
        self,
        calendar: "Calendar | None" = None,
        now: datetime | None = None,
    ) -> None:
        instruction = self.misfire_instruction
        if instruction == MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY:
            return

        now = now or utc_now()

        if instruction == MISFIRE_INSTRUCTION_SMART_POLICY:
            if self.repeat_count == 0:
                instruction = MISFIRE_INSTRUCTION_FIRE_NOW
            elif self._repeats_forever():
                instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT
            else:
                instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT
        elif instruction == MISFIRE_INSTRUCTION_FIRE_NOW and self.repeat_count != 0:
            instruction = MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT

        logger.debug(f"Trigger {self.key} misfired, applying instruction {instruction}")

        if instruction == MISFIRE_INSTRUCTION_FIRE_NOW:
            self.next_fire_time = now

        elif instruction == MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT:
            self.next_fire_time = self.next_fire_time_after_now(calendar, now)

        elif instruction == MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_REMAINING_COUNT:
            new_fire_time = self.next_fire_time_after_now(calendar, now)
            if new_fire_time is not None and self.next_fire_time is not None:
                self.times_triggered += self.compute_num_times_fired_between(
                    self.next_fire_time, new_fire_time
                )
            self.next_fire_time = new_fire_time

        elif instruction == MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_EXISTING_REPEAT_COUNT:
            if self.repeat_count != 0 and not self._repeats_forever():
                self.repeat_count = max(0, self.repeat_count - self.times_triggered)
                self.times_triggered = 0
            self._reschedule_now(now)

        elif instruction == MISFIRE_INSTRUCTION_RESCHEDULE_NOW_WITH_REMAINING_REPEAT_COUNT:
            if self.repeat_count != 0 and not self._repeats_forever():
                missed = 0
                if self.next_fire_time is not None:
                    missed = self.compute_num_times_fired_between(self.next_fire_time, now)
                self.repeat_count = max(0, self.repeat_count - (self.times_triggered + missed))
                self.times_triggered = 0
            self._reschedule_now(now)

    def _reschedule_now(self, now: datetime) -> None:
        if self.end_time is not None and self.end_time < now:
            self.next_fire_time = None
        else:
            self.start_time = now
            self.next_fire_time = now
