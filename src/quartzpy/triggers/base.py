"""Trigger base model and lifecycle states.

A trigger is the persisted schedule of a job. Every trigger kind computes
its own fire times, but the lifecycle (first fire time, advancing after a
firing, calendar updates, completion instruction) is shared and lives on
the base class.
"""

import logging
from abc import abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from quartzpy.core.context import CompletedExecutionInstruction
from quartzpy.core.dates import ensure_aware, get_zone, max_year, utc_now
from quartzpy.core.errors import ScheduleValidationError
from quartzpy.core.key import Key

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar
    from quartzpy.core.context import JobExecutionContext

logger = logging.getLogger(__name__)

MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY = -1
MISFIRE_INSTRUCTION_SMART_POLICY = 0

REPEAT_INDEFINITELY = -1

DEFAULT_PRIORITY = 5


class TriggerState(str, Enum):
    """Persisted state of a trigger.

    Attributes:
        WAITING: Eligible for acquisition.
        ACQUIRED: Reserved by a scheduler, not yet fired.
        EXECUTING: State carried by fired trigger snapshots.
        COMPLETE: Will not fire again.
        PAUSED: Administratively suspended.
        BLOCKED: Reserved for stateful job exclusivity.
        PAUSED_BLOCKED: Paused while blocked.
        ERROR: Needs an operator reset before it fires again.
    """

    WAITING = "waiting"
    ACQUIRED = "acquired"
    EXECUTING = "executing"
    COMPLETE = "complete"
    PAUSED = "paused"
    BLOCKED = "blocked"
    PAUSED_BLOCKED = "paused_blocked"
    ERROR = "error"


class Trigger(BaseModel):
    """Common fields and lifecycle of all trigger kinds.

    Attributes:
        kind: Trigger kind discriminator.
        key: Unique identity of the trigger.
        job_key: Key of the job this trigger fires.
        description: Human readable description.
        calendar_name: Name of the calendar modifying this trigger.
        job_data: Values overlaid on the job's data for each firing.
        priority: Tie-break for equal fire times, higher wins.
        start_time: Earliest time the trigger may fire.
        end_time: Time after which the trigger never fires.
        next_fire_time: Next scheduled fire time, None when done.
        previous_fire_time: Fire time of the last firing.
        times_triggered: Number of firings so far.
        state: Lifecycle state.
        misfire_instruction: Kind-specific misfire policy code.
        timezone: Timezone used for wall-clock arithmetic.
        error_message: Reason the trigger entered the ERROR state.
    """

    kind: str = Field(..., description="Trigger kind")
    key: Key = Field(..., description="Unique identity of the trigger")
    job_key: Key | None = Field(default=None, description="Key of the job to fire")
    description: str | None = Field(default=None, description="Trigger description")
    calendar_name: str | None = Field(default=None, description="Calendar modifying the schedule")
    job_data: dict[str, Any] = Field(default_factory=dict, description="Trigger data map")
    priority: int = Field(default=DEFAULT_PRIORITY, description="Tie-break priority")
    start_time: datetime = Field(default_factory=utc_now, description="Earliest fire time")
    end_time: datetime | None = Field(default=None, description="Latest fire time")
    next_fire_time: datetime | None = Field(default=None, description="Next fire time")
    previous_fire_time: datetime | None = Field(default=None, description="Previous fire time")
    times_triggered: int = Field(default=0, description="Number of firings")
    state: TriggerState = Field(default=TriggerState.WAITING, description="Lifecycle state")
    misfire_instruction: int = Field(
        default=MISFIRE_INSTRUCTION_SMART_POLICY,
        description="Misfire policy code"
    )
    timezone: str = Field(default="UTC", description="Timezone for wall-clock arithmetic")
    error_message: str | None = Field(default=None, description="Reason for the ERROR state")

    @field_validator("start_time", "end_time", "next_fire_time", "previous_fire_time")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @property
    def tz(self):
        return get_zone(self.timezone)

    # -- kind-specific contract ------------------------------------------

    @abstractmethod
    def get_fire_time_after(self, after: datetime | None = None) -> datetime | None:
        """Earliest fire time strictly after ``after`` (now when None)."""

    @abstractmethod
    def get_final_fire_time(self) -> datetime | None:
        """Last time the trigger will fire, None if it repeats forever."""

    @abstractmethod
    def update_after_misfire(
        self,
        calendar: "Calendar | None" = None,
        now: datetime | None = None,
    ) -> None:
        """Apply the misfire instruction to ``next_fire_time``."""

    def _max_misfire_instruction(self) -> int:
        return 2

    def _validate_schedule(self) -> None:
        """Kind-specific validation, overridden by subclasses."""

    # -- shared lifecycle ------------------------------------------------

    def validate(self) -> None:
        """Check the trigger can be stored.

        Raises:
            ScheduleValidationError: If the trigger is malformed.
        """
        if self.job_key is None:
            raise ScheduleValidationError(f"Trigger '{self.key}' does not reference a job")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ScheduleValidationError("End time cannot be before start time")
        if not (
            MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY
            <= self.misfire_instruction
            <= self._max_misfire_instruction()
        ):
            raise ScheduleValidationError(
                f"The misfire instruction code {self.misfire_instruction} is invalid for this type of trigger."
            )
        get_zone(self.timezone)
        self._validate_schedule()

    def skip_excluded(
        self,
        fire_time: datetime | None,
        calendar: "Calendar | None",
    ) -> datetime | None:
        """Advance ``fire_time`` past instants the calendar excludes.

        Gives up once the search passes the maximum year.
        """
        if calendar is None:
            return fire_time
        cutoff = max_year()
        while fire_time is not None and not calendar.is_time_included(fire_time):
            fire_time = self.get_fire_time_after(fire_time)
            if fire_time is not None and fire_time.year > cutoff:
                fire_time = None
        return fire_time

    def compute_first_fire_time(self, calendar: "Calendar | None" = None) -> datetime | None:
        """Set and return the first fire time at or after the start time.

        Args:
            calendar: Calendar whose excluded instants are skipped.

        Returns:
            First fire time, or None if the trigger never fires.
        """
        fire_time = self.get_fire_time_after(self.start_time - timedelta(seconds=1))
        self.next_fire_time = self.skip_excluded(fire_time, calendar)
        return self.next_fire_time

    def triggered(self, calendar: "Calendar | None" = None) -> None:
        """Advance the schedule after the trigger fired at ``next_fire_time``."""
        self.times_triggered += 1
        self.previous_fire_time = self.next_fire_time
        fire_time = self.get_fire_time_after(self.next_fire_time)
        self.next_fire_time = self.skip_excluded(fire_time, calendar)

    def update_with_new_calendar(
        self,
        calendar: "Calendar | None",
        misfire_threshold: float,
        now: datetime | None = None,
    ) -> None:
        """Recompute ``next_fire_time`` after the trigger's calendar changed.

        Fire times that fall further than ``misfire_threshold`` seconds
        behind ``now`` while skipping excluded instants are skipped too.
        """
        now = now or utc_now()
        after = self.previous_fire_time
        if after is None:
            # Never fired: start over from the start time
            after = self.start_time - timedelta(seconds=1)
        fire_time = self.get_fire_time_after(after)
        if fire_time is None or calendar is None:
            self.next_fire_time = fire_time
            return

        cutoff = max_year()
        while fire_time is not None and not calendar.is_time_included(fire_time):
            fire_time = self.get_fire_time_after(fire_time)
            if fire_time is None:
                break
            if fire_time.year > cutoff:
                fire_time = None
                break
            if fire_time < now and (now - fire_time).total_seconds() >= misfire_threshold:
                fire_time = self.get_fire_time_after(fire_time)

        self.next_fire_time = fire_time

    def next_fire_time_after_now(
        self,
        calendar: "Calendar | None",
        now: datetime | None = None,
    ) -> datetime | None:
        """First calendar-included fire time after ``now``."""
        return self.skip_excluded(self.get_fire_time_after(now or utc_now()), calendar)

    def may_fire_again(self) -> bool:
        return self.next_fire_time is not None

    def execution_complete(self, context: "JobExecutionContext") -> CompletedExecutionInstruction:
        """Decide what the store does with this trigger after an execution.

        Instructions set by the job take priority over the default, which
        deletes a trigger that cannot fire again.
        """
        if context.is_refire_immediately():
            return CompletedExecutionInstruction.RE_EXECUTE_JOB
        if context.is_unschedule_firing_trigger():
            return CompletedExecutionInstruction.SET_TRIGGER_COMPLETE
        if context.is_unschedule_all_triggers():
            return CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE
        if not self.may_fire_again():
            return CompletedExecutionInstruction.DELETE_TRIGGER
        return CompletedExecutionInstruction.NOOP
