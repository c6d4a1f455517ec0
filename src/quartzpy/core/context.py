"""Execution context handed to a job for one firing."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from quartzpy.core.job import JobDetail

if TYPE_CHECKING:
    from quartzpy.calendars import Calendar
    from quartzpy.triggers.fired import FiredTrigger


class CompletedExecutionInstruction(str, Enum):
    """What the job store should do with triggers after a firing completes.

    Attributes:
        NOOP: Leave the trigger as the firing protocol stored it.
        RE_EXECUTE_JOB: Run the job again immediately, without re-acquiring.
        SET_TRIGGER_COMPLETE: Mark the firing trigger COMPLETE.
        DELETE_TRIGGER: Remove the firing trigger.
        SET_ALL_JOB_TRIGGERS_COMPLETE: Mark every trigger of the job COMPLETE.
        SET_TRIGGER_ERROR: Mark the firing trigger ERROR.
        SET_ALL_JOB_TRIGGERS_ERROR: Mark every trigger of the job ERROR.
    """

    NOOP = "noop"
    RE_EXECUTE_JOB = "re_execute_job"
    SET_TRIGGER_COMPLETE = "set_trigger_complete"
    DELETE_TRIGGER = "delete_trigger"
    SET_ALL_JOB_TRIGGERS_COMPLETE = "set_all_job_triggers_complete"
    SET_TRIGGER_ERROR = "set_trigger_error"
    SET_ALL_JOB_TRIGGERS_ERROR = "set_all_job_triggers_error"


@dataclass
class JobExecutionContext:
    """State of one job execution.

    The merged job data is the job's data map overlaid with the firing
    trigger's data map. A job steers its triggers through the
    ``set_*`` instruction methods; only the most recent call wins.

    Attributes:
        scheduler: Scheduler running the job.
        fired_trigger: Snapshot of the trigger firing.
        job_detail: Job being executed.
        calendar: Calendar the trigger is modified by, if any.
        merged_job_data: Job data overlaid with trigger data.
        result: Value the job chose to report.
        exception: Exception raised by the job body, if any.
        refire_count: How many times the job was re-executed for this firing.
        job_run_time_ms: Duration of the last execution in milliseconds.
    """

    scheduler: Any
    fired_trigger: "FiredTrigger"
    job_detail: JobDetail
    calendar: "Calendar | None" = None
    merged_job_data: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    exception: BaseException | None = None
    refire_count: int = 0
    job_run_time_ms: float = 0
    instruction: CompletedExecutionInstruction | None = None

    def __post_init__(self) -> None:
        if not self.merged_job_data:
            self.merged_job_data = {
                **self.job_detail.job_data,
                **self.fired_trigger.trigger.job_data,
            }

    @property
    def trigger(self):
        """The trigger snapshot this execution belongs to."""
        return self.fired_trigger.trigger

    @property
    def fire_time(self):
        return self.fired_trigger.fire_time

    @property
    def scheduled_fire_time(self):
        return self.fired_trigger.scheduled_fire_time

    @property
    def next_fire_time(self):
        return self.fired_trigger.next_fire_time

    def increment_refire_count(self) -> None:
        self.refire_count += 1

    def clear_instruction(self) -> None:
        """Forget the instruction set by a previous execution attempt."""
        self.instruction = None

    def set_refire_immediately(self) -> None:
        self.instruction = CompletedExecutionInstruction.RE_EXECUTE_JOB

    def is_refire_immediately(self) -> bool:
        return self.instruction == CompletedExecutionInstruction.RE_EXECUTE_JOB

    def set_unschedule_firing_trigger(self) -> None:
        self.instruction = CompletedExecutionInstruction.SET_TRIGGER_COMPLETE

    def is_unschedule_firing_trigger(self) -> bool:
        return self.instruction == CompletedExecutionInstruction.SET_TRIGGER_COMPLETE

    def set_unschedule_all_triggers(self) -> None:
        self.instruction = CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE

    def is_unschedule_all_triggers(self) -> bool:
        return self.instruction == CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE
