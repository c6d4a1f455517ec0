"""Scheduler exceptions.

Every error raised by the scheduler, the job store or the trigger engine
derives from SchedulerError so callers can catch the whole family at once.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class ScheduleValidationError(SchedulerError, ValueError):
    """
    Raised when a job, trigger or calendar is malformed.

    Examples:
    - Empty key name
    - Trigger that references no job
    - Zero or negative repeat interval
    - Start time of day after end time of day
    - Trigger whose schedule never produces a fire time
    """
    pass


class JobPersistenceError(SchedulerError):
    """Raised when a store operation does not affect the expected record."""
    pass


class ObjectAlreadyExistsError(JobPersistenceError):
    """Raised when storing a record whose identity is already taken."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(
            f"Unable to store {kind} with name '{key}', because one already exists with this identification."
        )


class JobExecutionError(SchedulerError):
    """
    Raised by a job body to steer what happens to its triggers.

    The run shell copies the flags into the execution context, so the
    firing trigger's completion instruction reflects them.
    """

    def __init__(
        self,
        message: str = "",
        refire_immediately: bool = False,
        unschedule_firing_trigger: bool = False,
        unschedule_all_triggers: bool = False,
    ):
        self.refire_immediately = refire_immediately
        self.unschedule_firing_trigger = unschedule_firing_trigger
        self.unschedule_all_triggers = unschedule_all_triggers
        super().__init__(message)
