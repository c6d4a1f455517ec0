"""Core types: keys, jobs, execution context, errors and date helpers."""

from quartzpy.core.context import CompletedExecutionInstruction, JobExecutionContext
from quartzpy.core.errors import (
    JobExecutionError,
    JobPersistenceError,
    ObjectAlreadyExistsError,
    SchedulerError,
    ScheduleValidationError,
)
from quartzpy.core.job import Job, JobDetail, JobFactory, SimpleJobFactory
from quartzpy.core.key import DEFAULT_GROUP, Key

__all__ = [
    # Identity
    "DEFAULT_GROUP",
    "Key",
    # Jobs
    "Job",
    "JobDetail",
    "JobFactory",
    "SimpleJobFactory",
    # Execution
    "CompletedExecutionInstruction",
    "JobExecutionContext",
    # Errors
    "JobExecutionError",
    "JobPersistenceError",
    "ObjectAlreadyExistsError",
    "SchedulerError",
    "ScheduleValidationError",
]
