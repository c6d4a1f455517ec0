"""Scheduler loop, job execution and listener events.

Example:
    from quartzpy.scheduler import Scheduler, SchedulerEvent

    scheduler = Scheduler()

    @scheduler.events.on(SchedulerEvent.JOB_WAS_EXECUTED)
    def report(event):
        print(event.data["context"].result)

    scheduler.start()
"""

from quartzpy.scheduler.events import Event, EventDispatcher, SchedulerEvent
from quartzpy.scheduler.run_shell import JobRunShell
from quartzpy.scheduler.scheduler import MANUAL_TRIGGERS_GROUP, Scheduler

__all__ = [
    # Scheduler
    "MANUAL_TRIGGERS_GROUP",
    "Scheduler",
    # Execution
    "JobRunShell",
    # Events
    "Event",
    "EventDispatcher",
    "SchedulerEvent",
]
