"""Scheduler events and listener dispatch.

Listeners receive an Event and may return a value. For TRIGGER_FIRED a
listener returning True vetoes the job execution. Listener exceptions are
logged and never reach the scheduler loop.

Example:
    dispatcher = EventDispatcher()

    @dispatcher.on(SchedulerEvent.JOB_WAS_EXECUTED)
    def report(event):
        print(event.data["context"].job_run_time_ms)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SchedulerEvent(str, Enum):
    """Events raised by the scheduler."""

    SCHEDULER_STARTING = "scheduler_starting"
    SCHEDULER_STARTED = "scheduler_started"
    SCHEDULER_SHUTDOWN = "scheduler_shutdown"
    SCHEDULING_DATA_CLEARED = "scheduling_data_cleared"
    SCHEDULER_ERROR = "scheduler_error"

    JOB_ADDED = "job_added"
    JOB_SCHEDULED = "job_scheduled"
    JOB_DELETED = "job_deleted"
    JOB_UNSCHEDULED = "job_unscheduled"
    JOB_PAUSED = "job_paused"
    JOB_RESUMED = "job_resumed"

    TRIGGER_PAUSED = "trigger_paused"
    TRIGGERS_PAUSED = "triggers_paused"
    TRIGGER_RESUMED = "trigger_resumed"
    TRIGGERS_RESUMED = "triggers_resumed"
    TRIGGER_FINALIZED = "trigger_finalized"
    TRIGGER_MISFIRED = "trigger_misfired"

    TRIGGER_FIRED = "trigger_fired"
    JOB_EXECUTION_VETOED = "job_execution_vetoed"
    JOB_TO_BE_EXECUTED = "job_to_be_executed"
    JOB_WAS_EXECUTED = "job_was_executed"
    TRIGGER_COMPLETE = "trigger_complete"


@dataclass
class Event:
    """An event delivered to listeners.

    Attributes:
        name: Which event this is.
        data: Event details, e.g. ``trigger``, ``context``, ``job_key``.
    """

    name: SchedulerEvent
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], Any]


class EventDispatcher:
    """Keeps listeners per event and calls them in registration order."""

    def __init__(self) -> None:
        self._listeners: dict[SchedulerEvent, list[Listener]] = {}

    def add_listener(self, event: SchedulerEvent, callback: Listener) -> None:
        self._listeners.setdefault(SchedulerEvent(event), []).append(callback)

    def remove_listener(self, event: SchedulerEvent, callback: Listener) -> bool:
        """Remove a listener.

        Returns:
            True if the listener was registered.
        """
        listeners = self._listeners.get(SchedulerEvent(event), [])
        if callback in listeners:
            listeners.remove(callback)
            return True
        return False

    def on(self, event: SchedulerEvent) -> Callable[[Listener], Listener]:
        """Decorator to register a listener.

        Args:
            event: Event to listen to.

        Returns:
            Decorator function.
        """
        def decorator(callback: Listener) -> Listener:
            self.add_listener(event, callback)
            return callback
        return decorator

    def dispatch(self, event: SchedulerEvent, **data: Any) -> bool:
        """Call every listener of ``event``.

        Args:
            event: Event to raise.
            **data: Event details.

        Returns:
            True if any listener returned True (a veto).
        """
        vetoed = False
        payload = Event(name=SchedulerEvent(event), data=data)
        for callback in list(self._listeners.get(payload.name, [])):
            try:
                if callback(payload) is True:
                    vetoed = True
            except Exception:
                logger.exception(f"Listener {callback!r} failed handling {payload.name.value}")
        return vetoed
