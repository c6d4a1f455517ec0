"""The scheduler: polling loop plus the client API.

Each cycle acquires the triggers due within ``sleep_time`` (plus
``time_window`` of slack), fires them, runs each firing through a
JobRunShell and sleeps for the rest of the cycle. The sleep waits on the
stop event, so ``shutdown()`` ends it at once. Firings cut short this way,
or not yet started, are released to the job store instead of running early.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from quartzpy.calendars import Calendar
from quartzpy.config import settings
from quartzpy.core.errors import SchedulerError, ScheduleValidationError
from quartzpy.core.job import JobDetail, JobFactory, SimpleJobFactory
from quartzpy.core.key import Key
from quartzpy.scheduler.events import EventDispatcher, SchedulerEvent
from quartzpy.scheduler.run_shell import JobRunShell
from quartzpy.store.job_store import JobStore, SchedulerSignaler
from quartzpy.triggers import SimpleTrigger, Trigger, TriggerState

logger = logging.getLogger(__name__)

MANUAL_TRIGGERS_GROUP = "MANUAL_TRIGGER"


class Scheduler(SchedulerSignaler):
    """Runs jobs when their triggers fire.

    Example:
        scheduler = Scheduler()

        @scheduler.job_factory.register("hello")
        def hello(context):
            print("hello", context.merged_job_data)

        job = JobBuilder.new_job("hello").with_identity("greeter").build()
        trigger = (
            TriggerBuilder.new_trigger()
            .with_schedule(SimpleScheduleBuilder.repeat_secondly_forever(10))
            .build()
        )
        scheduler.schedule_job(trigger, job)
        scheduler.start()

    Args:
        store: Job store. Defaults to the JSON file at ``settings.store_path``,
            or to an in-memory store when no path is configured.
        job_factory: Resolves job details to runnable jobs.
        sleep_time: Seconds per loop cycle.
        max_count: Maximum triggers acquired per cycle.
        time_window: Seconds of acquisition look-ahead beyond the cycle.
        max_fire_wait: Longest wait for a trigger's scheduled fire time.
        clock: Callable returning the current aware time.
        name: Scheduler name, used for the loop thread.
    """

    def __init__(
        self,
        store: JobStore | None = None,
        job_factory: JobFactory | None = None,
        sleep_time: float | None = None,
        max_count: int | None = None,
        time_window: float | None = None,
        max_fire_wait: float | None = None,
        clock: Callable[[], datetime] | None = None,
        name: str = "QuartzScheduler",
    ) -> None:
        self.store = store or JobStore.from_settings(clock=clock)
        self.job_factory = job_factory or SimpleJobFactory()
        self.events = EventDispatcher()
        self.name = name

        self.sleep_time = settings.sleep_time if sleep_time is None else sleep_time
        self.max_count = settings.max_count if max_count is None else max_count
        self.time_window = settings.time_window if time_window is None else time_window
        self.max_fire_wait = settings.max_fire_wait if max_fire_wait is None else max_fire_wait
        self._clock = clock or self.store.now

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._started = False
        self._shutdown = False

        self.store.initialize(self)

    # -- clock and signals ------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early if the scheduler shuts down."""
        self._stop_event.wait(seconds)

    def notify_trigger_misfired(self, trigger: Trigger) -> None:
        logger.info(f"Trigger {trigger.key} misfired")
        self.events.dispatch(SchedulerEvent.TRIGGER_MISFIRED, trigger=trigger)

    def notify_trigger_finalized(self, trigger: Trigger) -> None:
        self.events.dispatch(SchedulerEvent.TRIGGER_FINALIZED, trigger=trigger)

    # -- lifecycle --------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def _check_not_shutdown(self) -> None:
        if self._shutdown:
            raise SchedulerError("The scheduler has been shutdown.")

    def start(self) -> None:
        """Start the loop in a background thread."""
        if self._shutdown:
            raise SchedulerError("The scheduler cannot be restarted after shutdown() has been called.")
        if self._started:
            return

        self._prepare()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"Scheduler {self.name} started")
        self.events.dispatch(SchedulerEvent.SCHEDULER_STARTED)

    def run(self) -> None:
        """Run the loop in the calling thread until ``shutdown()``."""
        if self._shutdown:
            raise SchedulerError("The scheduler cannot be restarted after shutdown() has been called.")
        if not self._started:
            self._prepare()
            logger.info(f"Scheduler {self.name} running in the foreground")
            self.events.dispatch(SchedulerEvent.SCHEDULER_STARTED)
        self._loop()

    def _prepare(self) -> None:
        self.events.dispatch(SchedulerEvent.SCHEDULER_STARTING)
        self.store.scheduler_started()
        self._started = True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            cycle_start = time.monotonic()
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("Error in scheduler loop")
                self.events.dispatch(SchedulerEvent.SCHEDULER_ERROR, message=str(e), exception=e)

            remaining = self.sleep_time - (time.monotonic() - cycle_start)
            if remaining > 0:
                self._stop_event.wait(remaining)
        logger.debug(f"Scheduler {self.name} loop stopped")

    def run_cycle(self) -> int:
        """Acquire, fire and execute the triggers due in this cycle.

        Once the scheduler is shut down, firings of the cycle that have not
        started are released back to the job store.

        Returns:
            Number of firings executed.
        """
        no_later_than = self.now() + timedelta(seconds=self.sleep_time)
        acquired = self.store.acquire_next_triggers(no_later_than, self.max_count, self.time_window)
        if not acquired:
            return 0

        fired = self.store.triggers_fired(acquired, no_later_than)
        executed = 0
        for index, record in enumerate(fired):
            if self._shutdown:
                for pending in reversed(fired[index:]):
                    self.store.release_fired_trigger(pending)
                break
            try:
                if JobRunShell(self, record).run() is not None:
                    executed += 1
            except Exception as e:
                logger.exception(f"Error running job of trigger {record.trigger_key}")
                self.events.dispatch(
                    SchedulerEvent.SCHEDULER_ERROR,
                    message=str(e),
                    exception=e,
                    trigger=record.trigger,
                )
        return executed

    def shutdown(self, wait: bool = True) -> None:
        """Stop the loop.

        Args:
            wait: Block until the loop thread finished its current cycle.
        """
        if self._shutdown:
            return
        self._shutdown = True
        self._stop_event.set()
        if wait and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._started = False
        logger.info(f"Scheduler {self.name} shutdown")
        self.events.dispatch(SchedulerEvent.SCHEDULER_SHUTDOWN)

    # -- scheduling -------------------------------------------------------

    def _prepare_trigger(self, trigger: Trigger, job_detail: JobDetail | None) -> datetime:
        """Validate a trigger and compute its first fire time.

        Raises:
            ScheduleValidationError: If the trigger is invalid or never fires.
        """
        if job_detail is not None:
            if trigger.job_key is None:
                trigger.job_key = job_detail.key
            elif trigger.job_key != job_detail.key:
                raise ScheduleValidationError("Trigger does not reference given job!")

        trigger.validate()

        calendar = None
        if trigger.calendar_name:
            calendar = self.store.retrieve_calendar(trigger.calendar_name)
            if calendar is None:
                raise ScheduleValidationError(f"Calendar not found: {trigger.calendar_name}")

        first_fire_time = trigger.compute_first_fire_time(calendar)
        if first_fire_time is None:
            raise ScheduleValidationError(
                f"Based on configured schedule, the given trigger '{trigger.key}' will never fire."
            )
        return first_fire_time

    def schedule_job(self, trigger: Trigger, job_detail: JobDetail | None = None) -> datetime:
        """Schedule a trigger, storing its job too when given.

        Args:
            trigger: Trigger to schedule. Its job key is filled in from
                ``job_detail`` when missing.
            job_detail: New job to store with the trigger.

        Returns:
            The trigger's first fire time.

        Raises:
            ScheduleValidationError: If the trigger is invalid or never fires.
            ObjectAlreadyExistsError: If the job or trigger already exists.
            JobPersistenceError: If no job is given and the trigger's job does not exist.
        """
        self._check_not_shutdown()
        first_fire_time = self._prepare_trigger(trigger, job_detail)

        if job_detail is not None:
            self.store.store_job_and_trigger(job_detail, trigger)
            self.events.dispatch(SchedulerEvent.JOB_ADDED, job_detail=job_detail)
        else:
            self.store.store_trigger(trigger)

        logger.info(f"Scheduled trigger {trigger.key} for job {trigger.job_key}, first fire at {first_fire_time}")
        self.events.dispatch(SchedulerEvent.JOB_SCHEDULED, trigger=trigger)
        return first_fire_time

    def schedule_jobs(
        self,
        jobs_and_triggers: Iterable[tuple[JobDetail, list[Trigger]]],
        replace: bool = False,
    ) -> None:
        """Schedule several jobs with their triggers at once."""
        self._check_not_shutdown()
        prepared = []
        for job_detail, triggers in jobs_and_triggers:
            for trigger in triggers:
                self._prepare_trigger(trigger, job_detail)
            prepared.append((job_detail, list(triggers)))

        self.store.store_jobs_and_triggers(prepared, replace)
        for job_detail, triggers in prepared:
            self.events.dispatch(SchedulerEvent.JOB_ADDED, job_detail=job_detail)
            for trigger in triggers:
                self.events.dispatch(SchedulerEvent.JOB_SCHEDULED, trigger=trigger)

    def add_job(
        self,
        job_detail: JobDetail,
        replace: bool = False,
        store_non_durable_while_awaiting_scheduling: bool = False,
    ) -> None:
        """Store a job without a trigger.

        Raises:
            SchedulerError: If the job is not durable and
                ``store_non_durable_while_awaiting_scheduling`` is False.
        """
        self._check_not_shutdown()
        if not job_detail.durable and not store_non_durable_while_awaiting_scheduling:
            raise SchedulerError("Jobs added with no trigger must be durable.")
        self.store.store_job(job_detail, replace)
        self.events.dispatch(SchedulerEvent.JOB_ADDED, job_detail=job_detail)

    def delete_job(self, job_key: Key) -> bool:
        """Delete a job and unschedule all of its triggers.

        Returns:
            True if the job was found and deleted.
        """
        self._check_not_shutdown()
        triggers = self.store.get_triggers_for_job(job_key)
        deleted = self.store.remove_job(job_key)
        for trigger in triggers:
            self.events.dispatch(SchedulerEvent.JOB_UNSCHEDULED, trigger_key=trigger.key)
        if deleted:
            self.events.dispatch(SchedulerEvent.JOB_DELETED, job_key=job_key)
        return deleted

    def delete_jobs(self, job_keys: Iterable[Key]) -> bool:
        """Delete several jobs.

        Returns:
            True only if every job was found.
        """
        all_found = True
        for job_key in list(job_keys):
            all_found = self.delete_job(job_key) and all_found
        return all_found

    def unschedule_job(self, trigger_key: Key) -> bool:
        """Remove a trigger (and its job, if non-durable and now unused)."""
        self._check_not_shutdown()
        removed = self.store.remove_trigger(trigger_key)
        if removed:
            self.events.dispatch(SchedulerEvent.JOB_UNSCHEDULED, trigger_key=trigger_key)
        return removed

    def unschedule_jobs(self, trigger_keys: Iterable[Key]) -> bool:
        all_found = True
        for trigger_key in list(trigger_keys):
            all_found = self.unschedule_job(trigger_key) and all_found
        return all_found

    def reschedule_job(self, trigger_key: Key, new_trigger: Trigger) -> datetime | None:
        """Replace a trigger with a new one for the same job.

        Returns:
            The new trigger's first fire time, or None if no trigger
            exists under ``trigger_key``.
        """
        self._check_not_shutdown()
        old = self.store.retrieve_trigger(trigger_key)
        if old is None:
            return None

        new_trigger.job_key = old.job_key
        first_fire_time = self._prepare_trigger(new_trigger, None)
        if not self.store.replace_trigger(trigger_key, new_trigger):
            return None

        self.events.dispatch(SchedulerEvent.JOB_UNSCHEDULED, trigger_key=trigger_key)
        self.events.dispatch(SchedulerEvent.JOB_SCHEDULED, trigger=new_trigger)
        return first_fire_time

    def trigger_job(self, job_key: Key, data: dict[str, Any] | None = None) -> Trigger:
        """Fire a stored job now, through a one-shot trigger.

        Args:
            job_key: Job to fire.
            data: Trigger data overlaid on the job's data.

        Returns:
            The one-shot trigger.
        """
        self._check_not_shutdown()
        trigger = SimpleTrigger(
            key=Key(Key.create_unique_name(MANUAL_TRIGGERS_GROUP), MANUAL_TRIGGERS_GROUP),
            job_key=job_key,
            start_time=self.now(),
            job_data=dict(data or {}),
        )
        trigger.compute_first_fire_time()
        self.store.store_trigger(trigger)
        logger.info(f"Triggered job {job_key} manually")
        self.events.dispatch(SchedulerEvent.JOB_SCHEDULED, trigger=trigger)
        return trigger

    # -- pause and resume -------------------------------------------------

    def pause_trigger(self, trigger_key: Key) -> None:
        self._check_not_shutdown()
        self.store.pause_trigger(trigger_key)
        self.events.dispatch(SchedulerEvent.TRIGGER_PAUSED, trigger_key=trigger_key)

    def pause_job(self, job_key: Key) -> None:
        self._check_not_shutdown()
        self.store.pause_job(job_key)
        self.events.dispatch(SchedulerEvent.JOB_PAUSED, job_key=job_key)

    def pause_trigger_group(self, group: str) -> None:
        self._check_not_shutdown()
        self.store.pause_trigger_group(group)
        self.events.dispatch(SchedulerEvent.TRIGGERS_PAUSED, group=group)

    def pause_all(self) -> None:
        self._check_not_shutdown()
        self.store.pause_all()
        self.events.dispatch(SchedulerEvent.TRIGGERS_PAUSED, group=None)

    def resume_trigger(self, trigger_key: Key) -> None:
        self._check_not_shutdown()
        self.store.resume_trigger(trigger_key)
        self.events.dispatch(SchedulerEvent.TRIGGER_RESUMED, trigger_key=trigger_key)

    def resume_job(self, job_key: Key) -> None:
        self._check_not_shutdown()
        self.store.resume_job(job_key)
        self.events.dispatch(SchedulerEvent.JOB_RESUMED, job_key=job_key)

    def resume_trigger_group(self, group: str) -> None:
        self._check_not_shutdown()
        self.store.resume_trigger_group(group)
        self.events.dispatch(SchedulerEvent.TRIGGERS_RESUMED, group=group)

    def resume_all(self) -> None:
        self._check_not_shutdown()
        self.store.resume_all()
        self.events.dispatch(SchedulerEvent.TRIGGERS_RESUMED, group=None)

    def get_paused_trigger_groups(self) -> set[str]:
        return self.store.get_paused_trigger_groups()

    # -- lookups ----------------------------------------------------------

    def get_job_group_names(self) -> list[str]:
        return self.store.get_job_group_names()

    def get_trigger_group_names(self) -> list[str]:
        return self.store.get_trigger_group_names()

    def get_job_keys(self, group: str | None = None) -> list[Key]:
        return self.store.get_job_keys(group)

    def get_trigger_keys(self, group: str | None = None) -> list[Key]:
        return self.store.get_trigger_keys(group)

    def get_triggers_of_job(self, job_key: Key) -> list[Trigger]:
        return self.store.get_triggers_for_job(job_key)

    def get_job_detail(self, job_key: Key) -> JobDetail | None:
        return self.store.retrieve_job(job_key)

    def get_trigger(self, trigger_key: Key) -> Trigger | None:
        return self.store.retrieve_trigger(trigger_key)

    def get_trigger_state(self, trigger_key: Key) -> TriggerState:
        return self.store.get_trigger_state(trigger_key)

    def reset_trigger_from_error_state(self, trigger_key: Key) -> None:
        self._check_not_shutdown()
        self.store.reset_trigger_from_error_state(trigger_key)

    def check_job_exists(self, job_key: Key) -> bool:
        return self.store.check_job_exists(job_key)

    def check_trigger_exists(self, trigger_key: Key) -> bool:
        return self.store.check_trigger_exists(trigger_key)

    # -- calendars --------------------------------------------------------

    def add_calendar(
        self,
        name: str,
        calendar: Calendar,
        replace: bool = False,
        update_triggers: bool = False,
    ) -> None:
        self._check_not_shutdown()
        self.store.store_calendar(name, calendar, replace, update_triggers)

    def delete_calendar(self, name: str) -> bool:
        self._check_not_shutdown()
        return self.store.remove_calendar(name)

    def get_calendar(self, name: str) -> Calendar | None:
        return self.store.retrieve_calendar(name)

    def get_calendar_names(self) -> list[str]:
        return self.store.get_calendar_names()

    def clear(self) -> None:
        """Delete all jobs, triggers and calendars."""
        self._check_not_shutdown()
        self.store.clear_all_scheduling_data()
        self.events.dispatch(SchedulerEvent.SCHEDULING_DATA_CLEARED)
