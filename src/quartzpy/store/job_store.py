"""Job store: the persisted universe of jobs, triggers and calendars.

Every mutating operation runs inside a named lock of the storage backend
and a single storage transaction. Read-only lookups take no named lock.

The firing protocol used by the scheduler loop is:

1. ``acquire_next_triggers`` reserves due WAITING triggers (ACQUIRED).
2. ``triggers_fired`` advances each still-ACQUIRED trigger and records one
   FiredTrigger per firing.
3. ``triggered_job_complete`` applies the execution outcome and deletes
   the FiredTrigger record.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator

from quartzpy.calendars import Calendar
from quartzpy.config import settings
from quartzpy.core.context import CompletedExecutionInstruction
from quartzpy.core.dates import utc_now
from quartzpy.core.errors import JobPersistenceError, ObjectAlreadyExistsError
from quartzpy.core.job import JobDetail
from quartzpy.core.key import Key
from quartzpy.store.records import ALL_GROUPS_PAUSED, StoreData
from quartzpy.store.storage import (
    LOCK_ALL_GROUPS_PAUSED,
    LOCK_TRIGGER_ACCESS,
    JsonFileStorage,
    MemoryStorage,
    Storage,
)
from quartzpy.triggers import (
    MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY,
    FiredTrigger,
    Trigger,
    TriggerState,
)

logger = logging.getLogger(__name__)

_PAUSABLE_STATES = (TriggerState.WAITING, TriggerState.ACQUIRED)
_PAUSED_STATES = (TriggerState.PAUSED, TriggerState.PAUSED_BLOCKED)


class SchedulerSignaler:
    """Receives notifications the store raises while it works.

    The default implementation ignores them. The scheduler installs one
    that turns them into listener events.
    """

    def notify_trigger_misfired(self, trigger: Trigger) -> None:
        """A trigger's misfire instruction was applied."""

    def notify_trigger_finalized(self, trigger: Trigger) -> None:
        """A trigger will never fire again."""


class JobStore:
    """Stores jobs, triggers, calendars, pause markers and fired records.

    Example:
        store = JobStore(storage=JsonFileStorage("store.json"))
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(utc_now() + timedelta(seconds=5), 10, 30)
        fired = store.triggers_fired(acquired)

    Args:
        storage: Storage backend, in-memory by default.
        misfire_threshold: Seconds a fire time may lag before it misfired.
        clock: Callable returning the current aware time.
    """

    def __init__(
        self,
        storage: Storage | None = None,
        misfire_threshold: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._storage = storage or MemoryStorage()
        self.misfire_threshold = (
            settings.misfire_threshold if misfire_threshold is None else misfire_threshold
        )
        self._clock = clock or utc_now
        self.signaler = SchedulerSignaler()
        self._pending = threading.local()

    @classmethod
    def from_settings(cls, clock: Callable[[], datetime] | None = None) -> "JobStore":
        """Job store kept in the JSON file at ``settings.store_path``, in memory when it is unset."""
        if settings.store_path is None:
            return cls(clock=clock)
        logger.debug(f"Using JSON job store at {settings.store_path}")
        return cls(storage=JsonFileStorage(settings.store_path), clock=clock)

    @property
    def storage(self) -> Storage:
        return self._storage

    def now(self) -> datetime:
        return self._clock()

    def initialize(self, signaler: SchedulerSignaler) -> None:
        self.signaler = signaler

    def _misfire_time(self, now: datetime) -> datetime:
        return now - timedelta(seconds=max(self.misfire_threshold, 0))

    @contextmanager
    def _deferred_signals(self) -> Iterator[None]:
        """Collect signaler notifications and deliver them on a clean exit.

        Enter it before the named lock and the transaction: notifications
        are delivered after both are released, and dropped if the
        transaction raised.
        """
        outer = getattr(self._pending, "signals", None)
        pending: list[tuple[Callable[[Trigger], None], Trigger]] = []
        self._pending.signals = pending
        try:
            yield
        finally:
            self._pending.signals = outer
        for notify, trigger in pending:
            notify(trigger)

    def _signal(self, notify: Callable[[Trigger], None], trigger: Trigger) -> None:
        snapshot = trigger.model_copy(deep=True)
        pending = getattr(self._pending, "signals", None)
        if pending is None:
            notify(snapshot)
        else:
            pending.append((notify, snapshot))

    def _signal_misfired(self, trigger: Trigger) -> None:
        self._signal(self.signaler.notify_trigger_misfired, trigger)

    def _signal_finalized(self, trigger: Trigger) -> None:
        self._signal(self.signaler.notify_trigger_finalized, trigger)

    # -- lifecycle --------------------------------------------------------

    def scheduler_started(self) -> None:
        """Recover from an unclean shutdown.

        Triggers left ACQUIRED or BLOCKED go back to WAITING (PAUSED when
        they were PAUSED_BLOCKED) and orphaned fired records are dropped.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            recovered = 0
            for trigger in data.triggers.values():
                if trigger.state in (TriggerState.ACQUIRED, TriggerState.BLOCKED):
                    trigger.state = TriggerState.WAITING
                    recovered += 1
                elif trigger.state == TriggerState.PAUSED_BLOCKED:
                    trigger.state = TriggerState.PAUSED
                    recovered += 1
            orphaned = len(data.fired_triggers)
            data.fired_triggers.clear()
        if recovered or orphaned:
            logger.info(f"Recovered {recovered} triggers and dropped {orphaned} fired trigger records")

    def clear_all_scheduling_data(self) -> None:
        """Delete every job, trigger, calendar, pause marker and fired record."""
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            data.jobs.clear()
            data.triggers.clear()
            data.calendars.clear()
            data.fired_triggers.clear()
            data.paused_trigger_groups.clear()
        logger.info("Cleared all scheduling data")

    # -- jobs and triggers ------------------------------------------------

    def store_job_and_trigger(self, job: JobDetail, trigger: Trigger) -> None:
        """Store a new job and its first trigger.

        Raises:
            ObjectAlreadyExistsError: If the job or the trigger already exists.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._store_job(data, job, False)
            self._store_trigger(data, trigger, False)

    def store_job(self, job: JobDetail, replace_existing: bool = False) -> None:
        """Store a job.

        Raises:
            ObjectAlreadyExistsError: If the job exists and ``replace_existing`` is False.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._store_job(data, job, replace_existing)

    def store_jobs_and_triggers(
        self,
        jobs_and_triggers: Iterable[tuple[JobDetail, list[Trigger]]],
        replace: bool = False,
    ) -> None:
        """Store several jobs with their triggers in one transaction.

        Nothing is stored when any job or trigger already exists and
        ``replace`` is False.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            for job, triggers in jobs_and_triggers:
                self._store_job(data, job, replace)
                for trigger in triggers:
                    self._store_trigger(data, trigger, replace)

    def store_trigger(self, trigger: Trigger, replace_existing: bool = False) -> None:
        """Store a trigger for an existing job.

        Raises:
            ObjectAlreadyExistsError: If the trigger exists and ``replace_existing`` is False.
            JobPersistenceError: If the referenced job does not exist.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._store_trigger(data, trigger, replace_existing)

    def _store_job(self, data: StoreData, job: JobDetail, replace_existing: bool) -> None:
        key = str(job.key)
        if key in data.jobs and not replace_existing:
            raise ObjectAlreadyExistsError("job", job.key)
        data.jobs[key] = job.model_copy(deep=True)
        logger.debug(f"Stored job {key}")

    def _store_trigger(
        self,
        data: StoreData,
        trigger: Trigger,
        replace_existing: bool,
        state: TriggerState = TriggerState.WAITING,
    ) -> None:
        key = str(trigger.key)
        if key in data.triggers and not replace_existing:
            raise ObjectAlreadyExistsError("trigger", trigger.key)
        if trigger.job_key is None or str(trigger.job_key) not in data.jobs:
            raise JobPersistenceError(
                f"The job ({trigger.job_key}) referenced by the trigger does not exist."
            )

        if state in _PAUSABLE_STATES and self._is_group_paused(data, trigger.key.group):
            state = TriggerState.PAUSED

        stored = trigger.model_copy(deep=True)
        stored.state = state
        data.triggers[key] = stored
        logger.debug(f"Stored trigger {key} in state {state.value}")

    def _is_group_paused(self, data: StoreData, group: str) -> bool:
        """Whether triggers stored into ``group`` start paused.

        While everything is paused, the group gets its own marker so that
        resuming all groups finds it.
        """
        if group in data.paused_trigger_groups:
            return True
        if ALL_GROUPS_PAUSED in data.paused_trigger_groups:
            data.paused_trigger_groups.append(group)
            return True
        return False

    def remove_job(self, job_key: Key) -> bool:
        """Remove a job and all of its triggers.

        Returns:
            True if the job existed.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            return self._remove_job(data, job_key)

    def remove_jobs(self, job_keys: Iterable[Key]) -> bool:
        """Remove several jobs.

        Returns:
            True only if every job existed.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            all_found = True
            for job_key in job_keys:
                all_found = self._remove_job(data, job_key) and all_found
            return all_found

    def _remove_job(self, data: StoreData, job_key: Key) -> bool:
        for trigger_key in [k for k, t in data.triggers.items() if t.job_key == job_key]:
            del data.triggers[trigger_key]
        found = data.jobs.pop(str(job_key), None) is not None
        if found:
            logger.info(f"Removed job {job_key}")
        return found

    def remove_trigger(self, trigger_key: Key) -> bool:
        """Remove a trigger, and its job if it is non-durable and now orphaned.

        Returns:
            True if the trigger existed.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            return self._remove_trigger(data, trigger_key)

    def remove_triggers(self, trigger_keys: Iterable[Key]) -> bool:
        """Remove several triggers.

        Returns:
            True only if every trigger existed.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            all_found = True
            for trigger_key in trigger_keys:
                all_found = self._remove_trigger(data, trigger_key) and all_found
            return all_found

    def _remove_trigger(self, data: StoreData, trigger_key: Key, remove_orphaned_job: bool = True) -> bool:
        trigger = data.triggers.pop(str(trigger_key), None)
        if trigger is None:
            return False

        if remove_orphaned_job and trigger.job_key is not None:
            job = data.jobs.get(str(trigger.job_key))
            still_used = any(t.job_key == trigger.job_key for t in data.triggers.values())
            if job is not None and not job.durable and not still_used:
                del data.jobs[str(trigger.job_key)]
                logger.info(f"Removed non-durable job {trigger.job_key} with its last trigger")
        return True

    def replace_trigger(self, trigger_key: Key, new_trigger: Trigger) -> bool:
        """Swap a trigger for a new one firing the same job.

        Returns:
            False if no trigger exists under ``trigger_key``.

        Raises:
            JobPersistenceError: If the new trigger fires a different job.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            old = data.triggers.get(str(trigger_key))
            if old is None:
                return False
            if new_trigger.job_key != old.job_key:
                raise JobPersistenceError("New trigger is not related to the same job as the old trigger.")
            self._remove_trigger(data, trigger_key, remove_orphaned_job=False)
            self._store_trigger(data, new_trigger, False)
            return True

    def retrieve_job(self, job_key: Key) -> JobDetail | None:
        return self._storage.read().jobs.get(str(job_key))

    def retrieve_trigger(self, trigger_key: Key) -> Trigger | None:
        return self._storage.read().triggers.get(str(trigger_key))

    def check_job_exists(self, job_key: Key) -> bool:
        return str(job_key) in self._storage.read().jobs

    def check_trigger_exists(self, trigger_key: Key) -> bool:
        return str(trigger_key) in self._storage.read().triggers

    def get_triggers_for_job(self, job_key: Key) -> list[Trigger]:
        data = self._storage.read()
        return [t for t in data.triggers.values() if t.job_key == job_key]

    def get_number_of_jobs(self) -> int:
        return len(self._storage.read().jobs)

    def get_number_of_triggers(self) -> int:
        return len(self._storage.read().triggers)

    def get_number_of_calendars(self) -> int:
        return len(self._storage.read().calendars)

    def get_job_keys(self, group: str | None = None) -> list[Key]:
        data = self._storage.read()
        return [j.key for j in data.jobs.values() if group is None or j.key.group == group]

    def get_trigger_keys(self, group: str | None = None) -> list[Key]:
        data = self._storage.read()
        return [t.key for t in data.triggers.values() if group is None or t.key.group == group]

    def get_job_group_names(self) -> list[str]:
        return sorted({j.key.group for j in self._storage.read().jobs.values()})

    def get_trigger_group_names(self) -> list[str]:
        return sorted({t.key.group for t in self._storage.read().triggers.values()})

    def get_trigger_state(self, trigger_key: Key) -> TriggerState:
        """Current state of a trigger.

        Raises:
            JobPersistenceError: If the trigger does not exist.
        """
        trigger = self.retrieve_trigger(trigger_key)
        if trigger is None:
            raise JobPersistenceError(f"Trigger '{trigger_key}' does not exist")
        return trigger.state

    def get_paused_trigger_groups(self) -> set[str]:
        """Paused group markers, including the all-groups sentinel while everything is paused."""
        return set(self._storage.read().paused_trigger_groups)

    def get_fired_triggers(self) -> list[FiredTrigger]:
        return list(self._storage.read().fired_triggers.values())

    def reset_trigger_from_error_state(self, trigger_key: Key) -> None:
        """Put an ERROR trigger back into service.

        The trigger becomes WAITING, or PAUSED if its group is paused.
        Triggers in any other state are left alone.

        Raises:
            JobPersistenceError: If the trigger does not exist.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            trigger = data.triggers.get(str(trigger_key))
            if trigger is None:
                raise JobPersistenceError(f"Trigger '{trigger_key}' does not exist")
            if trigger.state != TriggerState.ERROR:
                return
            if self._is_group_paused(data, trigger_key.group):
                trigger.state = TriggerState.PAUSED
            else:
                trigger.state = TriggerState.WAITING
            trigger.error_message = None
        logger.info(f"Reset trigger {trigger_key} from error state")

    # -- calendars --------------------------------------------------------

    def store_calendar(
        self,
        name: str,
        calendar: Calendar,
        replace_existing: bool = False,
        update_triggers: bool = False,
    ) -> None:
        """Store a calendar under ``name``.

        Args:
            name: Calendar name referenced by triggers.
            calendar: The calendar.
            replace_existing: Overwrite an existing calendar.
            update_triggers: Recompute the next fire time of triggers using
                the replaced calendar.

        Raises:
            ObjectAlreadyExistsError: If the name exists and ``replace_existing`` is False.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            exists = name in data.calendars
            if exists and not replace_existing:
                raise ObjectAlreadyExistsError("calendar", name)
            data.calendars[name] = calendar.model_copy(deep=True)

            if exists and update_triggers:
                now = self.now()
                for trigger in list(data.triggers.values()):
                    if trigger.calendar_name != name:
                        continue
                    trigger.update_with_new_calendar(calendar, self.misfire_threshold, now)
                    if trigger.state in _PAUSABLE_STATES:
                        self._store_trigger(data, trigger, True)
        logger.info(f"Stored calendar {name}")

    def remove_calendar(self, name: str) -> bool:
        """Remove a calendar no trigger references.

        Returns:
            True if the calendar existed.

        Raises:
            JobPersistenceError: If a trigger still references the calendar.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            if any(t.calendar_name == name for t in data.triggers.values()):
                raise JobPersistenceError(f"Calendar '{name}' cannot be removed while a trigger references it")
            return data.calendars.pop(name, None) is not None

    def retrieve_calendar(self, name: str) -> Calendar | None:
        return self._storage.read().calendars.get(name)

    def get_calendar_names(self) -> list[str]:
        return list(self._storage.read().calendars)

    # -- pause and resume -------------------------------------------------

    def pause_trigger(self, trigger_key: Key) -> None:
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._pause_trigger(data, trigger_key)

    def _pause_trigger(self, data: StoreData, trigger_key: Key) -> None:
        trigger = data.triggers.get(str(trigger_key))
        if trigger is None:
            return
        if trigger.state in _PAUSABLE_STATES:
            trigger.state = TriggerState.PAUSED
        elif trigger.state == TriggerState.BLOCKED:
            trigger.state = TriggerState.PAUSED_BLOCKED
        else:
            return
        logger.debug(f"Paused trigger {trigger_key}")

    def pause_trigger_group(self, group: str) -> None:
        """Pause every trigger of a group and keep new ones paused too."""
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._pause_trigger_group(data, group)

    def _pause_trigger_group(self, data: StoreData, group: str) -> None:
        for trigger in list(data.triggers.values()):
            if trigger.key.group == group:
                self._pause_trigger(data, trigger.key)
        if group not in data.paused_trigger_groups:
            data.paused_trigger_groups.append(group)
        logger.info(f"Paused trigger group {group}")

    def pause_job(self, job_key: Key) -> None:
        """Pause every trigger of a job."""
        with self._storage.lock(LOCK_ALL_GROUPS_PAUSED), self._storage.lock(LOCK_TRIGGER_ACCESS):
            with self._storage.transaction() as data:
                for trigger in list(data.triggers.values()):
                    if trigger.job_key == job_key:
                        self._pause_trigger(data, trigger.key)
        logger.info(f"Paused job {job_key}")

    def pause_all(self) -> None:
        """Pause every trigger group, including groups created later."""
        with self._storage.lock(LOCK_ALL_GROUPS_PAUSED), self._storage.lock(LOCK_TRIGGER_ACCESS):
            with self._storage.transaction() as data:
                for group in {t.key.group for t in data.triggers.values()}:
                    self._pause_trigger_group(data, group)
                if ALL_GROUPS_PAUSED not in data.paused_trigger_groups:
                    data.paused_trigger_groups.append(ALL_GROUPS_PAUSED)
        logger.info("Paused all trigger groups")

    def resume_trigger(self, trigger_key: Key) -> None:
        with self._deferred_signals(), self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._resume_trigger(data, trigger_key, self.now())

    def _resume_trigger(self, data: StoreData, trigger_key: Key, now: datetime) -> None:
        trigger = data.triggers.get(str(trigger_key))
        if trigger is None or trigger.next_fire_time is None:
            return
        if trigger.state not in _PAUSED_STATES:
            return

        state = TriggerState.BLOCKED if trigger.state == TriggerState.PAUSED_BLOCKED else TriggerState.WAITING
        misfired = False
        if trigger.next_fire_time < now:
            misfired = self._apply_misfire(data, trigger, now, state)
        if not misfired:
            trigger.state = state
        logger.debug(f"Resumed trigger {trigger_key} into state {trigger.state.value}")

    def resume_trigger_group(self, group: str) -> None:
        """Resume every paused trigger of a group and drop its pause marker."""
        with self._deferred_signals(), self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            self._resume_trigger_group(data, group, self.now())

    def _resume_trigger_group(self, data: StoreData, group: str, now: datetime) -> None:
        if group in data.paused_trigger_groups:
            data.paused_trigger_groups.remove(group)
        for trigger in list(data.triggers.values()):
            if trigger.key.group == group:
                self._resume_trigger(data, trigger.key, now)
        logger.info(f"Resumed trigger group {group}")

    def resume_job(self, job_key: Key) -> None:
        """Resume every paused trigger of a job."""
        with self._deferred_signals(), self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            now = self.now()
            for trigger in list(data.triggers.values()):
                if trigger.job_key == job_key:
                    self._resume_trigger(data, trigger.key, now)
        logger.info(f"Resumed job {job_key}")

    def resume_all(self) -> None:
        """Resume every trigger group and clear all pause markers."""
        signals = self._deferred_signals()
        with signals, self._storage.lock(LOCK_ALL_GROUPS_PAUSED), self._storage.lock(LOCK_TRIGGER_ACCESS):
            with self._storage.transaction() as data:
                now = self.now()
                groups = {t.key.group for t in data.triggers.values()}
                groups.update(g for g in data.paused_trigger_groups if g != ALL_GROUPS_PAUSED)
                for group in groups:
                    self._resume_trigger_group(data, group, now)
                if ALL_GROUPS_PAUSED in data.paused_trigger_groups:
                    data.paused_trigger_groups.remove(ALL_GROUPS_PAUSED)
        logger.info("Resumed all trigger groups")

    def _apply_misfire(
        self,
        data: StoreData,
        trigger: Trigger,
        now: datetime,
        state: TriggerState = TriggerState.WAITING,
    ) -> bool:
        """Apply the misfire instruction if the trigger is far enough behind.

        Returns:
            True if the trigger was updated and its state set.
        """
        next_fire_time = trigger.next_fire_time
        if (
            next_fire_time is None
            or next_fire_time > self._misfire_time(now)
            or trigger.misfire_instruction == MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY
        ):
            return False

        calendar = data.calendars.get(trigger.calendar_name) if trigger.calendar_name else None
        trigger.update_after_misfire(calendar, now)

        if trigger.next_fire_time is None:
            trigger.state = TriggerState.COMPLETE
            self._signal_misfired(trigger)
            self._signal_finalized(trigger)
        elif trigger.next_fire_time == next_fire_time:
            return False
        else:
            trigger.state = state
            self._signal_misfired(trigger)
        return True

    # -- firing protocol --------------------------------------------------

    def acquire_next_triggers(
        self,
        no_later_than: datetime,
        max_count: int = 1,
        time_window: float = 0,
    ) -> list[Trigger]:
        """Reserve the WAITING triggers that are due next.

        Triggers due between ``now - misfire_threshold`` and
        ``no_later_than + time_window`` come first, ordered by fire time and
        then by descending priority. Remaining capacity goes to misfired
        triggers, ordered the same way. Selected triggers become ACQUIRED.

        Args:
            no_later_than: Latest fire time to acquire.
            max_count: Maximum number of triggers to acquire.
            time_window: Extra seconds added to ``no_later_than``.

        Returns:
            The acquired triggers.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            now = self.now()
            no_earlier_than = self._misfire_time(now)
            window_end = no_later_than + timedelta(seconds=time_window)

            waiting = [
                t for t in data.triggers.values()
                if t.state == TriggerState.WAITING and t.next_fire_time is not None
            ]

            def order(trigger: Trigger):
                return trigger.next_fire_time, -trigger.priority

            acquired = sorted(
                (t for t in waiting if no_earlier_than <= t.next_fire_time <= window_end),
                key=order,
            )[:max_count]
            if len(acquired) < max_count:
                misfired = sorted(
                    (t for t in waiting if t.next_fire_time < no_earlier_than),
                    key=order,
                )
                acquired.extend(misfired[:max_count - len(acquired)])

            for trigger in acquired:
                trigger.state = TriggerState.ACQUIRED
            result = [t.model_copy(deep=True) for t in acquired]

        if result:
            logger.debug(f"Acquired {len(result)} triggers: {', '.join(str(t.key) for t in result)}")
        return result

    def release_acquired_trigger(self, trigger: Trigger) -> None:
        """Return an ACQUIRED trigger to WAITING without firing it."""
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            stored = data.triggers.get(str(trigger.key))
            if stored is not None and stored.state == TriggerState.ACQUIRED:
                stored.state = TriggerState.WAITING

    def release_fired_trigger(self, fired_trigger: FiredTrigger) -> None:
        """Undo a firing whose job was never executed.

        The fired record is deleted and the trigger is rewound to the
        scheduled fire time of the firing, unless it already points at an
        earlier one. A trigger the firing completed becomes WAITING again,
        or PAUSED if its group is paused. Firings of the same trigger may
        be released in any order.
        """
        with self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            data.fired_triggers.pop(fired_trigger.fire_instance_id, None)
            stored = data.triggers.get(str(fired_trigger.trigger_key))
            scheduled = fired_trigger.scheduled_fire_time
            if stored is None or scheduled is None:
                return
            if stored.next_fire_time is not None and stored.next_fire_time <= scheduled:
                return

            stored.next_fire_time = scheduled
            stored.previous_fire_time = fired_trigger.previous_fire_time
            stored.times_triggered = max(fired_trigger.trigger.times_triggered - 1, 0)
            if stored.state == TriggerState.COMPLETE:
                if self._is_group_paused(data, stored.key.group):
                    stored.state = TriggerState.PAUSED
                else:
                    stored.state = TriggerState.WAITING
        logger.info(f"Released firing of trigger {fired_trigger.trigger_key} scheduled for {scheduled}")

    def triggers_fired(
        self,
        triggers: Iterable[Trigger],
        no_later_than: datetime | None = None,
    ) -> list[FiredTrigger]:
        """Fire acquired triggers and record each firing.

        A trigger that was deleted, or is no longer ACQUIRED, is skipped.
        A trigger can fire several times when its successive fire times
        are all at or before ``no_later_than``.

        Args:
            triggers: Triggers returned by ``acquire_next_triggers``.
            no_later_than: Latest fire time to fire, now when None.

        Returns:
            One FiredTrigger per firing.
        """
        results: list[FiredTrigger] = []
        with self._deferred_signals(), self._storage.lock(LOCK_TRIGGER_ACCESS):
            for trigger in triggers:
                with self._storage.transaction() as data:
                    results.extend(self._trigger_fired(data, trigger.key, no_later_than))
        return results

    def _trigger_fired(
        self,
        data: StoreData,
        trigger_key: Key,
        no_later_than: datetime | None,
    ) -> list[FiredTrigger]:
        stored = data.triggers.get(str(trigger_key))
        if stored is None or stored.state != TriggerState.ACQUIRED:
            logger.debug(f"Trigger {trigger_key} is no longer acquired, skipping")
            return []

        calendar = None
        if stored.calendar_name:
            calendar = data.calendars.get(stored.calendar_name)
            if calendar is None:
                logger.warning(f"Calendar '{stored.calendar_name}' of trigger {trigger_key} not found")
                stored.state = TriggerState.ERROR
                stored.error_message = f"Calendar '{stored.calendar_name}' not found"
                return []

        now = self.now()
        no_later_than = no_later_than or now

        if stored.next_fire_time is not None and stored.next_fire_time < self._misfire_time(now):
            if stored.misfire_instruction != MISFIRE_INSTRUCTION_IGNORE_MISFIRE_POLICY:
                missed = stored.next_fire_time
                stored.update_after_misfire(calendar, now)
                if stored.next_fire_time is None:
                    stored.state = TriggerState.COMPLETE
                    self._signal_misfired(stored)
                    self._signal_finalized(stored)
                    logger.debug(f"Trigger {trigger_key} completed by its misfire instruction")
                    return []
                if stored.next_fire_time != missed:
                    self._signal_misfired(stored)

        fired: list[FiredTrigger] = []
        while stored.next_fire_time is not None and stored.next_fire_time <= no_later_than:
            scheduled_fire_time = stored.next_fire_time
            previous_fire_time = stored.previous_fire_time
            stored.triggered(calendar)

            snapshot = stored.model_copy(deep=True)
            snapshot.state = TriggerState.EXECUTING
            fired.append(FiredTrigger(
                fire_time=now,
                scheduled_fire_time=scheduled_fire_time,
                previous_fire_time=previous_fire_time,
                next_fire_time=stored.next_fire_time,
                trigger=snapshot,
            ))

        if stored.next_fire_time is None:
            stored.state = TriggerState.COMPLETE
        else:
            stored.state = TriggerState.WAITING

        for record in fired:
            data.fired_triggers[record.fire_instance_id] = record
        if fired:
            logger.debug(f"Trigger {trigger_key} fired {len(fired)} times, next at {stored.next_fire_time}")
        return [record.model_copy(deep=True) for record in fired]

    def triggered_job_complete(
        self,
        fired_trigger: FiredTrigger,
        job_detail: JobDetail | None,
        instruction: CompletedExecutionInstruction,
    ) -> None:
        """Apply the outcome of a firing and delete its fired record.

        Args:
            fired_trigger: The record returned by ``triggers_fired``.
            job_detail: The executed job, None if it could not be resolved.
            instruction: What to do with the trigger(s).

        Raises:
            JobPersistenceError: If the fired record no longer exists.
        """
        with self._deferred_signals(), self._storage.lock(LOCK_TRIGGER_ACCESS), self._storage.transaction() as data:
            trigger_key = fired_trigger.trigger_key
            job_key = job_detail.key if job_detail is not None else fired_trigger.job_key
            stored = data.triggers.get(str(trigger_key))

            if instruction == CompletedExecutionInstruction.DELETE_TRIGGER:
                # The trigger may have been rescheduled while the job ran
                if fired_trigger.trigger.next_fire_time is not None or (
                    stored is not None and stored.next_fire_time is None
                ):
                    self._remove_trigger(data, trigger_key)

            elif instruction == CompletedExecutionInstruction.SET_TRIGGER_COMPLETE:
                if stored is not None:
                    stored.state = TriggerState.COMPLETE
                    self._signal_finalized(stored)

            elif instruction == CompletedExecutionInstruction.SET_TRIGGER_ERROR:
                if stored is not None:
                    logger.warning(f"Trigger {trigger_key} set to ERROR state: {fired_trigger.error_message}")
                    stored.state = TriggerState.ERROR
                    stored.error_message = fired_trigger.error_message

            elif instruction in (
                CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE,
                CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_ERROR,
            ):
                error = instruction == CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_ERROR
                for trigger in data.triggers.values():
                    if trigger.job_key != job_key:
                        continue
                    if error:
                        trigger.state = TriggerState.ERROR
                        trigger.error_message = fired_trigger.error_message
                    else:
                        trigger.state = TriggerState.COMPLETE
                        self._signal_finalized(trigger)
                if error:
                    logger.warning(f"All triggers of job {job_key} set to ERROR state: {fired_trigger.error_message}")

            if data.fired_triggers.pop(fired_trigger.fire_instance_id, None) is None:
                raise JobPersistenceError(
                    f"Fired trigger record '{fired_trigger.fire_instance_id}' of trigger {trigger_key} does not exist"
                )
