"""Tests for the job store protocol."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME, make_job, make_trigger
from quartzpy.calendars import HolidayCalendar, WeeklyCalendar
from quartzpy.core.context import CompletedExecutionInstruction
from quartzpy.core.errors import JobPersistenceError, ObjectAlreadyExistsError
from quartzpy.core.key import Key
from quartzpy.store.job_store import SchedulerSignaler
from quartzpy.store.records import ALL_GROUPS_PAUSED
from quartzpy.triggers import (
    MISFIRE_INSTRUCTION_FIRE_NOW,
    MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT,
    REPEAT_INDEFINITELY,
    SimpleTrigger,
    TriggerState,
)


class RecordingSignaler(SchedulerSignaler):
    def __init__(self):
        self.misfired = []
        self.finalized = []

    def notify_trigger_misfired(self, trigger):
        self.misfired.append(trigger.key)

    def notify_trigger_finalized(self, trigger):
        self.finalized.append(trigger.key)


class PausingSignaler(SchedulerSignaler):
    """Pauses another trigger through the store whenever a misfire is signalled."""

    def __init__(self, store, other: Key):
        self.store = store
        self.other = other

    def notify_trigger_misfired(self, trigger):
        self.store.pause_trigger(self.other)


class StuckTrigger(SimpleTrigger):
    def update_after_misfire(self, calendar=None, now=None):
        pass


class FailingTrigger(SimpleTrigger):
    def triggered(self, calendar=None):
        raise RuntimeError("disk full")


def fire_one(store, trigger_key: Key, no_later_than=None):
    """Acquire and fire whatever is due, returning the records of ``trigger_key``."""
    now = store.now()
    acquired = store.acquire_next_triggers(no_later_than or now, max_count=10)
    fired = store.triggers_fired(acquired, no_later_than or now)
    return [f for f in fired if f.trigger_key == trigger_key]


class TestStoring:
    """Tests for storing jobs and triggers."""

    def test_store_and_retrieve(self, store):
        """A stored job and trigger can be retrieved."""
        job = make_job(color="blue")
        trigger = make_trigger(job=job)

        store.store_job_and_trigger(job, trigger)

        assert store.retrieve_job(job.key).job_data == {"color": "blue"}
        assert store.retrieve_trigger(trigger.key).state == TriggerState.WAITING
        assert store.get_number_of_jobs() == 1
        assert store.get_number_of_triggers() == 1

    def test_duplicate_job_rejected(self, store):
        """Storing an existing job without replace raises ObjectAlreadyExistsError."""
        store.store_job(make_job())

        with pytest.raises(ObjectAlreadyExistsError) as exc_info:
            store.store_job(make_job())
        assert exc_info.value.key == Key("job")

    def test_replace_job(self, store):
        """replace_existing overwrites the stored job."""
        store.store_job(make_job(version=1))
        store.store_job(make_job(version=2), replace_existing=True)

        assert store.retrieve_job(Key("job")).job_data == {"version": 2}

    def test_duplicate_trigger_rejected(self, store):
        """Storing an existing trigger without replace raises."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger(job=job))

        with pytest.raises(ObjectAlreadyExistsError):
            store.store_trigger(make_trigger(job=job))

    def test_trigger_for_missing_job(self, store):
        """A trigger must reference a stored job."""
        with pytest.raises(JobPersistenceError):
            store.store_trigger(make_trigger())

    def test_failed_batch_stores_nothing(self, store):
        """store_jobs_and_triggers is all or nothing."""
        existing = make_job("existing")
        store.store_job(existing)
        fresh = make_job("fresh")

        with pytest.raises(ObjectAlreadyExistsError):
            store.store_jobs_and_triggers([
                (fresh, [make_trigger("t1", job=fresh)]),
                (existing, []),
            ])

        assert not store.check_job_exists(fresh.key)
        assert not store.check_trigger_exists(Key("t1"))

    def test_stored_copy_is_isolated(self, store):
        """Changing a trigger after storing it does not change the stored record."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)

        trigger.priority = 99

        assert store.retrieve_trigger(trigger.key).priority == 5

    def test_lookups(self, store):
        """Keys and group names can be listed."""
        job = make_job("a", "reports")
        store.store_job(job)
        store.store_trigger(make_trigger("t1", job=job, group="nightly"))
        store.store_trigger(make_trigger("t2", job=job))

        assert store.get_job_keys("reports") == [Key("a", "reports")]
        assert store.get_job_group_names() == ["reports"]
        assert store.get_trigger_group_names() == ["DEFAULT", "nightly"]
        assert store.get_trigger_keys("nightly") == [Key("t1", "nightly")]
        assert len(store.get_triggers_for_job(job.key)) == 2

    def test_unknown_trigger_state(self, store):
        """Asking for the state of an unknown trigger raises."""
        with pytest.raises(JobPersistenceError):
            store.get_trigger_state(Key("missing"))


class TestRemoval:
    """Tests for removing jobs and triggers."""

    def test_removing_last_trigger_removes_non_durable_job(self, store):
        """A non-durable job goes away with its last trigger."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)

        assert store.remove_trigger(trigger.key)

        assert not store.check_trigger_exists(trigger.key)
        assert not store.check_job_exists(job.key)

    def test_durable_job_survives(self, store):
        """A durable job stays after its last trigger is removed."""
        job = make_job(durable=True)
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)

        store.remove_trigger(trigger.key)

        assert store.check_job_exists(job.key)

    def test_job_with_other_triggers_survives(self, store):
        """A job still referenced by another trigger is kept."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger("t1", job=job))
        store.store_trigger(make_trigger("t2", job=job))

        store.remove_trigger(Key("t1"))

        assert store.check_job_exists(job.key)

    def test_remove_job_removes_triggers(self, store):
        """Removing a job removes all of its triggers."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger("t1", job=job))
        store.store_trigger(make_trigger("t2", job=job))

        assert store.remove_job(job.key)

        assert store.get_number_of_triggers() == 0
        assert not store.remove_job(job.key)

    def test_bulk_removal_reports_missing(self, store):
        """Bulk removal returns False when any key is missing."""
        job = make_job(durable=True)
        store.store_job_and_trigger(job, make_trigger("t1", job=job))

        assert not store.remove_triggers([Key("t1"), Key("missing")])
        assert not store.check_trigger_exists(Key("t1"))

    def test_replace_trigger_keeps_job(self, store):
        """Replacing the only trigger of a non-durable job keeps the job."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger("old", job=job))

        assert store.replace_trigger(Key("old"), make_trigger("new", job=job))

        assert store.check_job_exists(job.key)
        assert store.check_trigger_exists(Key("new"))
        assert not store.check_trigger_exists(Key("old"))

    def test_replace_trigger_for_other_job(self, store):
        """A replacement trigger must fire the same job."""
        job = make_job()
        other = make_job("other")
        store.store_job_and_trigger(job, make_trigger("old", job=job))
        store.store_job(other)

        with pytest.raises(JobPersistenceError):
            store.replace_trigger(Key("old"), make_trigger("new", job=other))

    def test_replace_missing_trigger(self, store):
        """Replacing an unknown trigger returns False."""
        assert not store.replace_trigger(Key("missing"), make_trigger())


class TestAcquisition:
    """Tests for acquire_next_triggers()."""

    def test_window(self, store, clock):
        """Only triggers due up to no_later_than plus the time window are acquired."""
        job = make_job()
        store.store_job(job)
        store.store_trigger(make_trigger("soon", job=job, start=BASE_TIME + timedelta(seconds=5)))
        store.store_trigger(make_trigger("later", job=job, start=BASE_TIME + timedelta(seconds=60)))

        acquired = store.acquire_next_triggers(clock.now + timedelta(seconds=5), max_count=10)

        assert [t.key for t in acquired] == [Key("soon")]
        assert store.get_trigger_state(Key("soon")) == TriggerState.ACQUIRED
        assert store.get_trigger_state(Key("later")) == TriggerState.WAITING

        acquired = store.acquire_next_triggers(clock.now + timedelta(seconds=5), 10, time_window=60)
        assert [t.key for t in acquired] == [Key("later")]

    def test_order_by_time_then_priority(self, store, clock):
        """Earlier fire times come first, then higher priority."""
        job = make_job()
        store.store_job(job)
        store.store_trigger(make_trigger("low", job=job, priority=1))
        store.store_trigger(make_trigger("high", job=job, priority=10))
        store.store_trigger(make_trigger("earliest", job=job, start=BASE_TIME - timedelta(seconds=10)))

        acquired = store.acquire_next_triggers(clock.now, max_count=3)

        assert [t.key.name for t in acquired] == ["earliest", "high", "low"]

    def test_max_count(self, store, clock):
        """No more than max_count triggers are acquired."""
        job = make_job()
        store.store_job(job)
        for i in range(5):
            store.store_trigger(make_trigger(f"t{i}", job=job))

        assert len(store.acquire_next_triggers(clock.now, max_count=2)) == 2

    def test_due_triggers_before_misfired(self, store, clock):
        """A due trigger is preferred over a long-overdue one; capacity left goes to the overdue one."""
        job = make_job()
        store.store_job(job)
        store.store_trigger(make_trigger("overdue", job=job, start=BASE_TIME - timedelta(seconds=3600)))
        store.store_trigger(make_trigger("due", job=job))

        first = store.acquire_next_triggers(clock.now, max_count=1)
        assert [t.key.name for t in first] == ["due"]

        store.release_acquired_trigger(first[0])
        both = store.acquire_next_triggers(clock.now, max_count=2)
        assert [t.key.name for t in both] == ["due", "overdue"]

    def test_acquired_not_reacquired(self, store, clock):
        """An ACQUIRED trigger is not handed out twice."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger(job=job))

        assert len(store.acquire_next_triggers(clock.now)) == 1
        assert store.acquire_next_triggers(clock.now) == []

    def test_release(self, store, clock):
        """Releasing an acquired trigger makes it WAITING again."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(clock.now)

        store.release_acquired_trigger(acquired[0])

        assert store.get_trigger_state(trigger.key) == TriggerState.WAITING

    def test_paused_not_acquired(self, store, clock):
        """Paused triggers are never acquired."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        assert store.acquire_next_triggers(clock.now) == []


class TestFiring:
    """Tests for triggers_fired()."""

    def test_fire_one_shot(self, store, clock):
        """Firing a one-shot trigger records the firing and completes the trigger."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)

        fired = fire_one(store, trigger.key)

        assert len(fired) == 1
        assert fired[0].scheduled_fire_time == BASE_TIME
        assert fired[0].next_fire_time is None
        assert fired[0].trigger.state == TriggerState.EXECUTING
        assert fired[0].trigger.times_triggered == 1
        assert store.get_trigger_state(trigger.key) == TriggerState.COMPLETE
        assert [f.fire_instance_id for f in store.get_fired_triggers()] == [fired[0].fire_instance_id]

    def test_repeating_trigger_waits_again(self, store, clock):
        """A repeating trigger returns to WAITING with its next fire time advanced."""
        job = make_job()
        trigger = make_trigger(job=job, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        store.store_job_and_trigger(job, trigger)

        fire_one(store, trigger.key)

        stored = store.retrieve_trigger(trigger.key)
        assert stored.state == TriggerState.WAITING
        assert stored.next_fire_time == BASE_TIME + timedelta(minutes=1)
        assert stored.previous_fire_time == BASE_TIME

    def test_catch_up_firings(self, store, clock):
        """A fast trigger fires once per due time up to no_later_than."""
        job = make_job()
        trigger = make_trigger(job=job, repeat_count=REPEAT_INDEFINITELY, repeat_interval=1)
        store.store_job_and_trigger(job, trigger)

        fired = fire_one(store, trigger.key, clock.now + timedelta(seconds=3))

        assert [f.scheduled_fire_time for f in fired] == [BASE_TIME + timedelta(seconds=i) for i in range(4)]
        assert store.retrieve_trigger(trigger.key).next_fire_time == BASE_TIME + timedelta(seconds=4)

    def test_missing_trigger_is_skipped(self, store, clock):
        """Firing a trigger that was deleted meanwhile yields nothing."""
        job = make_job(durable=True)
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(clock.now)
        store.remove_trigger(trigger.key)

        assert store.triggers_fired(acquired) == []

    def test_non_acquired_trigger_is_skipped(self, store, clock):
        """Firing a trigger that was paused meanwhile yields nothing."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(clock.now)
        store.pause_trigger(trigger.key)

        assert store.triggers_fired(acquired) == []
        assert store.get_trigger_state(trigger.key) == TriggerState.PAUSED

    def test_missing_calendar_puts_trigger_in_error(self, store, clock):
        """A trigger whose calendar vanished is not fired and goes to ERROR."""
        job = make_job()
        store.store_calendar("gone", WeeklyCalendar(excluded_days=[]))
        trigger = make_trigger(job=job, calendar_name="gone")
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(clock.now)
        with store.storage.transaction() as data:
            del data.calendars["gone"]

        assert store.triggers_fired(acquired) == []
        stored = store.retrieve_trigger(trigger.key)
        assert stored.state == TriggerState.ERROR
        assert "gone" in stored.error_message

    def test_misfire_applied_before_firing(self, store, clock):
        """An overdue one-shot trigger fires now and the misfire is signalled."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job = make_job()
        trigger = make_trigger(job=job, start=BASE_TIME - timedelta(hours=1))
        store.store_job_and_trigger(job, trigger)

        fired = fire_one(store, trigger.key)

        assert fired[0].scheduled_fire_time == clock.now
        assert signaler.misfired == [trigger.key]

    def test_misfire_that_completes_trigger(self, store, clock):
        """A misfire leaving no fire time completes the trigger and signals finalization."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job = make_job()
        trigger = make_trigger(
            job=job,
            start=BASE_TIME - timedelta(hours=1),
            misfire_instruction=MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT,
        )
        store.store_job_and_trigger(job, trigger)

        assert fire_one(store, trigger.key) == []

        assert store.get_trigger_state(trigger.key) == TriggerState.COMPLETE
        assert store.get_fired_triggers() == []
        assert signaler.misfired == [trigger.key]
        assert signaler.finalized == [trigger.key]

    def test_signal_listener_can_write_to_store(self, store, clock):
        """A store write made while handling a misfire signal is kept."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger(job=job, start=BASE_TIME - timedelta(hours=1)))
        other = make_trigger("other", job=job, start=BASE_TIME + timedelta(hours=1))
        store.store_trigger(other)
        store.initialize(PausingSignaler(store, other.key))

        fired = fire_one(store, Key("trigger"))

        assert len(fired) == 1
        assert store.get_trigger_state(other.key) == TriggerState.PAUSED

    def test_signals_dropped_when_firing_fails(self, store, clock):
        """No misfire is signalled for a firing whose transaction raised."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job = make_job()
        trigger = FailingTrigger(key=Key("failing"), job_key=job.key, start_time=BASE_TIME - timedelta(hours=1))
        trigger.compute_first_fire_time()
        store.store_job_and_trigger(job, trigger)
        acquired = store.acquire_next_triggers(clock.now)

        with pytest.raises(RuntimeError):
            store.triggers_fired(acquired)

        assert signaler.misfired == []
        assert store.get_trigger_state(trigger.key) == TriggerState.ACQUIRED


class TestReleaseFired:
    """Tests for release_fired_trigger()."""

    def test_one_shot_returns_to_waiting(self, store, clock):
        """A completed one-shot trigger is due again at its scheduled time."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        fired = fire_one(store, trigger.key)[0]

        store.release_fired_trigger(fired)

        stored = store.retrieve_trigger(trigger.key)
        assert stored.state == TriggerState.WAITING
        assert stored.next_fire_time == BASE_TIME
        assert stored.times_triggered == 0
        assert stored.previous_fire_time is None
        assert store.get_fired_triggers() == []
        assert [t.key for t in store.acquire_next_triggers(clock.now)] == [trigger.key]

    def test_catch_up_firings_in_any_order(self, store, clock):
        """Releasing several firings of one trigger rewinds it to the earliest."""
        job = make_job()
        trigger = make_trigger(job=job, repeat_count=REPEAT_INDEFINITELY, repeat_interval=1)
        store.store_job_and_trigger(job, trigger)
        fired = fire_one(store, trigger.key, clock.now + timedelta(seconds=3))

        for record in fired[1:] + fired[:1]:
            store.release_fired_trigger(record)

        stored = store.retrieve_trigger(trigger.key)
        assert stored.next_fire_time == BASE_TIME
        assert stored.times_triggered == 0
        assert store.get_fired_triggers() == []

    def test_paused_group(self, store, clock):
        """A released trigger whose group was paused meanwhile stays PAUSED."""
        job = make_job()
        trigger = make_trigger(job=job, group="reports")
        store.store_job_and_trigger(job, trigger)
        fired = fire_one(store, trigger.key)[0]
        store.pause_trigger_group("reports")

        store.release_fired_trigger(fired)

        assert store.get_trigger_state(trigger.key) == TriggerState.PAUSED
        assert store.retrieve_trigger(trigger.key).next_fire_time == BASE_TIME


class TestCompletion:
    """Tests for triggered_job_complete()."""

    def fired(self, store, **trigger_fields):
        job = make_job()
        trigger = make_trigger(job=job, **trigger_fields)
        store.store_job_and_trigger(job, trigger)
        return job, fire_one(store, trigger.key)[0]

    def test_delete_trigger(self, store):
        """DELETE_TRIGGER removes the trigger and the fired record."""
        job, fired = self.fired(store)

        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.DELETE_TRIGGER)

        assert store.retrieve_trigger(fired.trigger_key) is None
        assert store.get_fired_triggers() == []

    def test_delete_skipped_when_rescheduled(self, store, clock):
        """DELETE_TRIGGER keeps a trigger that got a new fire time while the job ran."""
        job, fired = self.fired(store)
        with store.storage.transaction() as data:
            data.triggers[str(fired.trigger_key)].next_fire_time = clock.now + timedelta(hours=1)

        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.DELETE_TRIGGER)

        assert store.check_trigger_exists(fired.trigger_key)

    def test_set_trigger_error(self, store):
        """SET_TRIGGER_ERROR stores the error message and still removes the record."""
        job, fired = self.fired(store, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        fired.error_message = "boom"

        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.SET_TRIGGER_ERROR)

        stored = store.retrieve_trigger(fired.trigger_key)
        assert stored.state == TriggerState.ERROR
        assert stored.error_message == "boom"
        assert store.get_fired_triggers() == []

    def test_set_all_job_triggers_complete(self, store):
        """SET_ALL_JOB_TRIGGERS_COMPLETE completes every trigger of the job."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job, fired = self.fired(store, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        store.store_trigger(make_trigger("second", job=job, start=BASE_TIME + timedelta(hours=1)))

        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE)

        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.COMPLETE}
        assert len(signaler.finalized) == 2

    def test_set_all_job_triggers_error(self, store):
        """SET_ALL_JOB_TRIGGERS_ERROR puts every trigger of the job in ERROR."""
        job, fired = self.fired(store, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        store.store_trigger(make_trigger("second", job=job, start=BASE_TIME + timedelta(hours=1)))

        store.triggered_job_complete(fired, None, CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_ERROR)

        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.ERROR}

    def test_noop(self, store):
        """NOOP leaves the trigger as firing stored it."""
        job, fired = self.fired(store, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)

        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.NOOP)

        assert store.get_trigger_state(fired.trigger_key) == TriggerState.WAITING
        assert store.get_fired_triggers() == []

    def test_missing_fired_record(self, store):
        """Completing the same firing twice is a persistence error."""
        job, fired = self.fired(store, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        store.triggered_job_complete(fired, job, CompletedExecutionInstruction.NOOP)

        with pytest.raises(JobPersistenceError):
            store.triggered_job_complete(fired, job, CompletedExecutionInstruction.NOOP)


class TestPauseResume:
    """Tests for pausing and resuming."""

    def test_pause_and_resume_trigger(self, store):
        """Pausing and resuming a future trigger round-trips to WAITING."""
        job = make_job()
        trigger = make_trigger(job=job, start=BASE_TIME + timedelta(minutes=5))
        store.store_job_and_trigger(job, trigger)

        store.pause_trigger(trigger.key)
        assert store.get_trigger_state(trigger.key) == TriggerState.PAUSED

        store.resume_trigger(trigger.key)
        assert store.get_trigger_state(trigger.key) == TriggerState.WAITING

    def test_pause_only_affects_waiting_and_acquired(self, store):
        """Pausing an ERROR trigger does nothing."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        with store.storage.transaction() as data:
            data.triggers[str(trigger.key)].state = TriggerState.ERROR

        store.pause_trigger(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.ERROR

    def test_resume_only_affects_paused(self, store):
        """Resuming a trigger that is not paused does nothing."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        with store.storage.transaction() as data:
            data.triggers[str(trigger.key)].state = TriggerState.ERROR

        store.resume_trigger(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.ERROR

    def test_resume_past_trigger_completes(self, store, clock):
        """A paused trigger whose fire time passed and cannot fire again completes on resume."""
        job = make_job()
        trigger = make_trigger(job=job, misfire_instruction=MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT)
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        clock.advance(3600)
        store.resume_trigger(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.COMPLETE

    def test_resume_past_trigger_applies_misfire(self, store, clock):
        """A paused repeating trigger resumes at its next slot after now."""
        job = make_job()
        trigger = make_trigger(job=job, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        clock.advance(3630)
        store.resume_trigger(trigger.key)

        stored = store.retrieve_trigger(trigger.key)
        assert stored.state == TriggerState.WAITING
        assert stored.next_fire_time == BASE_TIME + timedelta(minutes=61)

    def test_resume_signals_misfire_once_applied(self, store, clock):
        """Resuming an overdue trigger signals the misfire after the store is unlocked."""
        job = make_job()
        trigger = make_trigger(job=job, repeat_count=REPEAT_INDEFINITELY, repeat_interval=60)
        other = make_trigger("other", job=job, start=BASE_TIME + timedelta(hours=2))
        store.store_job_and_trigger(job, trigger)
        store.store_trigger(other)
        store.pause_trigger(trigger.key)
        store.initialize(PausingSignaler(store, other.key))

        clock.advance(3630)
        store.resume_trigger(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.WAITING
        assert store.get_trigger_state(other.key) == TriggerState.PAUSED

    def test_unchanged_misfire_not_signalled(self, store, clock):
        """A misfire instruction that leaves the fire time alone signals nothing."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job = make_job()
        trigger = StuckTrigger(
            key=Key("stuck"),
            job_key=job.key,
            start_time=BASE_TIME,
            misfire_instruction=MISFIRE_INSTRUCTION_FIRE_NOW,
        )
        trigger.compute_first_fire_time()
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        clock.advance(3600)
        store.resume_trigger(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.WAITING
        assert signaler.misfired == []
        assert signaler.finalized == []

    def test_resume_completing_trigger_signals_both(self, store, clock):
        """A resumed trigger completed by its misfire is signalled misfired and finalized."""
        signaler = RecordingSignaler()
        store.initialize(signaler)
        job = make_job()
        trigger = make_trigger(job=job, misfire_instruction=MISFIRE_INSTRUCTION_RESCHEDULE_NEXT_WITH_EXISTING_COUNT)
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        clock.advance(3600)
        store.resume_trigger(trigger.key)

        assert signaler.misfired == [trigger.key]
        assert signaler.finalized == [trigger.key]

    def test_group_pause_covers_new_triggers(self, store):
        """Triggers added to a paused group start PAUSED."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger("t1", job=job, group="g"))

        store.pause_trigger_group("g")
        store.store_trigger(make_trigger("t2", job=job, group="g"))

        assert store.get_trigger_state(Key("t1", "g")) == TriggerState.PAUSED
        assert store.get_trigger_state(Key("t2", "g")) == TriggerState.PAUSED
        assert store.get_paused_trigger_groups() == {"g"}

        store.resume_trigger_group("g")

        assert store.get_trigger_state(Key("t2", "g")) == TriggerState.WAITING
        assert store.get_paused_trigger_groups() == set()

    def test_pause_and_resume_job(self, store):
        """Pausing a job pauses all of its triggers."""
        job = make_job()
        future = BASE_TIME + timedelta(minutes=5)
        store.store_job_and_trigger(job, make_trigger("t1", job=job, start=future))
        store.store_trigger(make_trigger("t2", job=job, group="other", start=future))

        store.pause_job(job.key)
        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.PAUSED}

        store.resume_job(job.key)
        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.WAITING}

    def test_pause_all_resume_all(self, store):
        """pause_all then resume_all leaves no markers and restores every trigger."""
        job = make_job()
        future = BASE_TIME + timedelta(minutes=5)
        store.store_job_and_trigger(job, make_trigger("t1", job=job, group="a", start=future))
        store.store_trigger(make_trigger("t2", job=job, group="b", start=future))
        assert store.get_paused_trigger_groups() == set()

        store.pause_all()

        assert store.get_paused_trigger_groups() == {"a", "b", ALL_GROUPS_PAUSED}
        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.PAUSED}

        store.resume_all()

        assert store.get_paused_trigger_groups() == set()
        assert {t.state for t in store.get_triggers_for_job(job.key)} == {TriggerState.WAITING}

    def test_pause_all_covers_new_groups(self, store):
        """A trigger added to a new group while everything is paused starts PAUSED."""
        job = make_job()
        store.store_job(job)
        store.pause_all()

        store.store_trigger(make_trigger("late", job=job, group="new", start=BASE_TIME + timedelta(minutes=5)))

        assert store.get_trigger_state(Key("late", "new")) == TriggerState.PAUSED

        store.resume_all()

        assert store.get_trigger_state(Key("late", "new")) == TriggerState.WAITING
        assert store.get_paused_trigger_groups() == set()


class TestErrorReset:
    """Tests for reset_trigger_from_error_state()."""

    def put_in_error(self, store, group=None):
        job = make_job()
        trigger = make_trigger(job=job, group=group)
        store.store_job_and_trigger(job, trigger)
        with store.storage.transaction() as data:
            stored = data.triggers[str(trigger.key)]
            stored.state = TriggerState.ERROR
            stored.error_message = "broken"
        return trigger.key

    def test_reset_to_waiting(self, store):
        """An ERROR trigger goes back to WAITING and loses its message."""
        key = self.put_in_error(store)

        store.reset_trigger_from_error_state(key)

        stored = store.retrieve_trigger(key)
        assert stored.state == TriggerState.WAITING
        assert stored.error_message is None

    def test_reset_into_paused_group(self, store):
        """An ERROR trigger in a paused group goes back to PAUSED."""
        key = self.put_in_error(store, group="g")
        store.pause_trigger_group("g")

        store.reset_trigger_from_error_state(key)

        assert store.get_trigger_state(key) == TriggerState.PAUSED

    def test_reset_ignores_other_states(self, store):
        """Resetting a trigger that is not in ERROR does nothing."""
        job = make_job()
        trigger = make_trigger(job=job)
        store.store_job_and_trigger(job, trigger)
        store.pause_trigger(trigger.key)

        store.reset_trigger_from_error_state(trigger.key)

        assert store.get_trigger_state(trigger.key) == TriggerState.PAUSED


class TestCalendars:
    """Tests for calendar storage."""

    def test_duplicate_calendar(self, store):
        """Storing a calendar name twice without replace raises."""
        store.store_calendar("weekends", WeeklyCalendar())

        with pytest.raises(ObjectAlreadyExistsError):
            store.store_calendar("weekends", WeeklyCalendar())

        assert store.get_calendar_names() == ["weekends"]

    def test_referenced_calendar_cannot_be_removed(self, store):
        """A calendar used by a trigger cannot be removed."""
        job = make_job()
        store.store_calendar("weekends", WeeklyCalendar())
        store.store_job_and_trigger(job, make_trigger(job=job, calendar_name="weekends"))

        with pytest.raises(JobPersistenceError):
            store.remove_calendar("weekends")

    def test_remove_calendar(self, store):
        """An unused calendar can be removed once."""
        store.store_calendar("weekends", WeeklyCalendar())

        assert store.remove_calendar("weekends")
        assert not store.remove_calendar("weekends")
        assert store.retrieve_calendar("weekends") is None

    def test_update_triggers_with_new_calendar(self, store):
        """Replacing a calendar with update_triggers recomputes next fire times."""
        job = make_job()
        store.store_calendar("holidays", HolidayCalendar())
        trigger = make_trigger(
            job=job,
            calendar_name="holidays",
            start=BASE_TIME + timedelta(hours=1),
            repeat_count=REPEAT_INDEFINITELY,
            repeat_interval=86400,
        )
        store.store_job_and_trigger(job, trigger)

        excluded = HolidayCalendar(excluded_dates=[BASE_TIME.date()])
        store.store_calendar("holidays", excluded, replace_existing=True, update_triggers=True)

        assert store.retrieve_trigger(trigger.key).next_fire_time == BASE_TIME + timedelta(days=1, hours=1)


class TestLifecycle:
    """Tests for recovery and clearing."""

    def test_scheduler_started_recovers(self, store, clock):
        """Acquired triggers go back to WAITING and fired records are dropped."""
        job = make_job()
        store.store_job_and_trigger(job, make_trigger("t1", job=job))
        store.store_trigger(make_trigger("t2", job=job, repeat_count=REPEAT_INDEFINITELY))
        acquired = store.acquire_next_triggers(clock.now, max_count=2)
        store.triggers_fired([t for t in acquired if t.key == Key("t2")])

        store.scheduler_started()

        assert store.get_trigger_state(Key("t1")) == TriggerState.WAITING
        assert store.get_fired_triggers() == []

    def test_clear_all(self, store):
        """clear_all_scheduling_data() empties the store."""
        job = make_job()
        store.store_calendar("weekends", WeeklyCalendar())
        store.store_job_and_trigger(job, make_trigger(job=job, group="g"))
        store.pause_trigger_group("g")

        store.clear_all_scheduling_data()

        assert store.get_number_of_jobs() == 0
        assert store.get_number_of_triggers() == 0
        assert store.get_number_of_calendars() == 0
        assert store.get_paused_trigger_groups() == set()
