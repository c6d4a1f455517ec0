"""Shared fixtures for the quartzpy test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from quartzpy.core.job import JobDetail
from quartzpy.core.key import Key
from quartzpy.store.job_store import JobStore
from quartzpy.triggers import SimpleTrigger

BASE_TIME = datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock injected into the job store and the scheduler."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return JobStore(misfire_threshold=60, clock=clock)


def make_job(name: str = "job", group: str | None = None, durable: bool = False, **data) -> JobDetail:
    return JobDetail(key=Key(name, group), job_type="noop", durable=durable, job_data=data)


def make_trigger(
    name: str = "trigger",
    job: JobDetail | None = None,
    group: str | None = None,
    start: datetime = BASE_TIME,
    repeat_count: int = 0,
    repeat_interval: float = 60,
    **fields,
) -> SimpleTrigger:
    trigger = SimpleTrigger(
        key=Key(name, group),
        job_key=job.key if job is not None else Key("job"),
        start_time=start,
        repeat_count=repeat_count,
        repeat_interval=repeat_interval,
        **fields,
    )
    trigger.compute_first_fire_time()
    return trigger
