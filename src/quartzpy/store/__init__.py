"""Job store and its storage backends."""

from quartzpy.store.job_store import JobStore, SchedulerSignaler
from quartzpy.store.records import ALL_GROUPS_PAUSED, StoreData
from quartzpy.store.storage import JsonFileStorage, MemoryStorage, Storage

__all__ = [
    "ALL_GROUPS_PAUSED",
    "JobStore",
    "JsonFileStorage",
    "MemoryStorage",
    "SchedulerSignaler",
    "Storage",
    "StoreData",
]
