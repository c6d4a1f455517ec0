"""Persisted root document of the job store.

Jobs and triggers are keyed by the ``group.name`` string form of their
key. Paused trigger groups hold group names plus the all-groups sentinel.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from quartzpy.calendars import AnyCalendar
from quartzpy.core.job import JobDetail
from quartzpy.triggers import AnyTrigger, FiredTrigger

logger = logging.getLogger(__name__)

# Storage format version for future migrations
STORAGE_VERSION = 1

ALL_GROUPS_PAUSED = "_$_ALL_GROUPS_PAUSED_$_"


class StoreData(BaseModel):
    """Everything a job store persists.

    Attributes:
        version: Storage format version.
        jobs: Job details by key string.
        triggers: Triggers by key string.
        calendars: Calendars by name.
        fired_triggers: In-flight firings by fire instance id.
        paused_trigger_groups: Paused group names and the all-groups sentinel.
    """

    version: int = Field(default=STORAGE_VERSION, description="Storage format version")
    jobs: dict[str, JobDetail] = Field(default_factory=dict, description="Stored jobs")
    triggers: dict[str, AnyTrigger] = Field(default_factory=dict, description="Stored triggers")
    calendars: dict[str, AnyCalendar] = Field(default_factory=dict, description="Stored calendars")
    fired_triggers: dict[str, FiredTrigger] = Field(default_factory=dict, description="In-flight firings")
    paused_trigger_groups: list[str] = Field(default_factory=list, description="Paused trigger groups")


def migrate_data(data: dict[str, Any], from_version: int) -> dict[str, Any]:
    """Migrate raw stored data from an older version.

    Args:
        data: Raw data from storage.
        from_version: Version of the stored data.

    Returns:
        Migrated data at the current version.
    """
    # Currently no migrations needed
    logger.info(f"Migrating job store data from version {from_version} to {STORAGE_VERSION}")
    data["version"] = STORAGE_VERSION
    return data
