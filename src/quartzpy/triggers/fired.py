"""Trigger union type and the fired-trigger record."""

import uuid
from datetime import datetime
from typing import Annotated, Union

from pydantic import BaseModel, Field

from quartzpy.core.dates import utc_now
from quartzpy.core.key import Key
from quartzpy.triggers.calendar_interval import CalendarIntervalTrigger
from quartzpy.triggers.cron import CronTrigger
from quartzpy.triggers.daily_time_interval import DailyTimeIntervalTrigger
from quartzpy.triggers.simple import SimpleTrigger

AnyTrigger = Annotated[
    Union[SimpleTrigger, CronTrigger, CalendarIntervalTrigger, DailyTimeIntervalTrigger],
    Field(discriminator="kind"),
]


class FiredTrigger(BaseModel):
    """Record of one firing, kept until the job execution completes.

    Attributes:
        fire_instance_id: Unique id of this firing.
        fire_time: When the firing actually happened.
        scheduled_fire_time: When the firing was scheduled for.
        previous_fire_time: The trigger's previous fire time before this firing.
        next_fire_time: The trigger's next fire time after this firing.
        error_message: Reason reported with an error instruction.
        trigger: Snapshot of the trigger taken when it fired.
    """

    fire_instance_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Firing id")
    fire_time: datetime = Field(default_factory=utc_now, description="Actual fire time")
    scheduled_fire_time: datetime | None = Field(default=None, description="Scheduled fire time")
    previous_fire_time: datetime | None = Field(default=None, description="Previous fire time before this firing")
    next_fire_time: datetime | None = Field(default=None, description="Next fire time after this one")
    error_message: str | None = Field(default=None, description="Error reported for this firing")
    trigger: AnyTrigger = Field(..., description="Trigger snapshot")

    @property
    def trigger_key(self) -> Key:
        return self.trigger.key

    @property
    def job_key(self) -> Key | None:
        return self.trigger.job_key
