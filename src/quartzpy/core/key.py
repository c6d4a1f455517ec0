"""Identity of jobs and triggers."""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from quartzpy.core.errors import ScheduleValidationError

DEFAULT_GROUP = "DEFAULT"

# Namespace used to derive a stable prefix for generated names in a group
GROUP_NAMESPACE = uuid.UUID("5f8ad9bf-247b-43bc-8ef5-886e701bd744")


class Key(BaseModel):
    """Name and group pair identifying a job or a trigger.

    Two keys are equal when both name and group match. The string form
    ``group.name`` is used wherever a single token is needed (logs, errors,
    fired trigger records).

    Attributes:
        name: Name, unique within the group.
        group: Group name, DEFAULT when not given.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Name, unique within the group")
    group: str = Field(default=DEFAULT_GROUP, description="Group name")

    def __init__(self, name: str, group: str | None = None, **data) -> None:
        if not name:
            raise ScheduleValidationError("Name cannot be empty")
        super().__init__(name=name, group=group or DEFAULT_GROUP, **data)

    def __str__(self) -> str:
        return f"{self.group}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> "Key":
        """Build a key from its ``group.name`` string form.

        Args:
            value: String produced by str(key).

        Returns:
            The parsed key. A value without a dot lands in the DEFAULT group.
        """
        group, sep, name = value.partition(".")
        if not sep:
            return cls(group)
        return cls(name, group)

    @staticmethod
    def create_unique_name(group: str | None = None) -> str:
        """Generate a name that is unique within the given group.

        Args:
            group: Group the name is generated for.

        Returns:
            A ``<group-uuid>-<random-uuid>`` string.
        """
        prefix = uuid.uuid3(GROUP_NAMESPACE, group or DEFAULT_GROUP)
        return f"{prefix}-{uuid.uuid4()}"
