"""Value objects produced by change detection."""

import enum
from dataclasses import dataclass

EMPTY_EXTERNAL_KEYS = ("", "0")


class ChangeKind(str, enum.Enum):
    SCALAR = "scalar"
    CASE_LOG = "case_log"


@dataclass(frozen=True)
class ChangeRecord:
    """One attribute mutation on one iTop object, as reported by the change log.

    ``actor_id`` is the iTop user id of whoever made the change; None means a
    system-generated change. Case-log records carry no old/new value.
    """

    object_key: str
    object_class: str
    attribute_code: str
    old_value: str | None
    new_value: str | None
    changed_at: str
    actor_id: str | None
    actor_name: str
    kind: ChangeKind = ChangeKind.SCALAR

    @property
    def is_noop(self) -> bool:
        """True for scalar writes that did not change the value."""
        return self.kind is ChangeKind.SCALAR and self.old_value == self.new_value

    @property
    def is_system(self) -> bool:
        return not self.actor_id


@dataclass(frozen=True)
class DeadlineWarning:
    ticket_id: str
    ticket_class: str
    level: int
    deadline: str
    crossed_at: int


@dataclass(frozen=True)
class TeamAssignment:
    ticket_id: str
    ticket_class: str
    team_id: str
    timestamp: str


def is_empty_key(value: str | None) -> bool:
    return value is None or value in EMPTY_EXTERNAL_KEYS
