"""Notification types, admin three-state policy and per-user effective policy.

Admin configuration maps every notification type to one of three states:
- disabled: never sent
- forced: sent to every user, no opt-out
- user_choice: sent unless the user opted out

Everything here is pure: parsing and merging take plain values so they can be
tested without the config store.
"""

import enum
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

ALL_DISABLED = "all"


class NotificationState(str, enum.Enum):
    DISABLED = "disabled"
    FORCED = "forced"
    USER_CHOICE = "user_choice"


class JobKind(str, enum.Enum):
    PORTAL = "portal"
    AGENT = "agent"


PORTAL_NOTIFICATION_TYPES = (
    "ticket_status_changed",
    "agent_responded",
    "ticket_resolved",
    "agent_assigned",
)

AGENT_NOTIFICATION_TYPES = (
    "ticket_assigned",
    "ticket_reassigned",
    "team_unassigned_new",
    "ticket_tto_warning",
    "ticket_ttr_warning",
    "ticket_sla_breach",
    "ticket_priority_critical",
    "ticket_comment",
)

_AGENT_DEFAULT_STATES = {
    "team_unassigned_new": NotificationState.DISABLED,
    "ticket_sla_breach": NotificationState.FORCED,
    "ticket_priority_critical": NotificationState.FORCED,
}


def default_state(kind: JobKind, notification_type: str) -> NotificationState:
    if kind is JobKind.AGENT:
        return _AGENT_DEFAULT_STATES.get(notification_type, NotificationState.USER_CHOICE)
    return NotificationState.USER_CHOICE


def notification_types(kind: JobKind) -> tuple[str, ...]:
    return PORTAL_NOTIFICATION_TYPES if kind is JobKind.PORTAL else AGENT_NOTIFICATION_TYPES


def parse_admin_config(raw: str | None, kind: JobKind) -> dict[str, NotificationState]:
    """Parse the admin JSON map type -> state, filling defaults for missing or invalid entries."""
    parsed: dict = {}
    if raw:
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid %s notification config, using defaults", kind.value)
            decoded = None
        if isinstance(decoded, dict):
            parsed = decoded

    config = {}
    for notification_type in notification_types(kind):
        try:
            config[notification_type] = NotificationState(parsed.get(notification_type))
        except ValueError:
            config[notification_type] = default_state(kind, notification_type)
    return config


def parse_user_disabled(raw: str | None) -> frozenset[str] | str:
    """Decode a user's opt-out list: ``ALL_DISABLED`` or a set of types."""
    if not raw:
        return frozenset()
    if raw == ALL_DISABLED:
        return ALL_DISABLED
    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return frozenset()
    if not isinstance(decoded, list):
        return frozenset()
    return frozenset(str(t) for t in decoded)


def effective_policy(admin_state: NotificationState, user_opted_out: bool) -> bool:
    """Merge one admin state with the user's opt-out for that type."""
    if admin_state is NotificationState.FORCED:
        return True
    if admin_state is NotificationState.USER_CHOICE:
        return not user_opted_out
    return False


def effective_enabled(
    admin_config: dict[str, NotificationState],
    user_disabled: Iterable[str] | str,
) -> frozenset[str]:
    """Types enabled for one user. A user-wide opt-out keeps forced types only."""
    if user_disabled == ALL_DISABLED:
        return frozenset(t for t, state in admin_config.items() if state is NotificationState.FORCED)
    disabled = frozenset(user_disabled)
    return frozenset(t for t, state in admin_config.items() if effective_policy(state, t in disabled))


@dataclass(frozen=True)
class UserNotificationPolicy:
    user_id: str
    enabled: bool = False
    person_id: str | None = None
    remote_user_id: str | None = None
    check_interval_minutes: int | None = None
    is_portal_only: bool | None = None
    portal_opted_out_all: bool = False
    agent_opted_out_all: bool = False
    portal_types: frozenset[str] = field(default_factory=frozenset)
    agent_types: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_configured(self) -> bool:
        return bool(self.person_id)

    def enabled_types(self, kind: JobKind) -> frozenset[str]:
        return self.portal_types if kind is JobKind.PORTAL else self.agent_types

    def opted_out_all(self, kind: JobKind) -> bool:
        return self.portal_opted_out_all if kind is JobKind.PORTAL else self.agent_opted_out_all
