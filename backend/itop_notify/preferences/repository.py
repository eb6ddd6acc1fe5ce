"""Typed access to user-scoped and instance-scoped configuration.

Values are stored as strings: booleans as '0'/'1', integers as decimal
strings, sets and maps as JSON. Unset values are returned as ``None``.
The repository flushes but never commits; the caller owns the transaction.
"""

import json
import logging

from sqlalchemy.orm import Session

from ..config import settings
from .models import AppConfigValue, UserPreference
from .policy import (
    ALL_DISABLED,
    JobKind,
    NotificationState,
    UserNotificationPolicy,
    effective_enabled,
    parse_admin_config,
    parse_user_disabled,
)

logger = logging.getLogger(__name__)

# ── Keys ───────────────────────────────────────────────────────────────

_NOTIFICATION_ENABLED = "notification_enabled"
_PERSON_ID = "person_id"
_REMOTE_USER_ID = "user_id"
_PERSONAL_TOKEN = "token"
_USER_URL = "url"
_CHECK_INTERVAL = "notification_check_interval"
_PORTAL_ONLY = "is_portal_only"
_PROFILES_LAST_CHECK = "profiles_last_check"
_DISABLED_NOTIFICATIONS = {
    JobKind.PORTAL: "disabled_portal_notifications",
    JobKind.AGENT: "disabled_agent_notifications",
}
_WATERMARK = {
    JobKind.PORTAL: "notification_last_portal_check",
    JobKind.AGENT: "notification_last_agent_check",
}
_SLA_WARNING_LEVELS = "sla_warning_levels_"

_DEFAULT_INTERVAL = "default_notification_interval"
_ADMIN_NOTIFICATION_CONFIG = {
    JobKind.PORTAL: "portal_notification_config",
    JobKind.AGENT: "agent_notification_config",
}
_APPLICATION_TOKEN = "application_token"
_ADMIN_INSTANCE_URL = "admin_instance_url"


def _to_int(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class ConfigRepository:
    def __init__(self, db: Session) -> None:
        self._db = db

    # ── Raw access ─────────────────────────────────────────────────────

    def _get_user_value(self, user_id: str, key: str) -> str | None:
        row = (
            self._db.query(UserPreference)
            .filter(UserPreference.user_id == user_id, UserPreference.key == key)
            .first()
        )
        return row.value if row is not None else None

    def _set_user_value(self, user_id: str, key: str, value: str) -> None:
        row = (
            self._db.query(UserPreference)
            .filter(UserPreference.user_id == user_id, UserPreference.key == key)
            .first()
        )
        if row is None:
            self._db.add(UserPreference(user_id=user_id, key=key, value=value))
        else:
            row.value = value
        self._db.flush()

    def _delete_user_value(self, user_id: str, key: str) -> None:
        self._db.query(UserPreference).filter(
            UserPreference.user_id == user_id, UserPreference.key == key
        ).delete(synchronize_session="fetch")
        self._db.flush()

    def _get_app_value(self, key: str) -> str | None:
        row = self._db.get(AppConfigValue, key)
        return row.value if row is not None else None

    def _set_app_value(self, key: str, value: str) -> None:
        row = self._db.get(AppConfigValue, key)
        if row is None:
            self._db.add(AppConfigValue(key=key, value=value))
        else:
            row.value = value
        self._db.flush()

    def _delete_app_value(self, key: str) -> None:
        row = self._db.get(AppConfigValue, key)
        if row is not None:
            self._db.delete(row)
            self._db.flush()

    # ── User: identity and credentials ─────────────────────────────────

    def is_notification_enabled(self, user_id: str) -> bool:
        return self._get_user_value(user_id, _NOTIFICATION_ENABLED) == "1"

    def set_notification_enabled(self, user_id: str, enabled: bool) -> None:
        self._set_user_value(user_id, _NOTIFICATION_ENABLED, "1" if enabled else "0")

    def get_person_id(self, user_id: str) -> str | None:
        return self._get_user_value(user_id, _PERSON_ID) or None

    def set_person_id(self, user_id: str, person_id: str) -> None:
        self._set_user_value(user_id, _PERSON_ID, str(person_id))

    def get_remote_user_id(self, user_id: str) -> str | None:
        return self._get_user_value(user_id, _REMOTE_USER_ID) or None

    def set_remote_user_id(self, user_id: str, remote_user_id: str) -> None:
        self._set_user_value(user_id, _REMOTE_USER_ID, str(remote_user_id))

    def get_personal_token(self, user_id: str) -> str | None:
        return self._get_user_value(user_id, _PERSONAL_TOKEN) or None

    def set_personal_token(self, user_id: str, token: str) -> None:
        self._set_user_value(user_id, _PERSONAL_TOKEN, token)

    def delete_personal_token(self, user_id: str) -> None:
        self._delete_user_value(user_id, _PERSONAL_TOKEN)

    def get_user_url(self, user_id: str) -> str | None:
        return self._get_user_value(user_id, _USER_URL) or None

    def set_user_url(self, user_id: str, url: str) -> None:
        self._set_user_value(user_id, _USER_URL, url)

    # ── User: scheduling ───────────────────────────────────────────────

    def get_check_interval_minutes(self, user_id: str) -> int | None:
        return _to_int(self._get_user_value(user_id, _CHECK_INTERVAL))

    def set_check_interval_minutes(self, user_id: str, minutes: int) -> None:
        self._set_user_value(user_id, _CHECK_INTERVAL, str(int(minutes)))

    def delete_check_interval(self, user_id: str) -> None:
        self._delete_user_value(user_id, _CHECK_INTERVAL)

    def get_watermark(self, user_id: str, kind: JobKind) -> int | None:
        return _to_int(self._get_user_value(user_id, _WATERMARK[kind]))

    def set_watermark(self, user_id: str, kind: JobKind, timestamp: int) -> None:
        self._set_user_value(user_id, _WATERMARK[kind], str(int(timestamp)))

    def delete_watermark(self, user_id: str, kind: JobKind) -> None:
        self._delete_user_value(user_id, _WATERMARK[kind])

    # ── User: role ─────────────────────────────────────────────────────

    def get_portal_only(self, user_id: str) -> bool | None:
        raw = self._get_user_value(user_id, _PORTAL_ONLY)
        if raw is None or raw == "":
            return None
        return raw == "1"

    def get_profiles_checked_at(self, user_id: str) -> int | None:
        return _to_int(self._get_user_value(user_id, _PROFILES_LAST_CHECK))

    def set_portal_only(self, user_id: str, portal_only: bool, checked_at: int) -> None:
        self._set_user_value(user_id, _PORTAL_ONLY, "1" if portal_only else "0")
        self._set_user_value(user_id, _PROFILES_LAST_CHECK, str(int(checked_at)))

    def delete_portal_only(self, user_id: str) -> None:
        self._delete_user_value(user_id, _PORTAL_ONLY)
        self._delete_user_value(user_id, _PROFILES_LAST_CHECK)

    # ── User: notification opt-outs ────────────────────────────────────

    def get_disabled_notifications(self, user_id: str, kind: JobKind) -> frozenset[str] | str:
        return parse_user_disabled(self._get_user_value(user_id, _DISABLED_NOTIFICATIONS[kind]))

    def set_disabled_notifications(self, user_id: str, kind: JobKind, disabled) -> None:
        """Store ``ALL_DISABLED`` or an iterable of opted-out types."""
        value = ALL_DISABLED if disabled == ALL_DISABLED else json.dumps(sorted(disabled))
        self._set_user_value(user_id, _DISABLED_NOTIFICATIONS[kind], value)

    # ── User: SLA warning levels ───────────────────────────────────────

    def get_sla_warning_levels(self, user_id: str, deadline_kind: str) -> dict[str, int]:
        raw = self._get_user_value(user_id, _SLA_WARNING_LEVELS + deadline_kind)
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding malformed SLA warning state for user %s (%s)", user_id, deadline_kind)
            return {}
        if not isinstance(decoded, dict):
            return {}
        levels = {}
        for ticket_key, level in decoded.items():
            parsed = _to_int(str(level))
            if parsed is not None:
                levels[str(ticket_key)] = parsed
        return levels

    def set_sla_warning_levels(self, user_id: str, deadline_kind: str, levels: dict[str, int]) -> None:
        self._set_user_value(user_id, _SLA_WARNING_LEVELS + deadline_kind, json.dumps(levels, sort_keys=True))

    # ── Instance ───────────────────────────────────────────────────────

    def get_default_interval_minutes(self) -> int | None:
        return _to_int(self._get_app_value(_DEFAULT_INTERVAL))

    def effective_default_interval_minutes(self) -> int:
        minutes = self.get_default_interval_minutes()
        return minutes if minutes is not None else settings.default_notification_interval_minutes

    def set_default_interval_minutes(self, minutes: int) -> None:
        self._set_app_value(_DEFAULT_INTERVAL, str(int(minutes)))

    def get_admin_notification_config(self, kind: JobKind) -> dict[str, NotificationState]:
        return parse_admin_config(self._get_app_value(_ADMIN_NOTIFICATION_CONFIG[kind]), kind)

    def set_admin_notification_config(self, kind: JobKind, config: dict[str, NotificationState]) -> None:
        payload = {t: NotificationState(state).value for t, state in config.items()}
        self._set_app_value(_ADMIN_NOTIFICATION_CONFIG[kind], json.dumps(payload, sort_keys=True))

    def get_application_token(self) -> str | None:
        return self._get_app_value(_APPLICATION_TOKEN) or None

    def set_application_token(self, token: str) -> None:
        self._set_app_value(_APPLICATION_TOKEN, token)

    def delete_application_token(self) -> None:
        self._delete_app_value(_APPLICATION_TOKEN)

    def get_admin_instance_url(self) -> str | None:
        return self._get_app_value(_ADMIN_INSTANCE_URL) or None

    def set_admin_instance_url(self, url: str) -> None:
        self._set_app_value(_ADMIN_INSTANCE_URL, url)

    # ── Aggregate ──────────────────────────────────────────────────────

    def effective_notification_types(self, user_id: str, kind: JobKind) -> frozenset[str]:
        return effective_enabled(
            self.get_admin_notification_config(kind),
            self.get_disabled_notifications(user_id, kind),
        )

    def load_policy(self, user_id: str) -> UserNotificationPolicy:
        portal_disabled = self.get_disabled_notifications(user_id, JobKind.PORTAL)
        agent_disabled = self.get_disabled_notifications(user_id, JobKind.AGENT)
        return UserNotificationPolicy(
            user_id=user_id,
            enabled=self.is_notification_enabled(user_id),
            person_id=self.get_person_id(user_id),
            remote_user_id=self.get_remote_user_id(user_id),
            check_interval_minutes=self.get_check_interval_minutes(user_id),
            is_portal_only=self.get_portal_only(user_id),
            portal_opted_out_all=portal_disabled == ALL_DISABLED,
            agent_opted_out_all=agent_disabled == ALL_DISABLED,
            portal_types=effective_enabled(self.get_admin_notification_config(JobKind.PORTAL), portal_disabled),
            agent_types=effective_enabled(self.get_admin_notification_config(JobKind.AGENT), agent_disabled),
        )
