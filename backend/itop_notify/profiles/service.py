"""Portal-only role detection from iTop user profiles.

A user is portal-only when their iTop account has exactly one profile,
``Portal user``. A Person with no User account, or an account with no
profiles, is treated as portal-only as well. The answer is kept in the
config store and trusted for ``settings.profile_cache_ttl`` seconds.
"""

import json
import logging
import time
from collections.abc import Callable

from ..config import settings
from ..integrations.itop_client import ItopClient, ItopResponseError
from ..preferences.repository import ConfigRepository
from ..tickets.service import oql_key

logger = logging.getLogger(__name__)

PORTAL_PROFILE_NAME = "Portal user"


class ProfileNotConfiguredError(Exception):
    """The user has neither an iTop user id nor a person id."""


def _profile_name(item) -> str:
    # lnkUserToProfile entries come back as {"profileid": ..., "profile": "Name"}
    if isinstance(item, dict):
        item = item.get("profile") or item.get("profileid_friendlyname") or ""
    return str(item).strip()


def parse_profile_list(raw) -> list[str]:
    """Accept a list, a JSON array string or a comma-separated string."""
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = None
        if not isinstance(decoded, list):
            return [p.strip() for p in raw.split(",") if p.strip()]
        raw = decoded
    if isinstance(raw, list):
        return [name for name in (_profile_name(p) for p in raw) if name]
    return []


class ProfileService:
    def __init__(
        self,
        config: ConfigRepository,
        client: ItopClient,
        clock: Callable[[], float] = time.time,
        ttl: int = settings.profile_cache_ttl,
    ) -> None:
        self._config = config
        self._client = client
        self._clock = clock
        self._ttl = ttl

    def _cached_status(self, user_id: str) -> bool | None:
        status = self._config.get_portal_only(user_id)
        checked_at = self._config.get_profiles_checked_at(user_id)
        if status is None or checked_at is None:
            return None
        if int(self._clock()) - checked_at > self._ttl:
            return None
        return status

    def is_portal_only(self, user_id: str) -> bool:
        cached = self._cached_status(user_id)
        if cached is not None:
            return cached

        profiles = self.get_user_profiles(user_id)
        portal_only = profiles == [PORTAL_PROFILE_NAME]
        self._config.set_portal_only(user_id, portal_only, int(self._clock()))
        logger.debug("Profile status for user %s: portal_only=%s", user_id, portal_only)
        return portal_only

    def _remote_user_id_for_person(self, user_id: str, person_id: str) -> str | None:
        try:
            objects = self._client.core_get(
                user_id, "User", f"SELECT User WHERE contactid = {oql_key(person_id)}", ("id", "login")
            )
        except ItopResponseError:
            return None
        for obj_key, fields in objects.items():
            return str(fields.get("id") or obj_key.rsplit(":", 1)[-1])
        return None

    def get_user_profiles(self, user_id: str) -> list[str]:
        remote_user_id = self._config.get_remote_user_id(user_id)
        if not remote_user_id:
            person_id = self._config.get_person_id(user_id)
            if not person_id:
                raise ProfileNotConfiguredError(f"User {user_id} has no iTop person or user id")
            remote_user_id = self._remote_user_id_for_person(user_id, person_id)
            if not remote_user_id:
                logger.info("User %s has a Person but no User account in iTop, treating as portal-only", user_id)
                return [PORTAL_PROFILE_NAME]
            self._config.set_remote_user_id(user_id, remote_user_id)

        objects = self._client.core_get(user_id, "User", oql_key(remote_user_id), ("id", "login", "profile_list"))
        if not objects:
            raise ItopResponseError(f"iTop user {remote_user_id} not found")
        fields = next(iter(objects.values()))
        profiles = parse_profile_list(fields.get("profile_list"))
        if not profiles:
            logger.warning("User %s has no profiles in iTop, treating as portal-only", user_id)
            return [PORTAL_PROFILE_NAME]
        return profiles

    def refresh(self, user_id: str) -> bool:
        """Drop the stored status and derive it again."""
        self._config.delete_portal_only(user_id)
        logger.info("Profile cache cleared for user %s", user_id)
        return self.is_portal_only(user_id)
