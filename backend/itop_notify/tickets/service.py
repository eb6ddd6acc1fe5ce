"""Ticket, team and person lookups against iTop.

Team membership and person names change rarely and are read on every job
tick, so both are kept in the TTL cache.
"""

import logging
from collections.abc import Iterable

from ..config import settings
from ..integrations.cache import TTLCache
from ..integrations.itop_client import ItopClient

logger = logging.getLogger(__name__)

TICKET_CLASSES = ("UserRequest", "Incident")
CLOSED_STATUSES = ("closed",)
DONE_STATUSES = ("resolved", "closed")


def oql_key(value: str | int) -> int:
    """Coerce an iTop object key for interpolation into OQL."""
    return int(str(value).strip())


def oql_key_list(values: Iterable[str | int]) -> str:
    return ",".join(str(oql_key(v)) for v in values)


def oql_quote(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def oql_string_list(values: Iterable[str]) -> str:
    return ",".join(oql_quote(v) for v in values)


class TicketDirectory:
    def __init__(self, client: ItopClient, cache: TTLCache) -> None:
        self._client = client
        self._cache = cache

    def _ticket_ids(self, user_id: str, condition: str) -> list[str]:
        ids: list[str] = []
        for cls in TICKET_CLASSES:
            objects = self._client.core_get(user_id, cls, f"SELECT {cls} WHERE {condition}", ("id",))
            for obj_key, fields in objects.items():
                ids.append(str(fields.get("id") or obj_key.rsplit(":", 1)[-1]))
        return ids

    def agent_ticket_ids(self, user_id: str, person_id: str, include_resolved: bool = False) -> list[str]:
        """Tickets currently assigned to the agent."""
        excluded = CLOSED_STATUSES if include_resolved else DONE_STATUSES
        return self._ticket_ids(
            user_id,
            f"agent_id = {oql_key(person_id)} AND status NOT IN ({oql_string_list(excluded)})",
        )

    def portal_ticket_ids(self, user_id: str, person_id: str, include_resolved: bool = True) -> list[str]:
        """Tickets the portal user is the caller of."""
        excluded = CLOSED_STATUSES if include_resolved else DONE_STATUSES
        return self._ticket_ids(
            user_id,
            f"caller_id = {oql_key(person_id)} AND status NOT IN ({oql_string_list(excluded)})",
        )

    def user_teams(self, user_id: str, person_id: str) -> list[dict]:
        """Teams the person belongs to, as ``[{"id", "name"}]``."""
        cache_key = f"teams:{user_id}:{person_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        objects = self._client.core_get(
            user_id,
            "Team",
            "SELECT Team AS t JOIN lnkPersonToTeam AS l ON l.team_id = t.id "
            f"WHERE l.person_id = {oql_key(person_id)}",
            ("id", "friendlyname"),
        )
        teams = [
            {"id": str(fields.get("id") or obj_key.rsplit(":", 1)[-1]), "name": fields.get("friendlyname") or ""}
            for obj_key, fields in objects.items()
        ]
        self._cache.set(cache_key, teams, settings.clamp_ttl(settings.cache_ttl_teams))
        return teams

    def resolve_person_names(self, user_id: str, person_ids: Iterable[str]) -> dict[str, str]:
        """Map person ids to display names. Unknown ids are left out."""
        names: dict[str, str] = {}
        missing: list[str] = []
        for person_id in dict.fromkeys(str(p) for p in person_ids):
            cached = self._cache.get(f"person_name:{user_id}:{person_id}")
            if cached is not None:
                names[person_id] = cached
            else:
                missing.append(person_id)

        if missing:
            objects = self._client.core_get(
                user_id,
                "Person",
                f"SELECT Person WHERE id IN ({oql_key_list(missing)})",
                ("id", "friendlyname"),
            )
            ttl = settings.clamp_ttl(settings.cache_ttl_person_names)
            for obj_key, fields in objects.items():
                person_id = str(fields.get("id") or obj_key.rsplit(":", 1)[-1])
                name = fields.get("friendlyname") or ""
                if name:
                    names[person_id] = name
                    self._cache.set(f"person_name:{user_id}:{person_id}", name, ttl)
        return names

    def invalidate_teams(self, user_id: str, person_id: str) -> None:
        self._cache.invalidate(f"teams:{user_id}:{person_id}")
