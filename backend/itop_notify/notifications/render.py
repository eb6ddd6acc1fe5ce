"""Human-readable text and ticket links for stored notifications.

Notifications are stored as a subject plus a parameter dict; the host
renders them when they are displayed. Links point at the iTop console for
agents and at the user portal for portal-only users.
"""

import json
from dataclasses import dataclass
from urllib.parse import urlencode

from ..preferences.repository import ConfigRepository

UNASSIGNED = "Unassigned"

_PORTAL_QUERY = {"exec_module": "itop-portal-base", "exec_page": "index.php", "portal_id": "itop-portal"}


@dataclass(frozen=True)
class RenderedNotification:
    title: str
    message: str
    link: str | None = None


def ticket_url(base_url: str | None, ticket_class: str, ticket_id: str, portal_only: bool = False) -> str | None:
    if not base_url:
        return None
    base_url = base_url.rstrip("/")
    if portal_only:
        action = "view" if ticket_class == "Person" else "edit"
        return f"{base_url}/pages/exec.php/object/{action}/{ticket_class}/{ticket_id}?{urlencode(_PORTAL_QUERY)}"
    return f"{base_url}/pages/UI.php?{urlencode({'operation': 'details', 'class': ticket_class, 'id': ticket_id})}"


def _status_changed(p: dict) -> tuple[str, str]:
    return "Ticket status changed", f"Status changed: {p.get('old_status', '')} → {p.get('new_status', '')}"


def _agent_responded(p: dict) -> tuple[str, str]:
    return "Agent responded to your ticket", f"{p.get('agent_name') or 'Agent'} added a response"


def _agent_assigned(p: dict) -> tuple[str, str]:
    old = p.get("old_agent") or UNASSIGNED
    new = p.get("new_agent") or UNASSIGNED
    return "Assigned agent changed", f"{old} → {new}"


def _team_unassigned(p: dict) -> tuple[str, str]:
    team = p.get("team_name") or "Your team"
    return f"New unassigned ticket in {team}", f"A new ticket needs assignment in {team}"


def _tto_warning(p: dict) -> tuple[str, str]:
    level = int(p.get("level", 0))
    return f"TTO SLA warning: {level}h remaining", f"Ticket needs assignment within {level} hours"


def _ttr_warning(p: dict) -> tuple[str, str]:
    level = int(p.get("level", 0))
    return f"TTR SLA warning: {level}h remaining", f"Ticket needs resolution within {level} hours"


def _sla_breach(p: dict) -> tuple[str, str]:
    sla = p.get("sla_type", "SLA")
    return f"{sla} SLA breached", f"Ticket has breached {sla} SLA deadline"


def _comment(p: dict) -> tuple[str, str]:
    kind = "private note" if p.get("log_type") == "private" else "comment"
    return f"New {kind} on your ticket", f"{p.get('commenter_name') or 'Someone'} added a {kind}"


_RENDERERS = {
    "ticket_status_changed": _status_changed,
    "agent_responded": _agent_responded,
    "ticket_resolved": lambda p: ("Ticket resolved", "Your ticket has been resolved"),
    "agent_assigned": _agent_assigned,
    "ticket_assigned": lambda p: ("Ticket assigned to you", "A new ticket has been assigned to you"),
    "ticket_reassigned": lambda p: ("Ticket reassigned to you", "A ticket has been reassigned to you"),
    "team_unassigned_new": _team_unassigned,
    "ticket_tto_warning": _tto_warning,
    "ticket_ttr_warning": _ttr_warning,
    "ticket_sla_breach": _sla_breach,
    "ticket_priority_critical": lambda p: ("Ticket escalated to CRITICAL", "Ticket priority changed to critical"),
    "ticket_comment": _comment,
}


def render_notification(subject: str, params: dict, link: str | None = None) -> RenderedNotification:
    """Raises ValueError for a subject this app never emits."""
    try:
        renderer = _RENDERERS[subject]
    except KeyError:
        raise ValueError(f"Unknown notification subject: {subject}") from None
    title, message = renderer(params)
    return RenderedNotification(title=title, message=message, link=link)


class NotificationRenderer:
    """Renders notifications for one user, resolving the link target from the config store."""

    def __init__(self, config: ConfigRepository, user_id: str, fallback_url: str | None = None) -> None:
        self.base_url = config.get_user_url(user_id) or config.get_admin_instance_url() or fallback_url
        self.portal_only = bool(config.get_portal_only(user_id))

    def render(self, subject: str, params: dict | str) -> RenderedNotification:
        if isinstance(params, str):
            params = json.loads(params) if params else {}
        link = None
        if params.get("ticket_id"):
            link = ticket_url(
                self.base_url,
                params.get("ticket_class") or "UserRequest",
                str(params["ticket_id"]),
                self.portal_only,
            )
        return render_notification(subject, params, link)
