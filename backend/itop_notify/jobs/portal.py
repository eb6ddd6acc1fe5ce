"""Portal notifications: updates on tickets the user submitted.

Resolved tickets stay in scope so the resolution itself is reported.
Portal users only ever see the public log.
"""

import logging
from functools import partial

from ..changes.models import ChangeRecord, is_empty_key
from ..notifications.dispatcher import UserNotifier
from ..preferences.policy import JobKind
from .base import TicketUpdateJob, run_steps

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"
RESOLVED_STATUS = "resolved"


class PortalJob(TicketUpdateJob):
    kind = JobKind.PORTAL

    def detect(self, user_id, person_id, since, now, enabled, notifier) -> None:
        ticket_ids = self.directory.portal_ticket_ids(user_id, person_id)
        logger.debug("Portal user %s has %d tickets", user_id, len(ticket_ids))
        if not ticket_ids:
            return

        scalar: list[ChangeRecord] = []
        if enabled & {"ticket_status_changed", "ticket_resolved", "agent_assigned"}:
            scalar = self.detector.get_changes(user_id, ticket_ids, since, ["status", "agent_id"])

        run_steps(
            [
                (
                    ("ticket_status_changed", "ticket_resolved"),
                    partial(self._status_changes, scalar, enabled, notifier),
                ),
                (("agent_assigned",), partial(self._agent_changes, user_id, scalar, notifier)),
                (("agent_responded",), partial(self._agent_responses, user_id, ticket_ids, since, notifier)),
            ],
            enabled,
            notifier,
        )

    # ── Steps ──────────────────────────────────────────────────────────

    def _status_changes(self, changes: list[ChangeRecord], enabled, notifier: UserNotifier) -> None:
        for change in changes:
            if notifier.budget.exhausted:
                break
            if change.attribute_code != "status" or change.is_noop:
                continue
            params = {
                "ticket_id": change.object_key,
                "ticket_class": change.object_class,
                "old_status": change.old_value,
                "new_status": change.new_value,
                "timestamp": change.changed_at,
            }
            if change.new_value == RESOLVED_STATUS and "ticket_resolved" in enabled:
                notifier.notify("ticket_resolved", params, change.actor_id)
            elif "ticket_status_changed" in enabled:
                notifier.notify("ticket_status_changed", params, change.actor_id)

    def _agent_changes(self, user_id, changes: list[ChangeRecord], notifier: UserNotifier) -> None:
        agent_changes = [c for c in changes if c.attribute_code == "agent_id" and not c.is_noop]
        if not agent_changes:
            return
        agent_ids = {
            value
            for c in agent_changes
            for value in (c.old_value, c.new_value)
            if not is_empty_key(value)
        }
        names = self.directory.resolve_person_names(user_id, agent_ids) if agent_ids else {}

        def display(agent_id: str | None) -> str:
            if is_empty_key(agent_id):
                return UNASSIGNED
            return names.get(agent_id, agent_id)

        for change in agent_changes:
            if notifier.budget.exhausted:
                break
            notifier.notify(
                "agent_assigned",
                {
                    "ticket_id": change.object_key,
                    "ticket_class": change.object_class,
                    "old_agent": display(change.old_value),
                    "new_agent": display(change.new_value),
                    "timestamp": change.changed_at,
                },
                change.actor_id,
            )

    def _agent_responses(self, user_id, ticket_ids, since, notifier: UserNotifier) -> None:
        for change in self.detector.get_case_log_changes(user_id, ticket_ids, since, ["public_log"]):
            if notifier.budget.exhausted:
                break
            if change.is_system:
                continue
            notifier.notify(
                "agent_responded",
                {
                    "ticket_id": change.object_key,
                    "ticket_class": change.object_class,
                    "agent_name": change.actor_name,
                    "timestamp": change.changed_at,
                },
                change.actor_id,
            )
