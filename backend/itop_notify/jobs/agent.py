"""Agent notifications: tickets assigned to the user or queued for their teams.

Steps run in a fixed order so that, when the per-run cap is hit, assignment
and SLA signals win over comments.
"""

import logging
from functools import partial

from ..changes.detector import SCOPE_MINE, SCOPE_TEAM_UNASSIGNED
from ..changes.models import is_empty_key
from ..notifications.dispatcher import UserNotifier
from ..preferences.policy import JobKind
from ..timeutil import format_itop_datetime
from .base import TicketUpdateJob, run_steps

logger = logging.getLogger(__name__)

CRITICAL_PRIORITY = "1"
SLA_BREACH_ATTRIBUTES = {"sla_tto_passed": "TTO", "sla_ttr_passed": "TTR"}
COMMENT_ATTRIBUTES = ("public_log", "private_log")


class AgentJob(TicketUpdateJob):
    kind = JobKind.AGENT

    def detect(self, user_id, person_id, since, now, enabled, notifier) -> None:
        ticket_ids: list[str] | None = None

        def my_tickets() -> list[str]:
            nonlocal ticket_ids
            if ticket_ids is None:
                ticket_ids = self.directory.agent_ticket_ids(user_id, person_id)
            return ticket_ids

        run_steps(
            [
                (
                    ("ticket_assigned", "ticket_reassigned"),
                    partial(self._assignments, user_id, person_id, my_tickets, since, enabled, notifier),
                ),
                (("team_unassigned_new",), partial(self._team_queue, user_id, person_id, since, notifier)),
                (
                    ("ticket_tto_warning", "ticket_ttr_warning"),
                    partial(self._sla_warnings, user_id, since, now, enabled, notifier),
                ),
                (("ticket_sla_breach",), partial(self._sla_breaches, user_id, my_tickets, since, notifier)),
                (("ticket_priority_critical",), partial(self._priority, user_id, my_tickets, since, notifier)),
                (("ticket_comment",), partial(self._comments, user_id, my_tickets, since, notifier)),
            ],
            enabled,
            notifier,
        )

    # ── Steps ──────────────────────────────────────────────────────────

    def _assignments(self, user_id, person_id, my_tickets, since, enabled, notifier: UserNotifier) -> None:
        for change in self.detector.get_changes(user_id, my_tickets(), since, ["agent_id"]):
            if notifier.budget.exhausted:
                break
            if change.is_noop or change.new_value != str(person_id):
                continue
            params = {
                "ticket_id": change.object_key,
                "ticket_class": change.object_class,
                "timestamp": change.changed_at,
            }
            if is_empty_key(change.old_value):
                if "ticket_assigned" in enabled:
                    notifier.notify("ticket_assigned", params, change.actor_id)
            elif "ticket_reassigned" in enabled:
                params["old_agent_id"] = change.old_value
                notifier.notify("ticket_reassigned", params, change.actor_id)

    def _team_queue(self, user_id, person_id, since, notifier: UserNotifier) -> None:
        teams = self.directory.user_teams(user_id, person_id)
        if not teams:
            return
        names = {t["id"]: t["name"] for t in teams}
        for assignment in self.detector.get_team_assignment_changes(user_id, list(names), since):
            if notifier.budget.exhausted:
                break
            notifier.notify(
                "team_unassigned_new",
                {
                    "ticket_id": assignment.ticket_id,
                    "ticket_class": assignment.ticket_class,
                    "team_id": assignment.team_id,
                    "team_name": names.get(assignment.team_id) or f"Team #{assignment.team_id}",
                    "timestamp": assignment.timestamp,
                },
            )

    def _sla_warnings(self, user_id, since, now, enabled, notifier: UserNotifier) -> None:
        for subject, deadline_kind, scope in (
            ("ticket_tto_warning", "tto", SCOPE_TEAM_UNASSIGNED),
            ("ticket_ttr_warning", "ttr", SCOPE_MINE),
        ):
            if subject not in enabled or notifier.budget.exhausted:
                continue
            for warning in self.detector.get_tickets_approaching_deadline(user_id, deadline_kind, scope, since, now):
                if notifier.budget.exhausted:
                    break
                sent = notifier.notify(
                    subject,
                    {
                        "ticket_id": warning.ticket_id,
                        "ticket_class": warning.ticket_class,
                        "level": warning.level,
                        "deadline": warning.deadline,
                        "timestamp": format_itop_datetime(warning.crossed_at, self.tz),
                    },
                )
                if sent:
                    self.detector.record_warning(user_id, deadline_kind, warning)

    def _sla_breaches(self, user_id, my_tickets, since, notifier: UserNotifier) -> None:
        for change in self.detector.get_changes(user_id, my_tickets(), since, list(SLA_BREACH_ATTRIBUTES)):
            if notifier.budget.exhausted:
                break
            if change.is_noop or change.new_value != "1":
                continue
            notifier.notify(
                "ticket_sla_breach",
                {
                    "ticket_id": change.object_key,
                    "ticket_class": change.object_class,
                    "sla_type": SLA_BREACH_ATTRIBUTES[change.attribute_code],
                    "timestamp": change.changed_at,
                },
                change.actor_id,
            )

    def _priority(self, user_id, my_tickets, since, notifier: UserNotifier) -> None:
        for change in self.detector.get_changes(user_id, my_tickets(), since, ["priority"]):
            if notifier.budget.exhausted:
                break
            if change.new_value != CRITICAL_PRIORITY or change.old_value == CRITICAL_PRIORITY:
                continue
            notifier.notify(
                "ticket_priority_critical",
                {
                    "ticket_id": change.object_key,
                    "ticket_class": change.object_class,
                    "old_priority": change.old_value,
                    "timestamp": change.changed_at,
                },
                change.actor_id,
            )

    def _comments(self, user_id, my_tickets, since, notifier: UserNotifier) -> None:
        for change in self.detector.get_case_log_changes(user_id, my_tickets(), since, list(COMMENT_ATTRIBUTES)):
            if notifier.budget.exhausted:
                break
            if change.is_system:
                continue
            notifier.notify(
                "ticket_comment",
                {
                    "ticket_id": change.object_key,
                    "ticket_class": change.object_class,
                    "commenter_name": change.actor_name,
                    "log_type": "private" if change.attribute_code == "private_log" else "public",
                    "timestamp": change.changed_at,
                },
                change.actor_id,
            )
