"""Incremental change detection against iTop's change log.

Reads CMDBChangeOpSetAttributeScalar / CMDBChangeOpSetAttributeCaseLog
records newer than a watermark, and evaluates SLA deadlines for the
crossing-time warning algorithm.

Records where the old and new values are equal are returned as-is: each
consumer decides how to treat them (see ``ChangeRecord.is_noop``).
"""

import logging
from collections.abc import Sequence
from datetime import tzinfo

from ..integrations.itop_client import ItopClient
from ..integrations.validation import (
    CaseLogChangeOp,
    ScalarChangeOp,
    TicketDeadlineFields,
    validate_change_op,
)
from ..preferences.repository import ConfigRepository
from ..tickets.service import (
    DONE_STATUSES,
    TICKET_CLASSES,
    TicketDirectory,
    oql_key,
    oql_key_list,
    oql_quote,
    oql_string_list,
)
from ..timeutil import format_itop_datetime, to_epoch
from .models import ChangeKind, ChangeRecord, DeadlineWarning, TeamAssignment
from .sla import SlaWarningTracker, crossed_threshold, crossing_time

logger = logging.getLogger(__name__)

SCALAR_CHANGE_CLASS = "CMDBChangeOpSetAttributeScalar"
CASE_LOG_CHANGE_CLASS = "CMDBChangeOpSetAttributeCaseLog"

_SCALAR_FIELDS = ("objkey", "objclass", "attcode", "oldvalue", "newvalue", "date", "userinfo", "user_id")
_CASE_LOG_FIELDS = ("objkey", "objclass", "attcode", "date", "userinfo", "user_id")

DEADLINE_FIELDS = {
    "tto": "tto_escalation_deadline",
    "ttr": "ttr_escalation_deadline",
}
SCOPE_TEAM_UNASSIGNED = "team_unassigned"
SCOPE_MINE = "mine"


class ChangeDetector:
    def __init__(
        self,
        client: ItopClient,
        directory: TicketDirectory,
        config: ConfigRepository,
        timezone: tzinfo,
    ) -> None:
        self._client = client
        self._directory = directory
        self._config = config
        self._tz = timezone

    # ── Change log ─────────────────────────────────────────────────────

    def _change_query(
        self,
        change_class: str,
        object_ids: Sequence[str],
        since: int,
        attribute_codes: Sequence[str],
    ) -> str:
        return (
            f"SELECT {change_class} WHERE objkey IN ({oql_key_list(object_ids)})"
            f" AND objclass IN ({oql_string_list(TICKET_CLASSES)})"
            f" AND attcode IN ({oql_string_list(attribute_codes)})"
            f" AND date > {oql_quote(format_itop_datetime(since, self._tz))}"
        )

    def get_changes(
        self,
        user_id: str,
        object_ids: Sequence[str],
        since: int,
        attribute_codes: Sequence[str],
    ) -> list[ChangeRecord]:
        """Scalar attribute changes on ``object_ids`` after ``since``, oldest first."""
        if not object_ids or not attribute_codes:
            return []

        objects = self._client.core_get(
            user_id,
            SCALAR_CHANGE_CLASS,
            self._change_query(SCALAR_CHANGE_CLASS, object_ids, since, attribute_codes),
            _SCALAR_FIELDS,
        )
        allowed = set(attribute_codes)
        records = []
        for fields in objects.values():
            op = validate_change_op(fields, ScalarChangeOp)
            if op is None or op.attcode not in allowed:
                continue
            records.append(
                ChangeRecord(
                    object_key=op.objkey,
                    object_class=op.objclass,
                    attribute_code=op.attcode,
                    old_value=op.oldvalue,
                    new_value=op.newvalue,
                    changed_at=op.date,
                    actor_id=op.user_id or None,
                    actor_name=op.userinfo,
                )
            )
        records.sort(key=lambda r: r.changed_at)
        logger.debug("Found %d scalar changes for user %s (%s)", len(records), user_id, ",".join(attribute_codes))
        return records

    def get_case_log_changes(
        self,
        user_id: str,
        object_ids: Sequence[str],
        since: int,
        attribute_codes: Sequence[str],
    ) -> list[ChangeRecord]:
        """Case log entries (public_log / private_log) added after ``since``, oldest first."""
        if not object_ids or not attribute_codes:
            return []

        objects = self._client.core_get(
            user_id,
            CASE_LOG_CHANGE_CLASS,
            self._change_query(CASE_LOG_CHANGE_CLASS, object_ids, since, attribute_codes),
            _CASE_LOG_FIELDS,
        )
        allowed = set(attribute_codes)
        records = []
        for fields in objects.values():
            op = validate_change_op(fields, CaseLogChangeOp)
            if op is None or op.attcode not in allowed:
                continue
            records.append(
                ChangeRecord(
                    object_key=op.objkey,
                    object_class=op.objclass,
                    attribute_code=op.attcode,
                    old_value=None,
                    new_value=None,
                    changed_at=op.date,
                    actor_id=op.user_id or None,
                    actor_name=op.userinfo,
                    kind=ChangeKind.CASE_LOG,
                )
            )
        records.sort(key=lambda r: r.changed_at)
        logger.debug("Found %d case log changes for user %s", len(records), user_id)
        return records

    # ── Team queue ─────────────────────────────────────────────────────

    def get_team_assignment_changes(
        self,
        user_id: str,
        team_ids: Sequence[str],
        since: int,
    ) -> list[TeamAssignment]:
        """Tickets routed to one of ``team_ids`` after ``since`` that still have no agent.

        Covers both tickets moved to the team (``team_id`` change) and tickets
        created directly in the team.
        """
        if not team_ids:
            return []

        since_text = oql_quote(format_itop_datetime(since, self._tz))
        teams = oql_key_list(team_ids)
        found: dict[str, TeamAssignment] = {}

        for cls in TICKET_CLASSES:
            unassigned = self._client.core_get(
                user_id,
                cls,
                f"SELECT {cls} WHERE team_id IN ({teams}) AND agent_id = 0"
                f" AND status NOT IN ({oql_string_list(DONE_STATUSES)})",
                ("id", "team_id", "start_date"),
            )
            candidates = {}
            for obj_key, fields in unassigned.items():
                ticket_id = str(fields.get("id") or obj_key.rsplit(":", 1)[-1])
                candidates[ticket_id] = fields
            if not candidates:
                continue

            moves = self._client.core_get(
                user_id,
                SCALAR_CHANGE_CLASS,
                f"SELECT {SCALAR_CHANGE_CLASS} WHERE objclass = {oql_quote(cls)}"
                f" AND objkey IN ({oql_key_list(candidates)}) AND attcode = 'team_id'"
                f" AND newvalue IN ({teams}) AND date > {since_text}",
                _SCALAR_FIELDS,
            )
            for fields in moves.values():
                op = validate_change_op(fields, ScalarChangeOp)
                if op is None or op.objkey not in candidates or op.oldvalue == op.newvalue:
                    continue
                found[op.objkey] = TeamAssignment(op.objkey, cls, op.newvalue, op.date)

            for ticket_id, fields in candidates.items():
                start_date = str(fields.get("start_date") or "")
                started = to_epoch(start_date, self._tz)
                if ticket_id not in found and started is not None and started > since:
                    found[ticket_id] = TeamAssignment(ticket_id, cls, str(fields.get("team_id") or ""), start_date)

        result = sorted(found.values(), key=lambda a: a.timestamp)
        logger.debug("Found %d new unassigned team tickets for user %s", len(result), user_id)
        return result

    # ── SLA deadlines ──────────────────────────────────────────────────

    def _deadline_candidates(self, user_id: str, deadline_kind: str, scope: str) -> list[tuple[str, str, str]]:
        person_id = self._config.get_person_id(user_id)
        if not person_id:
            return []

        if scope == SCOPE_MINE:
            condition = f"agent_id = {oql_key(person_id)}"
        elif scope == SCOPE_TEAM_UNASSIGNED:
            teams = self._directory.user_teams(user_id, person_id)
            if not teams:
                return []
            condition = f"team_id IN ({oql_key_list(t['id'] for t in teams)}) AND agent_id = 0"
        else:
            raise ValueError(f"Unknown deadline scope: {scope}")

        deadline_field = DEADLINE_FIELDS[deadline_kind]
        candidates = []
        for cls in TICKET_CLASSES:
            objects = self._client.core_get(
                user_id,
                cls,
                f"SELECT {cls} WHERE {condition} AND status NOT IN ({oql_string_list(DONE_STATUSES)})",
                ("id", deadline_field),
            )
            for obj_key, fields in objects.items():
                ticket = TicketDeadlineFields.model_validate(
                    {"id": fields.get("id") or obj_key.rsplit(":", 1)[-1], "deadline": fields.get(deadline_field)}
                )
                candidates.append((ticket.id, cls, ticket.deadline))
        return candidates

    def get_tickets_approaching_deadline(
        self,
        user_id: str,
        deadline_kind: str,
        scope: str,
        since: int,
        now: int,
    ) -> list[DeadlineWarning]:
        """Tickets that newly crossed a 24h/12h/4h/1h threshold in ``(since, now]``.

        Only levels tighter than the one last signalled for the ticket are
        returned; call ``record_warning()`` once a warning has been sent.
        """
        if deadline_kind not in DEADLINE_FIELDS:
            raise ValueError(f"Unknown deadline kind: {deadline_kind}")

        candidates = self._deadline_candidates(user_id, deadline_kind, scope)
        tracker = SlaWarningTracker(self._config.get_sla_warning_levels(user_id, deadline_kind))
        tracker.prune(f"{cls}:{ticket_id}" for ticket_id, cls, _ in candidates)

        warnings = []
        for ticket_id, cls, deadline_text in candidates:
            deadline = to_epoch(deadline_text, self._tz)
            if deadline is None:
                continue
            level = crossed_threshold(deadline, since, now)
            if level is None or not tracker.should_signal(f"{cls}:{ticket_id}", level):
                continue
            warnings.append(DeadlineWarning(ticket_id, cls, level, deadline_text, crossing_time(deadline, level)))

        if tracker.dirty:
            self._config.set_sla_warning_levels(user_id, deadline_kind, tracker.levels)

        warnings.sort(key=lambda w: w.crossed_at)
        logger.debug(
            "%d %s deadline warnings (%s) for user %s", len(warnings), deadline_kind.upper(), scope, user_id
        )
        return warnings

    def record_warning(self, user_id: str, deadline_kind: str, warning: DeadlineWarning) -> None:
        tracker = SlaWarningTracker(self._config.get_sla_warning_levels(user_id, deadline_kind))
        tracker.record(f"{warning.ticket_class}:{warning.ticket_id}", warning.level)
        self._config.set_sla_warning_levels(user_id, deadline_kind, tracker.levels)
