"""Tests for change detection against the iTop change log."""

from datetime import UTC

import pytest
from conftest import NOW, case_log_op, objects_of, scalar_op

from itop_notify.changes.detector import SCOPE_MINE, SCOPE_TEAM_UNASSIGNED, ChangeDetector
from itop_notify.changes.models import ChangeKind
from itop_notify.tickets.service import TicketDirectory
from itop_notify.timeutil import format_itop_datetime

SCALAR = "CMDBChangeOpSetAttributeScalar"
CASE_LOG = "CMDBChangeOpSetAttributeCaseLog"
HOUR = 3600


@pytest.fixture
def detector(fake_client, ttl_cache, config):
    return ChangeDetector(fake_client, TicketDirectory(fake_client, ttl_cache), config, UTC)


class TestGetChanges:
    def test_no_ids_means_no_remote_call(self, detector, fake_client):
        assert detector.get_changes("alice", [], NOW - HOUR, ["agent_id"]) == []
        assert fake_client.calls == []

    def test_query_shape(self, detector, fake_client):
        detector.get_changes("alice", ["42", "43"], NOW - HOUR, ["status", "agent_id"])
        (query,) = fake_client.queries(SCALAR)
        assert "objkey IN (42,43)" in query
        assert "objclass IN ('UserRequest','Incident')" in query
        assert "attcode IN ('status','agent_id')" in query
        assert "date > '2025-11-05 11:00:00'" in query

    def test_allow_list_and_ordering(self, detector, fake_client):
        fake_client.on(
            SCALAR,
            objects={
                "c1": scalar_op(42, "agent_id", "3", "5", "2025-11-05 11:40:00", user_id="2"),
                "c2": scalar_op(42, "status", "new", "assigned", "2025-11-05 11:20:00"),
                "c3": scalar_op(43, "agent_id", "5", "5", "2025-11-05 11:10:00"),
            },
        )
        changes = detector.get_changes("alice", ["42", "43"], NOW - HOUR, ["agent_id"])
        assert [c.object_key for c in changes] == ["43", "42"]
        assert changes[0].is_noop
        assert changes[1].old_value == "3" and changes[1].actor_id == "2"

    def test_malformed_records_are_skipped(self, detector, fake_client):
        fake_client.on(SCALAR, objects={"c1": {"objclass": "UserRequest"}})
        assert detector.get_changes("alice", ["1"], NOW - HOUR, ["agent_id"]) == []


class TestGetCaseLogChanges:
    def test_case_log_records(self, detector, fake_client):
        fake_client.on(
            CASE_LOG,
            objects={
                "l1": case_log_op(7, "public_log", "2025-11-05 11:30:00", "0", "System"),
                "l2": case_log_op(7, "public_log", "2025-11-05 11:35:00", "12", "Bob Agent"),
            },
        )
        changes = detector.get_case_log_changes("alice", ["7"], NOW - HOUR, ["public_log"])
        assert [c.kind for c in changes] == [ChangeKind.CASE_LOG, ChangeKind.CASE_LOG]
        assert changes[0].is_system
        assert changes[1].actor_id == "12" and changes[1].actor_name == "Bob Agent"
        assert not any(c.is_noop for c in changes)


class TestTeamAssignments:
    def test_moved_and_created_tickets(self, detector, fake_client):
        fake_client.on(
            "UserRequest",
            "team_id IN (7)",
            "agent_id = 0",
            objects=objects_of(
                "UserRequest",
                {"id": "10", "team_id": "7", "start_date": "2025-11-01 09:00:00"},
                {"id": "11", "team_id": "7", "start_date": "2025-11-05 11:30:00"},
                {"id": "12", "team_id": "7", "start_date": "2025-11-02 09:00:00"},
            ),
        )
        fake_client.on(
            SCALAR,
            "attcode = 'team_id'",
            objects={"c1": scalar_op(10, "team_id", "3", "7", "2025-11-05 11:15:00")},
        )
        found = detector.get_team_assignment_changes("alice", ["7"], NOW - HOUR)
        assert [(a.ticket_id, a.team_id, a.timestamp) for a in found] == [
            ("10", "7", "2025-11-05 11:15:00"),
            ("11", "7", "2025-11-05 11:30:00"),
        ]

    def test_no_teams(self, detector, fake_client):
        assert detector.get_team_assignment_changes("alice", [], NOW - HOUR) == []
        assert fake_client.calls == []


class TestApproachingDeadline:
    def _deadline(self, seconds_from_now):
        return format_itop_datetime(NOW + seconds_from_now, UTC)

    def test_crossing_reported_until_recorded(self, detector, fake_client, config, make_user):
        make_user("alice", person_id="5")
        fake_client.on(
            "UserRequest",
            "agent_id = 5",
            objects=objects_of(
                "UserRequest",
                {"id": "1", "ttr_escalation_deadline": self._deadline(24 * HOUR - 60)},
                {"id": "2", "ttr_escalation_deadline": self._deadline(72 * HOUR)},
                {"id": "3", "ttr_escalation_deadline": ""},
            ),
        )

        warnings = detector.get_tickets_approaching_deadline("alice", "ttr", SCOPE_MINE, NOW - 300, NOW)
        assert [(w.ticket_id, w.level, w.crossed_at) for w in warnings] == [("1", 24, NOW - 60)]

        detector.record_warning("alice", "ttr", warnings[0])
        assert config.get_sla_warning_levels("alice", "ttr") == {"UserRequest:1": 24}
        assert detector.get_tickets_approaching_deadline("alice", "ttr", SCOPE_MINE, NOW - 300, NOW) == []

    def test_stale_levels_are_pruned(self, detector, fake_client, config, make_user):
        make_user("alice", person_id="5")
        config.set_sla_warning_levels("alice", "ttr", {"UserRequest:99": 4})
        detector.get_tickets_approaching_deadline("alice", "ttr", SCOPE_MINE, NOW - 300, NOW)
        assert config.get_sla_warning_levels("alice", "ttr") == {}

    def test_team_scope_targets_unassigned_team_tickets(self, detector, fake_client, make_user):
        make_user("alice", person_id="5")
        fake_client.on("Team", "l.person_id = 5", objects=objects_of("Team", {"id": "7", "friendlyname": "L1"}))
        fake_client.on(
            "Incident",
            "team_id IN (7) AND agent_id = 0",
            objects=objects_of("Incident", {"id": "8", "tto_escalation_deadline": self._deadline(4 * HOUR - 10)}),
        )
        warnings = detector.get_tickets_approaching_deadline("alice", "tto", SCOPE_TEAM_UNASSIGNED, NOW - 300, NOW)
        assert [(w.ticket_id, w.ticket_class, w.level) for w in warnings] == [("8", "Incident", 4)]

    def test_unknown_kind_rejected(self, detector):
        with pytest.raises(ValueError):
            detector.get_tickets_approaching_deadline("alice", "sla", SCOPE_MINE, NOW - 300, NOW)
