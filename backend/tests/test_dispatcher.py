"""Tests for notification dispatch."""

import hashlib
import json
from datetime import UTC, datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

from itop_notify.notifications.dispatcher import NotificationBudget, NotificationDispatcher, idempotency_key
from itop_notify.notifications.models import Notification
from itop_notify.notifications.sink import NotificationManager


def _dispatcher(db_session, clock, tz=UTC):
    return NotificationDispatcher(NotificationManager(db_session), tz, clock)


class TestBudget:
    def test_consume_until_exhausted(self):
        budget = NotificationBudget(2)
        assert budget.consume()
        assert budget.consume()
        assert budget.exhausted
        assert not budget.consume()
        assert budget.remaining() == 0

    def test_cannot_overdraw(self):
        budget = NotificationBudget(3)
        assert not budget.consume(4)
        assert budget.remaining() == 3


class TestIdempotencyKey:
    def test_key_shape(self):
        digest = hashlib.md5(b"2025-11-05 10:00:00").hexdigest()[:8]
        key = idempotency_key("42", "ticket_reassigned", "2025-11-05 10:00:00", {})
        assert key == f"42|ticket_reassigned|{digest}"

    def test_missing_timestamp_is_still_deterministic(self):
        params = {"ticket_id": "42", "level": 4}
        assert idempotency_key("42", "s", None, params) == idempotency_key("42", "s", None, dict(params))


class TestNormalizeTimestamp:
    def test_itop_format_in_configured_zone(self, db_session, clock):
        dispatcher = _dispatcher(db_session, clock, ZoneInfo("Europe/Paris"))
        parsed = dispatcher.normalize_timestamp("2025-11-05 22:40:21")
        assert parsed == datetime(2025, 11, 5, 21, 40, 21, tzinfo=UTC)

    def test_loose_iso_format(self, db_session, clock):
        parsed = _dispatcher(db_session, clock).normalize_timestamp("2025-11-05T22:40:21")
        assert parsed == datetime(2025, 11, 5, 22, 40, 21, tzinfo=UTC)

    def test_garbage_falls_back_to_now(self, db_session, clock):
        parsed = _dispatcher(db_session, clock).normalize_timestamp("yesterday-ish")
        assert parsed == datetime.fromtimestamp(clock(), UTC)


class TestUserNotifier:
    def test_cap_of_twenty(self, db_session, clock):
        notifier = _dispatcher(db_session, clock).for_user("alice", "9", limit=20)
        results = [
            notifier.notify("ticket_comment", {"ticket_id": str(i), "timestamp": "2025-11-05 10:00:00"}, "3")
            for i in range(25)
        ]
        assert results.count(True) == 20
        assert db_session.query(Notification).count() == 20

    def test_self_caused_events_are_suppressed(self, db_session, clock):
        notifier = _dispatcher(db_session, clock).for_user("alice", "9")
        assert not notifier.notify("ticket_comment", {"ticket_id": "1", "timestamp": "2025-11-05 10:00:00"}, "9")
        assert notifier.suppressed == 1
        assert notifier.budget.remaining() == 20
        assert db_session.query(Notification).count() == 0

    def test_replayed_event_is_stored_once(self, db_session, clock):
        dispatcher = _dispatcher(db_session, clock)
        params = {"ticket_id": "42", "timestamp": "2025-11-05 10:00:00"}
        dispatcher.for_user("alice", "9").notify("ticket_assigned", params)
        dispatcher.for_user("alice", "9").notify("ticket_assigned", params)
        db_session.commit()
        rows = db_session.query(Notification).all()
        assert len(rows) == 1
        assert rows[0].object_type == "ticket"
        assert rows[0].object_id.startswith("42|ticket_assigned|")
        assert json.loads(rows[0].parameters) == params

    def test_sink_failure_is_logged_not_raised(self, clock, caplog):
        sink = MagicMock()
        sink.notify.side_effect = RuntimeError("store down")
        dispatcher = NotificationDispatcher(sink, UTC, clock)
        notifier = dispatcher.for_user("alice", None)
        assert notifier.notify("ticket_assigned", {"ticket_id": "1"}) is True
        assert "Failed to send ticket_assigned" in caplog.text
