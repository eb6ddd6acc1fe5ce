"""Tests for SLA threshold crossing."""

from itop_notify.changes.sla import SlaWarningTracker, crossed_threshold, crossing_time

HOUR = 3600
DEADLINE = 1_000_000


class TestCrossedThreshold:
    def test_nothing_crossed(self):
        # deadline 30h away, window of 5 minutes
        now = DEADLINE - 30 * HOUR
        assert crossed_threshold(DEADLINE, now - 300, now) is None

    def test_single_crossing(self):
        now = DEADLINE - 24 * HOUR + 60
        assert crossed_threshold(DEADLINE, now - 300, now) == 24

    def test_crossing_exactly_at_now_counts(self):
        now = DEADLINE - 12 * HOUR
        assert crossed_threshold(DEADLINE, now - 300, now) == 12

    def test_crossing_exactly_at_since_does_not(self):
        since = DEADLINE - 12 * HOUR
        assert crossed_threshold(DEADLINE, since, since + 300) is None

    def test_long_window_reports_tightest(self):
        now = DEADLINE - 30 * 60
        assert crossed_threshold(DEADLINE, now - 48 * HOUR, now) == 1

    def test_past_deadline_is_ignored(self):
        assert crossed_threshold(DEADLINE, DEADLINE - 2 * HOUR, DEADLINE + 1) is None

    def test_crossing_time(self):
        assert crossing_time(DEADLINE, 4) == DEADLINE - 4 * HOUR


class TestTracker:
    def test_each_level_signalled_once(self):
        tracker = SlaWarningTracker()
        signalled = []
        # three polls, each crossing a new threshold: 24h, 12h, 4h
        for level in (24, 12, 4):
            if tracker.should_signal("UserRequest:1", level):
                tracker.record("UserRequest:1", level)
                signalled.append(level)
            # a replay of the same level never signals again
            assert not tracker.should_signal("UserRequest:1", level)
        assert signalled == [24, 12, 4]

    def test_looser_level_after_tighter_is_suppressed(self):
        tracker = SlaWarningTracker({"UserRequest:1": 4})
        assert not tracker.should_signal("UserRequest:1", 12)
        assert tracker.should_signal("UserRequest:1", 1)

    def test_prune_forgets_tickets_out_of_scope(self):
        tracker = SlaWarningTracker({"UserRequest:1": 4, "Incident:2": 1})
        tracker.prune(["Incident:2"])
        assert tracker.levels == {"Incident:2": 1}
        assert tracker.dirty

    def test_prune_without_changes_is_clean(self):
        tracker = SlaWarningTracker({"UserRequest:1": 4})
        tracker.prune(["UserRequest:1"])
        assert not tracker.dirty
