"""Unit tests for the state change tracker."""

from datetime import timedelta

import pytest

from ntm_robot.tracker.tracker import ChangeKind, StateChange, StateTracker


@pytest.fixture
def tracker(frozen_clock):
    return StateTracker(capacity=10, clock=frozen_clock.now)


class TestStateTracker:
    """Test suite for StateTracker."""

    def test_record_timestamps(self, tracker, frozen_clock):
        """Test unset timestamps come from the clock."""
        change = tracker.record(StateChange(ChangeKind.ALERT, "proj"))
        assert change.timestamp == frozen_clock.now()
        assert tracker.count() == 1

    def test_capacity_evicts_oldest(self, frozen_clock):
        """Test the ring buffer drops the oldest change when full."""
        tracker = StateTracker(capacity=3, clock=frozen_clock.now)
        for i in range(5):
            tracker.record_agent_output("proj", f"%{i}", "x")
            frozen_clock.advance(1)
        assert [c.pane for c in tracker.all()] == ["%2", "%3", "%4"]

    def test_invalid_capacity_uses_default(self):
        """Test non-positive capacities fall back to the default."""
        assert StateTracker(capacity=0).capacity == 4096

    def test_late_arrivals_ordered(self, tracker, frozen_clock):
        """Test out-of-order changes are inserted by timestamp."""
        early = frozen_clock.now()
        frozen_clock.advance(10)
        tracker.record_session_created("b")
        tracker.record(StateChange(ChangeKind.SESSION_CREATED, "a", timestamp=early))
        assert [c.session for c in tracker.all()] == ["a", "b"]

    def test_since_is_inclusive(self, tracker, frozen_clock):
        """Test changes exactly at the cutoff are included."""
        tracker.record_agent_state("proj", "%1", "waiting")
        cutoff = frozen_clock.now()
        frozen_clock.advance(5)
        tracker.record_agent_state("proj", "%1", "generating")
        assert len(tracker.since(cutoff)) == 2
        assert len(tracker.since(cutoff + timedelta(seconds=1))) == 1

    def test_filters(self, tracker, frozen_clock):
        """Test filtering by kind and by session."""
        start = frozen_clock.now()
        tracker.record_alert("a", "%1", "agent_error", "boom")
        tracker.record_pane_created("b", "%2", "claude")
        tracker.record_pane_removed("b", "%2")
        tracker.record_session_removed("a")
        assert [c.kind for c in tracker.since_by_type(start, ChangeKind.ALERT)] == [ChangeKind.ALERT]
        assert len(tracker.since_by_session(start, "b")) == 2

    def test_returns_copies(self, tracker):
        """Test callers cannot mutate stored details."""
        tracker.record_alert("a", "%1", "agent_error", "boom")
        tracker.all()[0].details["message"] = "changed"
        assert tracker.all()[0].details["message"] == "boom"

    def test_max_age_prunes(self, frozen_clock):
        """Test old changes are pruned on record and on demand."""
        tracker = StateTracker(max_age=timedelta(seconds=60), clock=frozen_clock.now)
        tracker.record_session_created("old")
        frozen_clock.advance(61)
        tracker.record_session_created("new")
        assert [c.session for c in tracker.all()] == ["new"]
        frozen_clock.advance(61)
        tracker.prune()
        assert tracker.count() == 0

    def test_clear(self, tracker):
        """Test clearing empties the buffer."""
        tracker.record_session_created("a")
        tracker.clear()
        assert tracker.all() == []

    def test_coalesce(self, tracker, frozen_clock):
        """Test consecutive same-pane changes merge."""
        first = frozen_clock.now()
        tracker.record_agent_output("proj", "%1", "a")
        frozen_clock.advance(2)
        tracker.record_agent_output("proj", "%1", "b")
        tracker.record_agent_output("proj", "%2", "c")
        tracker.record_agent_output("proj", "%1", "d")
        coalesced = tracker.coalesce()
        assert [(c.pane, c.count) for c in coalesced] == [("%1", 2), ("%2", 1), ("%1", 1)]
        assert coalesced[0].first_at == first
        assert coalesced[0].last_at == first + timedelta(seconds=2)

    def test_to_dict(self, tracker):
        """Test change serialization omits empty fields."""
        data = tracker.record_session_created("proj").to_dict()
        assert data["type"] == "session_created"
        assert data["session"] == "proj"
        assert "pane" not in data
        assert "details" not in data
