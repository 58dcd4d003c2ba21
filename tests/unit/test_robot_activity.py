"""Unit tests for context, activity, diff and the session monitor."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from ntm_robot.activity.indicators import COLOR_ACTIVE
from ntm_robot.app import RobotApp
from ntm_robot.config.loader import RobotConfig
from ntm_robot.robot.activity import get_activity, get_context
from ntm_robot.robot.diff import get_diff
from ntm_robot.robot.monitor import SessionMonitor, run_monitor
from ntm_robot.tracker.tracker import ChangeKind
from ntm_robot.utils.logging import SessionNotFoundError


def ago(seconds: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=seconds)


class TestContext:
    """Test --robot-context."""

    @pytest.mark.asyncio
    async def test_context(self, robot_app, fake_tmux):
        """Test per-agent estimates with hints."""
        fake_tmux.outputs["%1"] = "x" * 4000
        envelope = await get_context(robot_app, "proj")
        assert envelope["success"] is True
        assert envelope["lines"] == 1000
        assert [a["pane"] for a in envelope["agents"]] == ["1", "2", "3"]
        assert envelope["agents"][0]["estimated_tokens"] == 1000
        assert envelope["summary"]["total_agents"] == 3
        hints = envelope["_agent_hints"]
        assert hints["suggestions"] == ["All agents healthy - context usage is low across the board"]
        assert hints["low_usage_agents"] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_missing_session(self, robot_app):
        """Test an unknown session."""
        envelope = await get_context(robot_app, "nope")
        assert envelope["error_code"] == "SESSION_NOT_FOUND"


class TestActivity:
    """Test --robot-activity."""

    @pytest.fixture
    def panes(self, fake_tmux):
        fake_tmux.outputs.update({"%1": "Claude Sonnet\n> ", "%2": "error: build failed", "%3": "done"})
        fake_tmux.last_activity.update({"%1": ago(60), "%2": ago(1), "%3": ago(300)})

    @pytest.mark.asyncio
    async def test_activity(self, robot_app, panes):
        """Test waiting, error and stalled panes are classified."""
        envelope = await get_activity(robot_app, "proj")
        states = {a["pane"]: a["state"] for a in envelope["agents"]}
        assert states == {"%1": "waiting", "%2": "error", "%3": "stalled"}
        assert envelope["summary"] == {
            "total_agents": 3,
            "by_state": {"error": 1, "stalled": 1, "waiting": 1},
        }
        hints = envelope["_agent_hints"]
        assert hints["summary"] == "1 available, 0 busy, 2 need attention"
        assert hints["available_agents"] == ["%1"]
        assert hints["problem_agents"] == ["%2", "%3"]

    @pytest.mark.asyncio
    async def test_transitions_tracked(self, robot_app, panes):
        """Test classified states are recorded in the tracker."""
        await get_activity(robot_app, "proj")
        changes = robot_app.tracker.all()
        assert {c.pane for c in changes} == {"%1", "%2", "%3"}
        assert all(c.kind is ChangeKind.AGENT_STATE for c in changes)

    @pytest.mark.asyncio
    async def test_filters(self, robot_app, fake_tmux, panes):
        """Test pane and type filters and skipped captures."""
        envelope = await get_activity(robot_app, "proj", agent_types=["codex"])
        assert [a["pane"] for a in envelope["agents"]] == ["%2"]
        fake_tmux.fail_capture.add("%1")
        envelope = await get_activity(robot_app, "proj", panes=["1", "3"])
        assert [a["pane"] for a in envelope["agents"]] == ["%3"]


class TestDiff:
    """Test --robot-diff."""

    @pytest.fixture
    def diff_app(self, git_repo, fake_tmux, mock_tools, mock_agent_mail):
        root = git_repo.working_tree_dir
        config = RobotConfig(
            conflicts={"repo_path": root}, alerts={"log_to_stderr": False}, tools={"project": root}
        )
        return RobotApp(config, tmux=fake_tmux, tools=mock_tools, agent_mail=mock_agent_mail)

    @pytest.mark.asyncio
    async def test_concurrent_activity(self, diff_app, git_repo, fake_tmux):
        """Test a change made while several agents were active."""
        Path(git_repo.working_tree_dir, "README.md").write_text("changed\n")
        later = datetime.now(timezone.utc) + timedelta(seconds=2)
        fake_tmux.last_activity.update({"%1": later, "%2": later, "%3": ago(3600)})

        envelope = await get_diff(diff_app, "proj")
        assert envelope["success"] is True
        assert [f["path"] for f in envelope["files"]["modified"]] == ["README.md"]
        assert envelope["files"]["potential_conflicts"] == ["README.md"]
        assert envelope["changes"][0]["agents"] == ["%1", "%2"]
        assert envelope["conflict_summary"]["high_confidence"] == 1
        activity = {a["pane"]: a["active_in_window"] for a in envelope["agent_activity"]}
        assert activity == {"%1": True, "%2": True, "%3": False}
        action = envelope["_agent_hints"]["suggested_actions"][0]
        assert action == {
            "action": "coordinate",
            "target": "README.md",
            "reason": envelope["conflict_summary"]["conflicts"][0]["details"],
            "priority": 1,
        }

    @pytest.mark.asyncio
    async def test_clean_tree(self, diff_app):
        """Test a clean tree reports nothing."""
        envelope = await get_diff(diff_app, "proj", since="1h")
        assert envelope["files"]["modified"] == []
        assert envelope["changes"] == []
        assert envelope["conflict_summary"]["total_conflicts"] == 0

    @pytest.mark.asyncio
    async def test_not_a_repository(self, robot_app):
        """Test git failures degrade to warnings."""
        envelope = await get_diff(robot_app, "proj")
        assert envelope["success"] is True
        assert envelope["warnings"][0].startswith("git status unavailable")

    @pytest.mark.asyncio
    async def test_invalid_since(self, robot_app):
        """Test a bad --since value."""
        envelope = await get_diff(robot_app, "proj", since="later")
        assert envelope["error_code"] == "INVALID_FLAG"


class TestMonitor:
    """Test the session monitor."""

    @pytest.mark.asyncio
    async def test_poll(self, robot_app, fake_tmux):
        """Test one pass colours borders, classifies and alerts."""
        fake_tmux.outputs.update({"%1": "Claude Sonnet\n> ", "%2": "error: build failed"})
        monitor = SessionMonitor(robot_app, "proj")
        envelope = await monitor.poll()

        assert envelope["poll"] == 1
        assert len(envelope["agents"]) == 3
        assert envelope["indicators"] == {"%1": "active", "%2": "active", "%3": "active"}
        assert fake_tmux.borders == {"%1": COLOR_ACTIVE, "%2": COLOR_ACTIVE, "%3": COLOR_ACTIVE}
        alerts = [c for c in robot_app.tracker.all() if c.kind is ChangeKind.ALERT]
        assert [(a.pane, a.details["alert_type"]) for a in alerts] == [("%2", "error")]
        assert "conflicts" not in envelope

        await monitor.close()
        assert fake_tmux.borders == {"%1": None, "%2": None, "%3": None}

    @pytest.mark.asyncio
    async def test_removed_panes_and_conflicts(self, robot_app, fake_tmux):
        """Test vanished panes are recorded and conflicts checked periodically."""
        monitor = SessionMonitor(robot_app, "proj", conflict_check_every=2)
        await monitor.poll()
        fake_tmux.sessions["proj"].pop()
        envelope = await monitor.poll()

        assert "%3" not in monitor.classifiers
        removed = [c for c in robot_app.tracker.all() if c.kind is ChangeKind.PANE_REMOVED]
        assert [c.pane for c in removed] == ["%3"]
        assert envelope["conflicts"] == []
        assert any(w.startswith("git status unavailable") for w in envelope["_agent_hints"]["warnings"])

    @pytest.mark.asyncio
    async def test_run_monitor(self, robot_app, fake_tmux):
        """Test the generator stops after the requested polls and resets borders."""
        envelopes = [e async for e in run_monitor(robot_app, "proj", iterations=1)]
        assert len(envelopes) == 1
        assert set(fake_tmux.borders.values()) == {None}

    @pytest.mark.asyncio
    async def test_run_monitor_missing_session(self, robot_app):
        """Test an unknown session raises before polling."""
        with pytest.raises(SessionNotFoundError):
            async for _ in run_monitor(robot_app, "nope", iterations=1):
                pass
