"""Unit tests for --robot-send and --robot-interrupt."""

from unittest.mock import AsyncMock, patch

import pytest

from ntm_robot.cass.inject import CASSQueryResult, FilterResult, InjectionMetadata, InjectionResult
from ntm_robot.core.enums import AgentKind
from ntm_robot.robot.common import session_panes
from ntm_robot.robot.send import (
    SendOptions,
    enter_delay_for,
    get_interrupt,
    get_send,
    select_targets,
    send_hints,
)
from ntm_robot.tmux.adapter import DEFAULT_ENTER_DELAY, SHELL_ENTER_DELAY
from ntm_robot.utils.logging import ValidationError


class TestSelectTargets:
    """Test target selection."""

    def keys(self, targets):
        return [t.key for t in targets]

    @pytest.mark.asyncio
    async def test_default_skips_user_pane(self, robot_app):
        """Test the user pane is skipped without --all or filters."""
        panes = await session_panes(robot_app, "proj")
        assert self.keys(select_targets(panes)) == ["1", "2", "3"]
        assert self.keys(select_targets(panes, send_all=True)) == ["0", "1", "2", "3"]

    @pytest.mark.asyncio
    async def test_filters(self, robot_app):
        """Test pane, type and exclude filters."""
        panes = await session_panes(robot_app, "proj")
        assert self.keys(select_targets(panes, pane_filter=["2"])) == ["2"]
        assert self.keys(select_targets(panes, pane_filter=["%0"])) == ["0"]
        assert self.keys(select_targets(panes, agent_types=["cc", "gmi"])) == ["1", "3"]
        assert self.keys(select_targets(panes, agent_types=["user"])) == ["0"]
        assert self.keys(select_targets(panes, exclude=["1", "%3"])) == ["2"]
        assert self.keys(select_targets(panes, send_all=True, exclude=["0"])) == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_unknown_type(self, robot_app):
        """Test an unknown agent type is rejected."""
        panes = await session_panes(robot_app, "proj")
        with pytest.raises(ValidationError):
            select_targets(panes, agent_types=["vim"])


class TestSendHelpers:
    """Test send helpers."""

    def test_enter_delay(self):
        """Test shells get the longer Enter delay."""
        assert enter_delay_for(AgentKind.CLAUDE) == DEFAULT_ENTER_DELAY
        assert enter_delay_for(AgentKind.USER) == SHELL_ENTER_DELAY

    def test_hints(self):
        """Test hints for each outcome."""
        assert send_hints(["1"], ["1"], []).summary == "Sent to 1 agent(s) successfully"
        partial = send_hints(["1", "2"], ["1"], [{"pane": "2", "error": "x"}])
        assert partial.suggestions == ["Retry failed panes individually: --panes=2"]
        assert send_hints(["1"], [], [{"pane": "1", "error": "x"}]).summary == "All 1 sends failed"
        assert send_hints([], [], []).summary == "No target panes matched the filter criteria"
        assert send_hints(["1"], [], []) is None


class TestGetSend:
    """Test the send operation."""

    @pytest.mark.asyncio
    async def test_send(self, robot_app, fake_tmux):
        """Test a message reaches every agent pane."""
        envelope = await get_send(robot_app, SendOptions(session="proj", message="run the tests"))
        assert envelope["success"] is True
        assert envelope["targets"] == ["1", "2", "3"]
        assert envelope["successful"] == ["1", "2", "3"]
        assert envelope["failed"] == []
        assert envelope["message_preview"] == "run the tests"
        assert [(s[0], s[2], s[3]) for s in fake_tmux.sent] == [
            ("%1", "run the tests", True),
            ("%2", "run the tests", True),
            ("%3", "run the tests", True),
        ]
        assert fake_tmux.sent[0][1] is AgentKind.CLAUDE
        assert envelope["_agent_hints"]["summary"] == "Sent to 3 agent(s) successfully"

    @pytest.mark.asyncio
    async def test_no_enter(self, robot_app, fake_tmux):
        """Test --no-enter is passed through."""
        await get_send(robot_app, SendOptions(session="proj", message="draft", panes=["1"], enter=False))
        assert fake_tmux.sent == [("%1", AgentKind.CLAUDE, "draft", False)]

    @pytest.mark.asyncio
    async def test_dry_run(self, robot_app, fake_tmux):
        """Test a dry run reports targets without sending."""
        envelope = await get_send(robot_app, SendOptions(session="proj", message="hi", dry_run=True))
        assert envelope["success"] is True
        assert envelope["dry_run"] is True
        assert envelope["would_send_to"] == ["1", "2", "3"]
        assert fake_tmux.sent == []

    @pytest.mark.asyncio
    async def test_dry_run_no_targets(self, robot_app):
        """Test a dry run matching nothing fails."""
        envelope = await get_send(
            robot_app, SendOptions(session="proj", message="hi", panes=["9"], dry_run=True)
        )
        assert envelope["success"] is False
        assert envelope["error_code"] == "INVALID_FLAG"
        assert envelope["would_send_to"] == []

    @pytest.mark.asyncio
    async def test_no_targets(self, robot_app, fake_tmux):
        """Test a send matching nothing fails."""
        envelope = await get_send(robot_app, SendOptions(session="proj", message="hi", panes=["9"]))
        assert envelope["error_code"] == "INVALID_FLAG"
        assert envelope["_agent_hints"]["summary"] == "No target panes matched the filter criteria"
        assert fake_tmux.sent == []

    @pytest.mark.asyncio
    async def test_partial_failure(self, robot_app, fake_tmux):
        """Test failed panes are reported alongside successful ones."""
        fake_tmux.fail_send.add("%2")
        envelope = await get_send(robot_app, SendOptions(session="proj", message="hi"))
        assert envelope["success"] is False
        assert envelope["error_code"] == "INTERNAL_ERROR"
        assert envelope["error"] == "1 of 3 sends failed"
        assert envelope["successful"] == ["1", "3"]
        assert envelope["failed"] == [{"pane": "2", "error": "can't find pane: %2"}]
        assert envelope["hint"] == "Retry failed panes individually: --panes=2"

    @pytest.mark.asyncio
    async def test_missing_session(self, robot_app):
        """Test an unknown session."""
        envelope = await get_send(robot_app, SendOptions(session="nope", message="hi"))
        assert envelope["error_code"] == "SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_blank_session(self, robot_app):
        """Test a blank session name is rejected."""
        envelope = await get_send(robot_app, SendOptions(session="  ", message="hi"))
        assert envelope["error_code"] == "INVALID_FLAG"

    @pytest.mark.asyncio
    async def test_delay_between_sends(self, robot_app):
        """Test --delay-ms pauses between consecutive panes."""
        with patch("ntm_robot.robot.send.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await get_send(robot_app, SendOptions(session="proj", message="hi", delay_ms=250))
        assert [c.args[0] for c in sleep.await_args_list] == [0.25, 0.25]

    @pytest.mark.asyncio
    async def test_with_cass(self, robot_app, fake_tmux):
        """Test injected context replaces the sent message."""
        injection = InjectionResult(
            success=True,
            modified_prompt="CONTEXT\n\n---\n\nfix auth",
            injected_context="CONTEXT",
            metadata=InjectionMetadata(items_found=1, items_injected=1, tokens_added=2),
        )
        result = (injection, CASSQueryResult(success=True, query="auth"), FilterResult())
        with patch(
            "ntm_robot.robot.send.query_and_inject", AsyncMock(return_value=result)
        ) as query:
            envelope = await get_send(
                robot_app, SendOptions(session="proj", message="fix auth", panes=["2"], with_cass=True)
            )
        assert fake_tmux.sent[0][2] == "CONTEXT\n\n---\n\nfix auth"
        assert envelope["cass_injection"]["items_injected"] == 1
        assert envelope["cass_injection"]["query"] == "auth"
        assert envelope["message_preview"] == "fix auth"
        inject_config = query.await_args.args[3]
        assert inject_config.format.value == "minimal"


class TestGetInterrupt:
    """Test the interrupt operation."""

    @pytest.mark.asyncio
    async def test_interrupt(self, robot_app, fake_tmux):
        """Test Ctrl-C goes to every agent pane."""
        envelope = await get_interrupt(robot_app, "proj")
        assert envelope["success"] is True
        assert envelope["interrupted"] == ["1", "2", "3"]
        assert fake_tmux.interrupted == ["%1", "%2", "%3"]
        assert envelope["_agent_hints"]["suggestions"] == ["Check the panes settle with --robot-wait=proj"]

    @pytest.mark.asyncio
    async def test_interrupt_filtered(self, robot_app, fake_tmux):
        """Test type filters apply."""
        await get_interrupt(robot_app, "proj", agent_types=["codex"])
        assert fake_tmux.interrupted == ["%2"]

    @pytest.mark.asyncio
    async def test_interrupt_missing_session(self, robot_app):
        """Test an unknown session."""
        envelope = await get_interrupt(robot_app, "nope")
        assert envelope["error_code"] == "SESSION_NOT_FOUND"
