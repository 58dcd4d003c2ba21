"""Unit tests for agent detection, output parsing and patterns."""

from unittest.mock import MagicMock, patch

import psutil
import pytest

from ntm_robot.agents.detector import (
    detect_agent,
    detect_session_agents,
    kind_from_command,
    kind_from_output,
    kind_from_process_tree,
)
from ntm_robot.agents.parser import OutputParser, ParserConfig
from ntm_robot.agents.patterns import (
    COD_PATTERNS,
    EMPTY_PATTERNS,
    collect_matches,
    extract_float,
    extract_int,
    get_pattern_set,
    header_patterns,
    last_lines,
    match_any,
    normalize_output,
    strip_ansi,
)
from ntm_robot.core.enums import AgentKind
from ntm_robot.tmux.models import Pane


class TestPatterns:
    """Test pattern helpers."""

    def test_strip_ansi(self):
        """Test CSI and OSC sequences are removed."""
        text = "\x1b[31mred\x1b[0m \x1b]0;title\x07done"
        assert strip_ansi(text) == "red done"

    def test_normalize_output(self):
        """Test line endings are normalised."""
        assert normalize_output("a\r\nb\rc") == "a\nb\nc"

    def test_match_any_substring_and_regex(self):
        """Test plain patterns match as substrings and regex entries as regexes."""
        assert match_any("Rate Limit hit", ("rate limit",))
        assert match_any("you have exceeded the daily limit", ("exceeded.*limit",))
        assert not match_any("all good", ("rate limit", "exceeded.*limit"))

    def test_collect_matches(self):
        """Test every matching pattern is returned."""
        matches = collect_matches("Reading file, running tests", ("reading ", "running ", "deleted "))
        assert matches == ["reading ", "running "]

    def test_extract_numbers(self):
        """Test the last captured number wins and commas are ignored."""
        text = "Token usage: total=1,000\nToken usage: total=12,345"
        assert extract_int(COD_PATTERNS.token_pattern, text) == 12345
        assert extract_float(COD_PATTERNS.context_pattern, "42% context left") == 42.0
        assert extract_int(COD_PATTERNS.token_pattern, "nothing") is None

    def test_last_lines(self):
        """Test tail extraction."""
        assert last_lines("a\nb\nc", 2) == "b\nc"
        assert last_lines("a", 5) == "a"

    def test_pattern_sets(self):
        """Test lookup by kind and banner priority."""
        assert get_pattern_set(AgentKind.USER) is EMPTY_PATTERNS
        assert get_pattern_set(AgentKind.CODEX) is COD_PATTERNS
        assert header_patterns()[0][0] is AgentKind.CLAUDE


class TestKindSignals:
    """Test individual detection signals."""

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("claude", AgentKind.CLAUDE),
            ("claude --continue", AgentKind.CLAUDE),
            ("/usr/local/bin/codex", AgentKind.CODEX),
            ("gemini", AgentKind.GEMINI),
            ("aider", AgentKind.AIDER),
            ("cc --resume", AgentKind.CLAUDE),
            ("/opt/bin/gmi", AgentKind.GEMINI),
            ("node /usr/lib/node_modules/@anthropic-ai/claude-code/cli.js", AgentKind.CLAUDE),
            ("vim", None),
            ("", None),
            ("   ", None),
            ("/usr/bin/ccache", None),
            ("python /home/me/code/app.py", None),
            ("node /srv/coder/server.js", None),
            ("ls /tmp/gmi-cache", None),
            ("codecov upload", None),
        ],
    )
    def test_kind_from_command(self, command, expected):
        """Test command name matching."""
        assert kind_from_command(command) is expected

    def test_kind_from_output(self):
        """Test banner matching in captured output."""
        assert kind_from_output("\x1b[1mWelcome to Claude Sonnet 4\x1b[0m") is AgentKind.CLAUDE
        assert kind_from_output("OpenAI Codex v0.40") is AgentKind.CODEX
        assert kind_from_output("$ ls") is None
        assert kind_from_output(None) is None

    def test_kind_from_process_tree(self):
        """Test interpreted CLIs are recognised through child processes."""
        child = MagicMock()
        child.cmdline.return_value = ["node", "/usr/lib/node_modules/@openai/codex/bin/codex.js"]
        child.name.return_value = "node"
        with patch("ntm_robot.agents.detector.psutil.Process") as process_cls:
            process_cls.return_value.children.return_value = [child]
            assert kind_from_process_tree(1234) is AgentKind.CODEX
            process_cls.assert_called_once_with(1234)

    @pytest.mark.parametrize(
        "cmdline", [["python", "cc.py"], ["node", "/srv/coder/server.js"], ["bash", "gmi.sh"]]
    )
    def test_kind_from_process_tree_ignores_alias_scripts(self, cmdline):
        """Test script names equal to a short alias are not agents."""
        child = MagicMock()
        child.cmdline.return_value = cmdline
        child.name.return_value = cmdline[0]
        with patch("ntm_robot.agents.detector.psutil.Process") as process_cls:
            process_cls.return_value.children.return_value = [child]
            assert kind_from_process_tree(1234) is None

    def test_kind_from_process_tree_gone(self):
        """Test vanished or inaccessible processes yield no kind."""
        with patch(
            "ntm_robot.agents.detector.psutil.Process",
            side_effect=psutil.NoSuchProcess(1234),
        ):
            assert kind_from_process_tree(1234) is None
        assert kind_from_process_tree(0) is None

    def test_kind_from_process_tree_unexpected_error(self):
        """Test unexpected failures are logged and yield no kind."""
        with patch("ntm_robot.agents.detector.psutil.Process", side_effect=RuntimeError("x")):
            assert kind_from_process_tree(99) is None


class TestDetectAgent:
    """Test the detection cascade."""

    def test_title_wins(self):
        """Test a structured title is authoritative."""
        pane = Pane(id="%1", index=1, title="proj__cod_1_gpt5", command="claude")
        detection = detect_agent(pane, inspect_processes=False)
        assert detection.kind is AgentKind.CODEX
        assert detection.method == "title"
        assert detection.confidence == 1.0
        assert detection.variant == "gpt5"

    def test_command(self):
        """Test the foreground command is used without a title."""
        detection = detect_agent(Pane(id="%1", index=1, command="gemini"))
        assert detection.kind is AgentKind.GEMINI
        assert detection.method == "command"
        assert detection.confidence == 0.85

    def test_process(self):
        """Test generic runtimes are inspected for child agents."""
        pane = Pane(id="%1", index=1, command="node", pid=55)
        with patch(
            "ntm_robot.agents.detector.kind_from_process_tree", return_value=AgentKind.CLAUDE
        ):
            detection = detect_agent(pane)
        assert detection.method == "process"
        assert detection.confidence == 0.8

    def test_output(self):
        """Test output banners are the last signal."""
        pane = Pane(id="%2", index=2, command="bash")
        detection = detect_agent(pane, "Google AI gemini-2.5-pro", inspect_processes=False)
        assert detection.kind is AgentKind.GEMINI
        assert detection.method == "output"
        assert detection.to_dict()["confidence"] == 0.6

    def test_fallbacks(self):
        """Test the base pane is the user and anything else unknown."""
        base = detect_agent(Pane(id="%0", index=0, command="zsh"), None, 0, False)
        other = detect_agent(Pane(id="%5", index=5, command="zsh"), None, 0, False)
        assert (base.kind, base.confidence) == (AgentKind.USER, 1.0)
        assert (other.kind, other.confidence) == (AgentKind.UNKNOWN, 0.0)

    def test_detect_session_agents(self):
        """Test the lowest index is treated as the base pane."""
        panes = [
            Pane(id="%3", index=1, command="zsh"),
            Pane(id="%4", index=2, title="s__cc_1"),
        ]
        detections = detect_session_agents(panes, inspect_processes=False)
        assert detections["%3"].kind is AgentKind.USER
        assert detections["%4"].kind is AgentKind.CLAUDE
        assert detect_session_agents([]) == {}


class TestOutputParser:
    """Test suite for OutputParser."""

    @pytest.fixture
    def parser(self):
        return OutputParser()

    def test_codex_metrics(self, parser):
        """Test Codex context and token metrics."""
        output = "OpenAI Codex\n15% context left\nToken usage: total=12,345"
        state = parser.parse(output)
        assert state.kind is AgentKind.CODEX
        assert state.context_remaining == 15.0
        assert state.is_context_low
        assert state.tokens_used == 12345
        assert state.confidence >= 0.75

    def test_context_threshold_configurable(self):
        """Test the low-context threshold comes from the config."""
        parser = OutputParser(ParserConfig(context_low_threshold=10))
        assert not parser.parse("15% context left", AgentKind.CODEX).is_context_low

    def test_gemini_memory(self, parser):
        """Test Gemini memory usage extraction."""
        state = parser.parse("gemini-2.5 ready\nusing 512.5 MB", AgentKind.GEMINI)
        assert state.memory_mb == 512.5

    def test_rate_limited(self, parser):
        """Test rate limit indicators."""
        state = parser.parse("Claude Opus\nError: rate limit exceeded")
        assert state.kind is AgentKind.CLAUDE
        assert state.is_rate_limited
        assert "rate limit exceeded" in state.limit_indicators
        assert not state.is_idle

    def test_idle_prompt(self, parser):
        """Test a trailing prompt means idle."""
        state = parser.parse("Claude Sonnet\n> ", AgentKind.CLAUDE)
        assert state.is_idle
        assert not state.is_working

    def test_working(self, parser):
        """Test work indicators in recent lines."""
        state = parser.parse("Reading src/app.py\nRunning tests", AgentKind.CLAUDE)
        assert state.is_working
        assert state.work_indicators == ["reading ", "running "]

    def test_error(self, parser):
        """Test errors in recent lines."""
        assert parser.parse("fatal: not a git repository", AgentKind.CLAUDE).is_in_error

    def test_unknown_lowers_confidence(self, parser):
        """Test unknown output scores low."""
        state = parser.parse("hello world")
        assert state.kind is AgentKind.UNKNOWN
        assert state.confidence == pytest.approx(0.2)

    def test_raw_sample_truncated(self):
        """Test the raw sample keeps the tail of the output."""
        parser = OutputParser(ParserConfig(sample_length=5))
        assert parser.parse("abcdefghij", AgentKind.CLAUDE).raw_sample == "fghij"

    def test_to_dict(self, parser):
        """Test serialization uses the kind's value."""
        data = parser.parse("x", AgentKind.AIDER).to_dict()
        assert data["type"] == "aider"
        assert "parsed_at" in data
