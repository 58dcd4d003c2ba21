"""Unit tests for tmux command helpers and models."""

import pytest

from ntm_robot.core.enums import AgentKind
from ntm_robot.tmux.commands import (
    build_pane_command,
    sanitize_pane_command,
    shell_quote,
    split_chunks,
    validate_session_name,
)
from ntm_robot.tmux.models import Pane, Session
from ntm_robot.utils.logging import ValidationError


class TestShellQuote:
    """Test POSIX shell quoting."""

    def test_empty(self):
        """Test the empty string quotes to two single quotes."""
        assert shell_quote("") == "''"

    def test_plain(self):
        """Test plain words are wrapped in single quotes."""
        assert shell_quote("hello world") == "'hello world'"

    def test_embedded_quote(self):
        """Test embedded single quotes are escaped."""
        assert shell_quote("it's") == "'it'\"'\"'s'"


class TestValidateSessionName:
    """Test session name validation."""

    def test_valid(self):
        """Test valid names are returned unchanged."""
        assert validate_session_name("my-proj_2") == "my-proj_2"

    @pytest.mark.parametrize("name", ["", "a:b", "a.b", "has space", "ünï"])
    def test_invalid(self, name):
        """Test invalid names are rejected."""
        with pytest.raises(ValidationError):
            validate_session_name(name)


class TestPaneCommand:
    """Test pane command sanitization."""

    def test_tabs_allowed(self):
        """Test tabs pass through."""
        assert sanitize_pane_command("a\tb") == "a\tb"

    @pytest.mark.parametrize("command", ["a\nb", "a\rb", "a\x00b", "a\x1bb"])
    def test_control_characters_rejected(self, command):
        """Test control characters are rejected."""
        with pytest.raises(ValidationError):
            sanitize_pane_command(command)

    def test_build_pane_command(self):
        """Test the cd prefix quotes the directory."""
        assert build_pane_command("/tmp/my dir", "claude") == "cd '/tmp/my dir' && claude"


class TestSplitChunks:
    """Test chunking of long input."""

    def test_short_text_single_chunk(self):
        """Test text under the limit is one chunk."""
        assert split_chunks("hello", 10) == ["hello"]

    def test_ascii_split(self):
        """Test ASCII text splits at the byte limit."""
        assert split_chunks("abcdefghij", 4) == ["abcd", "efgh", "ij"]

    def test_multibyte_not_split(self):
        """Test chunks never cut through a multi-byte character."""
        text = "aé" * 5
        chunks = split_chunks(text, 4)
        assert "".join(chunks) == text
        assert all(len(c.encode("utf-8")) <= 4 for c in chunks)


class TestModels:
    """Test pane and session models."""

    def test_pane_title_sets_identity(self):
        """Test a structured title fills kind, index, variant and tags."""
        pane = Pane(id="%3", index=2, title="proj__cc_2_opus[api,db]")
        assert pane.kind is AgentKind.CLAUDE
        assert pane.ntm_index == 2
        assert pane.variant == "opus"
        assert pane.tags == ["api", "db"]

    def test_plain_title_is_user(self):
        """Test an unstructured title leaves the pane as a user pane."""
        pane = Pane(id="%0", index=0, title="bash")
        assert pane.kind is AgentKind.USER
        assert pane.to_dict()["type"] == "user"

    def test_session_to_dict(self):
        """Test session serialization."""
        session = Session(name="proj", windows=2, attached=True, created="now")
        assert session.to_dict() == {
            "name": "proj",
            "windows": 2,
            "attached": True,
            "created": "now",
        }
