"""
Pytest configuration and shared fixtures for ntm-robot tests.
"""

import logging

# Add src to path for imports
import sys
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from git import Repo

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ntm_robot.app import RobotApp
from ntm_robot.config.loader import RobotConfig
from ntm_robot.core.enums import AgentKind
from ntm_robot.tmux.models import Pane, Session
from ntm_robot.utils.logging import PaneNotFoundError, SessionNotFoundError

EPOCH = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock usable as a datetime or monotonic source."""

    def __init__(self, start: datetime = EPOCH):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return (self.current - EPOCH).total_seconds()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeTmux:
    """In-memory stand-in for TmuxAdapter.

    Sessions map to pane lists; captured output is looked up by pane id.
    """

    def __init__(self):
        self.sessions: dict[str, list[Pane]] = {}
        self.outputs: dict[str, str] = {}
        self.last_activity: dict[str, datetime] = {}
        self.titles: dict[str, str] = {}
        self.sent: list[tuple[str, AgentKind, str, bool]] = []
        self.interrupted: list[str] = []
        self.borders: dict[str, str | None] = {}
        self.fail_send: set[str] = set()
        self.fail_capture: set[str] = set()
        self.installed = True

    def add_session(self, name: str, panes: list[Pane]) -> None:
        for pane in panes:
            pane.session = name
        self.sessions[name] = panes

    async def is_installed(self) -> bool:
        return self.installed

    async def list_sessions(self) -> list[Session]:
        return [Session(name=name, windows=1) for name in self.sessions]

    async def session_exists(self, name: str) -> bool:
        return name in self.sessions

    async def get_panes(self, session: str) -> list[Pane]:
        if session not in self.sessions:
            raise SessionNotFoundError(f"can't find session: {session}")
        return list(self.sessions[session])

    async def capture_pane(self, target: str, lines: int = 50) -> str:
        if target in self.fail_capture:
            raise PaneNotFoundError(f"can't find pane: {target}")
        return self.outputs.get(target, "")

    async def get_pane_last_activity(self, pane_id: str) -> datetime:
        return self.last_activity.get(pane_id, datetime.now(timezone.utc))

    async def send_to_agent(self, target, kind, content, enter=True, enter_delay=0.1):
        if target in self.fail_send:
            raise PaneNotFoundError(f"can't find pane: {target}")
        self.sent.append((target, kind, content, enter))

    async def send_interrupt(self, target: str) -> None:
        self.interrupted.append(target)

    async def set_pane_border_style(self, target: str, color: str) -> None:
        self.borders[target] = color

    async def reset_pane_border_style(self, target: str) -> None:
        self.borders[target] = None

    async def get_pane_title(self, pane_id: str) -> str:
        return self.titles.get(pane_id, "")

    async def set_pane_title(self, pane_id: str, title: str) -> None:
        self.titles[pane_id] = title

    async def run(self, *args: str, timeout: float | None = None) -> str:
        return ""


def make_pane(index: int, title: str = "", command: str = "bash", pane_id: str | None = None) -> Pane:
    """Build a pane; a structured title sets its agent kind."""
    return Pane(id=pane_id or f"%{index}", index=index, title=title, command=command)


@pytest.fixture
def frozen_clock() -> FrozenClock:
    """Provide a clock frozen at a fixed instant."""
    return FrozenClock()


@pytest.fixture
def mock_tmux_server() -> Generator[MagicMock, None, None]:
    """Patch libtmux.Server as seen by the adapter."""
    with patch("ntm_robot.tmux.adapter.libtmux.Server") as server_cls:
        server = MagicMock()
        server.cmd.return_value = MagicMock(stdout=[], stderr=[])
        server_cls.return_value = server
        yield server


@pytest.fixture
def fake_tmux() -> FakeTmux:
    """A fake adapter with one session: a user pane and three agents."""
    tmux = FakeTmux()
    tmux.add_session(
        "proj",
        [
            make_pane(0),
            make_pane(1, "proj__cc_1", "node"),
            make_pane(2, "proj__cod_1", "node"),
            make_pane(3, "proj__gmi_1", "node"),
        ],
    )
    return tmux


@pytest.fixture
def mock_tools() -> MagicMock:
    """Tool registry whose adapters report bv/bd as absent."""
    tools = MagicMock()
    tools.all_info = AsyncMock(return_value=[{"name": "bv", "installed": False}])
    tools.get.return_value.beads_summary = AsyncMock(
        return_value={"available": False, "reason": "no .beads/ directory"}
    )
    return tools


@pytest.fixture
def mock_agent_mail() -> MagicMock:
    client = MagicMock()
    client.base_url = "http://127.0.0.1:8765"
    client.health = AsyncMock(return_value=False)
    client.reservation_source.return_value = AsyncMock(return_value=[])
    return client


@pytest.fixture
def robot_config(tmp_path: Path) -> RobotConfig:
    """Configuration pointing the conflict detector at a scratch directory."""
    return RobotConfig(
        conflicts={"repo_path": str(tmp_path)},
        alerts={"log_to_stderr": False},
        tools={"project": str(tmp_path)},
    )


@pytest.fixture
def robot_app(robot_config, fake_tmux, mock_tools, mock_agent_mail) -> RobotApp:
    """Application container wired to fakes."""
    return RobotApp(robot_config, tmux=fake_tmux, tools=mock_tools, agent_mail=mock_agent_mail)


@pytest.fixture
def git_repo(tmp_path: Path) -> Generator[Repo, None, None]:
    """A temporary git repository with one committed file."""
    repo = Repo.init(tmp_path / "repo")
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
    readme = Path(repo.working_tree_dir) / "README.md"
    readme.write_text("# test\n")
    repo.index.add(["README.md"])
    repo.index.commit("initial commit")
    yield repo
    repo.close()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Restore root logger handlers and level after each test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
