"""
Tmux multiplexer adapter.

Local commands run through a ``libtmux.Server`` handle; remote commands run
through ``ssh -- host /bin/sh -c 'tmux ...'``. Every public method is a
coroutine bounded by a deadline so a hung tmux server cannot stall callers.
"""

import asyncio
import os
import shutil
import time
from datetime import datetime, timezone

import libtmux
from libtmux import exc as libtmux_exc

from ..core.enums import AgentKind
from ..utils.logging import (
    DependencyMissingError,
    LogContext,
    PaneNotFoundError,
    SessionNotFoundError,
    TmuxError,
    ToolTimeoutError,
    audit_log,
    log_performance,
)
from .commands import shell_quote, split_chunks
from .logging_utils import (
    log_pane_list,
    log_send,
    log_session_operation,
    log_tmux_command,
    log_tmux_failure,
)
from .models import Pane, Session

FIELD_SEPARATOR = "_NTM_SEP_"
CHUNK_SIZE = 4096
DEFAULT_TIMEOUT = 30.0

# Agent TUIs buffer their own input; shells need slightly longer before Enter
DEFAULT_ENTER_DELAY = 0.1
SHELL_ENTER_DELAY = 0.15

BUFFER_SEND_THRESHOLD = 512

INSTALL_HINT = (
    "tmux is not installed. Install it with: "
    "brew install tmux (macOS) or apt install tmux (Linux)"
)

_EMPTY_SERVER_MARKERS = (
    "no server running",
    "no sessions",
    "No such file or directory",
    "error connecting to",
)

_PANE_FIELDS = (
    "#{pane_id}",
    "#{pane_index}",
    "#{pane_title}",
    "#{pane_current_command}",
    "#{pane_width}",
    "#{pane_height}",
    "#{pane_active}",
    "#{pane_pid}",
    "#{window_index}",
)


def needs_buffer_send(kind: AgentKind, content: str) -> bool:
    """Return True when content must go through a paste buffer.

    Gemini treats newlines typed via send-keys as Enter presses. Codex shows
    large typed input as a paste placeholder instead of executing it.
    """
    if kind is AgentKind.GEMINI:
        return "\n" in content
    if kind is AgentKind.CODEX:
        return "\n" in content or len(content) > BUFFER_SEND_THRESHOLD
    return False


def in_tmux() -> bool:
    """True when running inside a tmux client."""
    return bool(os.environ.get("TMUX"))


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def parse_pane_line(parts: list[str], session: str | None = None) -> Pane | None:
    """Build a Pane from the separator-split fields of ``list-panes``."""
    if len(parts) < len(_PANE_FIELDS):
        return None
    numbers = [_parse_int(parts[i]) for i in (1, 4, 5, 7, 8)]
    if any(n is None for n in numbers):
        return None
    index, width, height, pid, window_index = numbers
    return Pane(
        id=parts[0],
        index=index,
        window_index=window_index,
        title=parts[2],
        command=parts[3],
        width=width,
        height=height,
        active=parts[6] == "1",
        pid=pid,
        session=session,
    )


def parse_activity_timestamp(raw: str, now: datetime | None = None) -> datetime:
    """Parse ``#{pane_last_activity}``; empty or non-positive values mean now."""
    now = now or datetime.now(timezone.utc)
    raw = raw.strip()
    if not raw:
        return now
    value = int(raw)
    if value <= 0:
        return now
    return datetime.fromtimestamp(value, tz=timezone.utc)


class TmuxAdapter:
    """Async adapter over a local or remote tmux server."""

    def __init__(
        self,
        remote: str | None = None,
        server: libtmux.Server | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the adapter.

        Args:
            remote: ``user@host`` for remote execution, None for local
            server: Optional pre-built libtmux server handle
            timeout: Default deadline in seconds for each command
        """
        self.remote = remote
        self.timeout = timeout
        self._server = server

    @property
    def server(self) -> libtmux.Server:
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    # Command execution

    async def run(self, *args: str, timeout: float | None = None) -> str:
        """Run a tmux command and return its trimmed stdout.

        Raises:
            TmuxError: If tmux reports an error
            PaneNotFoundError: If the target pane does not exist
            SessionNotFoundError: If the target session does not exist
            ToolTimeoutError: If the deadline elapses
            DependencyMissingError: If tmux is not installed
        """
        log_tmux_command(args, self.remote)
        deadline = timeout or self.timeout
        try:
            if self.remote:
                return await asyncio.wait_for(self._run_remote(args), deadline)
            return await asyncio.wait_for(
                asyncio.to_thread(self._run_local, args), deadline
            )
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(
                f"tmux {args[0]} timed out after {deadline}s",
                context={"tmux_args": list(args)},
            ) from e

    def _run_local(self, args: tuple[str, ...]) -> str:
        try:
            result = self.server.cmd(*args)
        except libtmux_exc.TmuxCommandNotFound as e:
            raise DependencyMissingError(INSTALL_HINT, hint=INSTALL_HINT) from e
        if result.stderr:
            self._raise_for_stderr(args, "\n".join(result.stderr))
        return "\n".join(result.stdout).strip()

    async def _run_remote(self, args: tuple[str, ...], stdin: str | None = None) -> str:
        command = "tmux " + " ".join(shell_quote(a) for a in args)
        return await self._ssh(command, args, stdin)

    async def _ssh(
        self, command: str, args: tuple[str, ...], stdin: str | None = None
    ) -> str:
        proc = await asyncio.create_subprocess_exec(
            "ssh",
            "--",
            self.remote,
            "/bin/sh",
            "-c",
            shell_quote(command),
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate(
                stdin.encode("utf-8") if stdin is not None else None
            )
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode != 0:
            self._raise_for_stderr(args, stderr.decode("utf-8", errors="replace"))
        return stdout.decode("utf-8", errors="replace").strip()

    def _raise_for_stderr(self, args: tuple[str, ...], stderr: str) -> None:
        message = f"tmux {' '.join(args[:1])}: {stderr.strip()}"
        log_tmux_failure(args, stderr.strip(), self.remote)
        context = {"tmux_args": list(args)}
        lowered = stderr.lower()
        if "can't find pane" in lowered:
            raise PaneNotFoundError(message, context)
        if "can't find session" in lowered or "session not found" in lowered:
            raise SessionNotFoundError(message, context)
        raise TmuxError(message, context)

    # Installation

    async def is_installed(self) -> bool:
        """Check whether tmux is available on the target host."""
        if not self.remote:
            return shutil.which("tmux") is not None
        try:
            await self.run("-V")
        except (TmuxError, ToolTimeoutError):
            return False
        return True

    async def ensure_installed(self) -> None:
        """Raise DependencyMissingError when tmux is not available."""
        if not await self.is_installed():
            raise DependencyMissingError(INSTALL_HINT, hint=INSTALL_HINT)

    # Sessions

    async def list_sessions(self) -> list[Session]:
        """List sessions; a missing server means no sessions."""
        sep = FIELD_SEPARATOR
        fmt = sep.join(
            (
                "#{session_name}",
                "#{session_windows}",
                "#{session_attached}",
                "#{session_created_string}",
            )
        )
        try:
            output = await self.run("list-sessions", "-F", fmt)
        except TmuxError as e:
            if any(marker in e.message for marker in _EMPTY_SERVER_MARKERS):
                return []
            raise

        sessions = []
        for line in output.splitlines():
            parts = line.split(sep)
            if len(parts) < 4:
                continue
            sessions.append(
                Session(
                    name=parts[0],
                    windows=_parse_int(parts[1]) or 0,
                    attached=parts[2] == "1",
                    created=parts[3],
                )
            )
        return sessions

    async def session_exists(self, name: str) -> bool:
        try:
            await self.run("has-session", "-t", name)
        except (TmuxError, SessionNotFoundError):
            return False
        return True

    async def create_session(self, name: str, directory: str) -> None:
        await self.run("new-session", "-d", "-s", name, "-c", directory)
        log_session_operation("create", name, "success", {"directory": directory})

    async def kill_session(self, name: str) -> None:
        await self.run("kill-session", "-t", name)
        log_session_operation("kill", name, "success")

    async def kill_pane(self, pane_id: str) -> None:
        await self.run("kill-pane", "-t", pane_id)

    async def get_first_window(self, session: str) -> int:
        output = await self.run("list-windows", "-t", session, "-F", "#{window_index}")
        for line in output.splitlines():
            value = _parse_int(line.strip())
            if value is not None:
                return value
        raise SessionNotFoundError(
            f"no windows found in session {session!r}", {"session": session}
        )

    async def split_window(self, session: str, directory: str) -> str:
        """Split the first window and return the new pane id."""
        target = f"{session}:{await self.get_first_window(session)}"
        pane_id = await self.run(
            "split-window", "-t", target, "-c", directory, "-P", "-F", "#{pane_id}"
        )
        try:
            await self.run("select-layout", "-t", target, "tiled")
        except TmuxError as e:
            log_tmux_failure(("select-layout",), e.message, self.remote)
        return pane_id

    # Panes

    async def get_panes(self, session: str) -> list[Pane]:
        """List every pane of a session across all its windows."""
        sep = FIELD_SEPARATOR
        output = await self.run(
            "list-panes", "-s", "-t", session, "-F", sep.join(_PANE_FIELDS)
        )
        panes = []
        for line in output.splitlines():
            if not line:
                continue
            pane = parse_pane_line(line.split(sep), session)
            if pane is not None:
                panes.append(pane)
        log_pane_list(session, len(panes))
        return panes

    async def get_all_panes(self) -> dict[str, list[Pane]]:
        """List panes of every session, grouped by session name."""
        sep = FIELD_SEPARATOR
        fmt = sep.join(("#{session_name}",) + _PANE_FIELDS)
        try:
            output = await self.run("list-panes", "-a", "-F", fmt)
        except TmuxError as e:
            if any(marker in e.message for marker in _EMPTY_SERVER_MARKERS):
                return {}
            raise

        grouped: dict[str, list[Pane]] = {}
        for line in output.splitlines():
            if not line:
                continue
            parts = line.split(sep)
            pane = parse_pane_line(parts[1:], parts[0])
            if pane is not None:
                grouped.setdefault(parts[0], []).append(pane)
        log_pane_list(None, sum(len(p) for p in grouped.values()))
        return grouped

    @log_performance(LogContext.TMUX)
    async def capture_pane(self, target: str, lines: int = 50) -> str:
        """Capture the last ``lines`` lines of a pane's scrollback."""
        return await self.run("capture-pane", "-t", target, "-p", "-S", f"-{abs(lines)}")

    async def get_pane_title(self, pane_id: str) -> str:
        return await self.run("display-message", "-p", "-t", pane_id, "#{pane_title}")

    async def set_pane_title(self, pane_id: str, title: str) -> None:
        await self.run("select-pane", "-t", pane_id, "-T", title)

    async def get_pane_last_activity(self, pane_id: str) -> datetime:
        output = await self.run(
            "display-message", "-p", "-t", pane_id, "#{pane_last_activity}"
        )
        try:
            return parse_activity_timestamp(output)
        except ValueError as e:
            raise TmuxError(
                f"failed to parse pane activity timestamp: {output!r}",
                {"pane": pane_id},
            ) from e

    # Input

    async def send_keys(
        self,
        target: str,
        keys: str,
        enter: bool = True,
        enter_delay: float = DEFAULT_ENTER_DELAY,
    ) -> None:
        """Type text literally into a pane, chunked at 4096 bytes."""
        for chunk in split_chunks(keys, CHUNK_SIZE):
            await self.run("send-keys", "-t", target, "-l", "--", chunk)
        if enter:
            await asyncio.sleep(enter_delay)
            await self.run("send-keys", "-t", target, "Enter")
        log_send(target, "send-keys", len(keys.encode("utf-8")), enter)

    async def send_buffer(
        self,
        target: str,
        content: str,
        enter: bool = True,
        enter_delay: float = DEFAULT_ENTER_DELAY,
    ) -> None:
        """Paste content through a named tmux buffer.

        Newlines are delivered as data rather than key presses.
        """
        buffer_name = f"ntm-{time.time_ns()}"
        await self._load_buffer(buffer_name, content)
        try:
            await self.run(
                "paste-buffer", "-p", "-d", "-b", buffer_name, "-t", target
            )
        except TmuxError:
            try:
                await self.run("delete-buffer", "-b", buffer_name)
            except TmuxError as cleanup_error:
                log_tmux_failure(("delete-buffer",), cleanup_error.message, self.remote)
            raise
        if enter:
            await asyncio.sleep(enter_delay)
            await self.run("send-keys", "-t", target, "Enter")
        log_send(target, "paste-buffer", len(content.encode("utf-8")), enter)

    async def _load_buffer(self, buffer_name: str, content: str) -> None:
        args = ("load-buffer", "-b", buffer_name, "-")
        log_tmux_command(args, self.remote)
        if self.remote:
            command = (
                f"printf %s {shell_quote(content)} | "
                f"tmux load-buffer -b {shell_quote(buffer_name)} -"
            )
            coro = self._ssh(command, args)
        else:
            coro = self._load_buffer_local(args, content)
        try:
            await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(f"tmux load-buffer timed out after {self.timeout}s") from e

    async def _load_buffer_local(self, args: tuple[str, ...], content: str) -> None:
        binary = shutil.which("tmux")
        if binary is None:
            raise DependencyMissingError(INSTALL_HINT, hint=INSTALL_HINT)
        proc = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await proc.communicate(content.encode("utf-8"))
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode != 0:
            self._raise_for_stderr(args, stderr.decode("utf-8", errors="replace"))

    @audit_log("send to agent", LogContext.TMUX)
    async def send_to_agent(
        self,
        target: str,
        kind: AgentKind,
        content: str,
        enter: bool = True,
        enter_delay: float = DEFAULT_ENTER_DELAY,
    ) -> None:
        """Send content using the delivery method the agent kind needs."""
        if needs_buffer_send(kind, content):
            await self.send_buffer(target, content, enter, enter_delay)
        else:
            await self.send_keys(target, content, enter, enter_delay)

    @audit_log("interrupt", LogContext.TMUX)
    async def send_interrupt(self, target: str) -> None:
        await self.run("send-keys", "-t", target, "C-c")

    async def send_eof(self, target: str) -> None:
        await self.run("send-keys", "-t", target, "C-d")

    async def display_message(self, session: str, message: str, duration_ms: int = 3000) -> None:
        await self.run("display-message", "-t", session, "-d", str(duration_ms), message)

    # Borders

    async def set_pane_border_style(self, target: str, color: str) -> None:
        await self.run("set-option", "-p", "-t", target, "pane-border-style", f"fg={color}")

    async def reset_pane_border_style(self, target: str) -> None:
        await self.run("set-option", "-p", "-t", target, "pane-border-style", "default")
