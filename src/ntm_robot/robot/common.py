"""Helpers shared by the robot operations."""

import functools
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from ..agents.detector import Detection, detect_session_agents
from ..agents.parser import OutputParser
from ..core.enums import AgentKind, ErrorCode, ExitCode
from ..output.envelope import from_exception
from ..output.formatter import print_response
from ..tmux.commands import validate_session_name
from ..tmux.models import Pane
from ..utils.logging import LogContext, NtmRobotError, SessionNotFoundError, ValidationError, get_logger

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)

MESSAGE_PREVIEW_LENGTH = 50

_DURATION = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}

_parser = OutputParser()


def parse_duration(value: str) -> timedelta:
    """Parse ``90s``, ``5m``, ``1h30m`` or ``2d`` style durations."""
    text = value.strip().lower()
    if not text:
        raise ValidationError("empty duration")
    pos = 0
    seconds = 0.0
    for match in _DURATION.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValidationError(
            f"invalid duration: {value!r}",
            hint="Use a duration like 30s, 5m, 1h or an ISO-8601 timestamp",
        )
    return timedelta(seconds=seconds)


def parse_since(value: str | None, now: datetime | None = None, default: str = "5m") -> datetime:
    """Resolve ``--since`` to an aware datetime.

    Accepts a duration relative to now or an ISO-8601 timestamp; naive
    timestamps are taken as UTC.
    """
    now = now or datetime.now(timezone.utc)
    text = (value or default).strip()
    try:
        return now - parse_duration(text)
    except ValidationError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            f"invalid --since value: {text!r}",
            {"since": text},
            hint="Use a duration like 30s, 5m, 1h or an ISO-8601 timestamp",
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_list(values: list[str] | tuple[str, ...] | str | None) -> list[str]:
    """Flatten repeated and comma-separated option values."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    items: list[str] = []
    for value in values:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def parse_kinds(values: list[str]) -> set[AgentKind]:
    kinds = set()
    for value in values:
        kind = AgentKind.from_alias(value)
        if kind is AgentKind.UNKNOWN and value.strip().lower() != "unknown":
            raise ValidationError(
                f"unknown agent type: {value}",
                {"type": value},
                hint="Use claude, codex, gemini, cursor, windsurf, aider or user",
            )
        kinds.add(kind)
    return kinds


def truncate_message(message: str) -> str:
    if len(message) > MESSAGE_PREVIEW_LENGTH:
        return message[: MESSAGE_PREVIEW_LENGTH - 3] + "..."
    return message


def pane_state(output: str, kind: AgentKind) -> str:
    """Coarse pane state: error, idle or active."""
    parsed = _parser.parse(output, kind if kind.is_agent else None)
    if parsed.is_in_error:
        return "error"
    if parsed.is_idle:
        return "idle"
    if not output.strip() and not kind.is_agent:
        return "idle"
    return "active"


def matches_pane(pane: Pane, keys: set[str]) -> bool:
    return str(pane.index) in keys or pane.id in keys


@dataclass
class DetectedPane:
    pane: Pane
    detection: Detection

    @property
    def kind(self) -> AgentKind:
        return self.detection.kind

    @property
    def key(self) -> str:
        return str(self.pane.index)


async def require_session(app: "RobotApp", session: str) -> str:
    """Validate a session name and check that it exists.

    Raises:
        ValidationError: If the name is malformed
        SessionNotFoundError: If no such session exists
    """
    name = validate_session_name(session)
    if not await app.tmux.session_exists(name):
        raise SessionNotFoundError(f"session '{name}' not found", {"session": name})
    return name


async def session_panes(app: "RobotApp", session: str) -> list[DetectedPane]:
    """Panes of a session with their detected agent kind, ordered by index."""
    panes = sorted(await app.tmux.get_panes(session), key=lambda p: p.index)
    detections = detect_session_agents(panes)
    return [DetectedPane(p, detections[p.id]) for p in panes]


async def capture_or_empty(app: "RobotApp", pane_id: str, lines: int) -> str | None:
    try:
        return await app.tmux.capture_pane(pane_id, lines)
    except NtmRobotError as e:
        logger.debug("Capture failed", pane=pane_id, error=e.message)
        return None


def exit_code_for(envelope: dict[str, Any]) -> ExitCode:
    if envelope.get("success"):
        return ExitCode.SUCCESS
    if envelope.get("error_code") == ErrorCode.DEPENDENCY_MISSING.value:
        return ExitCode.DEPENDENCY_MISSING
    return ExitCode.FAILURE


def robot_operation(func: Callable[..., Awaitable[dict[str, Any]]]):
    """Convert domain errors raised by an operation into error envelopes."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            return await func(*args, **kwargs)
        except NtmRobotError as e:
            logger.info(
                "Robot operation failed",
                operation=func.__name__,
                error_code=e.code.value,
                error=e.message,
            )
            return from_exception(e)

    return wrapper


def print_envelope(app: "RobotApp", envelope: dict[str, Any]) -> int:
    """Write an envelope to stdout and return the process exit code."""
    print_response(envelope, app.output)
    return int(exit_code_for(envelope))
