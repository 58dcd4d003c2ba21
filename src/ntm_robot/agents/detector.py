"""
Agent type detection.

Detection runs a cascade of signals and keeps the most confident result:

1. Structured pane title (confidence 1.0)
2. Foreground command name (0.85)
3. Child processes of the pane shell (0.8)
4. Banner patterns in recent output (0.6)
5. Fallback: the session's base pane is the user (1.0), anything else unknown (0.0)
"""

from dataclasses import dataclass
from typing import Any

import psutil

from ..core.enums import AgentKind
from ..panes.titles import parse_title
from ..tmux.models import Pane
from ..utils.logging import LogContext, get_logger, handle_errors
from .patterns import header_patterns, strip_ansi

logger = get_logger(__name__, LogContext.DETECTOR)

TITLE_CONFIDENCE = 1.0
COMMAND_CONFIDENCE = 0.85
PROCESS_CONFIDENCE = 0.8
OUTPUT_CONFIDENCE = 0.6

COMMAND_TABLE: tuple[tuple[AgentKind, tuple[str, ...]], ...] = (
    (AgentKind.CLAUDE, ("claude", "cc")),
    (AgentKind.CODEX, ("codex", "cod")),
    (AgentKind.GEMINI, ("gemini", "gmi")),
    (AgentKind.CURSOR, ("cursor",)),
    (AgentKind.WINDSURF, ("windsurf",)),
    (AgentKind.AIDER, ("aider",)),
)

GENERIC_RUNTIMES = frozenset(
    {"bash", "zsh", "sh", "fish", "dash", "ksh", "tcsh", "node", "python", "python3", "bun"}
)


@dataclass
class Detection:
    """Result of agent detection for one pane."""

    kind: AgentKind
    method: str
    confidence: float
    variant: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "variant": self.variant,
            "method": self.method,
            "confidence": self.confidence,
        }


def kind_from_command(command: str | None) -> AgentKind | None:
    """Match a command line against the known agent binaries.

    The executable's basename must equal a name from the table. Only the
    full binary names, never the short aliases, are also found as a ``/name``
    path component anywhere in the line.
    """
    if not command or not command.strip():
        return None
    cmd = command.strip().lower()
    executable = cmd.split()[0].rsplit("/", 1)[-1]
    for kind, names in COMMAND_TABLE:
        if executable in names or f"/{names[0]}" in cmd:
            return kind
    return None


def _is_generic_runtime(command: str | None) -> bool:
    if not command:
        return False
    base = command.strip().lower().split()[0].rsplit("/", 1)[-1]
    return base in GENERIC_RUNTIMES or base.startswith("python")


@handle_errors(LogContext.DETECTOR, reraise=False)
def kind_from_process_tree(pid: int) -> AgentKind | None:
    """Inspect child processes of a pane's shell for an agent binary."""
    if pid <= 0:
        return None
    try:
        children = psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None

    for child in children:
        try:
            cmdline = " ".join(child.cmdline()) or child.name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        kind = kind_from_command(cmdline) or kind_from_command(child.name())
        if kind is not None:
            return kind
        # Interpreted CLIs: node /usr/lib/node_modules/@openai/codex/bin/codex.js
        for arg in cmdline.split()[1:]:
            stem = arg.lower().rsplit("/", 1)[-1].split(".")[0]
            for candidate, names in COMMAND_TABLE:
                if stem == names[0]:
                    return candidate
    return None


def kind_from_output(output: str | None) -> AgentKind | None:
    """Match recent output against per-kind banner patterns."""
    if not output:
        return None
    clean = strip_ansi(output)
    for kind, pattern in header_patterns():
        if pattern.search(clean):
            return kind
    return None


def detect_agent(
    pane: Pane,
    captured_output: str | None = None,
    base_pane_index: int | None = None,
    inspect_processes: bool = True,
) -> Detection:
    """Resolve the agent kind of a pane.

    Args:
        pane: Pane to classify
        captured_output: Optional recent scrollback for banner matching
        base_pane_index: Lowest pane index in the session, if known
        inspect_processes: Whether to look at child processes of the pane

    Returns:
        The highest-confidence Detection; ties keep the earlier signal
    """
    parsed = parse_title(pane.title)
    candidates: list[Detection] = []

    if parsed.kind.is_agent:
        candidates.append(
            Detection(parsed.kind, "title", TITLE_CONFIDENCE, parsed.variant)
        )
    else:
        kind = kind_from_command(pane.command)
        if kind is not None:
            candidates.append(Detection(kind, "command", COMMAND_CONFIDENCE))

        if inspect_processes and kind is None and _is_generic_runtime(pane.command):
            kind = kind_from_process_tree(pane.pid)
            if kind is not None:
                candidates.append(Detection(kind, "process", PROCESS_CONFIDENCE))

        if not candidates:
            kind = kind_from_output(captured_output)
            if kind is not None:
                candidates.append(Detection(kind, "output", OUTPUT_CONFIDENCE))

    if not candidates:
        if base_pane_index is not None and pane.index == base_pane_index:
            return Detection(AgentKind.USER, "unknown", 1.0)
        return Detection(AgentKind.UNKNOWN, "unknown", 0.0)

    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.confidence > best.confidence:
            best = candidate

    logger.debug(
        "Agent detected",
        pane=pane.id,
        agent_type=best.kind.value,
        method=best.method,
        confidence=best.confidence,
    )
    return best


def detect_session_agents(
    panes: list[Pane],
    outputs: dict[str, str] | None = None,
    inspect_processes: bool = True,
) -> dict[str, Detection]:
    """Detect every pane of a session, keyed by pane id."""
    if not panes:
        return {}
    base_index = min(p.index for p in panes)
    outputs = outputs or {}
    return {
        pane.id: detect_agent(pane, outputs.get(pane.id), base_index, inspect_processes)
        for pane in panes
    }
