"""Global robot operations: status, version, capabilities, snapshot and terse."""

import asyncio
import platform
import sys
from typing import TYPE_CHECKING, Any

from .. import __version__
from ..alerts.models import DEFAULT_SEVERITY, AlertKind, Severity
from ..core.enums import AgentKind
from ..output.envelope import AgentHints, SuggestedAction, paginate, success_response, utc_timestamp
from ..output.terse import TerseState, join_terse
from ..tmux.models import Session
from ..tracker.tracker import ChangeKind, StateChange
from ..utils.logging import LogContext, get_logger
from .common import DetectedPane, capture_or_empty, pane_state, parse_since, robot_operation, session_panes

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)

STATE_CAPTURE_LINES = 20

COUNTED_KINDS = (
    AgentKind.CLAUDE,
    AgentKind.CODEX,
    AgentKind.GEMINI,
    AgentKind.CURSOR,
    AgentKind.WINDSURF,
    AgentKind.AIDER,
)

COMMANDS = {
    "--robot-status": "Sessions, panes and agent states",
    "--robot-version": "Version information",
    "--robot-capabilities": "Installed tools and their capabilities",
    "--robot-snapshot": "Status plus recent state changes",
    "--robot-terse": "Single-line state summary",
    "--robot-triage": "Bead triage from bv",
    "--robot-plan": "Execution plan from bv",
    "--robot-graph": "Dependency graph from bv",
    "--robot-send": "Send a message to agents in a session",
    "--robot-tail": "Recent pane output",
    "--robot-interrupt": "Send Ctrl-C to agents in a session",
    "--robot-wait": "Wait until agents are idle",
    "--robot-context": "Context window usage estimates",
    "--robot-activity": "Agent state classification",
    "--robot-diff": "File changes and conflicts",
    "--robot-watch-bead": "Bead mentions across panes",
}


def system_info(tmux_available: bool) -> dict[str, Any]:
    return {
        "version": __version__,
        "python_version": platform.python_version(),
        "os": sys.platform,
        "arch": platform.machine(),
        "tmux_available": tmux_available,
    }


async def _pane_states(
    app: "RobotApp", panes: list[DetectedPane]
) -> dict[str, str]:
    """Capture agent panes concurrently and reduce each to a coarse state."""
    agents = [p for p in panes if p.kind.is_agent]
    captures = await asyncio.gather(
        *(capture_or_empty(app, p.pane.id, STATE_CAPTURE_LINES) for p in agents)
    )
    states = {}
    for detected, output in zip(agents, captures):
        states[detected.pane.id] = "unknown" if output is None else pane_state(output, detected.kind)
    return states


def _agent_entry(detected: DetectedPane, state: str | None) -> dict[str, Any]:
    pane = detected.pane
    entry: dict[str, Any] = {
        "type": detected.kind.value,
        "pane": pane.id,
        "window": pane.window_index,
        "pane_idx": pane.index,
        "is_active": pane.active,
        "title": pane.title,
        "command": pane.command,
        "detection": {
            "method": detected.detection.method,
            "confidence": detected.detection.confidence,
        },
    }
    variant = detected.detection.variant or pane.variant
    if variant:
        entry["variant"] = variant
    if pane.pid:
        entry["pid"] = pane.pid
    if state is not None:
        entry["state"] = state
    return entry


async def _session_entry(app: "RobotApp", session: Session) -> dict[str, Any]:
    panes = await session_panes(app, session.name)
    states = await _pane_states(app, panes)
    entry: dict[str, Any] = {
        "name": session.name,
        "exists": True,
        "attached": session.attached,
        "windows": session.windows,
        "panes": len(panes),
        "agents": [_agent_entry(p, states.get(p.pane.id)) for p in panes],
    }
    if session.created:
        entry["created_at"] = session.created
    return entry


def _summary(sessions: list[dict[str, Any]]) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "total_sessions": len(sessions),
        "total_agents": 0,
        "attached_count": sum(1 for s in sessions if s["attached"]),
    }
    counts = {kind: 0 for kind in COUNTED_KINDS}
    for session in sessions:
        for agent in session["agents"]:
            kind = AgentKind(agent["type"])
            if kind in counts:
                counts[kind] += 1
                summary["total_agents"] += 1
    for kind, count in counts.items():
        summary[f"{kind.value}_count"] = count
    return summary


def _status_hints(sessions: list[dict[str, Any]], summary: dict[str, Any]) -> AgentHints:
    hints = AgentHints(
        summary=f"{summary['total_sessions']} sessions, {summary['total_agents']} agents"
    )
    for session in sessions:
        errored = [a["pane"] for a in session["agents"] if a.get("state") == "error"]
        idle = [a["pane"] for a in session["agents"] if a.get("state") == "idle"]
        if errored:
            hints.warnings.append(f"{session['name']}: {len(errored)} agents in error state")
            hints.suggested_actions.append(
                SuggestedAction(
                    "inspect",
                    target=session["name"],
                    reason="agents reporting errors",
                    priority=1,
                )
            )
        if idle:
            hints.suggestions.append(
                f"{session['name']}: {len(idle)} idle agents ready for work (--robot-send={session['name']})"
            )
    if not sessions:
        hints.notes.append("No tmux sessions found")
    return hints


async def _agent_mail_summary(app: "RobotApp") -> dict[str, Any]:
    available = await app.agent_mail.health()
    return {"available": available, "server_url": app.agent_mail.base_url}


async def _collect_status(app: "RobotApp", limit: int, offset: int):
    tmux_available = await app.tmux.is_installed()
    sessions = await app.tmux.list_sessions() if tmux_available else []
    entries = [await _session_entry(app, s) for s in sessions]
    summary = _summary(entries)
    page, pagination = paginate(entries, limit, offset)

    body: dict[str, Any] = {
        "generated_at": utc_timestamp(),
        "system": system_info(tmux_available),
        "sessions": page,
        "summary": summary,
    }
    body["beads"] = await app.tools.get("bv").beads_summary(cwd=app.project)
    body["agent_mail"] = await _agent_mail_summary(app)
    hints = _status_hints(page, summary).with_pagination(pagination)
    return body, pagination, hints


@robot_operation
async def get_status(app: "RobotApp", limit: int = 0, offset: int = 0) -> dict[str, Any]:
    """Sessions, panes and agents with detection and a coarse state.

    Args:
        app: Application container
        limit: Maximum sessions to return, 0 for all
        offset: Sessions to skip

    Returns:
        Envelope with ``system``, ``sessions``, ``summary``, ``beads`` and ``agent_mail``
    """
    body, pagination, hints = await _collect_status(app, limit, offset)
    logger.info("Status collected", session_count=body["summary"]["total_sessions"])
    return success_response(body, pagination, hints)


@robot_operation
async def get_version(app: "RobotApp") -> dict[str, Any]:
    tmux_available = await app.tmux.is_installed()
    return success_response({"system": system_info(tmux_available)})


@robot_operation
async def get_capabilities(app: "RobotApp") -> dict[str, Any]:
    """Installed tools with versions, capabilities and health, plus the command list."""
    tools = await app.tools.all_info()
    missing = [t["name"] for t in tools if not t.get("installed")]
    hints = AgentHints(summary=f"{len(tools) - len(missing)} of {len(tools)} tools installed")
    if missing:
        hints.notes.append("Not installed: " + ", ".join(missing))
    body = {
        "version": __version__,
        "commands": [{"flag": flag, "description": desc} for flag, desc in COMMANDS.items()],
        "tools": tools,
    }
    return success_response(body, hints=hints)


def _alert_severity(change: StateChange) -> Severity:
    try:
        kind = AlertKind(change.details.get("alert_type", ""))
    except ValueError:
        return Severity.WARNING
    return DEFAULT_SEVERITY.get(kind, Severity.WARNING)


@robot_operation
async def get_snapshot(
    app: "RobotApp", since: str | None = None, limit: int = 0, offset: int = 0
) -> dict[str, Any]:
    """Status plus the tracker's changes since ``since`` and recent alerts."""
    since_ts = parse_since(since)
    body, pagination, hints = await _collect_status(app, limit, offset)

    changes = app.tracker.since(since_ts)
    alerts = [c for c in changes if c.kind is ChangeKind.ALERT]
    body["since"] = since_ts.isoformat()
    body["changes"] = [c.to_dict() for c in changes]
    body["changes_coalesced"] = [c.to_dict() for c in app.tracker.coalesce(changes)]
    body["alerts"] = [
        {**a.to_dict(), "severity": _alert_severity(a).value} for a in alerts
    ]
    body["tools"] = await app.tools.all_info()
    if alerts:
        hints.warnings.append(f"{len(alerts)} alerts since {since_ts.isoformat()}")
    return success_response(body, pagination, hints)


@robot_operation
async def get_terse(app: "RobotApp") -> dict[str, Any]:
    """One ``TerseState`` per session, joined into a single line."""
    alerts = [c for c in app.tracker.all() if c.kind is ChangeKind.ALERT]
    critical = sum(1 for a in alerts if _alert_severity(a) is Severity.CRITICAL)
    warning = sum(1 for a in alerts if _alert_severity(a) is Severity.WARNING)

    beads = await app.tools.get("bv").beads_summary(cwd=app.project)

    def base_state(name: str) -> TerseState:
        state = TerseState(session=name, critical_alerts=critical, warning_alerts=warning)
        if beads.get("available"):
            state.ready_beads = beads.get("ready", 0)
            state.blocked_beads = beads.get("blocked", 0)
            state.in_progress_beads = beads.get("in_progress", 0)
        return state

    states: list[TerseState] = []
    sessions = await app.tmux.list_sessions()
    for session in sessions:
        state = base_state(session.name)
        panes = await session_panes(app, session.name)
        state.total_agents = len(panes)
        for pane_status in (await _pane_states(app, panes)).values():
            state.active_agents += 1
            if pane_status == "idle":
                state.idle_agents += 1
            elif pane_status == "error":
                state.error_agents += 1
            else:
                # an uncapturable pane is assumed to be working
                state.working_agents += 1
        states.append(state)
    if not states:
        states.append(base_state("-"))

    body = {
        "terse": join_terse(states),
        "states": [s.to_dict() for s in states],
    }
    return success_response(body)
