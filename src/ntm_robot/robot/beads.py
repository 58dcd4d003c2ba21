"""Bead operations: bv passthroughs and ``--robot-watch-bead``."""

import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..agents.patterns import strip_ansi
from ..core.enums import AgentKind
from ..output.envelope import AgentHints, success_response
from ..tools.adapters import BVAdapter
from ..utils.logging import LogContext, NtmRobotError, ValidationError, get_logger
from .common import capture_or_empty, require_session, robot_operation, session_panes

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)

WATCH_DEFAULT_LINES = 200
GRAPH_FORMATS = ("json", "dot", "mermaid")


def _bv(app: "RobotApp") -> BVAdapter:
    adapter = app.tools.get("bv")
    adapter.require()
    return adapter  # type: ignore[return-value]


@robot_operation
async def get_triage(app: "RobotApp") -> dict[str, Any]:
    """Pass ``bv --robot-triage`` through inside an envelope."""
    triage = await _bv(app).triage(cwd=app.project)
    return success_response({"triage": triage})


@robot_operation
async def get_plan(app: "RobotApp") -> dict[str, Any]:
    plan = await _bv(app).plan(cwd=app.project)
    return success_response({"plan": plan})


@robot_operation
async def get_graph(app: "RobotApp", fmt: str | None = None) -> dict[str, Any]:
    if fmt is not None and fmt not in GRAPH_FORMATS:
        raise ValidationError(
            f"invalid graph format: {fmt}",
            {"format": fmt},
            hint="Use one of: " + ", ".join(GRAPH_FORMATS),
        )
    graph = await _bv(app).graph(fmt=fmt, cwd=app.project)
    return success_response({"graph": graph, "format": fmt or "json"})


def bead_mention_pattern(bead_id: str) -> re.Pattern[str]:
    """Case-insensitive whole-word match for a bead id."""
    bead_id = bead_id.strip()
    if not bead_id:
        raise ValidationError("bead ID is required", hint="Provide --bead=<id> with --robot-watch-bead")
    return re.compile(r"(?i)\b" + re.escape(bead_id) + r"\b")


def find_bead_mentions(lines: list[str], pattern: re.Pattern[str]) -> list[tuple[str, int]]:
    """Matching stripped lines with their 1-based line numbers."""
    matches = []
    for number, line in enumerate(lines, start=1):
        trimmed = line.strip()
        if trimmed and pattern.search(trimmed):
            matches.append((trimmed, number))
    return matches


@robot_operation
async def get_watch_bead(
    app: "RobotApp",
    session: str,
    bead_id: str,
    panes: list[int] | None = None,
    lines: int = WATCH_DEFAULT_LINES,
) -> dict[str, Any]:
    """Scan recent pane output for mentions of a bead and report its status.

    Args:
        app: Application container
        session: Session to scan
        bead_id: Bead identifier to look for
        panes: Pane indices to restrict the scan to
        lines: Scrollback lines captured per pane

    Returns:
        Envelope with ``mentions``, ``panes_scanned`` and ``bead_status``
    """
    pattern = bead_mention_pattern(bead_id)
    bead_id = bead_id.strip()
    session = await require_session(app, session)
    lines = lines if lines > 0 else WATCH_DEFAULT_LINES
    checked_at = datetime.now(timezone.utc)
    wanted = set(panes or [])

    mentions: list[dict[str, Any]] = []
    scanned = 0
    for detected in await session_panes(app, session):
        if wanted and detected.pane.index not in wanted:
            continue
        if detected.kind is AgentKind.USER:
            continue
        captured = await capture_or_empty(app, detected.pane.id, lines)
        if captured is None:
            continue
        for line, number in find_bead_mentions(strip_ansi(captured).splitlines(), pattern):
            mentions.append(
                {
                    "pane": detected.pane.index,
                    "agent_type": detected.kind.value,
                    "line": line,
                    "line_num": number,
                    "timestamp": checked_at.isoformat(),
                }
            )
        scanned += 1
    mentions.sort(key=lambda m: (m["pane"], m["line_num"]))

    body: dict[str, Any] = {
        "session": session,
        "bead_id": bead_id,
        "checked_at": checked_at.isoformat(),
        "panes_scanned": scanned,
        "mentions": mentions,
        "bead_status": "unknown",
    }
    try:
        bd = app.tools.get("bd")
        bd.require()
        bead = await bd.show(bead_id, cwd=app.project)  # type: ignore[attr-defined]
        if isinstance(bead, list):
            bead = bead[0] if bead else {}
        body["bead_status"] = bead.get("status", "unknown")
    except NtmRobotError as e:
        body["status_error"] = e.message

    hints = AgentHints(summary=f"{len(mentions)} mentions of {bead_id} across {scanned} panes")
    if not mentions:
        hints.notes.append("No pane mentions this bead in recent output")
    return success_response(body, hints=hints)
