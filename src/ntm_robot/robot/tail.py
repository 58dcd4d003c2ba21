"""``--robot-tail`` and ``--robot-wait``."""

import asyncio
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..agents.patterns import strip_ansi
from ..core.enums import ErrorCode
from ..output.envelope import AgentHints, error_response, success_response
from ..utils.logging import LogContext, ValidationError, get_logger
from .common import (
    DetectedPane,
    capture_or_empty,
    matches_pane,
    pane_state,
    require_session,
    robot_operation,
    session_panes,
)

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)

DEFAULT_TAIL_LINES = 20
DEFAULT_WAIT_TIMEOUT = 300.0
WAIT_POLL_INTERVAL = 2.0
WAIT_CAPTURE_LINES = 20


def _split_lines(text: str) -> list[str]:
    lines = text.rstrip("\n").split("\n") if text else []
    return [line.rstrip("\r") for line in lines]


def tail_hints(panes: dict[str, dict[str, Any]]) -> AgentHints | None:
    idle = sorted((k for k, p in panes.items() if p["state"] == "idle"), key=int)
    active = sorted((k for k, p in panes.items() if p["state"] == "active"), key=int)
    hints = AgentHints()
    for key in sorted(panes, key=int):
        if panes[key]["state"] == "error":
            hints.suggestions.append(f"Pane {key} has an error - check output")
    if idle:
        hints.suggestions.append(f"{len(idle)} idle agent(s) ready for prompts")
        hints.extra["idle_agents"] = idle
    if active:
        hints.extra["active_agents"] = active
    if not idle and active:
        hints.suggestions.append("All agents busy - wait before sending new prompts")
    return None if hints.is_empty() else hints


async def _tail_pane(app: "RobotApp", detected: DetectedPane, lines: int) -> dict[str, Any]:
    captured = await capture_or_empty(app, detected.pane.id, lines)
    if captured is None:
        return {"type": detected.kind.value, "state": "unknown", "lines": [], "truncated": False}
    output_lines = _split_lines(strip_ansi(captured))
    return {
        "type": detected.kind.value,
        "state": pane_state(captured, detected.kind),
        "lines": output_lines,
        "truncated": len(output_lines) >= lines,
    }


@robot_operation
async def get_tail(
    app: "RobotApp",
    session: str,
    lines: int = DEFAULT_TAIL_LINES,
    panes: list[str] | None = None,
) -> dict[str, Any]:
    """Recent output of each pane, keyed by pane index.

    Args:
        app: Application container
        session: Session to capture
        lines: Lines captured per pane
        panes: Pane indices or ids to restrict the capture to

    Returns:
        Envelope with ``panes`` mapping index to type, state, lines and truncation
    """
    session = await require_session(app, session)
    lines = lines if lines > 0 else DEFAULT_TAIL_LINES
    wanted = set(panes or [])

    selected = [
        d for d in await session_panes(app, session) if not wanted or matches_pane(d.pane, wanted)
    ]
    outputs = await asyncio.gather(*(_tail_pane(app, d, lines) for d in selected))
    pane_map = {d.key: out for d, out in zip(selected, outputs)}

    body = {
        "session": session,
        "captured_at": datetime.now(timezone.utc).isoformat(),
        "panes": pane_map,
    }
    return success_response(body, hints=tail_hints(pane_map))


@robot_operation
async def get_wait(
    app: "RobotApp",
    session: str,
    timeout: float = DEFAULT_WAIT_TIMEOUT,
    panes: list[str] | None = None,
    poll_interval: float = WAIT_POLL_INTERVAL,
) -> dict[str, Any]:
    """Poll until every targeted agent pane reports idle.

    Panes in error count as settled so a crashed agent does not hold the
    wait until the deadline.

    Returns:
        Envelope with the final per-pane states; ``TIMEOUT`` when the deadline passes
    """
    if timeout <= 0:
        raise ValidationError("--timeout must be positive", {"timeout": timeout})
    session = await require_session(app, session)
    wanted = set(panes or [])

    started = time.monotonic()
    deadline = started + timeout
    polls = 0
    while True:
        polls += 1
        targets = [
            d
            for d in await session_panes(app, session)
            if d.kind.is_agent and (not wanted or matches_pane(d.pane, wanted))
        ]
        captures = await asyncio.gather(
            *(capture_or_empty(app, d.pane.id, WAIT_CAPTURE_LINES) for d in targets)
        )
        states = {
            d.key: "unknown" if out is None else pane_state(out, d.kind)
            for d, out in zip(targets, captures)
        }
        pending = sorted((k for k, s in states.items() if s not in ("idle", "error")), key=int)
        elapsed = time.monotonic() - started
        body = {
            "session": session,
            "states": states,
            "pending": pending,
            "polls": polls,
            "waited_seconds": round(elapsed, 2),
        }
        if not pending:
            logger.info("Agents idle", session=session, polls=polls)
            return success_response(
                body, hints=AgentHints(summary=f"{len(states)} agent(s) idle after {elapsed:.1f}s")
            )
        if time.monotonic() + poll_interval > deadline:
            return error_response(
                f"timed out after {timeout:g}s waiting for {len(pending)} agent(s)",
                ErrorCode.TIMEOUT,
                body=body,
            )
        await asyncio.sleep(poll_interval)
