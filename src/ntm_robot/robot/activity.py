"""``--robot-context`` and ``--robot-activity``."""

from collections import Counter
from typing import TYPE_CHECKING, Any

from ..activity.classifier import ActivityClassifier, ActivitySnapshot
from ..core.enums import AgentState
from ..output.envelope import AgentHints, success_response, utc_timestamp
from ..utils.logging import LogContext, NtmRobotError, get_logger
from .common import (
    DetectedPane,
    matches_pane,
    parse_kinds,
    require_session,
    robot_operation,
    session_panes,
)

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)

ACTIVITY_CAPTURE_LINES = 50

AVAILABLE_STATES = (AgentState.WAITING,)
BUSY_STATES = (AgentState.GENERATING, AgentState.THINKING)
PROBLEM_STATES = (AgentState.ERROR, AgentState.STALLED)


@robot_operation
async def get_context(app: "RobotApp", session: str, lines: int = 0) -> dict[str, Any]:
    """Estimated context-window usage for every agent pane of a session."""
    session = await require_session(app, session)
    lines = lines if lines > 0 else app.config.context.lines
    estimate = await app.context.estimate_session(session, lines)

    hints = None
    extra = estimate.hints()
    if extra is not None:
        hints = AgentHints(suggestions=extra.pop("suggestions", []), extra=extra)
    body = estimate.to_dict()
    body["captured_at"] = utc_timestamp()
    body["lines"] = lines
    return success_response(body, hints=hints)


def activity_hints(snapshots: list[ActivitySnapshot]) -> AgentHints:
    """Group panes into available, busy and problem buckets."""
    available = [s.pane_id for s in snapshots if s.state in AVAILABLE_STATES]
    busy = [s.pane_id for s in snapshots if s.state in BUSY_STATES]
    problem = [s.pane_id for s in snapshots if s.state in PROBLEM_STATES]

    hints = AgentHints(
        summary=f"{len(available)} available, {len(busy)} busy, {len(problem)} need attention"
    )
    if available:
        hints.extra["available_agents"] = available
        hints.suggestions.append(f"{len(available)} agent(s) waiting for input")
    if busy:
        hints.extra["busy_agents"] = busy
    if problem:
        hints.extra["problem_agents"] = problem
        hints.warnings.append(f"{len(problem)} agent(s) in error or stalled - check with --robot-tail")
    return hints


async def _classify_pane(app: "RobotApp", session: str, detected: DetectedPane) -> ActivitySnapshot | None:
    activity = app.config.activity
    classifier = ActivityClassifier(
        detected.pane.id,
        detected.kind,
        session=session,
        active_threshold=activity.active_threshold,
        stalled_threshold=activity.stalled_threshold,
        tracker=app.tracker,
    )
    try:
        output = await app.tmux.capture_pane(detected.pane.id, ACTIVITY_CAPTURE_LINES)
        last_activity = await app.tmux.get_pane_last_activity(detected.pane.id)
    except NtmRobotError as e:
        logger.debug("Activity sample failed", pane=detected.pane.id, error=e.message)
        return None
    classifier.prime(output, last_activity)
    return await classifier.update(output)


@robot_operation
async def get_activity(
    app: "RobotApp",
    session: str,
    panes: list[str] | None = None,
    agent_types: list[str] | None = None,
) -> dict[str, Any]:
    """Classify the state of each agent pane from its output and idle time.

    Args:
        app: Application container
        session: Session to classify
        panes: Pane indices or ids to restrict to
        agent_types: Agent kinds to restrict to

    Returns:
        Envelope with per-pane snapshots and a count by state
    """
    session = await require_session(app, session)
    wanted = set(panes or [])
    kinds = parse_kinds(agent_types or [])

    snapshots: list[ActivitySnapshot] = []
    for detected in await session_panes(app, session):
        if not detected.kind.is_agent:
            continue
        if wanted and not matches_pane(detected.pane, wanted):
            continue
        if kinds and detected.kind not in kinds:
            continue
        snapshot = await _classify_pane(app, session, detected)
        if snapshot is not None:
            snapshots.append(snapshot)

    by_state = Counter(s.state.value for s in snapshots)
    body = {
        "session": session,
        "captured_at": utc_timestamp(),
        "agents": [s.to_dict() for s in snapshots],
        "summary": {"total_agents": len(snapshots), "by_state": dict(sorted(by_state.items()))},
    }
    return success_response(body, hints=activity_hints(snapshots))
