"""``--robot-diff``: working-tree changes correlated with agent activity."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..conflicts.detector import summarize_conflicts
from ..conflicts.models import ConfidenceLevel
from ..output.envelope import AgentHints, SuggestedAction, paginate, success_response
from ..utils.logging import LogContext, NtmRobotError, get_logger
from .common import parse_since, require_session, robot_operation, session_panes

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)


async def _record_recent_activity(app: "RobotApp", session: str, since: datetime) -> list[dict[str, Any]]:
    """Feed one activity window per agent pane that produced output after ``since``.

    A one-shot process has no poll history, so the window spans from
    ``since`` to the pane's last multiplexer activity.
    """
    activity = []
    for detected in await session_panes(app, session):
        if not detected.kind.is_agent:
            continue
        try:
            last = await app.tmux.get_pane_last_activity(detected.pane.id)
        except NtmRobotError as e:
            logger.debug("Last activity unavailable", pane=detected.pane.id, error=e.message)
            continue
        active = last >= since
        activity.append(
            {
                "pane": detected.pane.id,
                "pane_idx": detected.pane.index,
                "agent_type": detected.kind.value,
                "last_activity": last.isoformat(),
                "active_in_window": active,
            }
        )
        if active:
            app.conflicts.record_activity(
                detected.pane.id, detected.kind.value, since, last, had_output=True
            )
            if detected.pane.title:
                app.conflicts.set_agent_name(detected.pane.id, detected.pane.title)
    return activity


@robot_operation
async def get_diff(
    app: "RobotApp", session: str, since: str | None = None, limit: int = 0, offset: int = 0
) -> dict[str, Any]:
    """Files modified since ``since``, who likely touched them, and conflicts.

    Args:
        app: Application container
        session: Session whose panes are correlated
        since: Duration or ISO-8601 timestamp, default 15 minutes
        limit: Maximum changes to return
        offset: Changes to skip

    Returns:
        Envelope with ``files``, ``changes``, ``conflict_summary`` and ``agent_activity``
    """
    session = await require_session(app, session)
    now = datetime.now(timezone.utc)
    since_ts = parse_since(since, now=now, default="15m")

    agent_activity = await _record_recent_activity(app, session, since_ts)
    report = await app.conflicts.detect_conflicts(app.config.conflicts.min_confidence)

    recent = [f for f in report.files if f.modified_at is None or f.modified_at >= since_ts]
    changes = app.conflicts.correlate_changes(session, recent)
    page, pagination = paginate(changes, limit, offset)
    summary = summarize_conflicts(report.conflicts, now)

    body = {
        "session": session,
        "timeframe": {"since": since_ts.isoformat(), "until": now.isoformat()},
        "files": {
            "modified": [f.to_dict() for f in recent],
            "potential_conflicts": [c.path for c in report.conflicts],
        },
        "changes": [c.to_dict() for c in page],
        "conflict_summary": summary,
        "warnings": list(report.warnings),
        "agent_activity": agent_activity,
    }

    hints = AgentHints(
        summary=f"{len(recent)} files changed, {len(report.conflicts)} potential conflicts",
        warnings=list(report.warnings),
    ).with_pagination(pagination)
    for conflict in report.conflicts:
        if conflict.level in (ConfidenceLevel.HIGH, ConfidenceLevel.MEDIUM):
            hints.suggested_actions.append(
                SuggestedAction(
                    "coordinate",
                    target=conflict.path,
                    reason=conflict.details,
                    priority=1 if conflict.level is ConfidenceLevel.HIGH else 2,
                )
            )
    return success_response(body, pagination, hints)
