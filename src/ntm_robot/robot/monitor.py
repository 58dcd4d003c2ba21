"""Long-running session monitor.

Each poll colours pane borders by activity, classifies every agent pane and
publishes state transitions to the tracker and the alerter. Closed activity
windows feed the conflict detector, so conflicts found mid-run are attributed
to the panes that were producing output at the time.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from ..activity.classifier import ActivityClassifier
from ..activity.indicators import PaneIndicator
from ..core.enums import AgentKind
from ..output.envelope import success_response, utc_timestamp
from ..utils.logging import LogContext, NtmRobotError, get_logger
from .activity import activity_hints
from .common import require_session, session_panes

if TYPE_CHECKING:
    from ..app import RobotApp

logger = get_logger(__name__, LogContext.ROBOT)


class SessionMonitor:
    """Polls one session, keeping a classifier per agent pane."""

    def __init__(self, app: "RobotApp", session: str, conflict_check_every: int = 6):
        self.app = app
        self.session = session
        self.conflict_check_every = conflict_check_every
        self.indicator = PaneIndicator(
            app.tmux, app.config.activity.to_indicator_config(session)
        )
        self.classifiers: dict[str, ActivityClassifier] = {}
        self.polls = 0

    def _classifier_for(self, pane_id: str, kind: AgentKind) -> ActivityClassifier:
        classifier = self.classifiers.get(pane_id)
        if classifier is None or classifier.kind is not kind:
            activity = self.app.config.activity
            classifier = ActivityClassifier(
                pane_id,
                kind,
                session=self.session,
                active_threshold=activity.active_threshold,
                stalled_threshold=activity.stalled_threshold,
                tracker=self.app.tracker,
                alerter=self.app.alerter,
                conflict_detector=self.app.conflicts,
            )
            self.classifiers[pane_id] = classifier
        return classifier

    async def poll(self) -> dict[str, Any]:
        """Run one monitoring pass and return its envelope."""
        self.polls += 1
        await self.indicator.run_once()

        panes = await session_panes(self.app, self.session)
        seen = set()
        snapshots = []
        lines = self.app.config.activity.lines_captured
        for detected in panes:
            if not detected.kind.is_agent:
                continue
            seen.add(detected.pane.id)
            classifier = self._classifier_for(detected.pane.id, detected.kind)
            try:
                snapshots.append(await classifier.classify(self.app.tmux, lines))
            except NtmRobotError as e:
                logger.debug("Classification failed", pane=detected.pane.id, error=e.message)

        for pane_id in list(self.classifiers):
            if pane_id not in seen:
                self.classifiers.pop(pane_id).close_window()
                self.app.tracker.record_pane_removed(self.session, pane_id)

        body: dict[str, Any] = {
            "session": self.session,
            "poll": self.polls,
            "captured_at": utc_timestamp(),
            "agents": [s.to_dict() for s in snapshots],
            "indicators": {k: v.value for k, v in self.indicator.get_all_statuses().items()},
        }
        hints = activity_hints(snapshots)
        if self.conflict_check_every > 0 and self.polls % self.conflict_check_every == 0:
            report = await self.app.conflicts.detect_conflicts(
                self.app.config.conflicts.min_confidence
            )
            body["conflicts"] = [c.to_dict() for c in report.conflicts]
            hints.warnings.extend(report.warnings)
        return success_response(body, hints=hints)

    async def close(self) -> None:
        for classifier in self.classifiers.values():
            classifier.close_window()
        await self.indicator.reset_all()


async def run_monitor(
    app: "RobotApp", session: str, iterations: int | None = None
) -> AsyncIterator[dict[str, Any]]:
    """Yield one envelope per poll until ``iterations`` polls or cancellation.

    Pane borders are restored when the monitor stops.
    """
    session = await require_session(app, session)
    monitor = SessionMonitor(app, session)
    logger.info("Monitor started", session=session, poll_interval=monitor.indicator.config.poll_interval)
    try:
        while iterations is None or monitor.polls < iterations:
            yield await monitor.poll()
            if iterations is None or monitor.polls < iterations:
                await asyncio.sleep(monitor.indicator.config.poll_interval)
    finally:
        await monitor.close()
        logger.info("Monitor stopped", session=session, polls=monitor.polls)

