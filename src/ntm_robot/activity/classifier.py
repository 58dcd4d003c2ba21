"""
Per-pane agent state classification.

Each poll feeds captured scrollback to :class:`ActivityClassifier`, which
decides on one of generating, waiting, thinking, error, stalled or unknown.
State transitions are edge-triggered: they are recorded in the state tracker
and forwarded to the alerter only when the state actually changes.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..agents.patterns import (
    ERROR_INDICATORS,
    get_pattern_set,
    last_lines,
    match_any_regex,
    normalize_output,
)
from ..core.enums import ActivityStatus, AgentKind, AgentState
from ..utils.logging import AlertDeliveryError, LogContext, get_logger
from .indicators import classify_activity, normalize_thresholds

if TYPE_CHECKING:
    from ..alerts.debouncer import Alerter
    from ..conflicts.detector import ConflictDetector
    from ..tmux.adapter import TmuxAdapter
    from ..tracker.tracker import StateTracker

logger = get_logger(__name__, LogContext.ACTIVITY)

DEFAULT_CONFIDENCE = 0.5
PATTERN_SCORES = {
    "generating": 0.9,
    "error": 0.85,
    "thinking": 0.8,
    "idle_prompt": 0.7,
}

ERROR_TAIL_LINES = 5
MARKER_TAIL_LINES = 5


@dataclass
class ActivitySnapshot:
    """Classified state of one pane at one poll."""

    pane_id: str
    agent_kind: AgentKind
    state: AgentState
    status: ActivityStatus
    velocity: float = 0.0
    confidence: float = DEFAULT_CONFIDENCE
    state_since: datetime | None = None
    last_output: datetime | None = None
    detected_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pane": self.pane_id,
            "agent_type": self.agent_kind.value,
            "state": self.state.value,
            "status": self.status.value,
            "confidence": round(self.confidence, 3),
            "velocity": round(self.velocity, 2),
        }
        if self.state_since:
            data["state_since"] = self.state_since.isoformat()
        if self.last_output:
            data["last_output"] = self.last_output.isoformat()
        if self.detected_patterns:
            data["detected_patterns"] = list(self.detected_patterns)
        return data


def _tail_markers(tail: str, markers: tuple[str, ...]) -> list[str]:
    lowered = tail.lower()
    return [m for m in markers if m.lower() in lowered]


class ActivityClassifier:
    """Classifies one pane's agent state from successive captures."""

    def __init__(
        self,
        pane_id: str,
        kind: AgentKind,
        session: str = "",
        active_threshold: float = 30.0,
        stalled_threshold: float = 120.0,
        tracker: "StateTracker | None" = None,
        alerter: "Alerter | None" = None,
        conflict_detector: "ConflictDetector | None" = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the classifier.

        Args:
            pane_id: Pane being classified
            kind: Agent kind running in the pane
            session: Session name used for tracker events and alerts
            active_threshold: Seconds without output before a pane is idle
            stalled_threshold: Seconds without output before a pane is stalled
            tracker: Optional sink for state transitions
            alerter: Optional alerter notified on transitions
            conflict_detector: Optional receiver of closed activity windows
            clock: Callable returning the current aware datetime
        """
        self.pane_id = pane_id
        self.kind = kind
        self.session = session
        self.active_threshold, self.stalled_threshold = normalize_thresholds(
            active_threshold, stalled_threshold
        )
        self.tracker = tracker
        self.alerter = alerter
        self.conflict_detector = conflict_detector
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.patterns = get_pattern_set(kind)
        self.state = AgentState.UNKNOWN
        self.status = ActivityStatus.ACTIVE
        self.state_since: datetime | None = None
        self.last_output: datetime | None = None
        self._last_content: str | None = None
        self._last_observed: datetime | None = None
        self._window_start: datetime | None = None

    def _decide(self, clean: str, changed: bool, idle_for: float) -> tuple[AgentState, list[str]]:
        fired: list[str] = []

        error_tail = last_lines(clean, ERROR_TAIL_LINES)
        errors = [m for m in ERROR_INDICATORS if m in error_tail]
        if errors:
            return AgentState.ERROR, [f"error:{e}" for e in errors]

        tail = last_lines(clean.rstrip("\n"), MARKER_TAIL_LINES)
        # A marker frozen on screen past the stalled threshold is a hung agent
        fresh = idle_for < self.stalled_threshold

        generating = _tail_markers(tail, self.patterns.generating)
        if generating and fresh:
            return AgentState.GENERATING, [f"generating:{g}" for g in generating]

        thinking = _tail_markers(tail, self.patterns.thinking)
        if thinking and fresh:
            return AgentState.THINKING, [f"thinking:{t}" for t in thinking]

        if idle_for >= self.stalled_threshold:
            return AgentState.STALLED, fired
        if idle_for > self.active_threshold:
            return AgentState.WAITING, fired

        if changed:
            return AgentState.GENERATING, fired
        if match_any_regex(tail, self.patterns.idle):
            return AgentState.WAITING, ["idle_prompt"]
        return AgentState.GENERATING, fired

    def prime(self, output: str, last_output: datetime) -> None:
        """Seed the previous capture and when it last changed.

        One-shot callers use the multiplexer's last-activity time so idle
        time is measured from real output rather than from the first poll.
        """
        self._last_content = normalize_output(output)
        self.last_output = last_output
        self._last_observed = self._clock()

    def observe(self, output: str) -> tuple[ActivitySnapshot, AgentState | None]:
        """Classify a capture without side effects on collaborators.

        Returns:
            The snapshot, plus the previous state when a transition happened
        """
        now = self._clock()
        clean = normalize_output(output)
        changed = self._last_content is None or clean != self._last_content

        velocity = 0.0
        if changed:
            if self._last_content is not None and self._last_observed is not None:
                elapsed = (now - self._last_observed).total_seconds()
                delta = max(len(clean) - len(self._last_content), 0)
                velocity = delta / elapsed if elapsed > 0 else 0.0
            self.last_output = now
            self._last_content = clean
            if self._window_start is None:
                self._window_start = now
        self._last_observed = now

        idle_for = (now - self.last_output).total_seconds() if self.last_output else 0.0
        state, fired = self._decide(clean, changed, idle_for)

        confidence = DEFAULT_CONFIDENCE
        for name in fired:
            confidence = max(confidence, PATTERN_SCORES.get(name.split(":", 1)[0], 0.0))

        previous = None
        if state is not self.state:
            previous = self.state
            self.state = state
            self.state_since = now
        self.status = classify_activity(idle_for, self.active_threshold, self.stalled_threshold)

        snapshot = ActivitySnapshot(
            pane_id=self.pane_id,
            agent_kind=self.kind,
            state=state,
            status=self.status,
            velocity=velocity,
            confidence=confidence,
            state_since=self.state_since,
            last_output=self.last_output,
            detected_patterns=fired,
        )
        return snapshot, previous

    async def update(self, output: str) -> ActivitySnapshot:
        """Classify a capture and publish transitions and activity windows."""
        snapshot, previous = self.observe(output)

        if previous is not None:
            logger.debug(
                "Agent state changed",
                pane=self.pane_id,
                old_state=previous.value,
                new_state=snapshot.state.value,
            )
            if self.tracker is not None:
                self.tracker.record_agent_state(self.session, self.pane_id, snapshot.state.value)
            if self.alerter is not None:
                try:
                    await self.alerter.send_state_change(
                        self.session,
                        self.pane_id,
                        self.kind.value,
                        previous.value,
                        snapshot.state.value,
                    )
                except AlertDeliveryError as e:
                    logger.warning("State change alert failed", pane=self.pane_id, error=e.message)

        if self.status is not ActivityStatus.ACTIVE:
            self.close_window()
        return snapshot

    async def classify(self, tmux: "TmuxAdapter", lines: int = 50) -> ActivitySnapshot:
        """Capture the pane and classify it."""
        return await self.update(await tmux.capture_pane(self.pane_id, lines))

    def close_window(self) -> None:
        """Close an open activity window and hand it to the conflict detector."""
        if self._window_start is None or self.last_output is None:
            return
        start, end = self._window_start, self.last_output
        self._window_start = None
        if self.conflict_detector is not None:
            self.conflict_detector.record_activity(
                self.pane_id, self.kind.value, start, end, had_output=True
            )
