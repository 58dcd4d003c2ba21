"""
Visual activity indicators on tmux pane borders.

Pane borders are colour-coded by how long ago the pane content last changed:
green while active, yellow once idle, red once stalled. Borders are only
updated when a pane's status changes.
"""

import asyncio
import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta

from ..core.enums import ActivityStatus
from ..tmux.adapter import TmuxAdapter
from ..tmux.models import Pane
from ..utils.logging import (
    LogContext,
    NtmRobotError,
    get_logger,
)

logger = get_logger(__name__, LogContext.ACTIVITY)

COLOR_ACTIVE = "#00ff00"
COLOR_IDLE = "#ffff00"
COLOR_STALLED = "#ff0000"

MIN_POLL_INTERVAL = 1.0


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def classify_activity(
    since: float | timedelta,
    active_threshold: float | timedelta,
    stalled_threshold: float | timedelta,
) -> ActivityStatus:
    """Classify by time since the last content change.

    ``since == active_threshold`` is still active; ``since == stalled_threshold``
    is already stalled.
    """
    since_s = _seconds(since)
    if since_s >= _seconds(stalled_threshold):
        return ActivityStatus.STALLED
    if since_s > _seconds(active_threshold):
        return ActivityStatus.IDLE
    return ActivityStatus.ACTIVE


def normalize_thresholds(active: float, stalled: float) -> tuple[float, float]:
    """Keep ``active < stalled`` by pushing stalled a minute past active."""
    if active >= stalled:
        stalled = active + 60.0
    return active, stalled


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class IndicatorConfig:
    """Configuration for the pane indicator loop. Times are in seconds."""

    session: str = ""
    poll_interval: float = 10.0
    active_threshold: float = 30.0
    stalled_threshold: float = 120.0
    color_active: str = COLOR_ACTIVE
    color_idle: str = COLOR_IDLE
    color_stalled: str = COLOR_STALLED
    lines_captured: int = 20
    panes: list[int] = field(default_factory=list)

    def normalized(self) -> "IndicatorConfig":
        """Return a copy with defaults filled in and thresholds ordered."""
        defaults = IndicatorConfig()
        poll = self.poll_interval if self.poll_interval >= MIN_POLL_INTERVAL else defaults.poll_interval
        active = self.active_threshold if self.active_threshold > 0 else defaults.active_threshold
        stalled = self.stalled_threshold if self.stalled_threshold > 0 else defaults.stalled_threshold
        active, stalled = normalize_thresholds(active, stalled)
        return IndicatorConfig(
            session=self.session,
            poll_interval=poll,
            active_threshold=active,
            stalled_threshold=stalled,
            color_active=self.color_active or defaults.color_active,
            color_idle=self.color_idle or defaults.color_idle,
            color_stalled=self.color_stalled or defaults.color_stalled,
            lines_captured=self.lines_captured if self.lines_captured > 0 else defaults.lines_captured,
            panes=list(self.panes),
        )


@dataclass
class _PaneState:
    content_hash: str
    last_change: float
    status: ActivityStatus = ActivityStatus.ACTIVE


class PaneIndicator:
    """Polls session panes and colours their borders by activity."""

    def __init__(
        self,
        tmux: TmuxAdapter,
        config: IndicatorConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tmux = tmux
        self.config = config.normalized()
        self._clock = clock
        self._states: dict[str, _PaneState] = {}

    def color_for_status(self, status: ActivityStatus) -> str:
        if status is ActivityStatus.ACTIVE:
            return self.config.color_active
        if status is ActivityStatus.STALLED:
            return self.config.color_stalled
        return self.config.color_idle

    def get_status(self, target: str) -> ActivityStatus:
        """Status for a pane; untracked panes are considered active."""
        state = self._states.get(target)
        return state.status if state else ActivityStatus.ACTIVE

    def get_all_statuses(self) -> dict[str, ActivityStatus]:
        return {target: state.status for target, state in self._states.items()}

    async def run(self) -> None:
        """Poll until cancelled."""
        while True:
            await self.run_once()
            await asyncio.sleep(self.config.poll_interval)

    async def run_once(self) -> None:
        """Perform one update pass over the monitored panes."""
        try:
            panes = await self._select_panes()
        except NtmRobotError as e:
            logger.debug("Skipping indicator cycle", error=e.message)
            return
        for pane in panes:
            await self._update_pane(pane)

    async def _select_panes(self) -> list[Pane]:
        panes = await self.tmux.get_panes(self.config.session)
        if self.config.panes:
            wanted = set(self.config.panes)
            return [p for p in panes if p.index in wanted]
        if not panes:
            return []
        base = min(p.index for p in panes)
        return [p for p in panes if p.index != base]

    async def _update_pane(self, pane: Pane) -> None:
        target = pane.id
        try:
            content = await self.tmux.capture_pane(target, self.config.lines_captured)
        except NtmRobotError as e:
            logger.debug("Capture failed", pane=target, error=e.message)
            return

        now = self._clock()
        digest = hash_content(content)
        state = self._states.get(target)
        first_seen = state is None
        if state is None:
            state = _PaneState(content_hash=digest, last_change=now)
            self._states[target] = state
        elif digest != state.content_hash:
            state.content_hash = digest
            state.last_change = now

        status = classify_activity(
            now - state.last_change,
            self.config.active_threshold,
            self.config.stalled_threshold,
        )
        changed = status is not state.status
        state.status = status

        if changed or first_seen:
            try:
                await self.tmux.set_pane_border_style(target, self.color_for_status(status))
            except NtmRobotError as e:
                logger.debug("Border update failed", pane=target, error=e.message)

    async def reset_all(self) -> None:
        """Restore default borders on every tracked pane and forget them."""
        targets = list(self._states)
        self._states.clear()
        for target in targets:
            try:
                await self.tmux.reset_pane_border_style(target)
            except NtmRobotError as e:
                logger.debug("Border reset failed", pane=target, error=e.message)
