"""
Conflict detection across concurrent agents.

Correlates three signals:
- activity windows recorded per pane,
- modified files reported by ``git status --porcelain``,
- path reservations held by agents.
"""

import asyncio
import os
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..utils.logging import LogContext, NtmRobotError, ToolError, get_logger
from .models import (
    ActivityWindow,
    ConflictReason,
    ConflictReport,
    ConfidenceLevel,
    DetectedConflict,
    FileChange,
    GitFileStatus,
    Reservation,
    confidence_level,
)
from .patterns import match_pattern

logger = get_logger(__name__, LogContext.CONFLICTS)

DEFAULT_TOLERANCE = timedelta(seconds=5)
DEFAULT_RETENTION = timedelta(hours=1)
DEFAULT_MIN_CONFIDENCE = 0.5

ReservationSource = Callable[[], Awaitable[list[Reservation]]]

_DETAILS = {
    "multiple": "Multiple agents had activity when this file was modified",
    "violation": "File modified by agent without active reservation",
    "holder": "File modified by reservation holder",
    "overlap": "Multiple agents have reservations for this file",
    "unclaimed": "File modified with no tracked activity or reservations",
    "single": "File modified by single agent without reservation",
    "reserved": "File modified with one reservation holder and no tracked activity",
}


def parse_porcelain(output: str, repo_path: str | Path) -> list[GitFileStatus]:
    """Parse ``git status --porcelain`` output.

    Leading spaces are significant (``" M"`` means unstaged), so only line
    endings are trimmed.
    """
    results = []
    for line in output.split("\n"):
        line = line.rstrip("\r")
        if len(line) < 3:
            continue
        xy = line[:2]
        path = line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]

        modified_at = None
        try:
            stat = os.stat(Path(repo_path) / path)
            modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        except OSError:
            pass  # deleted files have no mtime

        results.append(
            GitFileStatus(
                path=path,
                status=xy.strip(),
                staged=xy[0] not in (" ", "?"),
                modified_at=modified_at,
            )
        )
    return results


def find_likely_modifiers(
    modified_at: datetime | None,
    windows: dict[str, list[ActivityWindow]],
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> list[str]:
    """Return panes with a window where ``start - tol <= t <= end + tol``."""
    if modified_at is None:
        return []
    modifiers = []
    for pane_id, pane_windows in windows.items():
        for window in pane_windows:
            if window.start - tolerance <= modified_at <= window.end + tolerance:
                modifiers.append(pane_id)
                break
    return modifiers


def find_reservation_holders(
    path: str, reservations: list[Reservation], now: datetime | None = None
) -> list[str]:
    """Return agents holding an active reservation that covers ``path``."""
    now = now or datetime.now(timezone.utc)
    holders: list[str] = []
    for reservation in reservations:
        if not reservation.is_active(now):
            continue
        if match_pattern(reservation.pattern, path) and reservation.agent_name not in holders:
            holders.append(reservation.agent_name)
    return holders


def find_reservation_overlaps(
    reservations: list[Reservation], now: datetime | None = None
) -> dict[str, list[str]]:
    """Return patterns held by more than one agent, with their holders."""
    now = now or datetime.now(timezone.utc)
    by_pattern: dict[str, list[str]] = {}
    for reservation in reservations:
        if not reservation.is_active(now):
            continue
        holders = by_pattern.setdefault(reservation.pattern, [])
        if reservation.agent_name not in holders:
            holders.append(reservation.agent_name)
    return {pattern: agents for pattern, agents in by_pattern.items() if len(agents) > 1}


def score_conflict(
    modifiers: list[str],
    holders: list[str],
    modifier_agent_names: list[str] | None = None,
) -> tuple[float, ConflictReason, str]:
    """Score a modified path.

    Args:
        modifiers: Pane ids active around the modification
        holders: Agent names holding reservations on the path
        modifier_agent_names: Agent names for the modifiers, when known;
            pane ids are compared against holders otherwise

    Returns:
        Tuple of (confidence, reason, details)
    """
    n_mod, n_hold = len(modifiers), len(holders)

    if n_mod > 1:
        return 0.9, ConflictReason.CONCURRENT_ACTIVITY, _DETAILS["multiple"]
    if n_mod == 1 and n_hold > 0:
        names = modifier_agent_names or modifiers
        if not any(name in holders for name in names):
            return 0.85, ConflictReason.RESERVATION_VIOLATION, _DETAILS["violation"]
        return 0.3, ConflictReason.CONCURRENT_ACTIVITY, _DETAILS["holder"]
    if n_mod == 0 and n_hold > 1:
        return 0.75, ConflictReason.OVERLAPPING_RESERVATIONS, _DETAILS["overlap"]
    if n_mod == 0 and n_hold == 0:
        return 0.6, ConflictReason.UNCLAIMED_MODIFICATION, _DETAILS["unclaimed"]
    if n_mod == 1 and n_hold == 0:
        return 0.4, ConflictReason.CONCURRENT_ACTIVITY, _DETAILS["single"]
    return 0.5, ConflictReason.UNCLAIMED_MODIFICATION, _DETAILS["reserved"]


def summarize_conflicts(
    conflicts: list[DetectedConflict], now: datetime | None = None
) -> dict[str, Any]:
    """Aggregate conflicts by confidence band and reason."""
    summary: dict[str, Any] = {
        "total_conflicts": len(conflicts),
        "high_confidence": 0,
        "med_confidence": 0,
        "low_confidence": 0,
        "by_reason": {},
        "conflicts": [c.to_dict() for c in conflicts],
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
    for conflict in conflicts:
        level = confidence_level(conflict.confidence)
        if level is ConfidenceLevel.HIGH:
            summary["high_confidence"] += 1
        elif level is ConfidenceLevel.MEDIUM:
            summary["med_confidence"] += 1
        elif level is ConfidenceLevel.LOW:
            summary["low_confidence"] += 1
        reason = conflict.reason.value
        summary["by_reason"][reason] = summary["by_reason"].get(reason, 0) + 1
    return summary


class ConflictDetector:
    """Detects potential file conflicts between agents."""

    def __init__(
        self,
        repo_path: str | Path | None = None,
        reservation_source: ReservationSource | None = None,
        tolerance: timedelta = DEFAULT_TOLERANCE,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the detector.

        Args:
            repo_path: Repository root; defaults to the current directory
            reservation_source: Async callable returning current reservations
            tolerance: Slack around activity windows when attributing changes
            retention: How long activity windows are kept
            clock: Callable returning the current aware datetime
        """
        self.repo_path = Path(repo_path or os.getcwd())
        self.reservation_source = reservation_source
        self.tolerance = tolerance
        self.retention = retention
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._windows: dict[str, list[ActivityWindow]] = {}
        self._agent_names: dict[str, str] = {}
        self._lock = threading.Lock()
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository object."""
        if self._repo is None:
            try:
                self._repo = Repo(self.repo_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise ToolError(
                    f"Invalid git repository at {self.repo_path}",
                    {"repo_path": str(self.repo_path)},
                ) from e
        return self._repo

    # Activity windows

    def record_activity(
        self,
        pane_id: str,
        kind: str,
        start: datetime,
        end: datetime,
        had_output: bool = True,
    ) -> None:
        """Record an activity window, keeping per-pane windows sorted by start."""
        window = ActivityWindow(pane_id, str(kind), start, end, had_output)
        with self._lock:
            windows = self._windows.setdefault(pane_id, [])
            windows.append(window)
            windows.sort(key=lambda w: w.start)
            self._prune_locked(self._clock() - self.retention)

    def _prune_locked(self, cutoff: datetime) -> None:
        for pane_id in list(self._windows):
            kept = [w for w in self._windows[pane_id] if w.end > cutoff]
            if kept:
                self._windows[pane_id] = kept
            else:
                del self._windows[pane_id]

    def get_activity_windows(
        self, pane_id: str | None = None
    ) -> dict[str, list[ActivityWindow]]:
        """Return copies of the tracked windows, optionally for one pane."""
        with self._lock:
            return {
                pid: [
                    ActivityWindow(w.pane_id, w.agent_kind, w.start, w.end, w.had_output)
                    for w in windows
                ]
                for pid, windows in self._windows.items()
                if pane_id is None or pid == pane_id
            }

    def clear_activity_windows(self) -> None:
        with self._lock:
            self._windows.clear()

    def set_agent_name(self, pane_id: str, agent_name: str) -> None:
        """Associate a pane with the agent name used in reservations."""
        with self._lock:
            self._agent_names[pane_id] = agent_name

    # Git and lock checks

    def _git_status_sync(self) -> list[GitFileStatus]:
        try:
            output = self.repo.git.status("--porcelain")
        except GitCommandError as e:
            raise ToolError(
                f"git status failed: {e.stderr.strip() if e.stderr else e}",
                {"repo_path": str(self.repo_path)},
            ) from e
        return parse_porcelain(output, self.repo_path)

    async def get_git_status(self) -> list[GitFileStatus]:
        """Run ``git status --porcelain`` off the event loop."""
        return await asyncio.to_thread(self._git_status_sync)

    async def _load_reservations(self, warnings: list[str]) -> list[Reservation]:
        if self.reservation_source is None:
            return []
        try:
            return await self.reservation_source()
        except (NtmRobotError, httpx.HTTPError) as e:
            message = e.message if isinstance(e, NtmRobotError) else str(e)
            warnings.append(f"reservations unavailable: {message}")
            logger.warning("Reservation lookup failed", error=message)
            return []

    # Detection

    async def detect_conflicts(
        self, min_confidence: float = DEFAULT_MIN_CONFIDENCE
    ) -> ConflictReport:
        """Score every modified file and keep those at or above ``min_confidence``.

        Check failures degrade to warnings instead of raising.
        """
        report = ConflictReport()
        try:
            files = await self.get_git_status()
        except ToolError as e:
            report.warnings.append(f"git status unavailable: {e.message}")
            logger.warning("Git status check failed", error=e.message)
            return report

        report.files = files
        if not files:
            return report

        reservations = await self._load_reservations(report.warnings)
        now = self._clock()

        with self._lock:
            windows = {pid: list(ws) for pid, ws in self._windows.items()}
            agent_names = dict(self._agent_names)

        for file in files:
            holders = find_reservation_holders(file.path, reservations, now)
            modifiers = find_likely_modifiers(file.modified_at, windows, self.tolerance)
            names = [agent_names[m] for m in modifiers if m in agent_names]
            confidence, reason, details = score_conflict(modifiers, holders, names or None)
            if confidence < min_confidence:
                continue
            report.conflicts.append(
                DetectedConflict(
                    path=file.path,
                    reason=reason,
                    confidence=confidence,
                    likely_modifiers=modifiers,
                    reservation_holders=holders,
                    git_status=file.status,
                    details=details,
                    modified_at=file.modified_at,
                )
            )

        logger.info(
            "Conflict detection complete",
            files=len(files),
            conflicts=len(report.conflicts),
        )
        return report

    def correlate_changes(
        self, session: str, files: list[GitFileStatus]
    ) -> list[FileChange]:
        """Attribute working-tree changes to panes active around them."""
        with self._lock:
            windows = {pid: list(ws) for pid, ws in self._windows.items()}
        return [
            FileChange(
                session=session,
                path=f.path,
                change_kind=f.change_kind,
                agents=find_likely_modifiers(f.modified_at, windows, self.tolerance),
                timestamp=f.modified_at,
            )
            for f in files
        ]
