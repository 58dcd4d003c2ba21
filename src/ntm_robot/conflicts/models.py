"""Data models for activity windows, reservations and conflicts."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ConflictReason(str, Enum):
    """Why a file was flagged."""

    CONCURRENT_ACTIVITY = "concurrent_activity"
    RESERVATION_VIOLATION = "reservation_violation"
    OVERLAPPING_RESERVATIONS = "overlapping_reservations"
    UNCLAIMED_MODIFICATION = "unclaimed_modification"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class ChangeKind(str, Enum):
    """Kind of file change seen in the working tree."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class ActivityWindow:
    """An interval during which a pane produced output."""

    pane_id: str
    agent_kind: str
    start: datetime
    end: datetime
    had_output: bool = True

    def overlaps(self, other: "ActivityWindow") -> bool:
        """Strict overlap; windows that only touch do not overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "pane_id": self.pane_id,
            "agent_type": self.agent_kind,
            "start": _iso(self.start),
            "end": _iso(self.end),
            "has_output": self.had_output,
        }


@dataclass
class Reservation:
    """An external lease on a set of paths."""

    pattern: str
    agent_name: str
    expires_at: datetime
    exclusive: bool = True
    released_at: datetime | None = None
    reason: str | None = None
    id: int | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.released_at is None and now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path_pattern": self.pattern,
            "agent_name": self.agent_name,
            "exclusive": self.exclusive,
            "reason": self.reason,
            "expires_ts": _iso(self.expires_at),
            "released_ts": _iso(self.released_at),
        }


@dataclass
class GitFileStatus:
    """One entry of ``git status --porcelain``."""

    path: str
    status: str
    staged: bool = False
    modified_at: datetime | None = None

    @property
    def change_kind(self) -> ChangeKind:
        if self.status in ("??", "A") or self.status.startswith("A"):
            return ChangeKind.CREATE
        if "D" in self.status:
            return ChangeKind.DELETE
        if "R" in self.status:
            return ChangeKind.RENAME
        return ChangeKind.MODIFY

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status,
            "staged": self.staged,
            "modified_at": _iso(self.modified_at),
        }


@dataclass
class FileChange:
    """A working-tree change attributed to the panes active around it."""

    session: str
    path: str
    change_kind: ChangeKind
    agents: list[str] = field(default_factory=list)
    timestamp: datetime | None = None
    size_delta: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "session": self.session,
            "path": self.path,
            "type": self.change_kind.value,
            "agents": list(self.agents),
            "timestamp": _iso(self.timestamp),
        }
        if self.size_delta is not None:
            data["size_delta"] = self.size_delta
        return data


@dataclass
class DetectedConflict:
    """A scored potential conflict on one path."""

    path: str
    reason: ConflictReason
    confidence: float
    likely_modifiers: list[str] = field(default_factory=list)
    reservation_holders: list[str] = field(default_factory=list)
    git_status: str = ""
    details: str = ""
    modified_at: datetime | None = None

    @property
    def level(self) -> ConfidenceLevel:
        return confidence_level(self.confidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "likely_modifiers": list(self.likely_modifiers),
            "git_status": self.git_status,
            "confidence": self.confidence,
            "reason": self.reason.value,
            "reservation_holders": list(self.reservation_holders),
            "modified_at": _iso(self.modified_at),
            "details": self.details,
        }


@dataclass
class ConflictReport:
    """Conflicts plus warnings from degraded checks."""

    conflicts: list[DetectedConflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    files: list[GitFileStatus] = field(default_factory=list)


def confidence_level(confidence: float) -> ConfidenceLevel:
    """Bucket a confidence score: high >= 0.9, medium >= 0.7, low >= 0.5."""
    if confidence >= 0.9:
        return ConfidenceLevel.HIGH
    if confidence >= 0.7:
        return ConfidenceLevel.MEDIUM
    if confidence >= 0.5:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.NONE
