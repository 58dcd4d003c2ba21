"""
State change tracking for delta snapshot queries.

Changes are kept in a fixed-capacity ring buffer ordered by timestamp. When
the buffer is full the oldest entry is overwritten.
"""

import copy
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from ..utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.TRACKER)

DEFAULT_CAPACITY = 4096


class ChangeKind(str, Enum):
    """Kinds of recorded state changes."""

    AGENT_OUTPUT = "agent_output"
    AGENT_STATE = "agent_state"
    BEAD_UPDATE = "bead_update"
    MAIL_RECEIVED = "mail_received"
    ALERT = "alert"
    PANE_CREATED = "pane_created"
    PANE_REMOVED = "pane_removed"
    SESSION_CREATED = "session_created"
    SESSION_REMOVED = "session_removed"


@dataclass
class StateChange:
    """A single state change event."""

    kind: ChangeKind
    session: str = ""
    pane: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "type": self.kind.value,
        }
        if self.session:
            data["session"] = self.session
        if self.pane:
            data["pane"] = self.pane
        if self.details:
            data["details"] = self.details
        return data


@dataclass
class CoalescedChange:
    """Consecutive changes of one kind for the same pane, merged."""

    kind: ChangeKind
    session: str
    pane: str
    count: int
    first_at: datetime
    last_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "session": self.session,
            "pane": self.pane,
            "count": self.count,
            "first_at": self.first_at.isoformat(),
            "last_at": self.last_at.isoformat(),
        }


def _copy_change(change: StateChange) -> StateChange:
    return StateChange(
        kind=change.kind,
        session=change.session,
        pane=change.pane,
        details=copy.deepcopy(change.details),
        timestamp=change.timestamp,
    )


class StateTracker:
    """Thread-safe ring buffer of state changes."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        max_age: timedelta | None = None,
        clock=None,
    ):
        """Initialize the tracker.

        Args:
            capacity: Maximum number of retained changes
            max_age: Optional age after which changes are pruned on record
            clock: Callable returning the current aware datetime
        """
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self.capacity = capacity
        self.max_age = max_age
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._changes: deque[StateChange] = deque()
        self._lock = threading.Lock()

    def record(self, change: StateChange) -> StateChange:
        """Add a change, timestamping it when unset."""
        if change.timestamp is None:
            change.timestamp = self._clock()

        with self._lock:
            self._prune_locked()
            if len(self._changes) >= self.capacity:
                self._changes.popleft()

            if not self._changes or change.timestamp >= self._changes[-1].timestamp:
                self._changes.append(change)
            else:
                # Late arrival: insert at its ordered position
                idx = len(self._changes)
                while idx > 0 and self._changes[idx - 1].timestamp > change.timestamp:
                    idx -= 1
                self._changes.insert(idx, change)
        return change

    def _prune_locked(self) -> None:
        if self.max_age is None:
            return
        cutoff = self._clock() - self.max_age
        while self._changes and self._changes[0].timestamp <= cutoff:
            self._changes.popleft()

    def prune(self) -> None:
        with self._lock:
            self._prune_locked()

    def since(self, ts: datetime) -> list[StateChange]:
        """Return copies of changes at or after ``ts``, oldest first."""
        with self._lock:
            return [_copy_change(c) for c in self._changes if c.timestamp >= ts]

    def since_by_type(self, ts: datetime, kind: ChangeKind) -> list[StateChange]:
        with self._lock:
            return [
                _copy_change(c)
                for c in self._changes
                if c.timestamp >= ts and c.kind == kind
            ]

    def since_by_session(self, ts: datetime, session: str) -> list[StateChange]:
        with self._lock:
            return [
                _copy_change(c)
                for c in self._changes
                if c.timestamp >= ts and c.session == session
            ]

    def all(self) -> list[StateChange]:
        with self._lock:
            return [_copy_change(c) for c in self._changes]

    def count(self) -> int:
        with self._lock:
            return len(self._changes)

    def clear(self) -> None:
        with self._lock:
            self._changes.clear()

    def coalesce(self, changes: list[StateChange] | None = None) -> list[CoalescedChange]:
        """Merge consecutive same (kind, session, pane) changes into summaries."""
        if changes is None:
            changes = self.all()

        result: list[CoalescedChange] = []
        for change in changes:
            current = result[-1] if result else None
            if (
                current is not None
                and current.kind == change.kind
                and current.session == change.session
                and current.pane == change.pane
            ):
                current.count += 1
                current.last_at = change.timestamp
            else:
                result.append(
                    CoalescedChange(
                        kind=change.kind,
                        session=change.session,
                        pane=change.pane,
                        count=1,
                        first_at=change.timestamp,
                        last_at=change.timestamp,
                    )
                )
        return result

    # Helpers for common change kinds

    def record_agent_output(self, session: str, pane: str, output: str) -> StateChange:
        return self.record(
            StateChange(
                ChangeKind.AGENT_OUTPUT, session, pane, {"output_length": len(output)}
            )
        )

    def record_agent_state(self, session: str, pane: str, state: str) -> StateChange:
        return self.record(
            StateChange(ChangeKind.AGENT_STATE, session, pane, {"state": state})
        )

    def record_alert(
        self, session: str, pane: str, alert_type: str, message: str
    ) -> StateChange:
        return self.record(
            StateChange(
                ChangeKind.ALERT,
                session,
                pane,
                {"alert_type": alert_type, "message": message},
            )
        )

    def record_pane_created(self, session: str, pane: str, agent_type: str) -> StateChange:
        return self.record(
            StateChange(
                ChangeKind.PANE_CREATED, session, pane, {"agent_type": agent_type}
            )
        )

    def record_pane_removed(self, session: str, pane: str) -> StateChange:
        return self.record(StateChange(ChangeKind.PANE_REMOVED, session, pane))

    def record_session_created(self, session: str) -> StateChange:
        return self.record(StateChange(ChangeKind.SESSION_CREATED, session))

    def record_session_removed(self, session: str) -> StateChange:
        return self.record(StateChange(ChangeKind.SESSION_REMOVED, session))
