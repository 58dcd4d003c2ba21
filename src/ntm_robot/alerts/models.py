"""Alert data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AlertKind(str, Enum):
    """Alert categories."""

    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    RESTART = "restart"
    RESTART_FAILED = "restart_failed"
    MAX_RESTARTS = "max_restarts"
    RECOVERED = "recovered"
    STALLED = "stalled"
    ERROR = "error"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


DEFAULT_SEVERITY = {
    AlertKind.UNHEALTHY: Severity.CRITICAL,
    AlertKind.DEGRADED: Severity.WARNING,
    AlertKind.RATE_LIMITED: Severity.WARNING,
    AlertKind.RESTART: Severity.INFO,
    AlertKind.RESTART_FAILED: Severity.CRITICAL,
    AlertKind.MAX_RESTARTS: Severity.CRITICAL,
    AlertKind.RECOVERED: Severity.INFO,
    AlertKind.STALLED: Severity.WARNING,
    AlertKind.ERROR: Severity.CRITICAL,
}

SUGGESTIONS = {
    AlertKind.UNHEALTHY: "Check agent logs. May need restart or intervention.",
    AlertKind.DEGRADED: "Agent is slow but working. Monitor for improvement.",
    AlertKind.RATE_LIMITED: "Agent hit API rate limits. Will auto-backoff.",
    AlertKind.RESTART: "Agent was restarted automatically.",
    AlertKind.RESTART_FAILED: "Automatic restart failed. Manual intervention needed.",
    AlertKind.MAX_RESTARTS: "Too many restarts. Check for underlying issues.",
    AlertKind.RECOVERED: "Agent is healthy again.",
    AlertKind.STALLED: "Agent produced no output for a while. Check whether it is waiting on input.",
    AlertKind.ERROR: "Agent reported an error. Inspect the pane output.",
}


def suggestion_for(kind: AlertKind) -> str:
    return SUGGESTIONS.get(kind, "")


@dataclass
class Alert:
    """A single alert event."""

    kind: AlertKind
    session: str
    pane: str
    message: str
    agent_kind: str = ""
    severity: Severity | None = None
    suggestion: str | None = None
    prev_state: str | None = None
    new_state: str | None = None
    context_loss: bool = False
    count: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.severity is None:
            self.severity = DEFAULT_SEVERITY.get(self.kind, Severity.WARNING)

    @property
    def debounce_key(self) -> tuple[str, AlertKind]:
        return (self.pane, self.kind)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.created_at.isoformat(),
            "type": self.kind.value,
            "severity": self.severity.value if self.severity else None,
            "session": self.session,
            "pane_id": self.pane,
            "agent_type": self.agent_kind,
            "message": self.message,
            "count": self.count,
        }
        if self.prev_state:
            data["prev_state"] = self.prev_state
        if self.new_state:
            data["new_state"] = self.new_state
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.context_loss:
            data["context_loss"] = True
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data
