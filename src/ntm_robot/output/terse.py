"""
Single-line session state for token-constrained callers.

Format::

    S:session|A:active/total|W:working|I:idle|E:errors|C:ctx%|B:Rn/In/Bn|M:mail|!:alerts

``alerts`` is ``0`` or a comma list like ``1c,2w``. Several sessions are
joined with ``;``.
"""

import re
from dataclasses import asdict, dataclass
from typing import Any

SESSION_SEPARATOR = ";"

_INT = re.compile(r"-?\d+")


def _to_int(text: str) -> int:
    match = _INT.match(text.strip())
    return int(match.group()) if match else 0


@dataclass
class TerseState:
    session: str = "-"
    active_agents: int = 0
    total_agents: int = 0
    working_agents: int = 0
    idle_agents: int = 0
    error_agents: int = 0
    context_pct: int = 0
    ready_beads: int = 0
    blocked_beads: int = 0
    in_progress_beads: int = 0
    unread_mail: int = 0
    critical_alerts: int = 0
    warning_alerts: int = 0

    def alerts_field(self) -> str:
        parts = []
        if self.critical_alerts > 0:
            parts.append(f"{self.critical_alerts}c")
        if self.warning_alerts > 0:
            parts.append(f"{self.warning_alerts}w")
        return ",".join(parts) or "0"

    def __str__(self) -> str:
        return (
            f"S:{self.session}"
            f"|A:{self.active_agents}/{self.total_agents}"
            f"|W:{self.working_agents}"
            f"|I:{self.idle_agents}"
            f"|E:{self.error_agents}"
            f"|C:{self.context_pct}%"
            f"|B:R{self.ready_beads}/I{self.in_progress_beads}/B{self.blocked_beads}"
            f"|M:{self.unread_mail}"
            f"|!:{self.alerts_field()}"
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_terse(line: str) -> TerseState:
    """Parse one terse line; unknown or malformed fields are ignored."""
    state = TerseState(session="")
    for part in line.strip().split("|"):
        key, sep, value = part.partition(":")
        if not sep:
            continue
        if key == "S":
            state.session = value
        elif key == "A":
            active, slash, total = value.partition("/")
            if slash:
                state.active_agents = _to_int(active)
                state.total_agents = _to_int(total)
        elif key == "W":
            state.working_agents = _to_int(value)
        elif key == "I":
            state.idle_agents = _to_int(value)
        elif key == "E":
            state.error_agents = _to_int(value)
        elif key == "C":
            state.context_pct = _to_int(value.rstrip("%"))
        elif key == "B":
            for bead in value.split("/"):
                if len(bead) < 2:
                    continue
                count = _to_int(bead[1:])
                if bead[0] == "R":
                    state.ready_beads = count
                elif bead[0] == "I":
                    state.in_progress_beads = count
                elif bead[0] == "B":
                    state.blocked_beads = count
        elif key == "M":
            state.unread_mail = _to_int(value)
        elif key == "!" and value != "0":
            for alert in value.split(","):
                if alert.endswith("c"):
                    state.critical_alerts = _to_int(alert[:-1])
                elif alert.endswith("w"):
                    state.warning_alerts = _to_int(alert[:-1])
    return state


def join_terse(states: list[TerseState]) -> str:
    return SESSION_SEPARATOR.join(str(s) for s in states)


def parse_terse_lines(text: str) -> list[TerseState]:
    return [parse_terse(chunk) for chunk in text.split(SESSION_SEPARATOR) if chunk.strip()]
