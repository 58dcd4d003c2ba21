"""
Context-window usage estimation from pane scrollback.

Scrollback is a weak proxy for what an agent holds in context, so every
estimate carries ``confidence="low"``.
"""

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from ..agents.parser import OutputParser
from ..agents.patterns import strip_ansi
from ..core.enums import AgentKind
from ..utils.logging import LogContext, NtmRobotError, get_logger

if TYPE_CHECKING:
    from ..tmux.adapter import TmuxAdapter

logger = get_logger(__name__, LogContext.CONTEXT)

CHARS_PER_TOKEN = 4
DEFAULT_OVERHEAD = 2.5
DEFAULT_LIMIT = 128_000
LOW_USAGE = 40.0
HIGH_USAGE = 70.0

CONTEXT_LIMITS = {
    "opus": 200_000,
    "sonnet": 200_000,
    "haiku": 200_000,
    "o1": 200_000,
    "o3": 200_000,
    "gpt4": 128_000,
    "o4-mini": 128_000,
    "gemini": 1_000_000,
    "pro": 1_000_000,
    "flash": 1_000_000,
}

# Checked in order; the first substring found in the title wins
_MODEL_MARKERS = (
    ("opus", "opus"),
    ("sonnet", "sonnet"),
    ("haiku", "haiku"),
    ("gpt4", "gpt4"),
    ("gpt-4", "gpt4"),
    ("o1", "o1"),
    ("o3", "o3"),
    ("o4-mini", "o4-mini"),
    ("flash", "flash"),
    ("pro", "pro"),
    ("gemini", "gemini"),
)

_DEFAULT_MODELS = {
    AgentKind.CLAUDE: "sonnet",
    AgentKind.CODEX: "gpt4",
    AgentKind.GEMINI: "gemini",
}


def context_limit(model: str) -> int:
    return CONTEXT_LIMITS.get(model, DEFAULT_LIMIT)


def usage_level(pct: float) -> str:
    if pct < 40:
        return "Low"
    if pct < 70:
        return "Medium"
    if pct < 85:
        return "High"
    return "Critical"


def detect_model(kind: AgentKind, variant: str = "") -> str:
    """Model named by the pane variant, else the kind's default."""
    lowered = (variant or "").lower()
    for marker, model in _MODEL_MARKERS:
        if marker in lowered:
            return model
    return _DEFAULT_MODELS.get(kind, "unknown")


@dataclass
class ContextEstimate:
    estimated_tokens: int
    with_overhead: int
    limit: int
    usage_percent: float
    usage_level: str
    confidence: str = "low"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["usage_percent"] = round(self.usage_percent, 2)
        return data


def estimate_context(text: str, model: str, overhead: float = DEFAULT_OVERHEAD) -> ContextEstimate:
    """Estimate context usage from raw text, about four characters per token."""
    tokens = len(text) // CHARS_PER_TOKEN
    with_overhead = int(tokens * overhead)
    limit = context_limit(model)
    pct = with_overhead / limit * 100
    return ContextEstimate(
        estimated_tokens=tokens,
        with_overhead=with_overhead,
        limit=limit,
        usage_percent=pct,
        usage_level=usage_level(pct),
    )


@dataclass
class AgentContextInfo:
    pane: str
    pane_idx: int
    agent_type: str
    model: str
    estimate: ContextEstimate
    state: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "pane": self.pane,
            "pane_idx": self.pane_idx,
            "agent_type": self.agent_type,
            "model": self.model,
            "state": self.state,
        }
        data.update(self.estimate.to_dict())
        data["context_limit"] = data.pop("limit")
        return data


@dataclass
class SessionContext:
    session: str
    agents: list[AgentContextInfo] = field(default_factory=list)
    low_usage: list[str] = field(default_factory=list)
    high_usage: list[str] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, Any]:
        total = len(self.agents)
        avg = sum(a.estimate.usage_percent for a in self.agents) / total if total else 0.0
        return {
            "total_agents": total,
            "high_usage_count": len(self.high_usage),
            "avg_usage": round(avg, 2),
        }

    def hints(self) -> dict[str, Any] | None:
        return context_hints(self.low_usage, self.high_usage, len(self.agents))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session,
            "agents": [a.to_dict() for a in self.agents],
            "summary": self.summary,
        }


def context_hints(low: list[str], high: list[str], total: int) -> dict[str, Any] | None:
    """Suggestions based on how many agents have low or high usage."""
    if total == 0:
        return None
    suggestions: list[str] = []
    if not high:
        if len(low) == total:
            suggestions.append("All agents healthy - context usage is low across the board")
        elif low:
            suggestions.append(f"{len(low)} agent(s) have low usage, others are moderate")
        else:
            suggestions.append("All agents at moderate context usage - no immediate concerns")
    elif len(high) == total:
        suggestions.append("All agents have high context usage - consider spawning new sessions")
    else:
        suggestions.append(f"{len(high)} agent(s) have high context usage")
        if low:
            suggestions.append(f"{len(low)} agent(s) have room for additional work")

    hints: dict[str, Any] = {"suggestions": suggestions}
    if low:
        hints["low_usage_agents"] = list(low)
    if high:
        hints["high_usage_agents"] = list(high)
    return hints


def _state_from_output(parser: OutputParser, text: str, kind: AgentKind) -> str:
    parsed = parser.parse(text, kind)
    if parsed.is_rate_limited:
        return "rate_limited"
    if parsed.is_in_error:
        return "error"
    if parsed.is_working:
        return "working"
    if parsed.is_idle:
        return "idle"
    return "unknown"


class ContextEstimator:
    """Estimates context usage for every agent pane of a session."""

    def __init__(
        self,
        tmux: "TmuxAdapter",
        overhead: float = DEFAULT_OVERHEAD,
        parser: OutputParser | None = None,
    ):
        self.tmux = tmux
        self.overhead = overhead
        self.parser = parser or OutputParser()

    async def estimate_session(self, session: str, lines: int = 1000) -> SessionContext:
        """Estimate usage per agent pane; user and unknown panes are skipped.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        panes = await self.tmux.get_panes(session)
        result = SessionContext(session=session)

        for pane in panes:
            if not pane.kind.is_agent:
                continue
            try:
                scrollback = await self.tmux.capture_pane(pane.id, lines)
            except NtmRobotError as e:
                logger.debug("Capture failed", pane=pane.id, error=e.message)
                scrollback = ""

            text = strip_ansi(scrollback)
            model = detect_model(pane.kind, pane.variant)
            estimate = estimate_context(text, model, self.overhead)
            key = str(pane.index)
            if estimate.usage_percent < LOW_USAGE:
                result.low_usage.append(key)
            elif estimate.usage_percent >= HIGH_USAGE:
                result.high_usage.append(key)

            result.agents.append(
                AgentContextInfo(
                    pane=key,
                    pane_idx=pane.index,
                    agent_type=pane.kind.value,
                    model=model,
                    estimate=estimate,
                    state=_state_from_output(self.parser, text, pane.kind),
                )
            )

        logger.debug("Estimated session context", session=session, agents=len(result.agents))
        return result
