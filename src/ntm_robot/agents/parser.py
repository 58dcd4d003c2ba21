"""Parse agent terminal output into a structured state snapshot."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..core.enums import AgentKind
from .patterns import (
    CC_PATTERNS,
    COD_PATTERNS,
    GMI_PATTERNS,
    collect_matches,
    extract_float,
    extract_int,
    get_pattern_set,
    last_lines,
    match_any,
    match_any_regex,
    strip_ansi,
)

_FALLBACK_SETS = (CC_PATTERNS, COD_PATTERNS, GMI_PATTERNS)


@dataclass
class ParserConfig:
    """Thresholds for the output parser."""

    context_low_threshold: float = 20.0
    sample_length: int = 500
    working_lines: int = 20
    idle_lines: int = 5
    error_lines: int = 10


@dataclass
class ParsedOutput:
    """Quantitative and qualitative state extracted from output."""

    kind: AgentKind = AgentKind.UNKNOWN
    context_remaining: float | None = None
    tokens_used: int | None = None
    memory_mb: float | None = None
    is_context_low: bool = False
    is_rate_limited: bool = False
    is_working: bool = False
    is_idle: bool = False
    is_in_error: bool = False
    work_indicators: list[str] = field(default_factory=list)
    limit_indicators: list[str] = field(default_factory=list)
    confidence: float = 0.0
    raw_sample: str = ""
    parsed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "context_remaining": self.context_remaining,
            "tokens_used": self.tokens_used,
            "memory_mb": self.memory_mb,
            "is_context_low": self.is_context_low,
            "is_rate_limited": self.is_rate_limited,
            "is_working": self.is_working,
            "is_idle": self.is_idle,
            "is_in_error": self.is_in_error,
            "work_indicators": list(self.work_indicators),
            "limit_indicators": list(self.limit_indicators),
            "confidence": self.confidence,
            "parsed_at": self.parsed_at.isoformat(),
        }


class OutputParser:
    """Detects agent kind, metrics and state flags from captured output."""

    def __init__(self, config: ParserConfig | None = None):
        self.config = config or ParserConfig()

    def parse(self, output: str, kind: AgentKind | None = None) -> ParsedOutput:
        """Analyze terminal output.

        Args:
            output: Raw captured pane content
            kind: Known agent kind; detected from the output when None

        Returns:
            ParsedOutput with metrics, flags and a confidence score
        """
        clean = strip_ansi(output)
        state = ParsedOutput(kind=kind if kind is not None else self.detect_kind(clean))
        self._extract_metrics(clean, state)
        self._detect_flags(clean, state)
        state.confidence = self.calculate_confidence(state)
        state.raw_sample = clean[-self.config.sample_length :]
        return state

    def detect_kind(self, output: str) -> AgentKind:
        """Identify the agent kind from banners, then from pattern frequency."""
        if CC_PATTERNS.header_pattern.search(output):
            return AgentKind.CLAUDE
        if COD_PATTERNS.context_pattern.search(output):
            return AgentKind.CODEX
        if COD_PATTERNS.header_pattern.search(output):
            return AgentKind.CODEX
        if GMI_PATTERNS.header_pattern.search(output):
            return AgentKind.GEMINI
        if GMI_PATTERNS.extra["yolo"].search(output):
            return AgentKind.GEMINI

        scores = {
            AgentKind.CLAUDE: match_any(output, CC_PATTERNS.working),
            AgentKind.CODEX: match_any(output, COD_PATTERNS.working),
            AgentKind.GEMINI: match_any(output, GMI_PATTERNS.working),
        }
        best = AgentKind.UNKNOWN
        best_score = 0
        for kind, score in scores.items():
            if int(score) > best_score:
                best, best_score = kind, int(score)
        return best

    def _extract_metrics(self, output: str, state: ParsedOutput) -> None:
        if state.kind is AgentKind.CODEX:
            pct = extract_float(COD_PATTERNS.context_pattern, output)
            if pct is not None:
                state.context_remaining = pct
                state.is_context_low = pct < self.config.context_low_threshold
            state.tokens_used = extract_int(COD_PATTERNS.token_pattern, output)
        elif state.kind is AgentKind.GEMINI:
            state.memory_mb = extract_float(GMI_PATTERNS.memory_pattern, output)
        elif state.kind is AgentKind.CLAUDE:
            state.is_context_low = match_any(output, CC_PATTERNS.context_warnings)

    def _sets_for(self, kind: AgentKind):
        if kind in (AgentKind.CLAUDE, AgentKind.CODEX, AgentKind.GEMINI):
            return (get_pattern_set(kind),)
        return _FALLBACK_SETS

    def _detect_flags(self, output: str, state: ParsedOutput) -> None:
        sets = self._sets_for(state.kind)

        limits: list[str] = []
        for patterns in sets:
            limits.extend(collect_matches(output, patterns.rate_limit))
        state.is_rate_limited = bool(limits)
        state.limit_indicators = limits

        recent = last_lines(output, self.config.working_lines)
        work: list[str] = []
        for patterns in sets:
            work.extend(collect_matches(recent, patterns.working))
        state.is_working = bool(work)
        state.work_indicators = work

        if not state.is_working and not state.is_rate_limited:
            tail = last_lines(output, self.config.idle_lines)
            state.is_idle = any(match_any_regex(tail, p.idle) for p in sets)
            if not state.is_idle and state.kind is AgentKind.GEMINI:
                # Gemini shows no prompt marker; no work in the tail means idle
                state.is_idle = not match_any(tail, GMI_PATTERNS.working)

        if state.kind in (AgentKind.CLAUDE, AgentKind.CODEX, AgentKind.GEMINI):
            state.is_in_error = match_any(
                last_lines(output, self.config.error_lines),
                get_pattern_set(state.kind).error,
            )

    @staticmethod
    def calculate_confidence(state: ParsedOutput) -> float:
        """Score how trustworthy the parsed state is, in [0, 1]."""
        confidence = 0.5
        if state.context_remaining is not None:
            confidence += 0.25
        if state.tokens_used is not None:
            confidence += 0.05
        if state.work_indicators:
            confidence += 0.1 * min(len(state.work_indicators), 3)
        if state.limit_indicators:
            confidence += 0.2
        if state.kind is AgentKind.UNKNOWN:
            confidence -= 0.3
        if state.is_working and state.is_idle:
            confidence -= 0.2
        return max(0.0, min(1.0, confidence))
