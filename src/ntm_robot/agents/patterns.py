"""Output patterns for recognizing agent CLIs and their state.

Plain string patterns match case-insensitively as substrings, except entries
containing regex metacharacters such as ``.*``, which match as regexes.
"""

import re
from dataclasses import dataclass, field

from ..core.enums import AgentKind

ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]|\x1b\][^\a\x1b]*(\a|\x1b\\)")


def strip_ansi(text: str) -> str:
    """Remove CSI and OSC escape sequences."""
    return ANSI_RE.sub("", text)


def normalize_output(text: str) -> str:
    """Strip escapes and normalise line endings to ``\\n``."""
    return strip_ansi(text).replace("\r\n", "\n").replace("\r", "\n")


@dataclass(frozen=True)
class PatternSet:
    """All patterns known for one agent kind."""

    rate_limit: tuple[str, ...] = ()
    working: tuple[str, ...] = ()
    idle: tuple[re.Pattern, ...] = ()
    error: tuple[str, ...] = ()
    context_warnings: tuple[str, ...] = ()
    generating: tuple[str, ...] = ()
    thinking: tuple[str, ...] = ()
    context_pattern: re.Pattern | None = None
    token_pattern: re.Pattern | None = None
    memory_pattern: re.Pattern | None = None
    header_pattern: re.Pattern | None = None
    extra: dict[str, re.Pattern] = field(default_factory=dict)


# Streaming indicators shared by TUIs that render a spinner while producing output
_SPINNERS = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
_STREAMING = ("esc to interrupt", "ctrl+c to interrupt", "generating")
_THINKING = ("thinking", "reasoning", "pondering", "∴")

CC_PATTERNS = PatternSet(
    rate_limit=(
        "you've hit your limit",
        "you.ve hit your limit",
        "rate limit exceeded",
        "rate limit",
        "too many requests",
        "please wait",
        "try again later",
        "usage limit",
        "request limit",
        "exceeded.*limit",
    ),
    context_warnings=(
        "this conversation is getting long",
        "context limit",
        "context.*limit",
        "running out of context",
        "conversation.*long",
        "approaching.*limit",
        "nearing.*capacity",
    ),
    working=(
        "```",
        "writing to ",
        "created ",
        "modified ",
        "deleted ",
        "reading ",
        "searching ",
        "running ",
        "executing ",
        "installing ",
        "compiling",
        "building",
        "testing",
        "fetching",
        "downloading",
        "uploading",
    ),
    idle=(
        re.compile(r">\s*$"),
        re.compile(r"^>\s*", re.MULTILINE),
        re.compile(r"Human:\s*$"),
        re.compile(r"waiting for input"),
        re.compile(r"\?\s*$"),
    ),
    error=(
        "error:",
        "failed:",
        "exception:",
        "panic:",
        "fatal:",
        "abort:",
        "permission denied",
        "access denied",
        "connection refused",
        "timeout",
    ),
    generating=_SPINNERS + _STREAMING + ("✻", "✽"),
    thinking=_THINKING + ("ultrathink",),
    header_pattern=re.compile(r"(?i)\b(opus|claude|sonnet|haiku)\b\s*\d*\.?\d*"),
)

COD_PATTERNS = PatternSet(
    rate_limit=(
        "you've reached your usage limit",
        "you.ve reached your usage limit",
        "rate limit exceeded",
        "rate limit",
        "quota exceeded",
        "capacity reached",
        "maximum requests",
        "too many requests",
    ),
    working=(
        "```",
        "editing ",
        "creating ",
        "writing ",
        "reading ",
        "running ",
        "$ ",
        "applying ",
        "patching ",
        "deleting ",
    ),
    idle=(
        re.compile(r">\s*$"),
        re.compile(r"\?\s*for\s*shortcuts"),
        re.compile(r"codex>\s*$"),
        re.compile(r"^\s*›\s*.*$", re.MULTILINE),
    ),
    error=(
        "error:",
        "failed:",
        "exception:",
        "could not",
        "unable to",
    ),
    generating=_SPINNERS + _STREAMING + ("working",),
    thinking=_THINKING,
    context_pattern=re.compile(r"(\d+)%\s*context\s*left"),
    token_pattern=re.compile(r"Token usage:\s*total=(\d[\d,]*)"),
    header_pattern=re.compile(r"(?i)\b(codex|openai|gpt-\d)\b"),
)

GMI_PATTERNS = PatternSet(
    rate_limit=(
        "quota exceeded",
        "quota",
        "limit reached",
        "rate limit",
        "try again",
        "capacity",
        "resource exhausted",
    ),
    working=(
        "```",
        "creating ",
        "writing ",
        "executing ",
        "running ",
        "generating ",
        "analyzing ",
    ),
    idle=(
        re.compile(r">\s*$"),
        re.compile(r"gemini>\s*$"),
    ),
    error=(
        "error",
        "failed",
        "exception",
        "invalid",
    ),
    generating=_SPINNERS + _STREAMING,
    thinking=_THINKING,
    memory_pattern=re.compile(r"(\d+\.?\d*)\s*MB"),
    header_pattern=re.compile(r"(?i)(gemini.*preview|gemini-\d|google\s+ai)"),
    extra={
        "yolo": re.compile(r"(?i)YOLO\s*mode:\s*(ON|OFF)"),
        "shell_mode": re.compile(r"^!\s*"),
    },
)

CURSOR_PATTERNS = PatternSet(
    rate_limit=("rate limit", "too many requests", "quota exceeded"),
    working=("```", "writing ", "reading ", "searching ", "analyzing ", "generating "),
    idle=(re.compile(r">\s*$"), re.compile(r"cursor>\s*$")),
    error=("error:", "failed:", "exception:"),
    generating=_SPINNERS + _STREAMING,
    thinking=_THINKING,
    header_pattern=re.compile(r"(?i)(cursor|cursor\s+ai)"),
)

WINDSURF_PATTERNS = PatternSet(
    rate_limit=("rate limit", "too many requests", "quota exceeded"),
    working=("```", "writing ", "reading ", "searching ", "analyzing ", "generating "),
    idle=(re.compile(r">\s*$"), re.compile(r"windsurf>\s*$")),
    error=("error:", "failed:", "exception:"),
    generating=_SPINNERS + _STREAMING,
    thinking=_THINKING,
    header_pattern=re.compile(r"(?i)(windsurf|windsurf\s+ide)"),
)

AIDER_PATTERNS = PatternSet(
    rate_limit=("rate limit", "too many requests", "quota exceeded"),
    working=("```", "applied edit", "committing", "repo-map", "analyzing", "searching"),
    idle=(re.compile(r">\s*$"), re.compile(r"aider>\s*$")),
    error=("error:", "failed:", "exception:"),
    generating=_SPINNERS + _STREAMING,
    thinking=_THINKING,
    header_pattern=re.compile(r"(?i)(aider|aider\s+chat)"),
)

_PATTERN_SETS = {
    AgentKind.CLAUDE: CC_PATTERNS,
    AgentKind.CODEX: COD_PATTERNS,
    AgentKind.GEMINI: GMI_PATTERNS,
    AgentKind.CURSOR: CURSOR_PATTERNS,
    AgentKind.WINDSURF: WINDSURF_PATTERNS,
    AgentKind.AIDER: AIDER_PATTERNS,
}

EMPTY_PATTERNS = PatternSet()

# Case-sensitive markers that mean an error regardless of the agent kind
ERROR_INDICATORS = (
    "error:",
    "Error:",
    "ERROR:",
    "failed:",
    "panic:",
    "Traceback",
    "fatal:",
    "FATAL:",
)


def get_pattern_set(kind: AgentKind) -> PatternSet:
    """Return the patterns for a kind; non-agent kinds get an empty set."""
    return _PATTERN_SETS.get(kind, EMPTY_PATTERNS)


def header_patterns() -> list[tuple[AgentKind, re.Pattern]]:
    """Banner patterns in detection priority order."""
    return [
        (kind, patterns.header_pattern)
        for kind, patterns in _PATTERN_SETS.items()
        if patterns.header_pattern is not None
    ]


_REGEX_META = re.compile(r"\.\*|\.\+|\\[a-z]")
_compiled_cache: dict[str, re.Pattern] = {}


def _pattern_matches(pattern: str, text_lower: str) -> bool:
    if _REGEX_META.search(pattern):
        compiled = _compiled_cache.get(pattern)
        if compiled is None:
            compiled = re.compile(pattern, re.IGNORECASE)
            _compiled_cache[pattern] = compiled
        return compiled.search(text_lower) is not None
    return pattern.lower() in text_lower


def match_any(text: str, patterns: tuple[str, ...] | list[str]) -> bool:
    """True if any pattern occurs in text, case-insensitively."""
    text_lower = text.lower()
    return any(_pattern_matches(p, text_lower) for p in patterns)


def match_any_regex(text: str, patterns: tuple[re.Pattern, ...] | list[re.Pattern]) -> bool:
    return any(p.search(text) for p in patterns)


def collect_matches(text: str, patterns: tuple[str, ...] | list[str]) -> list[str]:
    """Return every pattern that occurs in text."""
    text_lower = text.lower()
    return [p for p in patterns if _pattern_matches(p, text_lower)]


def _last_group(pattern: re.Pattern, text: str) -> str | None:
    matches = pattern.findall(text)
    if not matches:
        return None
    last = matches[-1]
    if isinstance(last, tuple):
        last = last[0]
    return last.replace(",", "")


def extract_float(pattern: re.Pattern, text: str) -> float | None:
    """Extract the last captured number as a float."""
    value = _last_group(pattern, text)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def extract_int(pattern: re.Pattern, text: str) -> int | None:
    """Extract the last captured number as an int, ignoring thousands separators."""
    value = _last_group(pattern, text)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def last_lines(text: str, n: int) -> str:
    """Return the last ``n`` lines of text."""
    lines = text.split("\n")
    if len(lines) <= n:
        return text
    return "\n".join(lines[-n:])
