"""Shared enums for ntm-robot."""

from enum import Enum


class AgentKind(str, Enum):
    """Canonical agent kinds.

    The value is the canonical long name. Pane titles use the short token
    returned by :attr:`short`.
    """

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    CURSOR = "cursor"
    WINDSURF = "windsurf"
    AIDER = "aider"
    USER = "user"
    UNKNOWN = "unknown"

    @property
    def short(self) -> str:
        """Short token used inside structured pane titles."""
        return _SHORT_TOKENS.get(self, self.value)

    @property
    def is_agent(self) -> bool:
        """True for AI agent kinds (not user/unknown)."""
        return self not in (AgentKind.USER, AgentKind.UNKNOWN)

    @classmethod
    def from_alias(cls, alias: str | None) -> "AgentKind":
        """Resolve a user-facing synonym to a canonical kind.

        Unrecognised aliases resolve to ``UNKNOWN``.
        """
        if not alias:
            return cls.UNKNOWN
        return _ALIASES.get(alias.strip().lower(), cls.UNKNOWN)


_SHORT_TOKENS = {
    AgentKind.CLAUDE: "cc",
    AgentKind.CODEX: "cod",
    AgentKind.GEMINI: "gmi",
}

_ALIASES = {
    "cc": AgentKind.CLAUDE,
    "claude": AgentKind.CLAUDE,
    "claude-code": AgentKind.CLAUDE,
    "claude_code": AgentKind.CLAUDE,
    "cod": AgentKind.CODEX,
    "codex": AgentKind.CODEX,
    "codex-cli": AgentKind.CODEX,
    "codex_cli": AgentKind.CODEX,
    "gmi": AgentKind.GEMINI,
    "gemini": AgentKind.GEMINI,
    "gemini-cli": AgentKind.GEMINI,
    "gemini_cli": AgentKind.GEMINI,
    "cursor": AgentKind.CURSOR,
    "windsurf": AgentKind.WINDSURF,
    "aider": AgentKind.AIDER,
    "user": AgentKind.USER,
    "unknown": AgentKind.UNKNOWN,
}


class ErrorCode(str, Enum):
    """Machine-readable error codes carried in response envelopes."""

    INVALID_FLAG = "INVALID_FLAG"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PANE_NOT_FOUND = "PANE_NOT_FOUND"
    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    SYNTHESIS_NOT_READY = "SYNTHESIS_NOT_READY"
    OUTPUT_SCHEMA_INVALID = "OUTPUT_SCHEMA_INVALID"
    ENSEMBLE_NOT_FOUND = "ENSEMBLE_NOT_FOUND"


class AgentState(str, Enum):
    """Per-pane agent state reported by the activity classifier."""

    GENERATING = "generating"
    WAITING = "waiting"
    THINKING = "thinking"
    ERROR = "error"
    STALLED = "stalled"
    UNKNOWN = "unknown"


class ActivityStatus(str, Enum):
    """Coarse timing-based status used for pane indicators."""

    ACTIVE = "active"
    IDLE = "idle"
    STALLED = "stalled"


class ExitCode(int, Enum):
    """Process exit codes for robot commands."""

    SUCCESS = 0
    FAILURE = 1
    DEPENDENCY_MISSING = 2
