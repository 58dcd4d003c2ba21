"""
Tmux access for ntm-robot.

This package provides:
- An async adapter over local (libtmux) and remote (ssh) tmux servers
- Pane and session models
- Command helpers for quoting, sanitizing and validating input
"""

from .adapter import (
    DEFAULT_ENTER_DELAY,
    FIELD_SEPARATOR,
    INSTALL_HINT,
    SHELL_ENTER_DELAY,
    TmuxAdapter,
    in_tmux,
    needs_buffer_send,
)
from .commands import (
    build_pane_command,
    sanitize_pane_command,
    shell_quote,
    validate_session_name,
)
from .models import Pane, Session

__all__ = [
    "DEFAULT_ENTER_DELAY",
    "FIELD_SEPARATOR",
    "INSTALL_HINT",
    "SHELL_ENTER_DELAY",
    "Pane",
    "Session",
    "TmuxAdapter",
    "build_pane_command",
    "in_tmux",
    "needs_buffer_send",
    "sanitize_pane_command",
    "shell_quote",
    "validate_session_name",
]
