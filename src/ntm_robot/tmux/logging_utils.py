"""Logging utilities for tmux operations."""

from typing import Any

from ..utils.logging import LogContext, get_logger

tmux_logger = get_logger("ntm_robot.tmux", LogContext.TMUX)


def log_tmux_command(args: tuple[str, ...] | list[str], remote: str | None = None) -> None:
    """Log a tmux command about to run."""
    tmux_logger.debug(
        f"tmux {args[0] if args else ''}",
        tmux_args=list(args),
        remote=remote,
    )


def log_tmux_failure(
    args: tuple[str, ...] | list[str], error: str, remote: str | None = None
) -> None:
    """Log a failed tmux command."""
    tmux_logger.warning(
        f"tmux {args[0] if args else ''} failed",
        tmux_args=list(args),
        error=error,
        remote=remote,
    )


def log_session_operation(
    operation: str, session_name: str, status: str, context: dict[str, Any] | None = None
) -> None:
    """Log session operation."""
    message = f"Session {operation} {status} - {session_name}"
    if status == "error":
        tmux_logger.error(message, session=session_name, **(context or {}))
    else:
        tmux_logger.info(message, session=session_name, **(context or {}))


def log_send(target: str, method: str, size: int, enter: bool) -> None:
    """Log a send to a pane."""
    tmux_logger.debug(
        f"Sent {size} bytes to {target} via {method}",
        target=target,
        method=method,
        size=size,
        enter=enter,
    )


def log_pane_list(session: str | None, count: int) -> None:
    """Log pane listing."""
    tmux_logger.debug(f"Panes listed - count: {count}", target_session=session, count=count)
