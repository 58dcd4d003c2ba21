"""Core types shared across ntm-robot."""

from .enums import ActivityStatus, AgentKind, AgentState, ErrorCode, ExitCode

__all__ = ["ActivityStatus", "AgentKind", "AgentState", "ErrorCode", "ExitCode"]
