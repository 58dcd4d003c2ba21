"""Adapters for external ecosystem tools."""

from .adapters import (
    BDAdapter,
    BlockedCommand,
    BVAdapter,
    CASSAdapter,
    DCGAdapter,
    JFPAdapter,
    MSAdapter,
    default_audit_path,
)
from .agentmail import AgentMailClient, reservation_from_dict
from .base import (
    OUTPUT_LIMIT,
    Capability,
    HealthStatus,
    ToolAdapter,
    ToolInfo,
    ToolName,
    ToolResult,
    Version,
)
from .registry import ToolRegistry

__all__ = [
    "OUTPUT_LIMIT",
    "AgentMailClient",
    "BDAdapter",
    "BVAdapter",
    "BlockedCommand",
    "CASSAdapter",
    "Capability",
    "DCGAdapter",
    "HealthStatus",
    "JFPAdapter",
    "MSAdapter",
    "ToolAdapter",
    "ToolInfo",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "Version",
    "default_audit_path",
    "reservation_from_dict",
]
