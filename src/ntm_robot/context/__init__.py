"""Context-window usage estimation."""

from .estimator import (
    CONTEXT_LIMITS,
    AgentContextInfo,
    ContextEstimate,
    ContextEstimator,
    SessionContext,
    context_hints,
    context_limit,
    detect_model,
    estimate_context,
    usage_level,
)

__all__ = [
    "CONTEXT_LIMITS",
    "AgentContextInfo",
    "ContextEstimate",
    "ContextEstimator",
    "SessionContext",
    "context_hints",
    "context_limit",
    "detect_model",
    "estimate_context",
    "usage_level",
]
