"""Agent detection and output parsing."""

from .detector import (
    Detection,
    detect_agent,
    detect_session_agents,
    kind_from_command,
    kind_from_output,
    kind_from_process_tree,
)
from .parser import OutputParser, ParsedOutput, ParserConfig
from .patterns import PatternSet, get_pattern_set, normalize_output, strip_ansi

__all__ = [
    "Detection",
    "OutputParser",
    "ParsedOutput",
    "ParserConfig",
    "PatternSet",
    "detect_agent",
    "detect_session_agents",
    "get_pattern_set",
    "kind_from_command",
    "kind_from_output",
    "kind_from_process_tree",
    "normalize_output",
    "strip_ansi",
]
